"""Tests for Crisis Engine HTTP handler."""
import json
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from glrs.shared.utils import configure_pii_salt


@pytest.fixture(autouse=True)
def setup_pii_salt():
    configure_pii_salt("test_salt_that_is_at_least_32_characters_long")


@pytest.fixture
def handler_module():
    from glrs.services.crisis_engine import http_handler
    return http_handler


@pytest.fixture
def client(handler_module):
    handler_module.app.config['TESTING'] = True
    with handler_module.app.test_client() as client:
        yield client


@pytest.fixture
def alert(handler_module):
    from glrs.services.safety_service.detector import CrisisDetector
    result = CrisisDetector().scan("I want to kill myself", context="chat")
    return handler_module.lifecycle_manager.create_crisis_alert(result, user_id="user_1")


class TestHealthEndpoint:
    def test_health_returns_200(self, client):
        response = client.get('/health')
        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['status'] == 'healthy'
        assert data['service'] == 'crisis-engine'
        assert data['alert_store']['status'] == 'memory'

    def test_health_reports_unreachable_store(self, client, handler_module):
        manager = MagicMock()
        manager.repository.uses_memory = False
        manager.repository.connection_manager.health_check.return_value = {
            'status': 'error', 'healthy': False, 'error': 'timeout'
        }

        with patch.object(handler_module, 'lifecycle_manager', manager):
            response = client.get('/health')

        assert response.status_code == 503
        assert json.loads(response.data)['status'] == 'degraded'


class TestAlertQueries:
    def test_get_alert(self, client, alert):
        response = client.get(f'/alerts/{alert.alert_id}')

        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['alert_id'] == alert.alert_id
        assert data['tier'] == 'critical'
        assert data['status'] == 'open'

    def test_get_unknown_alert(self, client):
        response = client.get('/alerts/alert_does_not_exist')
        assert response.status_code == 404

    def test_active_alerts(self, client, alert):
        response = client.get('/alerts/active?tier=critical')

        assert response.status_code == 200
        data = json.loads(response.data)
        assert alert.alert_id in [a['alert_id'] for a in data['alerts']]
        assert data['by_tier']['critical'] >= 1

    def test_active_alerts_unknown_tier(self, client):
        response = client.get('/alerts/active?tier=severe')
        assert response.status_code == 400


class TestAcknowledgeEndpoint:
    def test_acknowledge(self, client, alert):
        response = client.post(
            f'/alerts/{alert.alert_id}/acknowledge',
            json={'reviewer_id': 'coach_1'},
        )

        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['status'] == 'acknowledged'
        assert data['acknowledged_by'] == 'coach_1'

    def test_second_acknowledge_conflicts(self, client, alert):
        client.post(f'/alerts/{alert.alert_id}/acknowledge', json={'reviewer_id': 'coach_1'})

        response = client.post(
            f'/alerts/{alert.alert_id}/acknowledge',
            json={'reviewer_id': 'coach_2'},
        )

        assert response.status_code == 409
        data = json.loads(response.data)
        assert data['current_status'] == 'acknowledged'

    def test_missing_reviewer(self, client, alert):
        response = client.post(f'/alerts/{alert.alert_id}/acknowledge', json={})
        assert response.status_code == 400

    def test_unknown_alert(self, client):
        response = client.post('/alerts/alert_missing/acknowledge', json={'reviewer_id': 'coach_1'})
        assert response.status_code == 404


class TestResolveEndpoint:
    def test_resolve(self, client, alert):
        response = client.post(
            f'/alerts/{alert.alert_id}/resolve',
            json={'reviewer_id': 'coach_1', 'resolution_notes': 'Member safe'},
        )

        assert response.status_code == 200
        assert json.loads(response.data)['status'] == 'resolved'

    def test_resolve_twice_conflicts(self, client, alert):
        client.post(f'/alerts/{alert.alert_id}/resolve', json={'reviewer_id': 'coach_1'})
        response = client.post(f'/alerts/{alert.alert_id}/resolve', json={'reviewer_id': 'coach_1'})
        assert response.status_code == 409


class TestNotesEndpoint:
    def test_add_note(self, client, alert):
        response = client.post(
            f'/alerts/{alert.alert_id}/notes',
            json={'author_id': 'coach_1', 'note': 'Left voicemail'},
        )

        assert response.status_code == 201
        data = json.loads(response.data)
        assert data['status'] == 'open'
        assert data['notes'][0]['text'] == 'Left voicemail'

    def test_blank_note_rejected(self, client, alert):
        response = client.post(
            f'/alerts/{alert.alert_id}/notes',
            json={'author_id': 'coach_1', 'note': '   '},
        )
        assert response.status_code == 400

    def test_note_on_resolved_conflicts(self, client, alert):
        client.post(f'/alerts/{alert.alert_id}/resolve', json={'reviewer_id': 'coach_1'})
        response = client.post(
            f'/alerts/{alert.alert_id}/notes',
            json={'author_id': 'coach_1', 'note': 'follow-up'},
        )
        assert response.status_code == 409


class TestRetryEndpoint:
    def test_retry_named_channels(self, client, alert):
        response = client.post(f'/alerts/{alert.alert_id}/retry', json={'channels': ['email']})

        assert response.status_code == 200
        data = json.loads(response.data)
        assert list(data['channels']) == ['email']
        # No coach is configured in the test directory
        assert data['channels']['email']['sent'] is False

    def test_retry_unknown_channel(self, client, alert):
        response = client.post(f'/alerts/{alert.alert_id}/retry', json={'channels': ['pigeon']})
        assert response.status_code == 400

    def test_retry_unknown_alert(self, client):
        response = client.post('/alerts/alert_missing/retry', json={})
        assert response.status_code == 404


class TestSweepEndpoints:
    def test_escalation_sweep(self, client, handler_module):
        summary = MagicMock()
        summary.to_dict.return_value = {'escalated': 1, 'skipped': 0, 'alerts': {}}
        mock_dispatcher = MagicMock()
        mock_dispatcher.escalate_unacknowledged_alerts = AsyncMock(return_value=summary)

        with patch.object(handler_module, 'dispatcher', mock_dispatcher):
            response = client.post('/sweeps/escalation')

        assert response.status_code == 200
        assert json.loads(response.data)['escalated'] == 1
        mock_dispatcher.escalate_unacknowledged_alerts.assert_awaited_once()

    def test_escalation_sweep_nothing_due(self, client):
        response = client.post('/sweeps/escalation')
        assert response.status_code == 200
        assert json.loads(response.data)['escalated'] == 0

    def test_digest_sweep(self, client):
        response = client.post('/sweeps/digest')

        assert response.status_code == 200
        assert json.loads(response.data)['failed_coaches'] == 0
