"""Tests for Safety Service HTTP handler.

Tests the /scan endpoint and its alert and notification integration.
"""
import json
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from glrs.shared.utils import configure_pii_salt


@pytest.fixture(autouse=True)
def setup_pii_salt():
    """Configure PII salt before each test."""
    configure_pii_salt("test_salt_that_is_at_least_32_characters_long")


@pytest.fixture
def handler_module():
    from glrs.services.safety_service import handler
    return handler


@pytest.fixture
def client(handler_module):
    """Create Flask test client."""
    handler_module.app.config['TESTING'] = True
    with handler_module.app.test_client() as client:
        yield client


def scan(client, text, user_id="user_123", **extra):
    return client.post(
        '/scan',
        json={'text': text, 'user_id': user_id, **extra},
        content_type='application/json',
    )


class TestHealthEndpoint:
    def test_health_returns_200(self, client):
        response = client.get('/health')
        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['status'] == 'healthy'
        assert data['service'] == 'safety-service'
        assert 'lexicon_version' in data


class TestReadyEndpoint:
    def test_ready_returns_200(self, client):
        response = client.get('/ready')
        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['status'] == 'ready'
        assert data['keyword_count'] > 0


class TestScanEndpoint:
    def test_safe_message_proceeds(self, client):
        response = scan(client, 'I had a good day at work')

        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['tier'] == 'none'
        assert data['detected'] is False
        assert data['action'] == 'proceed'
        assert data['alert_id'] is None
        assert data['crisis_response'] is None

    def test_critical_bypasses_llm_and_creates_alert(self, client, handler_module):
        response = scan(client, "I'm going to kill myself tonight", source='chat')

        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['tier'] == 'critical'
        assert data['action'] == 'bypass_llm'
        assert data['show_resources'] is True
        assert '988' in data['crisis_response']
        assert data['alert_id'].startswith('alert_')

        alert = handler_module.lifecycle_manager.get_alert(data['alert_id'])
        assert alert.source == 'chat'
        assert alert.triggered_by == 'kill myself'

    def test_critical_reports_channel_outcomes(self, client):
        # No coach is configured, so every channel fails but the scan still succeeds
        data = json.loads(scan(client, 'I want to die').data)

        assert data['notifications'] == {'push': False, 'email': False, 'sms': False}

    def test_high_modifies_response(self, client):
        data = json.loads(scan(client, 'I relapsed today').data)

        assert data['tier'] == 'high'
        assert data['action'] == 'modify_response'
        assert data['crisis_response'] is not None
        assert data['alert_id'] is not None

    def test_moderate_creates_alert_without_immediate_notification(self, client):
        data = json.loads(scan(client, 'my cravings are bad').data)

        assert data['tier'] == 'moderate'
        assert data['action'] == 'log_only'
        assert data['alert_id'] is not None
        assert data['notifications'] is None

    def test_standard_logged_without_alert(self, client, handler_module):
        before = len(handler_module.lifecycle_manager.repository.detection_log())

        data = json.loads(scan(client, 'anxious about my job interview').data)

        assert data['tier'] == 'standard'
        assert data['alert_id'] is None
        assert data['crisis_response'] is None
        assert len(handler_module.lifecycle_manager.repository.detection_log()) == before + 1

    def test_dispatch_uses_created_alert(self, client, handler_module):
        dispatch_result = MagicMock()
        dispatch_result.success_map.return_value = {'push': True, 'email': True, 'sms': True}
        mock_dispatcher = MagicMock()
        mock_dispatcher.send_crisis_notifications = AsyncMock(return_value=dispatch_result)

        with patch.object(handler_module, 'dispatcher', mock_dispatcher):
            data = json.loads(scan(client, 'I want to end my life', coach_id='coach_1').data)

        alert = mock_dispatcher.send_crisis_notifications.await_args.args[0]
        assert alert.alert_id == data['alert_id']
        assert alert.coach_id == 'coach_1'
        assert data['notifications'] == {'push': True, 'email': True, 'sms': True}

    def test_alert_store_failure_keeps_crisis_response(self, client, handler_module):
        failing = MagicMock()
        failing.create_crisis_alert.side_effect = RuntimeError('database down')

        with patch.object(handler_module, 'lifecycle_manager', failing):
            response = scan(client, 'I want to die')

        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['tier'] == 'critical'
        assert data['action'] == 'bypass_llm'
        assert data['alert_id'] is None
        assert 'error' in data

    def test_missing_body(self, client):
        response = client.post('/scan', data='', content_type='application/json')
        assert response.status_code == 400

    def test_missing_user_id(self, client):
        response = client.post('/scan', json={'text': 'hello'})
        assert response.status_code == 400

    def test_non_string_text(self, client):
        response = client.post('/scan', json={'text': 42, 'user_id': 'user_1'})
        assert response.status_code == 400
