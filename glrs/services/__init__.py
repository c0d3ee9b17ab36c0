"""GLRS safety services.

- Safety Service scans member text before any AI response (never raises)
- Crisis Engine persists actionable detections and tracks coach review
- Notification Service delivers alerts to coaches per the notification matrix
- All services use hash_pii() for member and coach identifiers
"""
