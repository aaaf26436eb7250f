"""
Services Module

Session lifecycle, webhook delivery, the event log and outgoing messages.
"""

from services.errors import SessionNotConnectedError, SessionNotFoundError
from services.event_log_service import EventLogService
from services.session_manager import SessionManager
from services.webhook_dispatcher import WebhookDispatcher

__all__ = [
    'EventLogService',
    'SessionManager',
    'SessionNotConnectedError',
    'SessionNotFoundError',
    'WebhookDispatcher',
]
