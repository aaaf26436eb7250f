"""
Event Log Service

Append-only audit log for the gateway, stored in SQLite:
- live_events: session status changes, inbound messages and other operational events
- webhook_history: one row per webhook delivery attempt
- outgoing_messages: one row per message sent through the API, with delivery status

Also owns the key/value settings table (logging toggle and retention limits)
and the retention sweep.

Every method opens and closes its own SQLAlchemy session, so the service can
be called from worker threads (asyncio.to_thread) as well as request handlers.
"""

import json
import logging
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from models import (
    DEFAULT_SETTINGS,
    LOG_TABLES,
    MESSAGE_STATUS_FAILED,
    MESSAGE_STATUS_ORDER,
    MESSAGE_STATUSES,
    LiveEvent,
    OutgoingMessage,
    Setting,
    WebhookHistory,
)

logger = logging.getLogger(__name__)


def _dump(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str)


def _load(value: Optional[str]) -> Any:
    if value is None:
        return None
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        return value


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def is_status_advance(current: Optional[str], new: str) -> bool:
    """
    True if an outgoing message may move from `current` to `new`.

    Statuses only move forward along pending -> sent -> delivered -> read.
    failed can be reached from anything except itself and is terminal.
    """
    if current == MESSAGE_STATUS_FAILED:
        return False
    if new == MESSAGE_STATUS_FAILED:
        return True
    if current not in MESSAGE_STATUS_ORDER:
        return True
    return MESSAGE_STATUS_ORDER.index(new) > MESSAGE_STATUS_ORDER.index(current)


class EventLogService:
    def __init__(self, get_db_session: Callable[[], Session]):
        """
        Args:
            get_db_session: Factory returning a new SQLAlchemy session (a sessionmaker)
        """
        self.get_db_session = get_db_session

    @contextmanager
    def _session(self):
        db = self.get_db_session()
        try:
            yield db
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # =========================================================================
    # Settings
    # =========================================================================

    def get_setting(self, key: str, default: Optional[str] = None) -> Optional[str]:
        with self._session() as db:
            row = db.query(Setting).filter(Setting.key == key).first()
            if row is not None:
                return row.value
        return default if default is not None else DEFAULT_SETTINGS.get(key)

    def set_setting(self, key: str, value: Any):
        value = str(value).lower() if isinstance(value, bool) else str(value)
        with self._session() as db:
            row = db.query(Setting).filter(Setting.key == key).first()
            if row is None:
                db.add(Setting(key=key, value=value))
            else:
                row.value = value
                row.updated_at = datetime.utcnow()
            db.commit()
        logger.info(f"Setting updated: {key}={value}")

    def get_all_settings(self) -> Dict[str, str]:
        settings = dict(DEFAULT_SETTINGS)
        with self._session() as db:
            for row in db.query(Setting).all():
                settings[row.key] = row.value
        return settings

    def is_logging_enabled(self) -> bool:
        return (self.get_setting("logging_enabled") or "true").lower() == "true"

    def _get_int_setting(self, key: str) -> int:
        raw = self.get_setting(key)
        try:
            return int(raw)
        except (TypeError, ValueError):
            logger.warning(f"Invalid integer setting {key}={raw!r}, using default")
            return int(DEFAULT_SETTINGS[key])

    # =========================================================================
    # Live events
    # =========================================================================

    def log_event(self, session_id: str, event_type: str, message: str,
                  data: Optional[Any] = None) -> Optional[int]:
        """Append a live event. Returns the row id, or None when logging is disabled."""
        if not self.is_logging_enabled():
            return None

        with self._session() as db:
            row = LiveEvent(
                session_id=session_id,
                event_type=event_type,
                message=message,
                data=_dump(data),
            )
            db.add(row)
            db.commit()
            return row.id

    def get_live_events(self, session_id: Optional[str] = None, event_type: Optional[str] = None,
                        limit: int = 100, offset: int = 0) -> List[dict]:
        with self._session() as db:
            query = self._filter(db.query(LiveEvent), LiveEvent, session_id, event_type)
            rows = query.order_by(LiveEvent.created_at.desc(), LiveEvent.id.desc()) \
                .offset(offset).limit(limit).all()
            return [self._event_to_dict(row) for row in rows]

    def count_live_events(self, session_id: Optional[str] = None,
                          event_type: Optional[str] = None) -> int:
        with self._session() as db:
            return self._filter(db.query(LiveEvent), LiveEvent, session_id, event_type).count()

    def clear_live_events(self, session_id: Optional[str] = None) -> int:
        return self._clear(LiveEvent, session_id)

    # =========================================================================
    # Webhook history
    # =========================================================================

    def log_webhook(self, session_id: str, event_type: str, webhook_url: str, success: bool,
                    status_code: Optional[int] = None, payload: Optional[Any] = None,
                    response: Optional[Any] = None, error: Optional[str] = None) -> Optional[int]:
        if not self.is_logging_enabled():
            return None

        with self._session() as db:
            row = WebhookHistory(
                session_id=session_id,
                event_type=event_type,
                webhook_url=webhook_url,
                success=bool(success),
                status_code=status_code,
                payload=_dump(payload),
                response=_dump(response),
                error=error,
            )
            db.add(row)
            db.commit()
            return row.id

    def get_webhook_history(self, session_id: Optional[str] = None, event_type: Optional[str] = None,
                            limit: int = 100, offset: int = 0) -> List[dict]:
        with self._session() as db:
            query = self._filter(db.query(WebhookHistory), WebhookHistory, session_id, event_type)
            rows = query.order_by(WebhookHistory.created_at.desc(), WebhookHistory.id.desc()) \
                .offset(offset).limit(limit).all()
            return [self._webhook_to_dict(row) for row in rows]

    def count_webhook_history(self, session_id: Optional[str] = None,
                              event_type: Optional[str] = None) -> int:
        with self._session() as db:
            return self._filter(db.query(WebhookHistory), WebhookHistory, session_id, event_type).count()

    def clear_webhook_history(self, session_id: Optional[str] = None) -> int:
        return self._clear(WebhookHistory, session_id)

    # =========================================================================
    # Outgoing messages
    # =========================================================================

    def log_outgoing_message(self, session_id: str, recipient: str, message_type: str = "text",
                             content: Optional[str] = None, message_id: Optional[str] = None,
                             status: str = "pending", api_endpoint: Optional[str] = None,
                             api_status: Optional[int] = None, api_response: Optional[Any] = None,
                             error: Optional[str] = None) -> Optional[int]:
        if not self.is_logging_enabled():
            return None
        if status not in MESSAGE_STATUSES:
            raise ValueError(f"Invalid message status: {status}")

        with self._session() as db:
            row = OutgoingMessage(
                session_id=session_id,
                recipient=recipient,
                message_type=message_type,
                content=content,
                message_id=message_id,
                status=status,
                api_endpoint=api_endpoint,
                api_status=api_status,
                api_response=_dump(api_response),
                error=error,
            )
            db.add(row)
            db.commit()
            return row.id

    def get_outgoing_messages(self, session_id: Optional[str] = None, status: Optional[str] = None,
                              limit: int = 100, offset: int = 0) -> List[dict]:
        with self._session() as db:
            query = self._filter_outgoing(db.query(OutgoingMessage), session_id, status)
            rows = query.order_by(OutgoingMessage.created_at.desc(), OutgoingMessage.id.desc()) \
                .offset(offset).limit(limit).all()
            return [self._outgoing_to_dict(row) for row in rows]

    def count_outgoing_messages(self, session_id: Optional[str] = None,
                                status: Optional[str] = None) -> int:
        with self._session() as db:
            return self._filter_outgoing(db.query(OutgoingMessage), session_id, status).count()

    def clear_outgoing_messages(self, session_id: Optional[str] = None) -> int:
        return self._clear(OutgoingMessage, session_id)

    def get_message_by_message_id(self, message_id: str) -> Optional[dict]:
        with self._session() as db:
            row = db.query(OutgoingMessage).filter(OutgoingMessage.message_id == message_id) \
                .order_by(OutgoingMessage.id.desc()).first()
            return self._outgoing_to_dict(row) if row else None

    def update_message_status(self, message_id: str, status: str) -> int:
        """
        Advance the status of every outgoing record with this provider id.

        Regressions (e.g. read -> delivered) and updates to failed records are
        ignored. Returns the number of rows changed.
        """
        if status not in MESSAGE_STATUSES:
            raise ValueError(f"Invalid message status: {status}")
        if not message_id:
            return 0

        changed = 0
        with self._session() as db:
            rows = db.query(OutgoingMessage).filter(OutgoingMessage.message_id == message_id).all()
            for row in rows:
                if is_status_advance(row.status, status):
                    row.status = status
                    row.updated_at = datetime.utcnow()
                    changed += 1
            if changed:
                db.commit()
        return changed

    # =========================================================================
    # Retention
    # =========================================================================

    def cleanup(self) -> Dict[str, int]:
        """
        Retention sweep over every log table.

        Deletes rows older than retention_days, then trims each table to its
        max_records most recent rows. Returns deleted counts per table.
        """
        retention_days = self._get_int_setting("retention_days")
        max_records = self._get_int_setting("max_records")
        cutoff = datetime.utcnow() - timedelta(days=retention_days)

        results = {}
        with self._session() as db:
            for model in LOG_TABLES:
                deleted = db.query(model).filter(model.created_at < cutoff) \
                    .delete(synchronize_session=False)

                keep_ids = select(model.id) \
                    .order_by(model.created_at.desc(), model.id.desc()) \
                    .limit(max_records)
                deleted += db.query(model).filter(model.id.notin_(keep_ids)) \
                    .delete(synchronize_session=False)

                results[model.__tablename__] = deleted
            db.commit()

        logger.info(
            f"Retention cleanup done (retention_days={retention_days}, "
            f"max_records={max_records}): {results}"
        )
        return results

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _filter(query, model, session_id: Optional[str], event_type: Optional[str]):
        if session_id:
            query = query.filter(model.session_id == session_id)
        if event_type:
            query = query.filter(model.event_type == event_type)
        return query

    @staticmethod
    def _filter_outgoing(query, session_id: Optional[str], status: Optional[str]):
        if session_id:
            query = query.filter(OutgoingMessage.session_id == session_id)
        if status:
            query = query.filter(OutgoingMessage.status == status)
        return query

    def _clear(self, model, session_id: Optional[str]) -> int:
        with self._session() as db:
            query = db.query(model)
            if session_id:
                query = query.filter(model.session_id == session_id)
            deleted = query.delete(synchronize_session=False)
            db.commit()
        logger.info(f"Cleared {deleted} row(s) from {model.__tablename__}"
                    + (f" for session {session_id}" if session_id else ""))
        return deleted

    @staticmethod
    def _event_to_dict(row: LiveEvent) -> dict:
        return {
            "id": row.id,
            "session_id": row.session_id,
            "event_type": row.event_type,
            "message": row.message,
            "data": _load(row.data),
            "created_at": _iso(row.created_at),
        }

    @staticmethod
    def _webhook_to_dict(row: WebhookHistory) -> dict:
        return {
            "id": row.id,
            "session_id": row.session_id,
            "event_type": row.event_type,
            "webhook_url": row.webhook_url,
            "success": bool(row.success),
            "status_code": row.status_code,
            "payload": _load(row.payload),
            "response": _load(row.response),
            "error": row.error,
            "created_at": _iso(row.created_at),
        }

    @staticmethod
    def _outgoing_to_dict(row: OutgoingMessage) -> dict:
        return {
            "id": row.id,
            "session_id": row.session_id,
            "recipient": row.recipient,
            "message_type": row.message_type,
            "content": row.content,
            "message_id": row.message_id,
            "status": row.status,
            "api_endpoint": row.api_endpoint,
            "api_status": row.api_status,
            "api_response": _load(row.api_response),
            "error": row.error,
            "created_at": _iso(row.created_at),
            "updated_at": _iso(row.updated_at),
        }
