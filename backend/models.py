from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, Index
from sqlalchemy.orm import declarative_base
from datetime import datetime

Base = declarative_base()


# Outgoing message statuses, in delivery order. "failed" is terminal and
# reachable from any other status.
MESSAGE_STATUS_ORDER = ["pending", "sent", "delivered", "read"]
MESSAGE_STATUS_FAILED = "failed"
MESSAGE_STATUSES = MESSAGE_STATUS_ORDER + [MESSAGE_STATUS_FAILED]

# Defaults seeded into the settings table
DEFAULT_SETTINGS = {
    "logging_enabled": "true",
    "retention_days": "30",
    "max_records": "10000",
}


class OutgoingMessage(Base):
    """
    One row per send attempt made through the messages API.

    message_id is the provider-assigned id and stays NULL when the send
    failed before the bridge acknowledged it.
    """
    __tablename__ = "outgoing_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String(100), nullable=False)
    recipient = Column(String(100), nullable=False)
    message_type = Column(String(20), nullable=False, default="text")  # text, image, document, location
    content = Column(Text, nullable=True)
    message_id = Column(String(100), nullable=True)
    status = Column(String(20), default="pending")  # pending, sent, delivered, read, failed
    api_endpoint = Column(String(200), nullable=True)
    api_status = Column(Integer, nullable=True)
    api_response = Column(Text, nullable=True)  # JSON
    error = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index('idx_outgoing_session', 'session_id'),
        Index('idx_outgoing_created', 'created_at'),
        Index('idx_outgoing_status', 'status'),
        Index('idx_outgoing_message_id', 'message_id'),
    )


class LiveEvent(Base):
    """Operational event for a session (status change, inbound message, ...)."""
    __tablename__ = "live_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String(100), nullable=False)
    event_type = Column(String(50), nullable=False)  # connection, message, ...
    message = Column(Text, nullable=False)
    data = Column(Text, nullable=True)  # JSON
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index('idx_events_session', 'session_id'),
        Index('idx_events_created', 'created_at'),
        Index('idx_events_type', 'event_type'),
    )


class WebhookHistory(Base):
    """One row per webhook delivery attempt."""
    __tablename__ = "webhook_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String(100), nullable=False)
    event_type = Column(String(50), nullable=False)
    webhook_url = Column(Text, nullable=False)
    success = Column(Boolean, default=False)
    status_code = Column(Integer, nullable=True)
    payload = Column(Text, nullable=True)  # JSON envelope that was POSTed
    response = Column(Text, nullable=True)  # JSON
    error = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index('idx_webhook_session', 'session_id'),
        Index('idx_webhook_created', 'created_at'),
        Index('idx_webhook_success', 'success'),
    )


class Setting(Base):
    """Flat key/value settings (logging_enabled, retention_days, max_records)."""
    __tablename__ = "settings"

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


# Log tables swept by the retention job
LOG_TABLES = (OutgoingMessage, LiveEvent, WebhookHistory)
