"""
API Routes for the event log: live events, outgoing messages, webhook history,
logging settings and manual retention cleanup.

Handlers are sync (def) so SQLite access runs in FastAPI's threadpool.
"""

import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query

from api.routes import get_event_log
from schemas import LogSettingsUpdate, MessageStatusUpdate

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/api/logs",
    tags=["Logs"],
    redirect_slashes=False
)


def _page(data, total: int, limit: int, offset: int) -> dict:
    return {
        "success": True,
        "data": data,
        "pagination": {"total": total, "limit": limit, "offset": offset},
    }


# Live events

@router.get("/events")
def get_events(
    session_id: Optional[str] = Query(None, alias="sessionId"),
    event_type: Optional[str] = Query(None, alias="eventType"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    event_log=Depends(get_event_log)
):
    events = event_log.get_live_events(session_id=session_id, event_type=event_type,
                                       limit=limit, offset=offset)
    total = event_log.count_live_events(session_id=session_id, event_type=event_type)
    return _page(events, total, limit, offset)


@router.delete("/events")
def clear_events(
    session_id: Optional[str] = Query(None, alias="sessionId"),
    event_log=Depends(get_event_log)
):
    deleted = event_log.clear_live_events(session_id)
    return {"success": True, "message": f"Cleared {deleted} events", "deleted": deleted}


# Outgoing messages

@router.get("/outgoing")
def get_outgoing(
    session_id: Optional[str] = Query(None, alias="sessionId"),
    status: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    event_log=Depends(get_event_log)
):
    messages = event_log.get_outgoing_messages(session_id=session_id, status=status,
                                               limit=limit, offset=offset)
    total = event_log.count_outgoing_messages(session_id=session_id, status=status)
    return _page(messages, total, limit, offset)


@router.delete("/outgoing")
def clear_outgoing(
    session_id: Optional[str] = Query(None, alias="sessionId"),
    event_log=Depends(get_event_log)
):
    deleted = event_log.clear_outgoing_messages(session_id)
    return {"success": True, "message": f"Cleared {deleted} outgoing messages", "deleted": deleted}


@router.patch("/outgoing/{message_id}")
def update_outgoing_status(
    message_id: str,
    data: MessageStatusUpdate,
    event_log=Depends(get_event_log)
):
    """Advance the delivery status of a sent message (never moves backwards)."""
    if event_log.get_message_by_message_id(message_id) is None:
        raise HTTPException(status_code=404, detail="Message not found")

    changed = event_log.update_message_status(message_id, data.status)
    return {
        "success": True,
        "message": "Status updated" if changed else "Status unchanged",
        "messageId": message_id,
        "status": data.status,
        "changed": changed,
    }


# Webhook history

@router.get("/webhook")
def get_webhook_history(
    session_id: Optional[str] = Query(None, alias="sessionId"),
    event_type: Optional[str] = Query(None, alias="eventType"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    event_log=Depends(get_event_log)
):
    history = event_log.get_webhook_history(session_id=session_id, event_type=event_type,
                                            limit=limit, offset=offset)
    total = event_log.count_webhook_history(session_id=session_id, event_type=event_type)
    return _page(history, total, limit, offset)


@router.delete("/webhook")
def clear_webhook_history(
    session_id: Optional[str] = Query(None, alias="sessionId"),
    event_log=Depends(get_event_log)
):
    deleted = event_log.clear_webhook_history(session_id)
    return {"success": True, "message": f"Cleared {deleted} webhook entries", "deleted": deleted}


# Settings and retention

@router.get("/settings")
def get_settings(event_log=Depends(get_event_log)):
    return {"success": True, "data": event_log.get_all_settings()}


@router.post("/settings")
def update_settings(data: LogSettingsUpdate, event_log=Depends(get_event_log)):
    updates = data.model_dump(exclude_none=True)
    if not updates:
        raise HTTPException(status_code=400, detail="No settings provided")

    for key, value in updates.items():
        event_log.set_setting(key, value)

    return {"success": True, "message": "Settings updated", "data": event_log.get_all_settings()}


@router.post("/cleanup")
def run_cleanup(event_log=Depends(get_event_log)):
    deleted = event_log.cleanup()
    return {"success": True, "message": "Cleanup completed", "deleted": deleted}
