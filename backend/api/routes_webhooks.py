"""
API Routes for per-session webhook configuration
"""

import logging
from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException

from api.routes import get_dispatcher, get_session_manager
from schemas import WebhookConfigUpdate
from whatsapp_bridge.events import WEBHOOK_EVENT_CATEGORIES

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/api/webhook",
    tags=["Webhooks"],
    redirect_slashes=False
)

TEST_EVENT = "webhook.test"


@router.get("")
async def list_webhooks(dispatcher=Depends(get_dispatcher)):
    """All configured webhooks plus the event names a webhook can subscribe to."""
    return {
        "success": True,
        "data": dispatcher.get_all_webhooks(),
        "availableEvents": WEBHOOK_EVENT_CATEGORIES,
    }


@router.get("/{session_id}")
async def get_webhook(session_id: str, dispatcher=Depends(get_dispatcher)):
    config = dispatcher.get_webhook_config(session_id)
    return {
        "success": True,
        "data": {
            "sessionId": session_id,
            "webhookUrl": config["webhookUrl"] if config else None,
            "events": config["events"] if config else [],
        },
    }


@router.post("/{session_id}")
async def set_webhook(session_id: str, data: WebhookConfigUpdate, dispatcher=Depends(get_dispatcher)):
    """Set the webhook URL and subscribed events. An empty URL removes the webhook."""
    unknown = [e for e in data.events if e not in WEBHOOK_EVENT_CATEGORIES]
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown events: {', '.join(unknown)}")

    webhook_url = (data.webhook_url or "").strip()
    if webhook_url and not webhook_url.startswith(("http://", "https://")):
        raise HTTPException(status_code=400, detail="webhookUrl must start with http:// or https://")

    try:
        dispatcher.set_webhook_config(session_id, {"webhookUrl": webhook_url, "events": data.events})
    except OSError as e:
        logger.error(f"Failed to save webhook config for {session_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to save webhook config: {e}")

    if not webhook_url:
        return {"success": True, "message": f"Webhook removed for {session_id}"}

    return {
        "success": True,
        "message": f"Webhook configured for {session_id}",
        "data": dispatcher.get_webhook_config(session_id),
    }


@router.delete("/{session_id}")
async def delete_webhook(session_id: str, dispatcher=Depends(get_dispatcher)):
    try:
        removed = dispatcher.remove_webhook_config(session_id)
    except OSError as e:
        logger.error(f"Failed to save webhook config for {session_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to save webhook config: {e}")

    if not removed:
        raise HTTPException(status_code=404, detail="No webhook configured for this session")
    return {"success": True, "message": f"Webhook removed for {session_id}"}


@router.post("/{session_id}/test")
async def test_webhook(session_id: str, dispatcher=Depends(get_dispatcher),
                       manager=Depends(get_session_manager)):
    """Send a test event (with retry), regardless of the event filter."""
    if dispatcher.get_webhook_config(session_id) is None:
        raise HTTPException(status_code=404, detail="No webhook configured for this session")

    handler = manager.get_session(session_id)
    outcome = await dispatcher.send_with_retry(session_id, TEST_EVENT, {
        "message": "This is a test webhook",
        "sessionStatus": handler.status if handler else None,
        "sentAt": datetime.utcnow().isoformat() + "Z",
    }, ignore_filter=True)

    return {
        "success": outcome.success,
        "message": "Test webhook delivered" if outcome.success else f"Test webhook failed: {outcome.error}",
        "data": outcome.to_dict(),
    }
