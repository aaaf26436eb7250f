"""
Webhook Dispatcher

Forwards protocol events to the webhook URL configured for a session:
- Per-session event filtering (an empty events list means every event)
- Single POST attempt with a hard timeout, classified into a DeliveryOutcome
- Optional retry with exponential backoff (1s, 2s, 4s, capped at 5s)
- Every attempt appended to the webhook history log

Delivery failures never raise; callers always get an outcome (or None when
nothing was sent).
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

import settings
from services.webhook_config_store import WebhookConfigStore

logger = logging.getLogger(__name__)

RETRY_BASE_DELAY_MS = 1000
RETRY_MAX_DELAY_MS = 5000


def retry_delay_ms(attempt: int) -> int:
    """Delay after a failed attempt number `attempt` (1-based)."""
    return min(RETRY_BASE_DELAY_MS * 2 ** (attempt - 1), RETRY_MAX_DELAY_MS)


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class DeliveryOutcome:
    """Result of one webhook delivery attempt."""
    success: bool
    url: str
    event: str
    session_id: str
    timestamp: str
    payload: Dict[str, Any]
    status: Optional[int] = None
    response: Any = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        data = {
            "success": self.success,
            "status": self.status,
            "url": self.url,
            "event": self.event,
            "sessionId": self.session_id,
            "timestamp": self.timestamp,
            "payload": self.payload,
            "response": self.response,
        }
        if self.error is not None:
            data["error"] = self.error
        return data


def _response_body(response: httpx.Response) -> Any:
    """JSON body when parseable, otherwise the text (None when empty)."""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


class WebhookDispatcher:
    """
    Args:
        config_store: Per-session webhook configuration
        event_log: EventLogService for delivery history (may be bound later)
        http_client: Optional httpx.AsyncClient (tests inject a MockTransport client)
        timeout: Per-attempt timeout in seconds
    """

    def __init__(
        self,
        config_store: WebhookConfigStore,
        event_log=None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = settings.WEBHOOK_TIMEOUT_SECONDS,
    ):
        self.config_store = config_store
        self.event_log = event_log
        self.timeout = timeout
        self._owns_client = http_client is None
        self.client = http_client or httpx.AsyncClient(timeout=timeout)
        self.headers = {
            "Content-Type": "application/json",
            "User-Agent": settings.WEBHOOK_USER_AGENT,
        }

    def set_event_log(self, event_log):
        self.event_log = event_log

    # =========================================================================
    # Configuration
    # =========================================================================

    def set_webhook_config(self, session_id: str, config: Optional[dict]):
        """
        Set {webhookUrl, events} for a session.

        A missing or empty webhookUrl removes the configuration. Persistence
        errors propagate.
        """
        webhook_url = (config or {}).get("webhookUrl")
        if webhook_url:
            events = list((config or {}).get("events") or [])
            self.config_store.set(session_id, webhook_url, events)
            logger.info(f"Webhook config set for {session_id}: {webhook_url} with {len(events)} events")
        else:
            self.config_store.remove(session_id)
            logger.info(f"Webhook config removed for {session_id}")

    def set_webhook(self, session_id: str, webhook_url: Optional[str]):
        """Legacy setter: URL only, subscribed to every event."""
        url = (webhook_url or "").strip()
        if url:
            self.config_store.set(session_id, url, [])
            logger.info(f"Webhook configured for session {session_id}: {url}")
        else:
            self.config_store.remove(session_id)
            logger.info(f"Webhook removed for session {session_id}")

    def get_webhook_config(self, session_id: str) -> Optional[dict]:
        return self.config_store.get(session_id)

    def get_webhook(self, session_id: str) -> Optional[str]:
        config = self.config_store.get(session_id)
        return config["webhookUrl"] if config else None

    def get_all_webhooks(self) -> List[dict]:
        return [
            {"sessionId": session_id, "url": config["webhookUrl"], "events": config["events"]}
            for session_id, config in self.config_store.all().items()
        ]

    def remove_webhook_config(self, session_id: str) -> bool:
        removed = self.config_store.remove(session_id)
        if removed:
            logger.info(f"Webhook config removed for {session_id}")
        return removed

    # =========================================================================
    # Delivery
    # =========================================================================

    async def send(self, session_id: str, event_type: str, data: Any,
                   ignore_filter: bool = False) -> Optional[DeliveryOutcome]:
        """
        Deliver one event to the session's webhook.

        Returns None when no webhook is configured or the event is filtered out.
        ignore_filter skips the event filter (used by the test endpoint).
        """
        config = self.config_store.get(session_id)
        if not config or not config.get("webhookUrl"):
            logger.debug(f"No webhook configured for session {session_id}")
            return None

        events = config.get("events") or []
        if events and event_type not in events and not ignore_filter:
            logger.debug(
                f"Event {event_type} not in selected events for {session_id}. "
                f"Selected: [{', '.join(events)}]"
            )
            return None

        url = config["webhookUrl"]
        payload = {
            "event": event_type,
            "sessionId": session_id,
            "timestamp": _utc_timestamp(),
            "data": data,
        }
        outcome = DeliveryOutcome(
            success=False,
            url=url,
            event=event_type,
            session_id=session_id,
            timestamp=payload["timestamp"],
            payload=payload,
        )

        try:
            response = await self.client.post(url, json=payload, headers=self.headers, timeout=self.timeout)
            outcome.status = response.status_code
            outcome.response = _response_body(response)
            if 200 <= response.status_code < 300:
                outcome.success = True
                logger.info(f"Webhook sent successfully for {session_id} ({event_type}): {response.status_code}")
            else:
                outcome.error = f"Request failed with status code {response.status_code}"
                logger.error(f"Webhook failed for {session_id} ({event_type}): {outcome.error}")
        except httpx.TimeoutException as e:
            outcome.error = f"Timeout after {self.timeout}s: {e}" if str(e) else f"Timeout after {self.timeout}s"
            logger.error(f"Webhook timed out for {session_id} ({event_type})")
        except httpx.HTTPError as e:
            outcome.error = str(e) or e.__class__.__name__
            logger.error(f"Webhook failed for {session_id} ({event_type}): {outcome.error}")

        await self._record(outcome)
        return outcome

    async def send_with_retry(self, session_id: str, event_type: str, data: Any,
                              max_retries: int = 3, ignore_filter: bool = False) -> Optional[DeliveryOutcome]:
        """
        Call send() up to max_retries times, stopping at the first success.

        A skipped delivery (None) is returned immediately, there is nothing to retry.
        """
        last_outcome = None
        for attempt in range(1, max_retries + 1):
            outcome = await self.send(session_id, event_type, data, ignore_filter=ignore_filter)
            if outcome is None or outcome.success:
                return outcome

            last_outcome = outcome
            if attempt < max_retries:
                delay = retry_delay_ms(attempt)
                logger.info(f"Retrying webhook for {session_id} ({event_type}) in {delay}ms (attempt {attempt}/{max_retries})")
                await asyncio.sleep(delay / 1000)

        return last_outcome

    async def _record(self, outcome: DeliveryOutcome):
        if self.event_log is None:
            return
        try:
            await asyncio.to_thread(
                self.event_log.log_webhook,
                session_id=outcome.session_id,
                event_type=outcome.event,
                webhook_url=outcome.url,
                success=outcome.success,
                status_code=outcome.status,
                payload=outcome.payload,
                response=outcome.response,
                error=outcome.error,
            )
        except Exception as e:
            logger.error(f"Failed to record webhook delivery for {outcome.session_id}: {e}", exc_info=True)

    async def close(self):
        if self._owns_client:
            await self.client.aclose()
