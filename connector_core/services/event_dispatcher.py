"""
Event dispatcher: webhook delivery with bounded retries.

Delivery is at-least-once. Each attempt is reserved in the database before
the HTTP call, so concurrent sweeps never push an event past its attempt
limit, and every payload carries the event id for consumer-side dedup.
"""

from datetime import datetime, timedelta
from typing import Dict, List, Optional

import requests

from ..config import AppConfig, get_config
from ..constants import WEBHOOK_USER_AGENT, EventStatus
from ..db.db_base import utc_now
from ..db.db_trigger_models import Trigger, TriggerEvent
from ..exceptions import DeliveryError
from ..repositories.trigger_repository import TriggerRepository
from ..schemas.trigger_schemas import DeliveryResult, TriggerStats
from ..utils.backoff_utils import next_retry_time
from ..utils.logger import get_logger

# Webhook response bodies kept on the event row are capped
_MAX_RESPONSE_TEXT = 2000


class EventDispatcher:
    """
    Delivers trigger events to their webhooks.

    Args:
        triggers: Trigger repository, owner of the event rows
        http_session: ``requests`` session for webhook calls
        config: Application configuration
    """

    def __init__(
        self,
        triggers: TriggerRepository,
        http_session: Optional[requests.Session] = None,
        config: Optional[AppConfig] = None,
    ):
        self.triggers = triggers
        self.http = http_session or requests.Session()
        self.config = config or get_config()
        self.logger = get_logger()

    def build_headers(self, event: TriggerEvent, trigger: Trigger) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": WEBHOOK_USER_AGENT,
            "X-Event-ID": event.id,
            "X-Event-Type": event.event_type,
            "X-Trigger-ID": trigger.id,
        }
        for name, value in (trigger.webhook_headers or {}).items():
            headers[str(name)] = str(value)
        return headers

    def deliver(
        self,
        event: TriggerEvent,
        trigger: Optional[Trigger] = None,
        now: Optional[datetime] = None,
    ) -> DeliveryResult:
        """
        Make one delivery attempt.

        A 2xx answer marks the event ``delivered``. Any other outcome marks it
        ``pending_retry`` with a backoff delay, or ``failed`` once the attempt
        limit is reached. Events already final, or attempted concurrently by
        another worker, are left untouched.
        """
        now = now or utc_now()

        if not self.triggers.claim_event_attempt(event.id, event.attempt_count, now):
            current = self.triggers.get_event(event.id)
            self.logger.debug(
                "Delivery attempt not claimed",
                extra={"event_id": event.id, "status": current.status},
            )
            return DeliveryResult(
                event_id=event.id,
                delivered=current.status == EventStatus.DELIVERED.value,
                status=current.status,
                attempt_count=current.attempt_count,
                webhook_status=current.webhook_status,
                next_retry_at=current.next_retry_at,
            )

        attempt = event.attempt_count + 1
        trigger = trigger or self.triggers.get(event.trigger_id)

        try:
            status_code = self._post(event, trigger)
        except DeliveryError as error:
            return self._record_failure(event, attempt, now, error)

        self.triggers.update_event(
            event.id,
            status=EventStatus.DELIVERED.value,
            delivered_at=now,
            webhook_status=status_code,
            next_retry_at=None,
            status_message=None,
        )
        self.logger.info(
            "Event delivered",
            extra={
                "event_id": event.id,
                "trigger_id": trigger.id,
                "attempt": attempt,
                "webhook_status": status_code,
            },
        )
        return DeliveryResult(
            event_id=event.id,
            delivered=True,
            status=EventStatus.DELIVERED.value,
            attempt_count=attempt,
            webhook_status=status_code,
        )

    def _post(self, event: TriggerEvent, trigger: Trigger) -> int:
        """Send the payload. Returns the status code of a 2xx answer."""
        try:
            response = self.http.request(
                trigger.webhook_method or "POST",
                trigger.webhook_url,
                json=event.webhook_payload,
                headers=self.build_headers(event, trigger),
                timeout=self.config.delivery.timeout_seconds,
            )
        except requests.Timeout as e:
            raise DeliveryError("Webhook timed out", cause=e, event_id=event.id)
        except requests.RequestException as e:
            raise DeliveryError("Webhook unreachable", cause=e, event_id=event.id)

        if not 200 <= response.status_code < 300:
            raise DeliveryError(
                f"Webhook returned {response.status_code}",
                webhook_status=response.status_code,
                response_body=(response.text or "")[:_MAX_RESPONSE_TEXT],
                event_id=event.id,
            )
        return response.status_code

    def _record_failure(
        self, event: TriggerEvent, attempt: int, now: datetime, error: DeliveryError
    ) -> DeliveryResult:
        values = {
            "webhook_status": error.webhook_status,
            "webhook_response": error.response_body,
            "status_message": error.message,
        }
        if attempt >= event.max_attempts:
            values.update(status=EventStatus.FAILED.value, failed_at=now, next_retry_at=None)
        else:
            values.update(
                status=EventStatus.PENDING_RETRY.value,
                next_retry_at=next_retry_time(
                    now,
                    attempt - 1,
                    base_delay=self.config.delivery.backoff_base_seconds,
                    max_delay=self.config.delivery.backoff_max_seconds,
                ),
            )
        self.triggers.update_event(event.id, **values)

        self.logger.warning(
            "Event delivery failed",
            extra={
                "event_id": event.id,
                "attempt": attempt,
                "max_attempts": event.max_attempts,
                "status": values["status"],
                "webhook_status": error.webhook_status,
            },
        )
        return DeliveryResult(
            event_id=event.id,
            delivered=False,
            status=values["status"],
            attempt_count=attempt,
            webhook_status=error.webhook_status,
            next_retry_at=values.get("next_retry_at"),
            error=error.message,
        )

    def retry_failed_events(self, now: Optional[datetime] = None) -> List[DeliveryResult]:
        """
        Redeliver events whose backoff has elapsed.

        Also picks up ``pending`` events whose first delivery never finished,
        and terminally fails any event found with its attempts used up.
        """
        now = now or utc_now()
        settings = self.config.delivery

        exhausted = self.triggers.fail_exhausted_events(now)
        if exhausted:
            self.logger.warning("Exhausted events failed", extra={"count": exhausted})

        due = self.triggers.find_events_for_retry(now, settings.retry_batch_size)
        stale = self.triggers.find_stale_pending_events(
            now - timedelta(seconds=settings.stale_pending_seconds), settings.retry_batch_size
        )

        triggers: Dict[str, Trigger] = {}
        results = []
        for event in stale + due:
            if event.trigger_id not in triggers:
                triggers[event.trigger_id] = self.triggers.get(event.trigger_id)
            results.append(self.deliver(event, triggers[event.trigger_id], now))

        if results:
            self.logger.info(
                "Retry sweep finished",
                extra={
                    "attempted": len(results),
                    "delivered": sum(1 for r in results if r.delivered),
                },
            )
        return results

    def get_trigger_stats(self, trigger_id: str) -> TriggerStats:
        return self.triggers.get_stats(trigger_id)

    def list_events(
        self, trigger_id: str, limit: int = 50, status: Optional[EventStatus] = None
    ) -> List[TriggerEvent]:
        return self.triggers.list_events(trigger_id, limit=limit, status=status)

    def delete_old_events(self, older_than_days: int = 30, now: Optional[datetime] = None) -> int:
        """Housekeeping: drop delivered and failed events older than the cutoff."""
        cutoff = (now or utc_now()) - timedelta(days=older_than_days)
        return self.triggers.delete_old_events(cutoff)
