"""
Trigger poller: re-reads each active trigger's upstream resource, turns the
delta into events and hands them to the dispatcher.

Triggers run concurrently on a bounded thread pool. A trigger is claimed
with a conditional update before it is polled, so overlapping batch runs
never process the same trigger twice.
"""

import threading
from concurrent.futures import CancelledError, ThreadPoolExecutor
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from ..config import AppConfig, get_config
from ..db.db_base import utc_now
from ..db.db_trigger_models import Trigger
from ..exceptions import BaseError, ServiceError, ValidationError
from ..repositories.trigger_repository import TriggerRepository
from ..schemas.trigger_schemas import PollResult, TriggerConfig
from ..utils.logger import get_logger
from .event_dispatcher import EventDispatcher
from .invocation_service import ActionInvocationEngine
from .trigger_detectors import get_detector


class TriggerPoller:
    """
    Polls active triggers and records what changed.

    Args:
        triggers: Trigger repository
        invocation: Engine used to call each trigger's read action
        dispatcher: Delivers the events a poll creates
        config: Application configuration
    """

    def __init__(
        self,
        triggers: TriggerRepository,
        invocation: ActionInvocationEngine,
        dispatcher: EventDispatcher,
        config: Optional[AppConfig] = None,
    ):
        self.triggers = triggers
        self.invocation = invocation
        self.dispatcher = dispatcher
        self.config = config or get_config()
        self.logger = get_logger()

        self._executor = ThreadPoolExecutor(
            max_workers=self.config.polling.max_workers,
            thread_name_prefix="trigger-poll",
        )
        self._state_lock = threading.Lock()
        self._closed = False

    def process_active_triggers(self, now: Optional[datetime] = None) -> List[PollResult]:
        """
        Poll every ACTIVE trigger that is due, once.

        Args:
            now: Run time stamped on ``last_checked_at``/``last_triggered_at``

        Returns:
            One result per active trigger, skipped ones included
        """
        now = now or utc_now()
        active = self.triggers.list_active()

        with self._state_lock:
            if self._closed:
                raise ServiceError("Trigger poller is shut down", operation="process_active_triggers")
            futures = [self._executor.submit(self.process_trigger, t, now) for t in active]

        results = []
        for trigger, future in zip(active, futures):
            try:
                results.append(future.result())
            except CancelledError:
                results.append(PollResult(trigger_id=trigger.id, skipped=True, error="cancelled"))
            except Exception as error:
                # Claim or failure bookkeeping broke; other triggers still report
                message = error.message if isinstance(error, BaseError) else str(error)
                self.logger.exception(
                    "Trigger poll aborted", extra={"trigger_id": trigger.id, "error": message}
                )
                results.append(PollResult(trigger_id=trigger.id, success=False, error=message))

        self.logger.info(
            "Trigger poll finished",
            extra={
                "active": len(active),
                "polled": sum(1 for r in results if not r.skipped),
                "failed": sum(1 for r in results if not r.skipped and not r.success),
                "events": sum(r.events_created for r in results),
            },
        )
        return results

    def _parse_config(self, trigger: Trigger) -> Tuple[Optional[TriggerConfig], Optional[BaseError]]:
        try:
            return TriggerConfig.model_validate(trigger.config or {}), None
        except PydanticValidationError as e:
            return None, ValidationError("Invalid trigger config", field="config", cause=e)

    def process_trigger(self, trigger: Trigger, now: Optional[datetime] = None) -> PollResult:
        """
        Claim, poll and record one trigger. Failures are counted against the
        trigger's error budget rather than raised.
        """
        now = now or utc_now()
        config, config_error = self._parse_config(trigger)

        interval = self.config.polling.min_interval_seconds
        if config is not None and config.poll_interval is not None:
            interval = config.poll_interval
        due_before = now - timedelta(seconds=interval)

        if not self.triggers.claim(trigger.id, trigger.claim_version, now, due_before):
            return PollResult(trigger_id=trigger.id, skipped=True)

        try:
            if config_error is not None:
                raise config_error
            result = self.invocation.invoke_action(
                trigger.connection_id,
                config.action_slug,
                config.parameters,
                trigger_id=trigger.id,
            )
            cursor = self.triggers.get_cursor(trigger.id)
            changes, next_cursor = get_detector(trigger.trigger_type).detect(
                result.data, cursor, config
            )
            events = self.triggers.record_poll_success(
                trigger, changes, next_cursor, now, self.config.delivery.max_attempts
            )
        except Exception as error:
            return self._record_failure(trigger, error)

        delivered = 0
        for event in events:
            try:
                delivered += int(self.dispatcher.deliver(event, trigger, now).delivered)
            except BaseError as error:
                # The event stays pending; the retry sweep picks it up as stale
                self.logger.error(
                    "Event delivery aborted",
                    extra={"event_id": event.id, "trigger_id": trigger.id, "error": error.message},
                )

        if events:
            self.logger.info(
                "Trigger fired",
                extra={"trigger_id": trigger.id, "events": len(events), "delivered": delivered},
            )
        return PollResult(
            trigger_id=trigger.id,
            success=True,
            events_created=len(events),
            events_delivered=delivered,
        )

    def _record_failure(self, trigger: Trigger, error: Exception) -> PollResult:
        message = error.message if isinstance(error, BaseError) else f"{type(error).__name__}: {error}"
        if not isinstance(error, BaseError):
            self.logger.exception("Unexpected error polling trigger", extra={"trigger_id": trigger.id})

        updated = self.triggers.record_poll_failure(
            trigger.id, message, self.config.polling.error_threshold
        )
        self.logger.warning(
            "Trigger poll failed",
            extra={
                "trigger_id": trigger.id,
                "error_count": updated.error_count,
                "trigger_status": updated.status,
            },
        )
        return PollResult(
            trigger_id=trigger.id,
            success=False,
            error=message,
            error_count=updated.error_count,
            status=updated.status,
        )

    def pause(self, trigger_id: str) -> None:
        self.triggers.pause(trigger_id)

    def reactivate(self, trigger_id: str) -> None:
        """Resume a paused or errored trigger with a fresh error budget."""
        self.triggers.reactivate(trigger_id)

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting batches, cancel queued polls and wait for running ones."""
        with self._state_lock:
            self._closed = True
        self._executor.shutdown(wait=wait, cancel_futures=True)
