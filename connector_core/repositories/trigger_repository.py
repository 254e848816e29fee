"""
Persistence for triggers, their poll cursors and their events.

Polling-relevant trigger fields are the only trigger columns written here;
trigger CRUD belongs to the owning application.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, delete, func, or_, select, update

from ..constants import EventStatus, TriggerStatus
from ..db.db_base import ensure_utc, utc_now
from ..db.db_trigger_models import Trigger, TriggerEvent, TriggerState
from ..exceptions import not_found
from ..schemas.trigger_schemas import DetectedChange, TriggerStats, WebhookPayload
from .base_repository import BaseRepository


class TriggerRepository(BaseRepository):
    entity_name = "Trigger"

    # ==================== TRIGGERS ====================

    def get(self, trigger_id: str) -> Trigger:
        with self._session_scope("get_trigger", trigger_id) as session:
            trigger = session.get(Trigger, trigger_id)
            if trigger is None:
                raise not_found("Trigger", trigger_id=trigger_id)
            return trigger

    def list_active(self) -> List[Trigger]:
        """Triggers eligible for polling, least recently checked first."""
        with self._session_scope("list_active_triggers") as session:
            stmt = (
                select(Trigger)
                .where(Trigger.status == TriggerStatus.ACTIVE.value, Trigger.is_active.is_(True))
                .order_by(Trigger.last_checked_at.is_not(None), Trigger.last_checked_at)
            )
            return list(session.scalars(stmt))

    def claim(
        self, trigger_id: str, seen_version: int, now: datetime, due_before: datetime
    ) -> bool:
        """
        Optimistically claim a trigger for one poll.

        Succeeds only if nobody claimed it since ``seen_version`` was read, it
        is still ACTIVE, and it was last checked no later than ``due_before``.
        Sets ``last_checked_at`` to ``now``.
        """
        with self._session_scope("claim_trigger", trigger_id) as session:
            result = session.execute(
                update(Trigger)
                .where(
                    Trigger.id == trigger_id,
                    Trigger.claim_version == seen_version,
                    Trigger.status == TriggerStatus.ACTIVE.value,
                    Trigger.is_active.is_(True),
                    or_(Trigger.last_checked_at.is_(None), Trigger.last_checked_at <= due_before),
                )
                .values(
                    claim_version=Trigger.claim_version + 1,
                    last_checked_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    def get_cursor(self, trigger_id: str) -> Optional[Dict[str, Any]]:
        """The detector cursor of a trigger, or None before its first successful poll."""
        with self._session_scope("get_trigger_cursor", trigger_id) as session:
            state = session.get(TriggerState, trigger_id)
            return dict(state.cursor) if state is not None else None

    def record_poll_success(
        self,
        trigger: Trigger,
        changes: List[DetectedChange],
        cursor: Dict[str, Any],
        now: datetime,
        max_attempts: int,
    ) -> List[TriggerEvent]:
        """
        Persist the outcome of a successful poll in one transaction.

        Creates one pending event per change in detection order, stores the
        new cursor, resets the error budget and advances ``last_triggered_at``
        when at least one event fired.
        """
        with self._session_scope("record_poll_success", trigger.id) as session:
            events = []
            for sequence, change in enumerate(changes):
                event_id = str(uuid.uuid4())
                payload = WebhookPayload(
                    event_id=event_id,
                    trigger_id=trigger.id,
                    trigger_type=trigger.trigger_type,
                    fired_at=now,
                    data=change.data,
                )
                event = TriggerEvent(
                    id=event_id,
                    trigger_id=trigger.id,
                    event_type=change.event_type,
                    sequence=sequence,
                    event_data=change.data,
                    webhook_payload=payload.to_json_dict(),
                    status=EventStatus.PENDING.value,
                    attempt_count=0,
                    max_attempts=max_attempts,
                    created_at=now,
                    updated_at=now,
                )
                session.add(event)
                events.append(event)

            state = session.get(TriggerState, trigger.id)
            if state is None:
                session.add(TriggerState(trigger_id=trigger.id, cursor=cursor, updated_at=now))
            else:
                state.cursor = cursor
                state.updated_at = now

            values: Dict[str, Any] = {"error_count": 0, "last_error": None}
            if events:
                values["last_triggered_at"] = now
            session.execute(
                update(Trigger)
                .where(Trigger.id == trigger.id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            session.flush()
            return events

    def record_poll_failure(self, trigger_id: str, error_message: str, threshold: int) -> Trigger:
        """
        Count a failed poll against the trigger's error budget.

        The trigger moves to ERROR once ``threshold`` consecutive failures
        have been recorded.
        """
        with self._session_scope("record_poll_failure", trigger_id) as session:
            trigger = session.scalar(
                select(Trigger).where(Trigger.id == trigger_id).with_for_update()
            )
            if trigger is None:
                raise not_found("Trigger", trigger_id=trigger_id)
            trigger.error_count = (trigger.error_count or 0) + 1
            trigger.last_error = error_message[:2000]
            if trigger.error_count >= threshold:
                trigger.status = TriggerStatus.ERROR.value
                trigger.is_active = False
            session.flush()
            return trigger

    def pause(self, trigger_id: str) -> None:
        self._set_status(trigger_id, TriggerStatus.PAUSED, is_active=False)

    def reactivate(self, trigger_id: str) -> None:
        """Return a paused or errored trigger to polling with a fresh error budget."""
        self._set_status(
            trigger_id, TriggerStatus.ACTIVE, is_active=True, error_count=0, last_error=None
        )

    def _set_status(self, trigger_id: str, status: TriggerStatus, **values: Any) -> None:
        with self._session_scope("set_trigger_status", trigger_id) as session:
            result = session.execute(
                update(Trigger)
                .where(Trigger.id == trigger_id)
                .values(status=status.value, updated_at=utc_now(), **values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise not_found("Trigger", trigger_id=trigger_id)
        self.logger.info(
            "Trigger status changed", extra={"trigger_id": trigger_id, "status": status.value}
        )

    # ==================== EVENTS ====================

    def get_event(self, event_id: str) -> TriggerEvent:
        with self._session_scope("get_event", event_id) as session:
            event = session.get(TriggerEvent, event_id)
            if event is None:
                raise not_found("TriggerEvent", event_id=event_id)
            return event

    def claim_event_attempt(self, event_id: str, seen_attempts: int, now: datetime) -> bool:
        """
        Reserve the next delivery attempt of an event.

        Fails if another worker attempted it since ``seen_attempts`` was read,
        if it is no longer deliverable, or if its attempts are used up.
        """
        with self._session_scope("claim_event_attempt", event_id) as session:
            result = session.execute(
                update(TriggerEvent)
                .where(
                    TriggerEvent.id == event_id,
                    TriggerEvent.attempt_count == seen_attempts,
                    TriggerEvent.attempt_count < TriggerEvent.max_attempts,
                    TriggerEvent.status.in_(
                        [EventStatus.PENDING.value, EventStatus.PENDING_RETRY.value]
                    ),
                )
                .values(
                    attempt_count=TriggerEvent.attempt_count + 1,
                    last_attempt_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    def update_event(self, event_id: str, **values: Any) -> None:
        with self._session_scope("update_event", event_id) as session:
            session.execute(
                update(TriggerEvent)
                .where(TriggerEvent.id == event_id)
                .values(updated_at=utc_now(), **values)
                .execution_options(synchronize_session=False)
            )

    def find_events_for_retry(self, now: datetime, limit: int) -> List[TriggerEvent]:
        """Events waiting for redelivery whose backoff has elapsed."""
        with self._session_scope("find_events_for_retry") as session:
            stmt = (
                select(TriggerEvent)
                .where(
                    TriggerEvent.status == EventStatus.PENDING_RETRY.value,
                    TriggerEvent.attempt_count < TriggerEvent.max_attempts,
                    or_(TriggerEvent.next_retry_at.is_(None), TriggerEvent.next_retry_at <= now),
                )
                .order_by(TriggerEvent.next_retry_at, TriggerEvent.created_at, TriggerEvent.sequence)
                .limit(limit)
            )
            return list(session.scalars(stmt))

    def find_stale_pending_events(self, created_before: datetime, limit: int) -> List[TriggerEvent]:
        """Pending events whose first delivery never completed."""
        with self._session_scope("find_stale_pending_events") as session:
            stmt = (
                select(TriggerEvent)
                .where(
                    TriggerEvent.status == EventStatus.PENDING.value,
                    TriggerEvent.created_at <= created_before,
                )
                .order_by(TriggerEvent.created_at, TriggerEvent.sequence)
                .limit(limit)
            )
            return list(session.scalars(stmt))

    def fail_exhausted_events(self, now: datetime) -> int:
        """Terminally fail retryable events whose attempts are used up."""
        with self._session_scope("fail_exhausted_events") as session:
            result = session.execute(
                update(TriggerEvent)
                .where(
                    TriggerEvent.status.in_(
                        [EventStatus.PENDING.value, EventStatus.PENDING_RETRY.value]
                    ),
                    TriggerEvent.attempt_count >= TriggerEvent.max_attempts,
                )
                .values(
                    status=EventStatus.FAILED.value,
                    failed_at=now,
                    next_retry_at=None,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            return result.rowcount

    def list_events(
        self, trigger_id: str, limit: int = 50, status: Optional[EventStatus] = None
    ) -> List[TriggerEvent]:
        """Most recent events of a trigger."""
        with self._session_scope("list_events", trigger_id) as session:
            stmt = select(TriggerEvent).where(TriggerEvent.trigger_id == trigger_id)
            if status is not None:
                stmt = stmt.where(TriggerEvent.status == status.value)
            stmt = stmt.order_by(TriggerEvent.created_at.desc(), TriggerEvent.sequence.desc())
            return list(session.scalars(stmt.limit(limit)))

    def get_stats(self, trigger_id: str) -> TriggerStats:
        """Event counts by status and mean time from detection to delivery."""
        with self._session_scope("get_trigger_stats", trigger_id) as session:
            rows = session.execute(
                select(TriggerEvent.status, func.count())
                .where(TriggerEvent.trigger_id == trigger_id)
                .group_by(TriggerEvent.status)
            ).all()
            delivered = session.execute(
                select(TriggerEvent.created_at, TriggerEvent.delivered_at).where(
                    TriggerEvent.trigger_id == trigger_id,
                    TriggerEvent.status == EventStatus.DELIVERED.value,
                    TriggerEvent.delivered_at.is_not(None),
                )
            ).all()

        counts = {status: count for status, count in rows}
        durations = [
            (ensure_utc(done) - ensure_utc(created)).total_seconds() * 1000
            for created, done in delivered
        ]
        return TriggerStats(
            trigger_id=trigger_id,
            total=sum(counts.values()),
            delivered=counts.get(EventStatus.DELIVERED.value, 0),
            failed=counts.get(EventStatus.FAILED.value, 0),
            pending=counts.get(EventStatus.PENDING.value, 0),
            pending_retry=counts.get(EventStatus.PENDING_RETRY.value, 0),
            avg_delivery_ms=round(sum(durations) / len(durations), 2) if durations else None,
        )

    def delete_old_events(self, older_than: datetime) -> int:
        """Remove delivered and failed events created before ``older_than``."""
        with self._session_scope("delete_old_events") as session:
            result = session.execute(
                delete(TriggerEvent).where(
                    and_(
                        TriggerEvent.created_at < older_than,
                        TriggerEvent.status.in_(
                            [EventStatus.DELIVERED.value, EventStatus.FAILED.value]
                        ),
                    )
                )
            )
            deleted = result.rowcount

        self.logger.info("Old trigger events deleted", extra={"deleted": deleted})
        return deleted
