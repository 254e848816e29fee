"""
Schemas for trigger configuration, webhook payloads and run summaries.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TriggerConfig(CamelModel):
    """
    The ``config`` blob of a trigger.

    ``action_slug`` names the read action polled each cycle; ``parameters``
    are passed to it. The remaining keys tune change detection.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    action_slug: str = Field(..., min_length=1)
    parameters: Dict[str, Any] = Field(default_factory=dict)
    items_path: Optional[str] = None
    id_field: str = "id"
    emit_on_change: bool = True
    fire_on_first_poll: bool = False
    poll_interval: Optional[int] = Field(None, ge=0, description="Seconds between polls")
    header_row: bool = True


class WebhookPayload(CamelModel):
    """Body POSTed to the trigger's webhook. ``eventId`` is stable across redeliveries."""

    event_id: str
    trigger_id: str
    trigger_type: str
    fired_at: datetime
    data: Any

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class DetectedChange(BaseModel):
    """One delta item produced by a detector."""

    event_type: str
    data: Any


class PollResult(BaseModel):
    """Outcome of polling one trigger."""

    trigger_id: str
    skipped: bool = False
    success: bool = False
    events_created: int = 0
    events_delivered: int = 0
    error: Optional[str] = None
    error_count: int = 0
    status: Optional[str] = None


class DeliveryResult(BaseModel):
    """Outcome of one webhook delivery attempt."""

    event_id: str
    delivered: bool
    status: str
    attempt_count: int
    webhook_status: Optional[int] = None
    next_retry_at: Optional[datetime] = None
    error: Optional[str] = None


class TriggerStats(BaseModel):
    """Delivery statistics for one trigger."""

    trigger_id: str
    total: int = 0
    delivered: int = 0
    failed: int = 0
    pending: int = 0
    pending_retry: int = 0
    avg_delivery_ms: Optional[float] = None


class BatchRunSummary(BaseModel):
    """What one scheduled batch did."""

    started_at: datetime
    finished_at: Optional[datetime] = None
    triggers_polled: int = 0
    triggers_skipped: int = 0
    triggers_failed: int = 0
    events_created: int = 0
    events_delivered: int = 0
    retries_attempted: int = 0
    retries_delivered: int = 0
    poll_results: List[PollResult] = Field(default_factory=list)

    def message(self) -> str:
        return (
            f"Processed {self.triggers_polled} triggers "
            f"({self.triggers_failed} failed, {self.triggers_skipped} skipped), "
            f"created {self.events_created} events, "
            f"delivered {self.events_delivered + self.retries_delivered}"
        )
