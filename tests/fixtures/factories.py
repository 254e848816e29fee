"""
Factory Boy factories for connections, triggers and trigger events.
"""

import uuid

import factory

from connector_core.constants import ConnectionStatus, EventStatus, TriggerStatus, TriggerType
from connector_core.db import Connection, Trigger, TriggerEvent
from connector_core.db.db_base import utc_now

# ==================== BASE FACTORIES ====================


class BaseFactory(factory.alchemy.SQLAlchemyModelFactory):
    """Base factory with common patterns."""

    class Meta:
        abstract = True
        sqlalchemy_session_persistence = "commit"


# ==================== CONNECTION FACTORIES ====================


class ConnectionFactory(BaseFactory):
    """An authorized Google Sheets connection."""

    class Meta:
        model = Connection

    id = factory.LazyFunction(lambda: str(uuid.uuid4()))
    user_id = factory.Sequence(lambda n: f"user_{n}")
    workspace_id = "workspace_main"
    project_id = "project_default"
    integration_id = "google-sheets"
    name = factory.Sequence(lambda n: f"Sheets connection {n}")
    status = ConnectionStatus.AUTHORIZED.value


class PendingConnectionFactory(ConnectionFactory):
    status = ConnectionStatus.PENDING.value


class WeatherConnectionFactory(ConnectionFactory):
    integration_id = "weather"
    name = factory.Sequence(lambda n: f"Weather connection {n}")


# ==================== TRIGGER FACTORIES ====================


class TriggerFactory(BaseFactory):
    """An active new-sheet-row trigger polling ``search-rows``."""

    class Meta:
        model = Trigger

    id = factory.LazyFunction(lambda: str(uuid.uuid4()))
    user_id = "user_owner"
    workspace_id = "workspace_main"
    project_id = "project_default"
    connection_id = factory.LazyFunction(lambda: ConnectionFactory.create().id)
    integration_id = "google-sheets"
    name = factory.Sequence(lambda n: f"New rows {n}")
    trigger_type = TriggerType.NEW_SHEET_ROW.value
    config = factory.LazyFunction(
        lambda: {
            "actionSlug": "search-rows",
            "parameters": {"spreadsheetId": "sheet-abc", "sheetName": "Sheet1"},
        }
    )
    webhook_url = "https://hooks.example.test/incoming"
    webhook_method = "POST"
    webhook_headers = factory.LazyFunction(lambda: {"X-Hook-Secret": "hook-secret"})
    status = TriggerStatus.ACTIVE.value
    is_active = True
    error_count = 0
    claim_version = 0


# ==================== EVENT FACTORIES ====================


class TriggerEventFactory(BaseFactory):
    """A pending event with a ready webhook payload."""

    class Meta:
        model = TriggerEvent

    id = factory.LazyFunction(lambda: str(uuid.uuid4()))
    trigger_id = factory.LazyFunction(lambda: TriggerFactory.create().id)
    event_type = "new-row"
    sequence = 0
    event_data = factory.LazyFunction(lambda: {"rowNumber": 2, "row": {"Name": "Ada"}})
    webhook_payload = factory.LazyAttribute(
        lambda o: {
            "eventId": o.id,
            "triggerId": o.trigger_id,
            "triggerType": TriggerType.NEW_SHEET_ROW.value,
            "firedAt": utc_now().isoformat(),
            "data": o.event_data,
        }
    )
    status = EventStatus.PENDING.value
    attempt_count = 0
    max_attempts = 5


class RetryingEventFactory(TriggerEventFactory):
    """An event waiting for redelivery, due now."""

    status = EventStatus.PENDING_RETRY.value
    attempt_count = 1
    next_retry_at = factory.LazyFunction(utc_now)


# ==================== FACTORY CONFIGURATION ====================


def configure_factories(session):
    """Configure all factories to use the provided session."""
    factories = [
        ConnectionFactory,
        PendingConnectionFactory,
        WeatherConnectionFactory,
        TriggerFactory,
        TriggerEventFactory,
        RetryingEventFactory,
    ]

    for factory_class in factories:
        factory_class._meta.sqlalchemy_session = session
