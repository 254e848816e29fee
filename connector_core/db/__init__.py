"""Database models and connection management."""

from .db_api_log_models import ApiLog
from .db_base import JSON, TimestampMixin, UUIDMixin, ensure_utc, utc_now
from .db_config import (
    Base,
    DatabaseConfig,
    DatabaseManager,
    close_db,
    get_db_manager,
    get_development_config,
    get_production_config,
    import_all_models,
    initialize_db,
    set_db_manager,
)
from .db_connection_models import Connection, EncryptedCredential
from .db_trigger_models import Trigger, TriggerEvent, TriggerState

__all__ = [
    "Base",
    "DatabaseConfig",
    "DatabaseManager",
    "close_db",
    "get_db_manager",
    "get_development_config",
    "get_production_config",
    "import_all_models",
    "initialize_db",
    "set_db_manager",
    "JSON",
    "TimestampMixin",
    "UUIDMixin",
    "ensure_utc",
    "utc_now",
    "ApiLog",
    "Connection",
    "EncryptedCredential",
    "Trigger",
    "TriggerEvent",
    "TriggerState",
]
