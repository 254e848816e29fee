"""Data access for connections, triggers, logs and the integration catalog."""

from .api_log_repository import ApiLogRepository
from .base_repository import BaseRepository
from .connection_repository import ConnectionRepository
from .integration_catalog import IntegrationCatalog
from .trigger_repository import TriggerRepository

__all__ = [
    "ApiLogRepository",
    "BaseRepository",
    "ConnectionRepository",
    "IntegrationCatalog",
    "TriggerRepository",
]
