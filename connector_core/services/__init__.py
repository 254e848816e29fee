"""Service layer: credentials, OAuth, invocation, polling and delivery."""

from .credential_vault import CredentialVault
from .event_dispatcher import EventDispatcher
from .invocation_service import ActionInvocationEngine, CompiledAction
from .oauth_service import OAuthFlowManager
from .scheduler import BatchScheduler, create_scheduler
from .trigger_detectors import ChangeDetector, RowCountDetector, SnapshotDetector, get_detector
from .trigger_poller import TriggerPoller

__all__ = [
    "CredentialVault",
    "EventDispatcher",
    "ActionInvocationEngine",
    "CompiledAction",
    "OAuthFlowManager",
    "BatchScheduler",
    "create_scheduler",
    "ChangeDetector",
    "RowCountDetector",
    "SnapshotDetector",
    "get_detector",
    "TriggerPoller",
]
