"""
Scheduled batch entrypoint.

One run polls every due trigger, then sweeps events waiting for redelivery.
The HTTP entrypoint is guarded by a shared bearer secret; running it twice
is harmless because triggers and delivery attempts are claimed in the
database.
"""

import hmac
import uuid
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

import requests

from ..config import AppConfig, get_config
from ..db.db_base import utc_now
from ..db.db_config import DatabaseManager, get_db_manager
from ..exceptions import BaseError, ConfigError, clear_correlation_id, set_correlation_id
from ..repositories.api_log_repository import ApiLogRepository
from ..repositories.connection_repository import ConnectionRepository
from ..repositories.integration_catalog import IntegrationCatalog
from ..repositories.trigger_repository import TriggerRepository
from ..schemas.trigger_schemas import BatchRunSummary
from ..utils.encryption_utils import CredentialCipher
from ..utils.logger import get_logger
from .credential_vault import CredentialVault
from .event_dispatcher import EventDispatcher
from .invocation_service import ActionInvocationEngine
from .oauth_service import OAuthFlowManager
from .trigger_poller import TriggerPoller

CronResponse = Tuple[int, Dict[str, Any], Dict[str, str]]

_RESPONSE_HEADERS = {"Cache-Control": "no-store", "Content-Type": "application/json"}


class BatchScheduler:
    """Runs the poll-then-retry batch and owns the poller's worker pool."""

    def __init__(
        self,
        poller: TriggerPoller,
        dispatcher: EventDispatcher,
        config: Optional[AppConfig] = None,
    ):
        self.poller = poller
        self.dispatcher = dispatcher
        self.config = config or get_config()
        self.logger = get_logger()

    def run_once(self, now: Optional[datetime] = None) -> BatchRunSummary:
        """Poll active triggers, then redeliver due events."""
        started = now or utc_now()
        set_correlation_id(f"batch-{uuid.uuid4()}")
        try:
            summary = BatchRunSummary(started_at=started)

            results = self.poller.process_active_triggers(started)
            summary.poll_results = results
            summary.triggers_skipped = sum(1 for r in results if r.skipped)
            summary.triggers_polled = len(results) - summary.triggers_skipped
            summary.triggers_failed = sum(1 for r in results if not r.skipped and not r.success)
            summary.events_created = sum(r.events_created for r in results)
            summary.events_delivered = sum(r.events_delivered for r in results)

            retries = self.dispatcher.retry_failed_events(now or utc_now())
            summary.retries_attempted = len(retries)
            summary.retries_delivered = sum(1 for r in retries if r.delivered)

            summary.finished_at = utc_now()
            self.logger.info("Batch run finished", extra={"summary": summary.message()})
            return summary
        finally:
            clear_correlation_id()

    def is_authorized(self, authorization_header: Optional[str]) -> bool:
        """
        Check ``Authorization: Bearer <CRON_SECRET>`` in constant time.

        Raises:
            ConfigError: no cron secret configured
        """
        secret = self.config.security.cron_secret
        if not secret:
            raise ConfigError("CRON_SECRET is not configured")

        scheme, _, token = (authorization_header or "").partition(" ")
        if scheme.lower() != "bearer" or not token:
            return False
        return hmac.compare_digest(token.strip().encode("utf-8"), secret.encode("utf-8"))

    def handle_cron_request(self, authorization_header: Optional[str]) -> CronResponse:
        """
        Authenticate and run one batch.

        Returns:
            ``(status code, {success, message, timestamp}, headers)``
        """

        def respond(status: int, success: bool, message: str) -> CronResponse:
            body = {"success": success, "message": message, "timestamp": utc_now().isoformat()}
            return status, body, dict(_RESPONSE_HEADERS)

        try:
            if not self.is_authorized(authorization_header):
                self.logger.warning("Rejected unauthorized batch request")
                return respond(401, False, "Unauthorized")
            summary = self.run_once()
        except BaseError as e:
            return respond(e.status_code, False, e.message)

        return respond(200, True, summary.message())

    def shutdown(self, wait: bool = True) -> None:
        self.poller.shutdown(wait=wait)


def create_scheduler(
    catalog: IntegrationCatalog,
    db_manager: Optional[DatabaseManager] = None,
    config: Optional[AppConfig] = None,
    http_session: Optional[requests.Session] = None,
) -> BatchScheduler:
    """Wire repositories and services into a ready scheduler."""
    config = config or get_config()
    db_manager = db_manager or get_db_manager()
    http_session = http_session or requests.Session()

    connections = ConnectionRepository(db_manager)
    triggers = TriggerRepository(db_manager)
    api_logs = ApiLogRepository(db_manager)

    cipher = CredentialCipher(config.security.master_key)
    vault = CredentialVault(connections, cipher)
    oauth = OAuthFlowManager(
        connections, vault, catalog, cipher, http_session=http_session, config=config
    )
    invocation = ActionInvocationEngine(
        catalog, connections, vault, oauth, api_logs, http_session=http_session, config=config
    )
    dispatcher = EventDispatcher(triggers, http_session=http_session, config=config)
    poller = TriggerPoller(triggers, invocation, dispatcher, config=config)
    return BatchScheduler(poller, dispatcher, config=config)
