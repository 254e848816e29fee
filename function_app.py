"""
Connector Core Azure Functions App

Hosts the scheduled batch that polls triggers and redelivers webhook events.

Functions:
- ProcessTriggers (HTTP): POST/GET /api/cron/process-triggers with
  ``Authorization: Bearer <CRON_SECRET>``, for external schedulers
- ProcessTriggersTimer (timer): the same batch every minute

Run with: func start
"""

import json
from typing import Optional

import azure.functions as func
from dotenv import load_dotenv

# Local settings before anything reads the environment
load_dotenv()

from connector_core.config import get_config
from connector_core.db.db_config import initialize_db
from connector_core.exceptions import ConfigError
from connector_core.repositories.integration_catalog import IntegrationCatalog
from connector_core.services.scheduler import BatchScheduler, create_scheduler
from connector_core.utils.logger import configure_logging

app = func.FunctionApp()

logger = configure_logging("connector_core")

_scheduler: Optional[BatchScheduler] = None


def get_scheduler() -> BatchScheduler:
    """Build the scheduler on first use so a cold start without traffic stays cheap."""
    global _scheduler
    if _scheduler is None:
        config = get_config()
        if not config.catalog_path:
            raise ConfigError("INTEGRATION_CATALOG_PATH is not configured")
        db_manager = initialize_db()
        catalog = IntegrationCatalog.from_file(config.catalog_path)
        _scheduler = create_scheduler(catalog, db_manager=db_manager, config=config)
    return _scheduler


@app.function_name(name="ProcessTriggers")
@app.route(route="cron/process-triggers", methods=["GET", "POST"], auth_level=func.AuthLevel.ANONYMOUS)
def process_triggers(req: func.HttpRequest) -> func.HttpResponse:
    """
    Run one poll-and-retry batch on behalf of an external scheduler.

    Responds with ``{success, message, timestamp}`` and ``Cache-Control: no-store``.
    """
    try:
        scheduler = get_scheduler()
    except ConfigError as e:
        return func.HttpResponse(
            json.dumps({"success": False, "message": e.message, "timestamp": e.timestamp}),
            status_code=500,
            mimetype="application/json",
            headers={"Cache-Control": "no-store"},
        )

    status_code, body, headers = scheduler.handle_cron_request(req.headers.get("Authorization"))
    return func.HttpResponse(
        json.dumps(body),
        status_code=status_code,
        mimetype="application/json",
        headers={k: v for k, v in headers.items() if k != "Content-Type"},
    )


@app.function_name(name="ProcessTriggersTimer")
@app.timer_trigger(schedule="0 */1 * * * *", arg_name="timer", run_on_startup=False)
def process_triggers_timer(timer: func.TimerRequest) -> None:
    """Run the batch on a fixed schedule."""
    if timer.past_due:
        logger.warning("Trigger batch timer is past due")

    summary = get_scheduler().run_once()
    logger.info("Timer batch completed", extra={"summary": summary.message()})
