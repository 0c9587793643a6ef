"""
Optimizer Tasks
Optimization runs, the auto-revert monitor and scheduled runs
"""
from typing import Dict

from celery.exceptions import SoftTimeLimitExceeded
from celery.utils.log import get_task_logger
from django.conf import settings
from django.utils import timezone

from portal_backend.celery import app as celery_app
from sites.models import Site
from .exceptions import RunInProgress, SiteNotFound
from .models import OptimizationRun
from .services import default_services

logger = get_task_logger(__name__)


@celery_app.task(
    name="optimizer.tasks.execute_run",
    soft_time_limit=max(settings.OPTIMIZER_RUN_TIME_LIMIT - 30, 30),
    time_limit=settings.OPTIMIZER_RUN_TIME_LIMIT,
)
def execute_run(run_id: str) -> Dict:
    """
    Execute one optimization run created by dispatch_run.

    Args:
        run_id: UUID of the OptimizationRun to execute

    Returns:
        Dict with the run's final status and counters
    """
    from .orchestrator import Orchestrator

    run = OptimizationRun.objects.filter(pk=run_id).first()
    if run is None:
        logger.error(f"Optimization run not found: {run_id}")
        return {"error": "Run not found", "run_id": run_id}
    if run.status != 'running':
        logger.warning(f"Optimization run {run_id} is already {run.status}, skipping")
        return {"skipped": True, "run_id": run_id, "status": run.status}

    try:
        Orchestrator(default_services()).execute(run)
    except SiteNotFound as e:
        return {"error": str(e), "run_id": run_id}
    except SoftTimeLimitExceeded:
        logger.error(f"Optimization run {run_id} hit the time limit")
        run.mark_error('Run exceeded the time limit', timezone.now())
        return {"error": "Time limit exceeded", "run_id": run_id}
    except Exception as e:
        logger.exception(f"Optimization run {run_id} failed: {e}")
        return {"error": str(e), "run_id": run_id}

    run.refresh_from_db()
    return {
        "success": run.status == 'completed',
        "run_id": run_id,
        "status": run.status,
        "recommendations_generated": run.recommendations_generated,
        "auto_applied": run.auto_applied,
        "alerts_raised": run.alerts_raised,
    }


@celery_app.task(
    name="optimizer.tasks.monitor_applied_changes",
)
def monitor_applied_changes() -> Dict:
    """
    Roll back applied autopilot changes whose page traffic dropped past the
    site's auto-revert threshold. Runs hourly.
    """
    from .monitor import monitor_applied_changes as run_monitor

    outcome = run_monitor(default_services())
    logger.info(
        f"Auto-revert monitor: checked {outcome['checked']}, reverted {outcome['reverted']}, "
        f"failed {outcome['failed']}"
    )
    return {"success": True, **outcome, "timestamp": timezone.now().isoformat()}


@celery_app.task(
    name="optimizer.tasks.schedule_optimization_runs",
)
def schedule_optimization_runs() -> Dict:
    """
    Dispatch a full run for every active site with autopilot enabled.
    Runs once per day.
    """
    from .orchestrator import dispatch_run

    sites = Site.objects.filter(is_active=True, autopilot_settings__enabled=True)

    queued = skipped = 0
    for site in sites:
        try:
            dispatch_run(site, 'full')
        except RunInProgress as e:
            logger.info(f"Site {site.id}: {e}")
            skipped += 1
            continue
        queued += 1

    logger.info(f"Scheduled {queued} optimization runs ({skipped} already running)")
    return {
        "success": True,
        "sites_queued": queued,
        "sites_skipped": skipped,
        "timestamp": timezone.now().isoformat(),
    }
