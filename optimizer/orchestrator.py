"""
Run orchestrator.

Owns the OptimizationRun row for one invocation: loads the site context once,
runs every stage in a fixed order, isolates stage failures, and writes the
result snapshot after each stage. Only a failure before the stage loop (site
lookup, context load) or the worker time limit ends the run in `error`.
"""
import logging
from datetime import timedelta
from types import MappingProxyType

from celery.exceptions import SoftTimeLimitExceeded
from django.conf import settings
from django.db import transaction
from django.utils import timezone

from sites.models import Site
from .context import SiteContext
from .exceptions import RunInProgress, SiteNotFound
from .models import AutopilotSettings, OptimizationRun
from .modules import alerts, autopilot, decay, freshness, ranking, recommendations, summary
from .results import ModuleResult
from .services import default_services

logger = logging.getLogger(__name__)

MODES = ('full', 'quick')

# Stage order is fixed: alerts and autopilot read what earlier stages produced.
PIPELINE = (
    ('knowledge', freshness.check_knowledge),
    ('rankings', ranking.track_rankings),
    ('recommendations', recommendations.generate_recommendations),
    ('decay', decay.detect_decay),
    ('alerts', alerts.generate_alerts),
    ('autopilot', autopilot.run_autopilot),
    ('summary', summary.summarize_run),
)

FULL_MODE_ONLY = frozenset({'autopilot'})

# Stages that publish to live sites. Each apply commits on its own, so a later
# failure in the stage cannot roll back the record of a change already published.
NON_ATOMIC_STAGES = frozenset({'autopilot'})


def _snapshot(run, results):
    return {
        'mode': run.mode,
        'started_at': run.started_at.isoformat(),
        'modules': {name: result.to_dict() for name, result in results.items()},
    }


def _counters(results):
    def value(name, key):
        result = results.get(name)
        return result.get(key, 0) if result is not None else 0

    return {
        'recommendations_generated': value('recommendations', 'recommendations_generated'),
        'auto_applied': value('autopilot', 'applied'),
        'alerts_raised': value('alerts', 'generated'),
    }


class Orchestrator:

    def __init__(self, services=None, pipeline=PIPELINE):
        self.services = services or default_services()
        self.pipeline = pipeline

    def start_run(self, site_id, mode='full'):
        """
        Create a run and execute it in-process. Returns the run id, or raises
        SiteNotFound (carrying the id of the run, now in `error`).
        """
        if mode not in MODES:
            raise ValueError(f"Unknown run mode: {mode}")
        run = OptimizationRun.objects.create(
            site_id=site_id,
            mode=mode,
            status='running',
            started_at=self.services.clock(),
            ai_model=self.services.model_name,
        )
        self.execute(run)
        return run.id

    def load_context(self, run):
        site = Site.objects.filter(pk=run.site_id).first()
        if site is None:
            raise SiteNotFound(run.site_id, run.id)
        return SiteContext(
            run_id=run.id,
            mode=run.mode,
            site=site,
            knowledge=self.services.knowledge.get(site.pk),
            autopilot=AutopilotSettings.for_site(site),
            started_at=run.started_at,
        )

    def execute(self, run):
        logger.info("Starting %s optimization run %s for site %s", run.mode, run.id, run.site_id)
        try:
            ctx = self.load_context(run)
        except Exception as e:
            logger.exception("Optimization run %s failed during setup", run.id)
            run.mark_error(str(e), self.services.clock())
            raise

        results = {}
        for name, stage in self.pipeline:
            if run.mode != 'full' and name in FULL_MODE_ONLY:
                results[name] = ModuleResult.skipped('quick_mode')
            else:
                results[name] = self.run_stage(name, stage, ctx, results)
            if not run.save_progress(_snapshot(run, results)):
                logger.warning("Run %s left the running state mid-pipeline; stopping", run.id)
                return run

        counters = _counters(results)
        if not run.mark_completed(_snapshot(run, results), self.services.clock(), **counters):
            logger.warning("Run %s was already finalized; results not written", run.id)
            return run
        logger.info(
            "Completed run %s. Recommendations: %d, Auto-applied: %d, Alerts: %d",
            run.id, counters['recommendations_generated'], counters['auto_applied'], counters['alerts_raised'],
        )
        return run

    def run_stage(self, name, stage, ctx, results):
        logger.info("Run %s: %s", ctx.run_id, name)
        view = MappingProxyType(dict(results))
        try:
            if name in NON_ATOMIC_STAGES:
                result = stage(ctx, self.services, view)
            else:
                with transaction.atomic():
                    result = stage(ctx, self.services, view)
        except SoftTimeLimitExceeded:
            logger.error("Run %s: time limit reached during %s", ctx.run_id, name)
            raise
        except Exception as e:
            logger.exception("Run %s: stage %s failed", ctx.run_id, name)
            return ModuleResult.failed(e)
        if not isinstance(result, ModuleResult):
            return ModuleResult.failed(f"stage returned {type(result).__name__}, not a ModuleResult")
        return result


def dispatch_run(site, mode='full', now=None):
    """
    Create a run for the site and hand it to the worker once the transaction
    commits. Refuses while another run for the site is still inside the run
    time limit; older `running` rows are closed out as abandoned.
    """
    from .tasks import execute_run

    if mode not in MODES:
        raise ValueError(f"Unknown run mode: {mode}")
    now = now or timezone.now()
    cutoff = now - timedelta(seconds=settings.OPTIMIZER_RUN_TIME_LIMIT)

    with transaction.atomic():
        Site.objects.select_for_update().filter(pk=site.pk).first()
        running = OptimizationRun.objects.filter(site_id=site.pk, status='running')
        live = running.filter(started_at__gte=cutoff).order_by('-started_at').first()
        if live is not None:
            raise RunInProgress(live.id)
        abandoned = running.update(
            status='error',
            error_message='Abandoned: exceeded the run time limit',
            completed_at=now,
        )
        if abandoned:
            logger.warning("Closed %d abandoned runs for site %s", abandoned, site.pk)
        run = OptimizationRun.objects.create(
            site=site, mode=mode, status='running', started_at=now, ai_model=settings.SEO_AI_MODEL,
        )
        run_id = str(run.id)
        transaction.on_commit(lambda: execute_run.delay(run_id))

    logger.info("Dispatched %s run %s for site %s", mode, run_id, site.pk)
    return run
