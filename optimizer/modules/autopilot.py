"""
Autopilot stage: admit new recommendations to the queue, then apply whatever
passes the gate today. Only runs in full mode.
"""
import logging
from collections import Counter

from django.utils import timezone

from integrations.wordpress_webhook import ChangePublishError
from seo.models import Recommendation
from .. import queue
from ..exceptions import DailyCapReached, InvalidTransition, PolicyViolation
from ..models import QueueItem
from ..results import ModuleResult
from .alerts import raise_alert

logger = logging.getLogger(__name__)


def admit_recommendations(ctx, autopilot):
    candidates = (
        Recommendation.objects
        .filter(site_id=ctx.site_id, status='pending', auto_fixable=True, queue_items__isnull=True)
        .exclude(suggested_value='')
        .select_related('page')
        .order_by('-confidence', 'generated_at')
    )
    admitted = []
    rejected = Counter()
    for rec in candidates:
        decision, item = queue.admit(rec, autopilot, page=rec.page, run_id=ctx.run_id)
        if item is None:
            rejected[decision.reason] += 1
            continue
        admitted.append(item)
    return admitted, rejected


def apply_eligible(ctx, services, autopilot):
    item_ids = list(
        QueueItem.objects
        .filter(site_id=ctx.site_id, status__in=['pending', 'approved'])
        .order_by('-ai_confidence', 'created_at')
        .values_list('id', flat=True)
    )
    applied = []
    held = Counter()
    deferred = 0
    failed = 0
    for item_id in item_ids:
        try:
            queue.apply_item(item_id, services, autopilot)
        except DailyCapReached:
            deferred += 1
            continue
        except PolicyViolation as e:
            held[e.reason] += 1
            continue
        except InvalidTransition:
            continue
        except ChangePublishError as e:
            logger.error("Publishing queue item %s for site %s failed: %s", item_id, ctx.site_id, e)
            queue.record_failure(item_id, str(e))
            failed += 1
            continue
        applied.append(str(item_id))

    if deferred:
        logger.info("Site %s: daily cap of %d reached, %d items deferred",
                    ctx.site_id, autopilot.max_daily_changes, deferred)
    return applied, held, deferred, failed


def run_autopilot(ctx, services, results):
    autopilot = ctx.autopilot
    if not autopilot.enabled:
        return ModuleResult.skipped('autopilot_disabled', applied=0)

    admitted, not_admitted = admit_recommendations(ctx, autopilot)
    applied, held, deferred, failed = apply_eligible(ctx, services, autopilot)

    if applied and autopilot.notify_on_apply:
        raise_alert(
            ctx.site_id, 'autopilot_applied', 'info',
            f"Autopilot applied {len(applied)} change{'s' if len(applied) != 1 else ''}",
            'Applied changes are monitored and rolled back automatically if traffic drops.',
            {'run_id': str(ctx.run_id), 'queue_item_ids': applied},
        )

    return ModuleResult.ok(
        admitted=len(admitted),
        requires_approval=sum(1 for item in admitted if item.requires_approval),
        not_admitted=dict(not_admitted),
        applied=len(applied),
        applied_item_ids=applied,
        held=dict(held),
        deferred_by_cap=deferred,
        publish_failed=failed,
        applied_today=queue.applied_today(ctx.site_id, timezone.localdate(services.clock())),
    )
