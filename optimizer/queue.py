"""
QueueItem state machine.

    pending  --approve--> approved --apply--> applied --revert--> reverted
    pending  --reject---> rejected
    pending  --apply----> applied

Every transition locks the item row. The daily cap is a per-(site, day)
counter incremented with a conditional UPDATE, so concurrent appliers cannot
both pass the check and overshoot it.
"""
import logging
from datetime import timedelta

from django.conf import settings
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from seo.models import Recommendation
from . import policy
from .exceptions import DailyCapReached, InvalidTransition
from .models import AutopilotDailyCounter, QueueItem

logger = logging.getLogger(__name__)

TRANSITIONS = {
    'approve': (('pending',), 'approved'),
    'reject': (('pending',), 'rejected'),
    'apply': (('pending', 'approved'), 'applied'),
    'revert': (('applied',), 'reverted'),
}


def _lock(item_id):
    return QueueItem.objects.select_for_update().get(pk=item_id)


def _check_transition(item, action):
    allowed, _ = TRANSITIONS[action]
    if item.status not in allowed:
        raise InvalidTransition(item.id, action, item.status)


def admit(recommendation, autopilot, page=None, run_id=None):
    """
    Run the admission rule for one recommendation. Returns (Admission, QueueItem|None).
    A recommendation is queued at most once.
    """
    change_type = policy.change_type_for(recommendation.field_name, recommendation.category)
    decision = policy.evaluate_admission(change_type, recommendation.confidence, page.impressions_7d
                                         if page is not None else 0, autopilot)
    if not decision.admitted:
        return decision, None
    # Every change type rewrites a page field; without a page there is nothing
    # to publish to and no baseline for the revert monitor.
    if page is None:
        return policy.Admission(False, 'no_target_page', change_type), None

    old_value = page.field_value(change_type) or recommendation.current_value or ''
    item, created = QueueItem.objects.get_or_create(
        recommendation=recommendation,
        defaults={
            'site_id': recommendation.site_id,
            'page': page,
            'run_id': run_id,
            'change_type': change_type,
            'field': policy.CHANGE_TYPES[change_type]['field'],
            'old_value': old_value,
            'suggested_value': recommendation.suggested_value,
            'ai_confidence': recommendation.confidence or 0,
            'ai_reasoning': recommendation.description,
            'is_high_traffic': decision.is_high_traffic,
            'requires_approval': decision.requires_approval,
        },
    )
    if not created:
        return policy.Admission(False, 'already_queued', change_type), None

    if not decision.requires_approval:
        recommendation.status = 'auto_approved'
        recommendation.save(update_fields=['status', 'updated_at'])
    return decision, item


def approve(item_id, actor, now=None):
    now = now or timezone.now()
    with transaction.atomic():
        item = _lock(item_id)
        _check_transition(item, 'approve')
        item.status = 'approved'
        item.approved_by = actor
        item.approved_at = now
        item.save(update_fields=['status', 'approved_by', 'approved_at', 'updated_at'])
    logger.info("Queue item %s approved by %s", item.id, actor)
    return item


def reject(item_id, actor, now=None):
    now = now or timezone.now()
    with transaction.atomic():
        item = _lock(item_id)
        _check_transition(item, 'reject')
        item.status = 'rejected'
        item.rejected_at = now
        item.save(update_fields=['status', 'rejected_at', 'updated_at'])
        if item.recommendation_id:
            Recommendation.objects.filter(pk=item.recommendation_id).update(
                status='rejected', reviewed_at=now, updated_at=now,
            )
    logger.info("Queue item %s rejected by %s", item.id, actor)
    return item


def applied_today(site_id, day):
    return (AutopilotDailyCounter.objects.filter(site_id=site_id, day=day)
            .values_list('applied_count', flat=True).first()) or 0


def reserve_daily_slot(site_id, day, cap):
    """Atomically take one of today's slots. Returns False when the cap is used up."""
    counter, _ = AutopilotDailyCounter.objects.get_or_create(site_id=site_id, day=day)
    updated = AutopilotDailyCounter.objects.filter(
        pk=counter.pk, applied_count__lt=cap,
    ).update(applied_count=F('applied_count') + 1)
    return updated == 1


def apply_item(item_id, services, autopilot, manual=False, actor='autopilot'):
    """
    Publish an item's change and mark it applied.

    The automatic path enforces the full gate. A manual "apply now" skips the
    confidence and approval checks but never the daily cap. A publish failure
    rolls back the slot reservation along with everything else.
    """
    now = services.clock()
    day = timezone.localdate(now)
    with transaction.atomic():
        item = _lock(item_id)
        _check_transition(item, 'apply')
        if not manual:
            policy.check_apply_gate(item, autopilot)
        if not reserve_daily_slot(item.site_id, day, autopilot.max_daily_changes):
            raise DailyCapReached(item.site_id, autopilot.max_daily_changes)

        services.publisher.publish(item.site, item)

        item.status = 'applied'
        item.applied_at = now
        item.applied_by = actor
        item.baseline_clicks = services.metrics.current_clicks(item.page_id) if item.page_id else None
        item.monitor_until = now + timedelta(days=settings.AUTOPILOT_REVERT_WINDOW_DAYS)
        item.last_error = None
        item.save(update_fields=[
            'status', 'applied_at', 'applied_by', 'baseline_clicks', 'monitor_until',
            'last_error', 'updated_at',
        ])
        if item.recommendation_id:
            Recommendation.objects.filter(pk=item.recommendation_id).update(
                status='applied', reviewed_at=now, updated_at=now,
            )
    logger.info("Queue item %s applied (%s) by %s", item.id, item.change_type, actor)
    return item


def revert_item(item_id, services, reason):
    now = services.clock()
    with transaction.atomic():
        item = _lock(item_id)
        _check_transition(item, 'revert')
        services.publisher.revert(item.site, item)
        item.status = 'reverted'
        item.reverted_at = now
        item.revert_reason = reason
        item.save(update_fields=['status', 'reverted_at', 'revert_reason', 'updated_at'])
    logger.warning("Queue item %s reverted: %s", item.id, reason)
    return item


def record_failure(item_id, message):
    QueueItem.objects.filter(pk=item_id).update(last_error=message, updated_at=timezone.now())
