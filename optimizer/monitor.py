"""
Auto-revert monitor for applied autopilot changes.

An applied change is watched from the end of the settle period until its
monitor window closes. If the page's 28-day clicks fall more than the site's
auto_revert_threshold percent below the baseline captured at apply time, the
old value is published back and the item moves to `reverted`.
"""
import logging
from datetime import timedelta

from django.conf import settings

from integrations.wordpress_webhook import ChangePublishError
from . import policy, queue
from .exceptions import InvalidTransition
from .models import AutopilotSettings, QueueItem
from .modules.alerts import raise_alert

logger = logging.getLogger(__name__)


def monitor_applied_changes(services, now=None):
    now = now or services.clock()
    settled_before = now - timedelta(days=settings.AUTOPILOT_REVERT_SETTLE_DAYS)
    items = (
        QueueItem.objects
        .filter(status='applied', page__isnull=False, baseline_clicks__isnull=False,
                monitor_until__gte=now, applied_at__lte=settled_before)
        .select_related('site')
        .order_by('applied_at')
    )

    checked = reverted = failed = 0
    autopilot_by_site = {}
    for item in items:
        checked += 1
        autopilot = autopilot_by_site.get(item.site_id)
        if autopilot is None:
            autopilot = autopilot_by_site[item.site_id] = AutopilotSettings.for_site(item.site)

        current = services.metrics.current_clicks(item.page_id)
        if not policy.should_revert(item.baseline_clicks, current, autopilot.auto_revert_threshold):
            continue

        drop = policy.drop_percent(item.baseline_clicks, current)
        reason = (
            f"Clicks fell {drop:.1f}% ({item.baseline_clicks} -> {current}), "
            f"above the {autopilot.auto_revert_threshold}% auto-revert threshold"
        )
        try:
            queue.revert_item(item.id, services, reason)
        except InvalidTransition:
            continue
        except ChangePublishError as e:
            logger.error("Reverting queue item %s failed: %s", item.id, e)
            queue.record_failure(item.id, str(e))
            failed += 1
            continue

        reverted += 1
        if autopilot.notify_on_revert:
            raise_alert(
                item.site_id, 'autopilot_reverted', 'warning',
                f"Autopilot reverted a {item.change_type} change",
                reason,
                {'queue_item_id': str(item.id), 'page_id': item.page_id, 'drop_percent': round(drop, 1)},
            )

    return {'checked': checked, 'reverted': reverted, 'failed': failed}
