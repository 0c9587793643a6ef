"""
Threshold alerts over the run so far. Re-raising an alert for an unchanged
condition is expected; open alerts are deduplicated by the resolution workflow.
"""
import logging

from seo.models import Alert, Recommendation
from ..results import ModuleResult

logger = logging.getLogger(__name__)

DECAYING_PAGES_THRESHOLD = 5
PENDING_HIGH_PRIORITY_THRESHOLD = 10


def raise_alert(site_id, alert_type, severity, title, message='', data=None):
    alert = Alert.objects.create(
        site_id=site_id,
        alert_type=alert_type,
        severity=severity,
        title=title,
        message=message,
        data=data or {},
    )
    logger.info("Alert raised for site %s: %s (%s)", site_id, alert_type, severity)
    return alert


def generate_alerts(ctx, services, results):
    raised = []

    decay = results.get('decay')
    decaying_count = decay.get('decaying_count', 0) if decay is not None and decay.is_ok else 0
    if decaying_count > DECAYING_PAGES_THRESHOLD:
        raise_alert(
            ctx.site_id, 'content_decay', 'high',
            f"{decaying_count} pages with significant traffic drop",
            'Multiple pages are losing traffic. Review and refresh content.',
            decay.to_dict(),
        )
        raised.append('content_decay')

    pending_count = Recommendation.objects.filter(
        site_id=ctx.site_id, status='pending', priority__in=['critical', 'high'],
    ).count()
    if pending_count > PENDING_HIGH_PRIORITY_THRESHOLD:
        raise_alert(
            ctx.site_id, 'pending_actions', 'medium',
            f"{pending_count} high-priority recommendations pending",
            'Review and implement pending SEO recommendations.',
            {'pending_count': pending_count},
        )
        raised.append('pending_actions')

    return ModuleResult.ok(generated=len(raised), alert_types=raised)
