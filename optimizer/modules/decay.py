"""
Content decay detection.

A page is decaying when its clicks over the last 28 days dropped by more than
30% against the 28 days before. Pages with 10 or fewer prior clicks carry too
little signal and are never flagged. Pages that recover are left flagged;
clearing the flag belongs to a separate sweep.
"""
import logging

from ..results import ModuleResult

logger = logging.getLogger(__name__)

MIN_PRIOR_CLICKS = 10

# (drop percent strictly greater than, severity), most severe first
SEVERITY_THRESHOLDS = (
    (50, 'critical'),
    (40, 'high'),
    (30, 'medium'),
)


def classify_decay(current, prior):
    """Severity for one page, or None when it is not decaying."""
    if prior is None or prior <= MIN_PRIOR_CLICKS:
        return None
    lost = prior - (current or 0)
    for threshold, severity in SEVERITY_THRESHOLDS:
        # lost / prior > threshold%, compared without division
        if lost * 100 > threshold * prior:
            return severity
    return None


def detect_decay(ctx, services, results):
    pages = [p for p in services.metrics.get_page_metrics(ctx.site_id) if p['clicks_prev_28d'] is not None]

    by_severity = {'critical': 0, 'high': 0, 'medium': 0}
    decaying = []
    for page in pages:
        severity = classify_decay(page['clicks_28d'], page['clicks_prev_28d'])
        if severity is None:
            continue
        services.metrics.mark_decaying(page['page_id'], severity, ctx.started_at)
        by_severity[severity] += 1
        decaying.append(page['page_id'])

    if decaying:
        logger.info("Site %s: %d decaying pages %s", ctx.site_id, len(decaying), by_severity)

    return ModuleResult.ok(
        pages_checked=len(pages),
        decaying_count=len(decaying),
        by_severity=by_severity,
        decaying_page_ids=decaying,
    )
