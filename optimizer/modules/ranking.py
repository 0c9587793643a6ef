"""Keyword ranking refresh."""
import logging

from seo.models import TrackedKeyword
from ..results import ModuleResult

logger = logging.getLogger(__name__)

MAX_TRACKED_KEYWORDS = 100


def summarize_positions(positions):
    tracked = [p for p in positions if p is not None]
    return {
        'in_top_3': sum(1 for p in tracked if p <= 3),
        'in_top_10': sum(1 for p in tracked if p <= 10),
    }


def track_rankings(ctx, services, results):
    if not services.rank_fetcher.is_connected(ctx.site):
        return ModuleResult.skipped('gsc_not_connected')

    keywords = list(
        TrackedKeyword.objects.filter(site_id=ctx.site_id, is_active=True).order_by('id')[:MAX_TRACKED_KEYWORDS]
    )
    if not keywords:
        return ModuleResult.ok(keywords_tracked=0, refreshed=0, improved=0, declined=0, in_top_3=0, in_top_10=0)

    fresh = services.rank_fetcher.fetch_positions(ctx.site, [k.keyword for k in keywords])

    refreshed = improved = declined = 0
    for kw in keywords:
        row = fresh.get(kw.keyword)
        if row is None:
            continue
        position = row['position']
        # Lower is better.
        if kw.current_position is not None:
            if position < kw.current_position:
                improved += 1
            elif position > kw.current_position:
                declined += 1
        kw.previous_position = kw.current_position
        kw.current_position = position
        kw.best_position = position if kw.best_position is None else min(kw.best_position, position)
        kw.clicks = row.get('clicks', kw.clicks)
        kw.impressions = row.get('impressions', kw.impressions)
        kw.last_checked_at = ctx.started_at
        refreshed += 1

    TrackedKeyword.objects.bulk_update(
        [k for k in keywords if k.keyword in fresh],
        ['previous_position', 'current_position', 'best_position', 'clicks', 'impressions', 'last_checked_at'],
    )
    logger.info("Site %s: refreshed %d/%d keyword positions", ctx.site_id, refreshed, len(keywords))

    return ModuleResult.ok(
        keywords_tracked=len(keywords),
        refreshed=refreshed,
        improved=improved,
        declined=declined,
        **summarize_positions([k.current_position for k in keywords]),
    )
