"""Knowledge freshness check."""
import logging

from django.conf import settings

from ..results import ModuleResult

logger = logging.getLogger(__name__)


def knowledge_age_days(knowledge, now):
    if not knowledge or not knowledge.get('last_trained_at'):
        return None
    return (now - knowledge['last_trained_at']).total_seconds() / 86400


def is_stale(age_days, max_age_days):
    return age_days is None or age_days > max_age_days


def check_knowledge(ctx, services, results):
    age = knowledge_age_days(ctx.knowledge, ctx.started_at)
    rounded = round(age) if age is not None else None

    if is_stale(age, settings.OPTIMIZER_KNOWLEDGE_MAX_AGE_DAYS):
        logger.info("Knowledge for site %s is stale (age=%s days), flagging for retraining", ctx.site_id, rounded)
        services.knowledge.flag_for_retraining(ctx.site_id)
        return ModuleResult.ok(knowledge_status='training_triggered', age_days=rounded)

    return ModuleResult.ok(knowledge_status='current', age_days=rounded)
