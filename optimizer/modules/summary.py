"""
Executive summary of the run. Falls back to a deterministic summary when the
completion service is unavailable, so this stage never fails the run.
"""
import logging

from ai.providers import CompletionError, build_user_message
from ..exceptions import CompletionValidationError
from ..results import ModuleResult
from ..serializers import CompletionSummarySerializer

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "You are an SEO expert providing concise optimization summaries. Respond with a single JSON object."

FALLBACK_SUMMARY = 'Optimization completed. Review recommendations for details.'


def run_totals(results):
    def payload_value(name, key):
        result = results.get(name)
        return result.get(key, 0) if result is not None else 0

    return {
        'recommendations': payload_value('recommendations', 'recommendations_generated'),
        'auto_applied': payload_value('autopilot', 'applied'),
        'alerts': payload_value('alerts', 'generated'),
        'decaying_pages': payload_value('decay', 'decaying_count'),
        'failed_modules': sorted(name for name, r in results.items() if r.status == 'error'),
    }


def fallback_summary(totals):
    trend = 'declining' if totals['decaying_pages'] else 'stable'
    if totals['decaying_pages']:
        top_priority = f"Refresh the {totals['decaying_pages']} pages losing traffic"
    elif totals['recommendations']:
        top_priority = 'Review pending recommendations'
    else:
        top_priority = ''
    return {'summary': FALLBACK_SUMMARY, 'health_trend': trend, 'top_priority': top_priority}


def summarize_run(ctx, services, results):
    totals = run_totals(results)
    modules = {name: r.to_dict() for name, r in results.items()}
    task = (
        f"Summarize this SEO optimization run for {ctx.site.domain}.\n\n"
        f"Total Recommendations: {totals['recommendations']}\n"
        f"Auto-Applied: {totals['auto_applied']}\n"
        f"Alerts Generated: {totals['alerts']}\n\n"
        "Provide a brief executive summary (2-3 sentences) highlighting key findings, "
        "the most important action needed and the overall site health trend.\n\n"
        'Return as JSON: {"summary": "...", "healthTrend": "improving|stable|declining", "topPriority": "..."}'
    )

    try:
        payload = services.completion.complete(SYSTEM_PROMPT, build_user_message({'modules': modules}, task))
        serializer = CompletionSummarySerializer(data=payload)
        if not serializer.is_valid():
            raise CompletionValidationError(serializer.errors)
    except (CompletionError, CompletionValidationError) as e:
        logger.warning("Summary generation for site %s fell back: %s", ctx.site_id, e)
        return ModuleResult.ok(source='fallback', **fallback_summary(totals), totals=totals)

    data = serializer.validated_data
    return ModuleResult.ok(
        source='ai',
        summary=data['summary'],
        health_trend=data['healthTrend'],
        top_priority=data['topPriority'],
        totals=totals,
    )
