"""
Recommendation generation.

Sends the top pages by recent clicks plus the site's business profile to the
completion service, validates the JSON it returns, and upserts the result on
(site, page, title). A pending recommendation is refreshed in place; one that
was already reviewed or queued for autopilot is left alone. Nothing here
raises past the module: bad or missing completions come back as an error result.
"""
import json
import logging

from django.conf import settings
from django.db import IntegrityError, transaction

from ai.providers import CompletionError, build_user_message
from seo.models import Recommendation
from ..exceptions import CompletionValidationError
from ..results import ModuleResult
from ..serializers import CompletionResponseSerializer

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an expert SEO analyst. Provide specific, actionable recommendations "
    "with exact suggested values where possible. Respond with a single JSON object."
)

RESPONSE_SHAPE = {
    "recommendations": [
        {
            "pageUrl": "url",
            "pageId": "id",
            "category": "title|meta|content|technical|keyword",
            "priority": "critical|high|medium|low",
            "title": "Brief title",
            "description": "Detailed explanation",
            "currentValue": "What exists now",
            "suggestedValue": "What to change to",
            "field": "title|meta_description|h1|schema (omit when not a single-field change)",
            "autoFixable": True,
            "impactScore": "1-10",
            "confidence": "0-100, how certain you are the change helps",
        }
    ]
}

UPDATABLE_FIELDS = (
    'page_url', 'category', 'priority', 'description', 'field_name', 'current_value',
    'suggested_value', 'confidence', 'impact_score', 'auto_fixable', 'ai_model',
)


def build_prompt(knowledge, pages):
    profile = (knowledge or {}).get('business_profile') or {}
    context = {
        'site_knowledge': profile or 'No site knowledge available',
        'top_pages': [
            {
                'pageId': p['page_id'],
                'url': p['url'],
                'title': p['title'] or 'Missing',
                'meta_description': p['meta_description'] or 'Missing',
                'h1': p['h1'] or 'Missing',
                'clicks_28d': p['clicks_28d'],
                'avg_position': round(p['avg_position'], 1) if p['avg_position'] is not None else 'N/A',
            }
            for p in pages
        ],
    }
    task = (
        "Generate prioritized SEO recommendations for these pages. Focus on:\n"
        "1. Missing or weak title tags\n"
        "2. Missing meta descriptions\n"
        "3. Striking distance keywords (position 4-20)\n"
        "4. Content gaps\n"
        "5. Technical issues\n\n"
        f"Return as JSON:\n{json.dumps(RESPONSE_SHAPE, indent=2)}"
    )
    return build_user_message(context, task)


def parse_recommendations(payload):
    """Validate the whole completion payload; any invalid item rejects all of it."""
    serializer = CompletionResponseSerializer(data=payload)
    if not serializer.is_valid():
        raise CompletionValidationError(serializer.errors)
    return serializer.validated_data['recommendations']


def _resolve_page_id(item, pages_by_url, page_ids):
    page_id = pages_by_url.get(item.get('pageUrl') or '')
    if page_id is not None:
        return page_id
    raw = item.get('pageId')
    try:
        candidate = int(raw)
    except (TypeError, ValueError):
        return None
    return candidate if candidate in page_ids else None


def upsert_recommendation(site_id, page_id, item, model_name):
    """Returns 'created', 'updated' or 'skipped'."""
    values = {
        'page_url': item.get('pageUrl') or '',
        'category': item['category'],
        'priority': item['priority'],
        'description': item.get('description') or '',
        'field_name': item.get('field') or '',
        'current_value': item.get('currentValue') or '',
        'suggested_value': item.get('suggestedValue') or '',
        'confidence': item.get('confidence'),
        'impact_score': item.get('impactScore'),
        'auto_fixable': item.get('autoFixable', False),
        'ai_model': model_name,
    }
    lookup = {'site_id': site_id, 'title': item['title']}
    if page_id is None:
        lookup['page__isnull'] = True
    else:
        lookup['page_id'] = page_id

    existing = Recommendation.objects.filter(**lookup).first()
    if existing is not None:
        # A queued recommendation is frozen: the queue item carries the value
        # that will be published.
        if existing.status != 'pending' or existing.queue_items.exists():
            return 'skipped'
        for name in UPDATABLE_FIELDS:
            setattr(existing, name, values[name])
        existing.save(update_fields=list(UPDATABLE_FIELDS) + ['updated_at'])
        return 'updated'

    try:
        with transaction.atomic():
            Recommendation.objects.create(site_id=site_id, page_id=page_id, title=item['title'], **values)
    except IntegrityError:
        # Written by a concurrent run between the lookup and the insert.
        return 'skipped'
    return 'created'


def generate_recommendations(ctx, services, results):
    pages = services.metrics.top_pages(ctx.site_id, settings.OPTIMIZER_MAX_PROMPT_PAGES)
    if not pages:
        return ModuleResult.skipped('no_pages', recommendations_generated=0)

    try:
        payload = services.completion.complete(SYSTEM_PROMPT, build_prompt(ctx.knowledge, pages))
        items = parse_recommendations(payload)
    except (CompletionError, CompletionValidationError) as e:
        logger.error("Recommendation generation failed for site %s: %s", ctx.site_id, e)
        return ModuleResult.failed(e, pages_analyzed=len(pages), recommendations_generated=0)

    pages_by_url = {p['url']: p['page_id'] for p in pages}
    page_ids = set(pages_by_url.values())
    counts = {'created': 0, 'updated': 0, 'skipped': 0}
    seen = set()
    for item in items:
        page_id = _resolve_page_id(item, pages_by_url, page_ids)
        key = (page_id, item['title'])
        if key in seen:
            counts['skipped'] += 1
            continue
        seen.add(key)
        counts[upsert_recommendation(ctx.site_id, page_id, item, services.model_name)] += 1

    return ModuleResult.ok(
        pages_analyzed=len(pages),
        recommendations_generated=len(items),
        **counts,
    )
