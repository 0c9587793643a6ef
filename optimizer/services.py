"""
Injected collaborators for the optimization pipeline.

The orchestrator, the pipeline modules and the auto-revert monitor receive one
OptimizerServices bundle instead of reaching for module-level clients, so tests
can swap any collaborator for a fake.
"""
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from django.utils import timezone

from seo.models import Page
from sites.models import SiteKnowledge


class DjangoKnowledgeStore:
    """Site knowledge read from SiteKnowledge rows."""

    def get(self, site_id) -> Optional[Dict[str, Any]]:
        knowledge = SiteKnowledge.objects.filter(site_id=site_id).first()
        if knowledge is None:
            return None
        return {
            'last_trained_at': knowledge.last_trained_at,
            'business_profile': knowledge.business_profile or {},
            'training_status': knowledge.training_status,
        }

    def flag_for_retraining(self, site_id):
        knowledge, _ = SiteKnowledge.objects.get_or_create(site_id=site_id)
        knowledge.training_status = 'needs_refresh'
        knowledge.retrain_requested_at = timezone.now()
        knowledge.save(update_fields=['training_status', 'retrain_requested_at', 'updated_at'])


class DjangoMetricsStore:
    """Per-page traffic metrics read from Page rows."""

    def get_page_metrics(self, site_id) -> List[Dict[str, Any]]:
        return [
            {
                'page_id': row['id'],
                'url': row['url'],
                'clicks_28d': row['clicks_28d'],
                'clicks_prev_28d': row['clicks_prev_28d'],
                'impressions_28d': row['impressions_28d'],
            }
            for row in Page.objects.filter(site_id=site_id).values(
                'id', 'url', 'clicks_28d', 'clicks_prev_28d', 'impressions_28d',
            )
        ]

    def top_pages(self, site_id, limit) -> List[Dict[str, Any]]:
        pages = Page.objects.filter(site_id=site_id, status='publish').order_by('-clicks_28d', 'id')[:limit]
        return [
            {
                'page_id': p.id,
                'url': p.url,
                'title': p.yoast_title or p.title,
                'meta_description': p.yoast_description,
                'h1': p.h1_text,
                'clicks_28d': p.clicks_28d,
                'impressions_7d': p.impressions_7d,
                'avg_position': p.avg_position,
            }
            for p in pages
        ]

    def mark_decaying(self, page_id, severity, detected_at):
        Page.objects.filter(pk=page_id).update(
            is_decaying=True,
            decay_severity=severity,
            decay_detected_at=detected_at,
        )

    def current_clicks(self, page_id) -> Optional[int]:
        return Page.objects.filter(pk=page_id).values_list('clicks_28d', flat=True).first()


@dataclass
class OptimizerServices:
    knowledge: Any
    metrics: Any
    completion: Any
    rank_fetcher: Any
    publisher: Any
    clock: Callable = timezone.now

    @property
    def model_name(self):
        return getattr(self.completion, 'model', '') or ''


def default_services() -> OptimizerServices:
    from ai.providers import OpenAICompletionService
    from integrations.gsc import SearchConsoleRankFetcher
    from integrations.wordpress_webhook import WordPressChangePublisher

    return OptimizerServices(
        knowledge=DjangoKnowledgeStore(),
        metrics=DjangoMetricsStore(),
        completion=OpenAICompletionService(),
        rank_fetcher=SearchConsoleRankFetcher(),
        publisher=WordPressChangePublisher(),
    )
