"""
Tests for optimizer app - run orchestration, decay, recommendations, autopilot queue and APIs.
"""
from datetime import datetime, timedelta, timezone as dt_timezone

import pytest
from celery.exceptions import SoftTimeLimitExceeded
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken

from ai.providers import CompletionError
from integrations.wordpress_webhook import ChangePublishError
from optimizer import policy, queue
from optimizer.context import SiteContext
from optimizer.exceptions import DailyCapReached, InvalidTransition, PolicyViolation, SiteNotFound
from optimizer.models import AutopilotSettings, OptimizationRun, QueueItem
from optimizer.modules.alerts import generate_alerts
from optimizer.modules.autopilot import admit_recommendations
from optimizer.modules.decay import classify_decay, detect_decay
from optimizer.modules.freshness import check_knowledge
from optimizer.modules.ranking import track_rankings
from optimizer.modules.recommendations import generate_recommendations
from optimizer.monitor import monitor_applied_changes
from optimizer.orchestrator import PIPELINE, Orchestrator
from optimizer.results import ModuleResult
from optimizer.services import DjangoMetricsStore, OptimizerServices

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=dt_timezone.utc)


# ─────────────────────────────────────────────────────────────
# Fakes
# ─────────────────────────────────────────────────────────────

class FakeKnowledgeStore:
    def __init__(self, knowledge=None, fresh=True):
        if knowledge is None and fresh:
            knowledge = {
                'last_trained_at': NOW - timedelta(days=1),
                'business_profile': {'business_name': 'Acme Plumbing', 'industry': 'Home services'},
            }
        self.knowledge = knowledge
        self.flagged = []

    def get(self, site_id):
        return self.knowledge

    def flag_for_retraining(self, site_id):
        self.flagged.append(site_id)


class FakeCompletion:
    model = 'fake-model'

    def __init__(self, responses=None, error=None):
        self.responses = list(responses or [])
        self.error = error
        self.calls = []

    def complete(self, system_prompt, user_prompt):
        self.calls.append((system_prompt, user_prompt))
        if self.error is not None:
            raise self.error
        if not self.responses:
            raise CompletionError('no scripted response')
        return self.responses.pop(0)


class FakeRankFetcher:
    def __init__(self, connected=False, positions=None):
        self.connected = connected
        self.positions = positions or {}

    def is_connected(self, site):
        return self.connected

    def fetch_positions(self, site, keywords):
        return {k: v for k, v in self.positions.items() if k in keywords}


class FakePublisher:
    def __init__(self, fail=False):
        self.fail = fail
        self.published = []
        self.reverted = []

    def publish(self, site, item):
        if self.fail:
            raise ChangePublishError('HTTP 500')
        self.published.append(item.id)

    def revert(self, site, item):
        if self.fail:
            raise ChangePublishError('HTTP 500')
        self.reverted.append(item.id)


def make_services(completion=None, publisher=None, rank_fetcher=None, knowledge=None, clock=None):
    return OptimizerServices(
        knowledge=knowledge or FakeKnowledgeStore(),
        metrics=DjangoMetricsStore(),
        completion=completion or FakeCompletion(),
        rank_fetcher=rank_fetcher or FakeRankFetcher(),
        publisher=publisher or FakePublisher(),
        clock=clock or (lambda: NOW),
    )


def rec_item(page_url, title, category='title', priority='high', confidence=90, field='title',
             auto=True, suggested='A better title'):
    return {
        'pageUrl': page_url,
        'pageId': '',
        'category': category,
        'priority': priority,
        'title': title,
        'description': 'Stronger keyword match for the page intent.',
        'currentValue': 'Old value',
        'suggestedValue': suggested,
        'autoFixable': auto,
        'impactScore': 7,
        'confidence': confidence,
        'field': field,
    }


def make_context(site, services, mode='full', run_id=None):
    return SiteContext(
        run_id=run_id,
        mode=mode,
        site=site,
        knowledge=services.knowledge.get(site.id),
        autopilot=AutopilotSettings.for_site(site),
        started_at=NOW,
    )


def enable_autopilot(site, **overrides):
    settings_obj = AutopilotSettings.for_site(site)
    settings_obj.enabled = True
    for name, value in overrides.items():
        setattr(settings_obj, name, value)
    settings_obj.save()
    return settings_obj


# ─────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────

@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def user_model():
    return get_user_model()


@pytest.fixture
def create_user(user_model):
    def _create_user(email="test@example.com", password="testpass123"):
        return user_model.objects.create_user(
            email=email,
            username=email,
            password=password
        )
    return _create_user


@pytest.fixture
def authenticated_client(api_client, create_user):
    user = create_user()
    refresh = RefreshToken.for_user(user)
    api_client.credentials(HTTP_AUTHORIZATION=f'Bearer {str(refresh.access_token)}')
    return api_client, user


@pytest.fixture
def create_site(create_user):
    def _create_site(user=None, name="Test Site", url="https://example.com"):
        from sites.models import Site
        if user is None:
            user = create_user(email=f"owner-{name.replace(' ', '').lower()}@example.com")
        return Site.objects.create(user=user, name=name, url=url)
    return _create_site


@pytest.fixture
def create_page():
    def _create_page(site, slug, clicks_28d=50, clicks_prev_28d=None, impressions_7d=100, **extra):
        from seo.models import Page
        return Page.objects.create(
            site=site,
            url=f"{site.url}/{slug}",
            title=f"Page {slug}",
            clicks_28d=clicks_28d,
            clicks_prev_28d=clicks_prev_28d,
            impressions_7d=impressions_7d,
            **extra
        )
    return _create_page


@pytest.fixture
def create_queue_item():
    def _create_queue_item(site, confidence=90, requires_approval=False, status='pending', page=None, **extra):
        return QueueItem.objects.create(
            site=site,
            page=page,
            change_type='title',
            field='title',
            old_value='Old title',
            suggested_value='New title',
            ai_confidence=confidence,
            requires_approval=requires_approval,
            status=status,
            **extra
        )
    return _create_queue_item


@pytest.fixture
def fake_services():
    return make_services()


# ─────────────────────────────────────────────────────────────
# Decay
# ─────────────────────────────────────────────────────────────

class TestClassifyDecay:

    @pytest.mark.parametrize('prior', [0, 1, 5, 10])
    @pytest.mark.parametrize('current', [0, 3, 10])
    def test_pages_at_or_below_floor_never_decay(self, prior, current):
        assert classify_decay(current, prior) is None

    @pytest.mark.parametrize('current, prior, expected', [
        (70, 100, None),          # exactly 30.0%
        (699, 1000, 'medium'),    # 30.1%
        (60, 100, 'medium'),      # exactly 40.0%
        (59, 100, 'high'),        # 41%
        (50, 100, 'high'),        # exactly 50.0%
        (499, 1000, 'critical'),  # 50.1%
        (40, 100, 'critical'),
        (0, 11, 'critical'),
    ])
    def test_severity_boundaries(self, current, prior, expected):
        assert classify_decay(current, prior) == expected

    def test_missing_prior_is_not_decay(self):
        assert classify_decay(0, None) is None

    def test_traffic_growth_is_not_decay(self):
        assert classify_decay(200, 100) is None


@pytest.mark.django_db
class TestDetectDecay:

    def test_flags_decaying_pages_with_severity(self, create_site, create_page, fake_services):
        from seo.models import Page
        site = create_site()
        critical = create_page(site, 'a', clicks_28d=40, clicks_prev_28d=100)
        medium = create_page(site, 'b', clicks_28d=65, clicks_prev_28d=100)
        healthy = create_page(site, 'c', clicks_28d=100, clicks_prev_28d=100)
        low_signal = create_page(site, 'd', clicks_28d=0, clicks_prev_28d=10)
        create_page(site, 'e', clicks_28d=5, clicks_prev_28d=None)

        result = detect_decay(make_context(site, fake_services), fake_services, {})

        assert result.is_ok
        assert result.get('pages_checked') == 4
        assert result.get('decaying_count') == 2
        assert Page.objects.get(pk=critical.pk).decay_severity == 'critical'
        assert Page.objects.get(pk=medium.pk).decay_severity == 'medium'
        assert Page.objects.get(pk=critical.pk).decay_detected_at == NOW
        assert not Page.objects.get(pk=healthy.pk).is_decaying
        assert not Page.objects.get(pk=low_signal.pk).is_decaying

    def test_recovered_pages_keep_their_flag(self, create_site, create_page, fake_services):
        site = create_site()
        page = create_page(site, 'a', clicks_28d=120, clicks_prev_28d=100,
                           is_decaying=True, decay_severity='high')

        result = detect_decay(make_context(site, fake_services), fake_services, {})

        assert result.get('decaying_count') == 0
        page.refresh_from_db()
        assert page.is_decaying
        assert page.decay_severity == 'high'

    def test_other_sites_pages_are_untouched(self, create_site, create_page, fake_services):
        from seo.models import Page
        site = create_site()
        other = create_site(name='Other', url='https://other.com')
        page = create_page(other, 'a', clicks_28d=10, clicks_prev_28d=100)

        detect_decay(make_context(site, fake_services), fake_services, {})

        assert not Page.objects.get(pk=page.pk).is_decaying


# ─────────────────────────────────────────────────────────────
# Knowledge freshness / rankings / alerts
# ─────────────────────────────────────────────────────────────

@pytest.mark.django_db
class TestKnowledgeFreshness:

    def test_missing_knowledge_triggers_training(self, create_site):
        site = create_site()
        services = make_services(knowledge=FakeKnowledgeStore(fresh=False))

        result = check_knowledge(make_context(site, services), services, {})

        assert result.get('knowledge_status') == 'training_triggered'
        assert result.get('age_days') is None
        assert services.knowledge.flagged == [site.id]

    def test_stale_knowledge_triggers_training(self, create_site):
        site = create_site()
        store = FakeKnowledgeStore({'last_trained_at': NOW - timedelta(days=8), 'business_profile': {}})
        services = make_services(knowledge=store)

        result = check_knowledge(make_context(site, services), services, {})

        assert result.get('knowledge_status') == 'training_triggered'
        assert result.get('age_days') == 8

    def test_recent_knowledge_is_current(self, create_site, fake_services):
        site = create_site()

        result = check_knowledge(make_context(site, fake_services), fake_services, {})

        assert result.get('knowledge_status') == 'current'
        assert fake_services.knowledge.flagged == []

    def test_flag_for_retraining_marks_site_knowledge(self, create_site):
        from optimizer.services import DjangoKnowledgeStore
        from sites.models import SiteKnowledge
        site = create_site()

        DjangoKnowledgeStore().flag_for_retraining(site.id)

        knowledge = SiteKnowledge.objects.get(site=site)
        assert knowledge.training_status == 'needs_refresh'
        assert knowledge.retrain_requested_at is not None


@pytest.mark.django_db
class TestRankingTracker:

    def test_skipped_without_search_console(self, create_site, fake_services):
        site = create_site()
        result = track_rankings(make_context(site, fake_services), fake_services, {})
        assert result.status == 'skipped'
        assert result.reason == 'gsc_not_connected'

    def test_refreshes_positions_and_shifts_previous(self, create_site):
        from seo.models import TrackedKeyword
        site = create_site()
        improving = TrackedKeyword.objects.create(site=site, keyword='plumber near me',
                                                  current_position=5.0, best_position=4.0)
        declining = TrackedKeyword.objects.create(site=site, keyword='drain repair', current_position=8.0)
        TrackedKeyword.objects.create(site=site, keyword='no data keyword', current_position=30.0)
        services = make_services(rank_fetcher=FakeRankFetcher(connected=True, positions={
            'plumber near me': {'position': 3.0, 'clicks': 40, 'impressions': 900},
            'drain repair': {'position': 12.5, 'clicks': 2, 'impressions': 150},
        }))

        result = track_rankings(make_context(site, services), services, {})

        assert result.get('keywords_tracked') == 3
        assert result.get('refreshed') == 2
        assert result.get('improved') == 1
        assert result.get('declined') == 1
        assert result.get('in_top_3') == 1
        assert result.get('in_top_10') == 1
        improving.refresh_from_db()
        assert improving.previous_position == 5.0
        assert improving.current_position == 3.0
        assert improving.best_position == 3.0
        declining.refresh_from_db()
        assert declining.best_position == 12.5
        assert declining.last_checked_at == NOW


@pytest.mark.django_db
class TestAlertGenerator:

    def test_content_decay_alert_above_threshold(self, create_site, fake_services):
        from seo.models import Alert
        site = create_site()
        results = {'decay': ModuleResult.ok(pages_checked=20, decaying_count=6)}

        result = generate_alerts(make_context(site, fake_services), fake_services, results)

        assert result.get('generated') == 1
        alert = Alert.objects.get(site=site)
        assert alert.alert_type == 'content_decay'
        assert alert.severity == 'high'
        assert alert.status == 'active'

    def test_no_decay_alert_at_threshold(self, create_site, fake_services):
        site = create_site()
        results = {'decay': ModuleResult.ok(decaying_count=5)}
        result = generate_alerts(make_context(site, fake_services), fake_services, results)
        assert result.get('generated') == 0

    def test_failed_decay_stage_raises_nothing(self, create_site, fake_services):
        site = create_site()
        results = {'decay': ModuleResult.failed(RuntimeError('db down'))}
        result = generate_alerts(make_context(site, fake_services), fake_services, results)
        assert result.get('generated') == 0

    def test_pending_actions_alert(self, create_site, fake_services):
        from seo.models import Alert, Recommendation
        site = create_site()
        for i in range(11):
            Recommendation.objects.create(site=site, category='content', priority='high' if i % 2 else 'critical',
                                          title=f'Fix {i}')
        Recommendation.objects.create(site=site, category='content', priority='low', title='Minor')

        result = generate_alerts(make_context(site, fake_services), fake_services, {})

        assert result.get('alert_types') == ['pending_actions']
        alert = Alert.objects.get(site=site)
        assert alert.severity == 'medium'
        assert alert.data == {'pending_count': 11}

    def test_alerts_are_raised_again_for_unchanged_condition(self, create_site, fake_services):
        from seo.models import Alert
        site = create_site()
        results = {'decay': ModuleResult.ok(decaying_count=9)}
        ctx = make_context(site, fake_services)

        generate_alerts(ctx, fake_services, results)
        generate_alerts(ctx, fake_services, results)

        assert Alert.objects.filter(site=site, alert_type='content_decay').count() == 2


# ─────────────────────────────────────────────────────────────
# Recommendation generator
# ─────────────────────────────────────────────────────────────

@pytest.mark.django_db
class TestRecommendationGenerator:

    def test_rerun_does_not_duplicate_pending(self, create_site, create_page):
        from seo.models import Recommendation
        site = create_site()
        page = create_page(site, 'services', clicks_28d=300)
        response = {'recommendations': [
            rec_item(page.url, 'Rewrite the title tag'),
            rec_item(page.url, 'Add a meta description', category='meta', field='meta_description'),
        ]}
        services = make_services(completion=FakeCompletion([response, response]))
        ctx = make_context(site, services)

        first = generate_recommendations(ctx, services, {})
        second = generate_recommendations(ctx, services, {})

        assert first.get('created') == 2
        assert second.get('created') == 0
        assert second.get('updated') == 2
        assert second.get('recommendations_generated') == 2
        assert Recommendation.objects.filter(site=site, status='pending').count() == 2
        rec = Recommendation.objects.get(site=site, title='Rewrite the title tag')
        assert rec.page_id == page.id
        assert rec.ai_model == 'fake-model'
        assert rec.confidence == 90

    def test_reviewed_recommendation_is_not_reopened(self, create_site, create_page):
        from seo.models import Recommendation
        site = create_site()
        page = create_page(site, 'about')
        Recommendation.objects.create(site=site, page=page, category='title', priority='low',
                                      title='Rewrite the title tag', status='dismissed')
        services = make_services(completion=FakeCompletion([
            {'recommendations': [rec_item(page.url, 'Rewrite the title tag', priority='critical')]},
        ]))

        result = generate_recommendations(make_context(site, services), services, {})

        assert result.get('skipped') == 1
        rec = Recommendation.objects.get(site=site, title='Rewrite the title tag')
        assert rec.status == 'dismissed'
        assert rec.priority == 'low'

    def test_queued_recommendation_is_not_refreshed(self, create_site, create_page):
        from seo.models import Recommendation
        site = create_site()
        page = create_page(site, 'services')
        enable_autopilot(site)
        services = make_services(completion=FakeCompletion([
            {'recommendations': [rec_item(page.url, 'Rewrite the title tag', confidence=70, suggested='Version A')]},
            {'recommendations': [rec_item(page.url, 'Rewrite the title tag', confidence=70, suggested='Version B')]},
        ]))
        ctx = make_context(site, services)

        generate_recommendations(ctx, services, {})
        admitted, _ = admit_recommendations(ctx, ctx.autopilot)
        result = generate_recommendations(ctx, services, {})

        assert len(admitted) == 1
        assert result.get('skipped') == 1
        assert result.get('updated') == 0
        rec = Recommendation.objects.get(site=site, title='Rewrite the title tag')
        assert rec.status == 'pending'
        assert rec.suggested_value == 'Version A'
        assert QueueItem.objects.get(recommendation=rec).suggested_value == 'Version A'

    def test_duplicates_within_one_response_collapse(self, create_site, create_page):
        from seo.models import Recommendation
        site = create_site()
        page = create_page(site, 'home')
        services = make_services(completion=FakeCompletion([
            {'recommendations': [rec_item(page.url, 'Same'), rec_item(page.url, 'Same')]},
        ]))

        generate_recommendations(make_context(site, services), services, {})

        assert Recommendation.objects.filter(site=site).count() == 1

    def test_unknown_page_becomes_sitewide_recommendation(self, create_site, create_page):
        from seo.models import Recommendation
        site = create_site()
        create_page(site, 'home')
        response = {'recommendations': [
            rec_item('https://elsewhere.com/x', 'Add an XML sitemap', category='technical', field=None),
        ]}
        services = make_services(completion=FakeCompletion([response, response]))
        ctx = make_context(site, services)

        generate_recommendations(ctx, services, {})
        generate_recommendations(ctx, services, {})

        rec = Recommendation.objects.get(site=site)
        assert rec.page_id is None
        assert rec.field_name == ''

    def test_invalid_response_is_a_module_error(self, create_site, create_page):
        from seo.models import Recommendation
        site = create_site()
        page = create_page(site, 'home')
        bad = rec_item(page.url, 'Bad priority', priority='urgent')
        services = make_services(completion=FakeCompletion([
            {'recommendations': [rec_item(page.url, 'Valid one'), bad]},
        ]))

        result = generate_recommendations(make_context(site, services), services, {})

        assert result.status == 'error'
        assert result.get('recommendations_generated') == 0
        assert Recommendation.objects.filter(site=site).count() == 0

    def test_missing_recommendations_key_is_a_module_error(self, create_site, create_page):
        site = create_site()
        create_page(site, 'home')
        services = make_services(completion=FakeCompletion([{'suggestions': []}]))

        result = generate_recommendations(make_context(site, services), services, {})

        assert result.status == 'error'

    def test_completion_failure_is_a_module_error(self, create_site, create_page):
        site = create_site()
        create_page(site, 'home')
        services = make_services(completion=FakeCompletion(error=CompletionError('timed out after 60s')))

        result = generate_recommendations(make_context(site, services), services, {})

        assert result.status == 'error'
        assert 'timed out' in result.error

    def test_no_pages_is_skipped(self, create_site):
        site = create_site()
        completion = FakeCompletion()
        services = make_services(completion=completion)

        result = generate_recommendations(make_context(site, services), services, {})

        assert result.status == 'skipped'
        assert result.reason == 'no_pages'
        assert completion.calls == []

    def test_prompt_is_bounded_to_top_pages(self, create_site, create_page, settings):
        settings.OPTIMIZER_MAX_PROMPT_PAGES = 3
        site = create_site()
        for i in range(6):
            create_page(site, f'p{i}', clicks_28d=i * 10)
        completion = FakeCompletion([{'recommendations': []}])
        services = make_services(completion=completion)

        result = generate_recommendations(make_context(site, services), services, {})

        assert result.get('pages_analyzed') == 3
        prompt = completion.calls[0][1]
        assert '/p5' in prompt and '/p3' in prompt
        assert '/p2' not in prompt


# ─────────────────────────────────────────────────────────────
# Policy
# ─────────────────────────────────────────────────────────────

class TestPolicy:

    def make_settings(self, **overrides):
        values = dict(allowed_change_types=['title', 'meta_description'], confidence_threshold=80,
                      high_traffic_threshold=1000, max_daily_changes=10)
        values.update(overrides)
        return AutopilotSettings(**values)

    def test_change_type_resolution(self):
        assert policy.change_type_for('h1', 'content') == 'h1'
        assert policy.change_type_for('', 'title') == 'title'
        assert policy.change_type_for(None, 'meta') == 'meta_description'
        assert policy.change_type_for('', 'content') is None

    def test_disallowed_type_is_not_admitted(self):
        decision = policy.evaluate_admission('h1', 95, 10, self.make_settings())
        assert not decision.admitted
        assert decision.reason == 'change_type_not_allowed'

    def test_h1_admitted_once_allowed(self):
        decision = policy.evaluate_admission('h1', 95, 10, self.make_settings(allowed_change_types=['h1']))
        assert decision.admitted
        assert not decision.requires_approval

    def test_high_traffic_requires_approval(self):
        decision = policy.evaluate_admission('title', 99, 1001, self.make_settings())
        assert decision.is_high_traffic
        assert decision.requires_approval

    def test_traffic_at_threshold_is_not_high(self):
        decision = policy.evaluate_admission('title', 99, 1000, self.make_settings())
        assert not decision.is_high_traffic
        assert not decision.requires_approval

    def test_low_confidence_requires_approval(self):
        assert policy.evaluate_admission('title', 79, 0, self.make_settings()).requires_approval
        assert not policy.evaluate_admission('title', 80, 0, self.make_settings()).requires_approval

    def test_apply_gate_rejects_below_threshold(self):
        item = QueueItem(ai_confidence=79, requires_approval=False, status='approved')
        with pytest.raises(PolicyViolation) as exc:
            policy.check_apply_gate(item, self.make_settings())
        assert exc.value.reason == 'below_confidence_threshold'

    def test_apply_gate_requires_approval_when_flagged(self):
        item = QueueItem(ai_confidence=95, requires_approval=True, status='pending')
        with pytest.raises(PolicyViolation) as exc:
            policy.check_apply_gate(item, self.make_settings())
        assert exc.value.reason == 'awaiting_approval'

        item.status = 'approved'
        policy.check_apply_gate(item, self.make_settings())

    def test_should_revert(self):
        assert policy.should_revert(100, 79, 20)
        assert not policy.should_revert(100, 80, 20)
        assert not policy.should_revert(0, 0, 20)
        assert not policy.should_revert(100, None, 20)


# ─────────────────────────────────────────────────────────────
# Queue state machine
# ─────────────────────────────────────────────────────────────

@pytest.mark.django_db
class TestQueueStateMachine:

    def test_confidence_one_below_threshold_never_auto_applies(self, create_site, create_queue_item, fake_services):
        site = create_site()
        autopilot = enable_autopilot(site, confidence_threshold=80)
        item = create_queue_item(site, confidence=79)

        with pytest.raises(PolicyViolation):
            queue.apply_item(item.id, fake_services, autopilot)

        item.refresh_from_db()
        assert item.status == 'pending'
        assert fake_services.publisher.published == []

    def test_confidence_at_threshold_auto_applies(self, create_site, create_page, create_queue_item, fake_services):
        site = create_site()
        page = create_page(site, 'home', clicks_28d=120)
        autopilot = enable_autopilot(site, confidence_threshold=80)
        item = create_queue_item(site, confidence=80, page=page)

        queue.apply_item(item.id, fake_services, autopilot)

        item.refresh_from_db()
        assert item.status == 'applied'
        assert item.applied_at == NOW
        assert item.applied_by == 'autopilot'
        assert item.baseline_clicks == 120
        assert item.monitor_until == NOW + timedelta(days=14)
        assert fake_services.publisher.published == [item.id]

    def test_daily_cap_applies_exactly_n(self, create_site, create_queue_item, fake_services):
        site = create_site()
        autopilot = enable_autopilot(site, max_daily_changes=3)
        items = [create_queue_item(site) for _ in range(4)]

        applied = capped = 0
        for item in items:
            try:
                queue.apply_item(item.id, fake_services, autopilot)
                applied += 1
            except DailyCapReached:
                capped += 1

        assert applied == 3
        assert capped == 1
        assert QueueItem.objects.filter(site=site, status='applied').count() == 3
        assert QueueItem.objects.filter(site=site, status='pending').count() == 1
        assert queue.applied_today(site.id, NOW.date()) == 3

    def test_cap_resets_at_midnight(self, create_site, create_queue_item):
        site = create_site()
        autopilot = enable_autopilot(site, max_daily_changes=1)
        first, second = create_queue_item(site), create_queue_item(site)
        today = make_services(clock=lambda: NOW.replace(hour=23, minute=59))
        tomorrow = make_services(clock=lambda: NOW.replace(hour=0, minute=1) + timedelta(days=1))

        queue.apply_item(first.id, today, autopilot)
        with pytest.raises(DailyCapReached):
            queue.apply_item(second.id, today, autopilot)
        queue.apply_item(second.id, tomorrow, autopilot)

        second.refresh_from_db()
        assert second.status == 'applied'

    def test_cap_is_per_site(self, create_site, create_queue_item, fake_services):
        site_a = create_site(name='A', url='https://a.com')
        site_b = create_site(name='B', url='https://b.com')
        autopilot_a = enable_autopilot(site_a, max_daily_changes=1)
        autopilot_b = enable_autopilot(site_b, max_daily_changes=1)

        queue.apply_item(create_queue_item(site_a).id, fake_services, autopilot_a)
        queue.apply_item(create_queue_item(site_b).id, fake_services, autopilot_b)

        assert QueueItem.objects.filter(status='applied').count() == 2

    def test_reserve_daily_slot_stops_at_cap(self, create_site):
        site = create_site()
        day = NOW.date()
        assert queue.reserve_daily_slot(site.id, day, 2)
        assert queue.reserve_daily_slot(site.id, day, 2)
        assert not queue.reserve_daily_slot(site.id, day, 2)
        assert queue.applied_today(site.id, day) == 2

    def test_publish_failure_rolls_back_slot(self, create_site, create_queue_item):
        site = create_site()
        autopilot = enable_autopilot(site, max_daily_changes=1)
        item = create_queue_item(site)
        services = make_services(publisher=FakePublisher(fail=True))

        with pytest.raises(ChangePublishError):
            queue.apply_item(item.id, services, autopilot)

        item.refresh_from_db()
        assert item.status == 'pending'
        assert queue.applied_today(site.id, NOW.date()) == 0

    def test_manual_apply_bypasses_gates_but_not_cap(self, create_site, create_queue_item, fake_services):
        site = create_site()
        autopilot = enable_autopilot(site, max_daily_changes=1, confidence_threshold=80)
        risky = create_queue_item(site, confidence=10, requires_approval=True)
        another = create_queue_item(site, confidence=10, requires_approval=True)

        queue.apply_item(risky.id, fake_services, autopilot, manual=True, actor='admin@example.com')
        with pytest.raises(DailyCapReached):
            queue.apply_item(another.id, fake_services, autopilot, manual=True, actor='admin@example.com')

        risky.refresh_from_db()
        assert risky.status == 'applied'
        assert risky.applied_by == 'admin@example.com'
        another.refresh_from_db()
        assert another.status == 'pending'

    def test_approved_item_passes_automatic_gate(self, create_site, create_queue_item, fake_services):
        site = create_site()
        autopilot = enable_autopilot(site)
        item = create_queue_item(site, confidence=95, requires_approval=True)

        with pytest.raises(PolicyViolation):
            queue.apply_item(item.id, fake_services, autopilot)
        queue.approve(item.id, 'admin@example.com')
        queue.apply_item(item.id, fake_services, autopilot)

        item.refresh_from_db()
        assert item.status == 'applied'
        assert item.approved_by == 'admin@example.com'

    def test_reject_marks_recommendation_rejected(self, create_site, create_queue_item):
        from seo.models import Recommendation
        site = create_site()
        rec = Recommendation.objects.create(site=site, category='title', title='Rewrite title')
        item = create_queue_item(site, recommendation=rec)

        queue.reject(item.id, 'admin@example.com')

        item.refresh_from_db()
        rec.refresh_from_db()
        assert item.status == 'rejected'
        assert rec.status == 'rejected'

    @pytest.mark.parametrize('status, action', [
        ('rejected', 'approve'),
        ('rejected', 'apply'),
        ('applied', 'reject'),
        ('applied', 'approve'),
        ('approved', 'reject'),
        ('reverted', 'apply'),
    ])
    def test_invalid_transitions(self, create_site, create_queue_item, fake_services, status, action):
        site = create_site()
        autopilot = enable_autopilot(site)
        item = create_queue_item(site, status=status)

        with pytest.raises(InvalidTransition):
            if action == 'approve':
                queue.approve(item.id, 'admin@example.com')
            elif action == 'reject':
                queue.reject(item.id, 'admin@example.com')
            else:
                queue.apply_item(item.id, fake_services, autopilot, manual=True)

        item.refresh_from_db()
        assert item.status == status

    def test_admission_is_idempotent(self, create_site, create_page):
        from seo.models import Recommendation
        site = create_site()
        page = create_page(site, 'home')
        autopilot = enable_autopilot(site)
        rec = Recommendation.objects.create(site=site, page=page, category='title', title='Rewrite',
                                            suggested_value='New', confidence=90, auto_fixable=True,
                                            field_name='title')

        decision, item = queue.admit(rec, autopilot, page=page)
        again, duplicate = queue.admit(rec, autopilot, page=page)

        assert decision.admitted and item is not None
        assert again.reason == 'already_queued' and duplicate is None
        assert QueueItem.objects.filter(recommendation=rec).count() == 1
        rec.refresh_from_db()
        assert rec.status == 'auto_approved'

    def test_recommendation_without_page_is_not_admitted(self, create_site):
        from seo.models import Recommendation
        site = create_site()
        autopilot = enable_autopilot(site)
        rec = Recommendation.objects.create(site=site, category='title', title='Retitle everything',
                                            suggested_value='New', confidence=95, auto_fixable=True,
                                            field_name='title')

        decision, item = queue.admit(rec, autopilot, page=None)

        assert not decision.admitted
        assert decision.reason == 'no_target_page'
        assert item is None
        assert not QueueItem.objects.filter(recommendation=rec).exists()
        rec.refresh_from_db()
        assert rec.status == 'pending'
        assert item.old_value == 'Page home'


# ─────────────────────────────────────────────────────────────
# Auto-revert monitor
# ─────────────────────────────────────────────────────────────

@pytest.mark.django_db
class TestAutoRevertMonitor:

    def applied_item(self, site, page, create_queue_item, applied_days_ago=5, window_days_left=9, baseline=100):
        return create_queue_item(
            site, page=page, status='applied',
            applied_at=NOW - timedelta(days=applied_days_ago),
            monitor_until=NOW + timedelta(days=window_days_left),
            baseline_clicks=baseline,
        )

    def test_reverts_when_drop_exceeds_threshold(self, create_site, create_page, create_queue_item, fake_services):
        from seo.models import Alert
        site = create_site()
        enable_autopilot(site, auto_revert_threshold=20)
        page = create_page(site, 'home', clicks_28d=70)
        item = self.applied_item(site, page, create_queue_item)

        outcome = monitor_applied_changes(fake_services, now=NOW)

        assert outcome == {'checked': 1, 'reverted': 1, 'failed': 0}
        item.refresh_from_db()
        assert item.status == 'reverted'
        assert item.reverted_at == NOW
        assert '30.0%' in item.revert_reason
        assert fake_services.publisher.reverted == [item.id]
        alert = Alert.objects.get(site=site, alert_type='autopilot_reverted')
        assert alert.severity == 'warning'

    def test_small_drop_is_kept(self, create_site, create_page, create_queue_item, fake_services):
        site = create_site()
        enable_autopilot(site, auto_revert_threshold=20)
        page = create_page(site, 'home', clicks_28d=80)
        item = self.applied_item(site, page, create_queue_item)

        monitor_applied_changes(fake_services, now=NOW)

        item.refresh_from_db()
        assert item.status == 'applied'

    def test_not_checked_before_settle_period(self, create_site, create_page, create_queue_item, fake_services):
        site = create_site()
        page = create_page(site, 'home', clicks_28d=10)
        item = self.applied_item(site, page, create_queue_item, applied_days_ago=1)

        outcome = monitor_applied_changes(fake_services, now=NOW)

        assert outcome['checked'] == 0
        item.refresh_from_db()
        assert item.status == 'applied'

    def test_not_checked_after_window_closes(self, create_site, create_page, create_queue_item, fake_services):
        site = create_site()
        page = create_page(site, 'home', clicks_28d=10)
        item = self.applied_item(site, page, create_queue_item, applied_days_ago=20, window_days_left=-6)

        monitor_applied_changes(fake_services, now=NOW)

        item.refresh_from_db()
        assert item.status == 'applied'

    def test_publish_failure_keeps_item_applied(self, create_site, create_page, create_queue_item):
        site = create_site()
        page = create_page(site, 'home', clicks_28d=10)
        item = self.applied_item(site, page, create_queue_item)
        services = make_services(publisher=FakePublisher(fail=True))

        outcome = monitor_applied_changes(services, now=NOW)

        assert outcome['failed'] == 1
        item.refresh_from_db()
        assert item.status == 'applied'
        assert item.last_error == 'HTTP 500'

    def test_no_alert_when_revert_notifications_off(self, create_site, create_page, create_queue_item, fake_services):
        from seo.models import Alert
        site = create_site()
        enable_autopilot(site, notify_on_revert=False)
        page = create_page(site, 'home', clicks_28d=10)
        self.applied_item(site, page, create_queue_item)

        monitor_applied_changes(fake_services, now=NOW)

        assert not Alert.objects.filter(site=site).exists()


# ─────────────────────────────────────────────────────────────
# Orchestrator
# ─────────────────────────────────────────────────────────────

@pytest.mark.django_db
class TestOrchestrator:

    def test_runs_stages_in_order_and_completes(self, create_site, fake_services):
        site = create_site()

        run_id = Orchestrator(fake_services).start_run(site.id, 'full')

        run = OptimizationRun.objects.get(pk=run_id)
        assert run.status == 'completed'
        assert run.completed_at == NOW
        assert list(run.results['modules']) == [name for name, _ in PIPELINE]
        assert run.results['modules']['autopilot'] == {
            'status': 'skipped', 'reason': 'autopilot_disabled', 'applied': 0,
        }
        assert run.results['modules']['summary']['source'] == 'fallback'

    def test_stage_exception_is_isolated(self, create_site, create_page):
        site = create_site()
        create_page(site, 'home')
        services = make_services(completion=FakeCompletion(error=RuntimeError('provider exploded')))

        run_id = Orchestrator(services).start_run(site.id)

        run = OptimizationRun.objects.get(pk=run_id)
        assert run.status == 'completed'
        modules = run.results['modules']
        assert modules['recommendations']['status'] == 'error'
        assert modules['recommendations']['error'] == 'provider exploded'
        assert modules['decay']['status'] == 'ok'
        assert modules['alerts']['status'] == 'ok'

    def test_every_stage_failing_still_completes(self, create_site, fake_services):
        site = create_site()

        def explode(ctx, services, results):
            raise ValueError('nope')

        pipeline = tuple((name, explode) for name, _ in PIPELINE)
        run_id = Orchestrator(fake_services, pipeline=pipeline).start_run(site.id)

        run = OptimizationRun.objects.get(pk=run_id)
        assert run.status == 'completed'
        assert {m['status'] for m in run.results['modules'].values()} == {'error'}
        assert run.recommendations_generated == 0

    def test_stage_returning_wrong_type_is_an_error(self, create_site, fake_services):
        site = create_site()
        pipeline = (('knowledge', lambda ctx, services, results: {'status': 'ok'}),)

        run_id = Orchestrator(fake_services, pipeline=pipeline).start_run(site.id)

        run = OptimizationRun.objects.get(pk=run_id)
        assert run.status == 'completed'
        assert run.results['modules']['knowledge']['status'] == 'error'

    def test_stages_see_earlier_results(self, create_site, fake_services):
        site = create_site()
        seen = {}

        def first(ctx, services, results):
            return ModuleResult.ok(value=1)

        def second(ctx, services, results):
            seen.update(results)
            return ModuleResult.ok()

        Orchestrator(fake_services, pipeline=(('first', first), ('second', second))).start_run(site.id)

        assert list(seen) == ['first']
        assert seen['first'].get('value') == 1

    def test_missing_site_ends_run_in_error(self, fake_services):
        with pytest.raises(SiteNotFound) as exc:
            Orchestrator(fake_services).start_run(999999)

        run = OptimizationRun.objects.get(pk=exc.value.run_id)
        assert run.status == 'error'
        assert run.error_message == 'Site not found: 999999'
        assert run.results == {}
        assert fake_services.completion.calls == []

    def test_terminal_run_is_not_overwritten(self, create_site, fake_services):
        site = create_site()
        run = OptimizationRun.objects.create(site=site, mode='full', status='running', started_at=NOW)

        assert run.mark_error('abandoned', NOW)
        assert not run.mark_completed({'modules': {}}, NOW)
        assert not run.save_progress({'modules': {'x': {}}})

        run.refresh_from_db()
        assert run.status == 'error'
        assert run.results == {}

    def test_rerun_creates_independent_run(self, create_site, fake_services):
        site = create_site()
        orchestrator = Orchestrator(fake_services)

        first = orchestrator.start_run(site.id)
        second = orchestrator.start_run(site.id)

        assert first != second
        assert OptimizationRun.objects.filter(site=site, status='completed').count() == 2

    def test_invalid_mode_is_rejected(self, create_site, fake_services):
        site = create_site()
        with pytest.raises(ValueError):
            Orchestrator(fake_services).start_run(site.id, 'turbo')
        assert not OptimizationRun.objects.exists()

    def scenario(self, create_site, create_page):
        site = create_site()
        pages = []
        for i in range(20):
            if i < 6:
                pages.append(create_page(site, f'page-{i}', clicks_28d=40, clicks_prev_28d=100))
            else:
                pages.append(create_page(site, f'page-{i}', clicks_28d=100 - i, clicks_prev_28d=100 - i))
        enable_autopilot(site, confidence_threshold=80, max_daily_changes=2)
        response = {'recommendations': [
            rec_item(pages[7].url, 'Sharpen the title', confidence=85),
            rec_item(pages[8].url, 'Write a meta description', category='meta', field='meta_description',
                     confidence=90),
            rec_item(pages[9].url, 'Try a longer title', confidence=70),
        ]}
        return site, response

    def test_end_to_end_full_run(self, create_site, create_page):
        from seo.models import Alert, Page, Recommendation
        site, response = self.scenario(create_site, create_page)
        publisher = FakePublisher()
        services = make_services(completion=FakeCompletion([response]), publisher=publisher)

        run_id = Orchestrator(services).start_run(site.id, 'full')

        run = OptimizationRun.objects.get(pk=run_id)
        assert run.status == 'completed'
        assert run.recommendations_generated == 3
        assert run.auto_applied == 2
        assert run.alerts_raised == 1
        assert Page.objects.filter(site=site, is_decaying=True, decay_severity='critical').count() == 6

        applied = QueueItem.objects.filter(site=site, status='applied')
        assert sorted(i.ai_confidence for i in applied) == [85, 90]
        assert len(publisher.published) == 2
        held = QueueItem.objects.get(site=site, status='pending')
        assert held.ai_confidence == 70
        assert held.requires_approval

        assert Alert.objects.filter(site=site, alert_type='content_decay', severity='high').count() == 1
        assert Alert.objects.filter(site=site, alert_type='autopilot_applied').count() == 1
        assert Recommendation.objects.filter(site=site, status='applied').count() == 2
        assert Recommendation.objects.get(site=site, title='Try a longer title').status == 'pending'
        assert run.results['modules']['autopilot']['held'] == {'below_confidence_threshold': 1}

    def test_end_to_end_quick_run_skips_autopilot(self, create_site, create_page):
        site, response = self.scenario(create_site, create_page)
        services = make_services(completion=FakeCompletion([response]))

        run_id = Orchestrator(services).start_run(site.id, 'quick')

        run = OptimizationRun.objects.get(pk=run_id)
        assert run.status == 'completed'
        assert run.auto_applied == 0
        assert run.results['modules']['autopilot'] == {'status': 'skipped', 'reason': 'quick_mode'}
        assert not QueueItem.objects.filter(site=site).exists()
        assert services.publisher.published == []

    def test_cap_defers_extra_eligible_items(self, create_site, create_page):
        site = create_site()
        pages = [create_page(site, f'p{i}', clicks_28d=100 - i) for i in range(3)]
        enable_autopilot(site, max_daily_changes=2)
        response = {'recommendations': [
            rec_item(p.url, f'Title fix {i}', confidence=95) for i, p in enumerate(pages)
        ]}
        services = make_services(completion=FakeCompletion([response]))

        run_id = Orchestrator(services).start_run(site.id)

        run = OptimizationRun.objects.get(pk=run_id)
        assert run.auto_applied == 2
        assert run.results['modules']['autopilot']['deferred_by_cap'] == 1
        assert QueueItem.objects.filter(site=site, status='pending').count() == 1

    def test_failure_after_apply_keeps_published_changes(self, create_site, create_page, monkeypatch):
        from seo.models import Recommendation
        site = create_site()
        pages = [create_page(site, f'p{i}', clicks_28d=100 - i) for i in range(3)]
        enable_autopilot(site, max_daily_changes=2)
        response = {'recommendations': [
            rec_item(p.url, f'Title fix {i}', confidence=95) for i, p in enumerate(pages)
        ]}

        def broken_alert(*args, **kwargs):
            raise RuntimeError('alert store down')

        monkeypatch.setattr('optimizer.modules.autopilot.raise_alert', broken_alert)
        publisher = FakePublisher()

        runs = [
            Orchestrator(make_services(completion=FakeCompletion([response]), publisher=publisher)).start_run(site.id)
            for _ in range(2)
        ]
        first = runs[0]

        run = OptimizationRun.objects.get(pk=first)
        assert run.results['modules']['autopilot']['status'] == 'error'
        assert len(publisher.published) == 2
        assert QueueItem.objects.filter(site=site, status='applied').count() == 2
        assert queue.applied_today(site.id, NOW.date()) == 2
        assert Recommendation.objects.filter(site=site, status='applied').count() == 2

    def test_time_limit_inside_stage_stops_the_run(self, create_site, fake_services):
        site = create_site()
        reached = []

        def slow(ctx, services, results):
            raise SoftTimeLimitExceeded()

        def after(ctx, services, results):
            reached.append('after')
            return ModuleResult.ok()

        pipeline = (('rankings', slow), ('decay', after))
        with pytest.raises(SoftTimeLimitExceeded):
            Orchestrator(fake_services, pipeline=pipeline).start_run(site.id)

        assert reached == []
        assert OptimizationRun.objects.get(site=site).status == 'running'

    def test_sitewide_recommendation_is_never_auto_applied(self, create_site, create_page):
        site = create_site()
        create_page(site, 'home')
        enable_autopilot(site)
        response = {'recommendations': [rec_item('https://elsewhere.com/x', 'Retitle everything', confidence=95)]}
        services = make_services(completion=FakeCompletion([response]))

        run_id = Orchestrator(services).start_run(site.id)

        run = OptimizationRun.objects.get(pk=run_id)
        assert run.results['modules']['autopilot']['not_admitted'] == {'no_target_page': 1}
        assert run.auto_applied == 0
        assert not QueueItem.objects.filter(site=site).exists()
        assert services.publisher.published == []


# ─────────────────────────────────────────────────────────────
# HTTP API
# ─────────────────────────────────────────────────────────────

@pytest.mark.django_db
class TestTriggerAPI:

    def test_missing_site_id(self, authenticated_client):
        client, _ = authenticated_client
        response = client.post('/api/v1/optimize/', data={'mode': 'full'}, format='json')
        assert response.status_code == 400
        assert response.data == {'error': 'siteId required'}

    def test_invalid_mode(self, authenticated_client, create_site):
        client, user = authenticated_client
        site = create_site(user=user)
        response = client.post('/api/v1/optimize/', data={'siteId': site.id, 'mode': 'turbo'}, format='json')
        assert response.status_code == 400

    def test_unknown_site(self, authenticated_client):
        client, _ = authenticated_client
        response = client.post('/api/v1/optimize/', data={'siteId': 424242}, format='json')
        assert response.status_code == 404
        assert response.data['error']['code'] == 'SITE_NOT_FOUND'

    def test_other_users_site(self, authenticated_client, create_site, create_user):
        client, _ = authenticated_client
        site = create_site(user=create_user(email='other@example.com'))
        response = client.post('/api/v1/optimize/', data={'siteId': site.id}, format='json')
        assert response.status_code == 403

    def test_requires_authentication(self, api_client, create_site):
        site = create_site()
        response = api_client.post('/api/v1/optimize/', data={'siteId': site.id}, format='json')
        assert response.status_code == 401

    def test_accepted_run_executes_in_background(self, authenticated_client, create_site, monkeypatch,
                                                 django_capture_on_commit_callbacks):
        client, user = authenticated_client
        site = create_site(user=user)
        monkeypatch.setattr('optimizer.tasks.default_services', lambda: make_services())

        with django_capture_on_commit_callbacks(execute=True):
            response = client.post('/api/v1/optimize/', data={'siteId': str(site.id), 'mode': 'quick'},
                                   format='json')

        assert response.status_code == 202
        assert response.data['success'] is True
        assert response.data['mode'] == 'quick'
        assert response.data['message'] == 'Auto-optimization started'
        run = OptimizationRun.objects.get(pk=response.data['run_id'])
        assert run.status == 'completed'
        assert run.mode == 'quick'

    def test_default_mode_is_full(self, authenticated_client, create_site):
        client, user = authenticated_client
        site = create_site(user=user)
        response = client.post('/api/v1/optimize/', data={'siteId': site.id}, format='json')
        assert response.status_code == 202
        assert response.data['mode'] == 'full'

    def test_run_in_progress_conflicts(self, authenticated_client, create_site):
        from django.utils import timezone
        client, user = authenticated_client
        site = create_site(user=user)
        live = OptimizationRun.objects.create(site=site, status='running', started_at=timezone.now())

        response = client.post('/api/v1/optimize/', data={'siteId': site.id}, format='json')

        assert response.status_code == 409
        assert response.data['error']['detail'] == {'run_id': str(live.id)}
        assert OptimizationRun.objects.filter(site=site).count() == 1

    def test_abandoned_run_is_closed_out(self, authenticated_client, create_site):
        from django.utils import timezone
        client, user = authenticated_client
        site = create_site(user=user)
        stale = OptimizationRun.objects.create(site=site, status='running',
                                               started_at=timezone.now() - timedelta(hours=2))

        response = client.post('/api/v1/optimize/', data={'siteId': site.id}, format='json')

        assert response.status_code == 202
        stale.refresh_from_db()
        assert stale.status == 'error'
        assert 'Abandoned' in stale.error_message


@pytest.mark.django_db
class TestRunAPI:

    def test_list_runs(self, authenticated_client, create_site):
        client, user = authenticated_client
        site = create_site(user=user)
        OptimizationRun.objects.create(site=site, status='completed', started_at=NOW - timedelta(days=1))
        newest = OptimizationRun.objects.create(site=site, status='completed', started_at=NOW)

        response = client.get(f'/api/v1/optimize/runs/?site_id={site.id}')

        assert response.status_code == 200
        assert response.data['meta']['total'] == 2
        assert response.data['data'][0]['id'] == str(newest.id)

    def test_list_requires_site_id(self, authenticated_client):
        client, _ = authenticated_client
        response = client.get('/api/v1/optimize/runs/')
        assert response.status_code == 400

    def test_run_detail_includes_module_results(self, authenticated_client, create_site):
        client, user = authenticated_client
        site = create_site(user=user)
        run = OptimizationRun.objects.create(site=site, status='completed', started_at=NOW,
                                             results={'modules': {'decay': {'status': 'ok'}}})

        response = client.get(f'/api/v1/optimize/runs/{run.id}/')

        assert response.status_code == 200
        assert response.data['data']['results']['modules']['decay']['status'] == 'ok'

    def test_run_detail_other_user(self, authenticated_client, create_site, create_user):
        client, _ = authenticated_client
        site = create_site(user=create_user(email='other@example.com'))
        run = OptimizationRun.objects.create(site=site, status='completed', started_at=NOW)
        response = client.get(f'/api/v1/optimize/runs/{run.id}/')
        assert response.status_code == 403

    @pytest.mark.parametrize('per_page', ['0', '-5'])
    def test_list_runs_clamps_per_page(self, authenticated_client, create_site, per_page):
        client, user = authenticated_client
        site = create_site(user=user)
        OptimizationRun.objects.create(site=site, status='completed', started_at=NOW)

        response = client.get(f'/api/v1/optimize/runs/?site_id={site.id}&per_page={per_page}')

        assert response.status_code == 200
        assert response.data['meta']['per_page'] == 1
        assert len(response.data['data']) == 1


@pytest.mark.django_db
class TestAutopilotAPI:

    def test_settings_created_with_defaults(self, authenticated_client, create_site):
        client, user = authenticated_client
        site = create_site(user=user)

        response = client.get(f'/api/v1/sites/{site.id}/autopilot/settings/')

        assert response.status_code == 200
        data = response.data['data']
        assert data['enabled'] is False
        assert data['allowed_change_types'] == ['title', 'meta_description']
        assert data['confidence_threshold'] == 80
        assert data['max_daily_changes'] == 10
        assert data['high_traffic_threshold'] == 1000
        assert data['auto_revert_threshold'] == 20
        assert data['notify_on_apply'] is True
        assert data['notify_on_revert'] is True

    def test_update_settings(self, authenticated_client, create_site):
        client, user = authenticated_client
        site = create_site(user=user)

        response = client.put(
            f'/api/v1/sites/{site.id}/autopilot/settings/',
            data={'enabled': True, 'max_daily_changes': 3, 'allowed_change_types': ['title', 'h1', 'title']},
            format='json',
        )

        assert response.status_code == 200
        settings_obj = AutopilotSettings.objects.get(site=site)
        assert settings_obj.enabled
        assert settings_obj.max_daily_changes == 3
        assert settings_obj.allowed_change_types == ['title', 'h1']

    @pytest.mark.parametrize('payload', [
        {'max_daily_changes': 0},
        {'confidence_threshold': 101},
        {'allowed_change_types': ['title', 'canonical']},
    ])
    def test_invalid_settings(self, authenticated_client, create_site, payload):
        client, user = authenticated_client
        site = create_site(user=user)
        response = client.put(f'/api/v1/sites/{site.id}/autopilot/settings/', data=payload, format='json')
        assert response.status_code == 400
        assert response.data['error']['code'] == 'VALIDATION_ERROR'

    def test_queue_list_filters_by_status(self, authenticated_client, create_site, create_queue_item):
        client, user = authenticated_client
        site = create_site(user=user)
        create_queue_item(site, status='pending')
        create_queue_item(site, status='approved')
        create_queue_item(site, status='rejected')

        response = client.get(f'/api/v1/sites/{site.id}/autopilot/queue/?status=pending,approved')

        assert response.status_code == 200
        assert {i['status'] for i in response.data['data']} == {'pending', 'approved'}
        assert response.data['meta']['by_status'] == {'pending': 1, 'approved': 1, 'rejected': 1}

    def test_approve_and_reject(self, authenticated_client, create_site, create_queue_item):
        client, user = authenticated_client
        site = create_site(user=user)
        to_approve = create_queue_item(site)
        to_reject = create_queue_item(site)

        approved = client.post(f'/api/v1/sites/{site.id}/autopilot/queue/{to_approve.id}/approve/')
        rejected = client.post(f'/api/v1/sites/{site.id}/autopilot/queue/{to_reject.id}/reject/')

        assert approved.status_code == 200
        assert approved.data['data']['status'] == 'approved'
        assert approved.data['data']['approved_by'] == user.email
        assert rejected.data['data']['status'] == 'rejected'

    def test_invalid_transition_conflicts(self, authenticated_client, create_site, create_queue_item):
        client, user = authenticated_client
        site = create_site(user=user)
        item = create_queue_item(site, status='rejected')

        response = client.post(f'/api/v1/sites/{site.id}/autopilot/queue/{item.id}/approve/')

        assert response.status_code == 409
        assert response.data['error']['code'] == 'INVALID_TRANSITION'

    def test_apply_now(self, authenticated_client, create_site, create_queue_item, monkeypatch):
        client, user = authenticated_client
        site = create_site(user=user)
        item = create_queue_item(site, confidence=20, requires_approval=True)
        services = make_services()
        monkeypatch.setattr('optimizer.views.default_services', lambda: services)

        response = client.post(f'/api/v1/sites/{site.id}/autopilot/queue/{item.id}/apply/')

        assert response.status_code == 200
        assert response.data['data']['status'] == 'applied'
        assert response.data['data']['applied_by'] == user.email
        assert services.publisher.published == [item.id]

    def test_apply_now_respects_daily_cap(self, authenticated_client, create_site, create_queue_item, monkeypatch):
        client, user = authenticated_client
        site = create_site(user=user)
        enable_autopilot(site, max_daily_changes=1)
        first, second = create_queue_item(site), create_queue_item(site)
        monkeypatch.setattr('optimizer.views.default_services', lambda: make_services())

        client.post(f'/api/v1/sites/{site.id}/autopilot/queue/{first.id}/apply/')
        response = client.post(f'/api/v1/sites/{site.id}/autopilot/queue/{second.id}/apply/')

        assert response.status_code == 409
        assert response.data['error']['code'] == 'DAILY_CAP_REACHED'
        second.refresh_from_db()
        assert second.status == 'pending'

    def test_apply_now_publish_failure(self, authenticated_client, create_site, create_queue_item, monkeypatch):
        client, user = authenticated_client
        site = create_site(user=user)
        item = create_queue_item(site)
        monkeypatch.setattr('optimizer.views.default_services',
                            lambda: make_services(publisher=FakePublisher(fail=True)))

        response = client.post(f'/api/v1/sites/{site.id}/autopilot/queue/{item.id}/apply/')

        assert response.status_code == 502
        item.refresh_from_db()
        assert item.status == 'pending'
        assert item.last_error == 'HTTP 500'

    def test_queue_item_of_other_site_is_not_found(self, authenticated_client, create_site, create_queue_item):
        client, user = authenticated_client
        site = create_site(user=user)
        other_site = create_site(user=user, name='Second', url='https://second.com')
        item = create_queue_item(other_site)

        response = client.post(f'/api/v1/sites/{site.id}/autopilot/queue/{item.id}/approve/')

        assert response.status_code == 404

    def test_settings_of_other_user(self, authenticated_client, create_site, create_user):
        client, _ = authenticated_client
        site = create_site(user=create_user(email='other@example.com'))
        response = client.get(f'/api/v1/sites/{site.id}/autopilot/settings/')
        assert response.status_code == 403


@pytest.mark.django_db
class TestScheduledTasks:

    def test_schedule_dispatches_enabled_sites_only(self, create_site):
        from optimizer.tasks import schedule_optimization_runs
        enabled = create_site(name='On', url='https://on.com')
        create_site(name='Off', url='https://off.com')
        enable_autopilot(enabled)

        outcome = schedule_optimization_runs()

        assert outcome['sites_queued'] == 1
        assert OptimizationRun.objects.filter(site=enabled, status='running').count() == 1

    def test_schedule_skips_sites_with_live_run(self, create_site):
        from django.utils import timezone
        from optimizer.tasks import schedule_optimization_runs
        site = create_site()
        enable_autopilot(site)
        OptimizationRun.objects.create(site=site, status='running', started_at=timezone.now())

        outcome = schedule_optimization_runs()

        assert outcome['sites_queued'] == 0
        assert outcome['sites_skipped'] == 1

    def test_execute_run_ignores_finished_run(self, create_site):
        from optimizer.tasks import execute_run
        site = create_site()
        run = OptimizationRun.objects.create(site=site, status='completed', started_at=NOW)

        outcome = execute_run(str(run.id))

        assert outcome['skipped'] is True

    def test_execute_run_time_limit_marks_run_error(self, create_site, monkeypatch):
        from optimizer.tasks import execute_run

        class SlowKnowledgeStore(FakeKnowledgeStore):
            def flag_for_retraining(self, site_id):
                raise SoftTimeLimitExceeded()

        monkeypatch.setattr('optimizer.tasks.default_services',
                            lambda: make_services(knowledge=SlowKnowledgeStore(fresh=False)))
        site = create_site()
        run = OptimizationRun.objects.create(site=site, status='running', started_at=NOW)

        outcome = execute_run(str(run.id))

        assert outcome == {'error': 'Time limit exceeded', 'run_id': str(run.id)}
        run.refresh_from_db()
        assert run.status == 'error'
        assert run.error_message == 'Run exceeded the time limit'

    def test_monitor_task_uses_default_services(self, monkeypatch):
        from optimizer.tasks import monitor_applied_changes as monitor_task
        monkeypatch.setattr('optimizer.tasks.default_services', lambda: make_services())

        outcome = monitor_task()

        assert outcome['success'] is True
        assert outcome['checked'] == 0
