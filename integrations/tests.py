"""
Tests for integrations app - Search Console rank fetching and the WordPress change publisher.
"""
from datetime import timedelta

import pytest
import requests
from django.contrib.auth import get_user_model
from django.utils import timezone

from integrations import gsc
from integrations.wordpress_webhook import (
    APPLY_EVENT,
    REVERT_EVENT,
    ChangePublishError,
    WordPressChangePublisher,
    send_webhook_to_wordpress,
)


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=''):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError('No JSON')
        return self._payload


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
def create_site(create_user):
    def _create_site(user=None, name="Test Site", url="https://example.com", **extra):
        from sites.models import Site
        if user is None:
            user = create_user()
        return Site.objects.create(user=user, name=name, url=url, **extra)
    return _create_site


@pytest.fixture
def capture_post(monkeypatch):
    calls = []

    def _install(*responses):
        queue = list(responses)

        def fake_post(url, **kwargs):
            calls.append((url, kwargs))
            response = queue.pop(0)
            if isinstance(response, Exception):
                raise response
            return response

        monkeypatch.setattr(requests, 'post', fake_post)
        return calls
    return _install


@pytest.mark.django_db
class TestSearchConsoleRankFetcher:

    def connected_site(self, create_site, **extra):
        values = {
            'gsc_site_url': 'sc-domain:example.com',
            'gsc_access_token': 'ya29.token',
            'gsc_token_expires_at': timezone.now() + timedelta(hours=1),
        }
        values.update(extra)
        return create_site(**values)

    def test_not_connected_returns_nothing(self, create_site, capture_post):
        calls = capture_post()
        site = create_site()

        fetcher = gsc.SearchConsoleRankFetcher(timeout=5)

        assert not fetcher.is_connected(site)
        assert fetcher.fetch_positions(site, ['plumber']) == {}
        assert calls == []

    def test_positions_for_requested_keywords(self, create_site, capture_post):
        site = self.connected_site(create_site)
        calls = capture_post(FakeResponse(200, {'rows': [
            {'keys': ['Plumber Near Me'], 'clicks': 40, 'impressions': 900, 'ctr': 0.04, 'position': 3.14},
            {'keys': ['unrelated query'], 'clicks': 1, 'impressions': 10, 'ctr': 0.1, 'position': 50},
        ]}))

        positions = gsc.SearchConsoleRankFetcher(timeout=5).fetch_positions(site, ['plumber near me', 'drain'])

        assert positions == {'plumber near me': {'position': 3.1, 'clicks': 40, 'impressions': 900}}
        url, kwargs = calls[0]
        assert url.endswith('/sites/sc-domain%3Aexample.com/searchAnalytics/query')
        assert kwargs['timeout'] == 5
        assert kwargs['headers']['Authorization'] == 'Bearer ya29.token'

    def test_expired_token_is_refreshed(self, create_site, capture_post):
        site = self.connected_site(create_site, gsc_refresh_token='1//refresh',
                                   gsc_token_expires_at=timezone.now() - timedelta(minutes=1))
        calls = capture_post(
            FakeResponse(200, {'access_token': 'ya29.fresh', 'expires_in': 3600}),
            FakeResponse(200, {'rows': []}),
        )

        gsc.SearchConsoleRankFetcher(timeout=5).fetch_positions(site, ['plumber'])

        assert calls[0][0] == gsc.GOOGLE_TOKEN_URL
        site.refresh_from_db()
        assert site.gsc_access_token == 'ya29.fresh'
        assert site.gsc_token_expires_at > timezone.now()

    def test_timeout_raises_gsc_error(self, create_site, capture_post):
        site = self.connected_site(create_site)
        capture_post(requests.Timeout('read timed out'))

        with pytest.raises(gsc.GSCError):
            gsc.SearchConsoleRankFetcher(timeout=5).fetch_positions(site, ['plumber'])

    def test_http_error_raises_gsc_error(self, create_site, capture_post):
        site = self.connected_site(create_site)
        capture_post(FakeResponse(403, {'error': 'forbidden'}, text='forbidden'))

        with pytest.raises(gsc.GSCError, match='HTTP 403'):
            gsc.SearchConsoleRankFetcher(timeout=5).fetch_positions(site, ['plumber'])


@pytest.mark.django_db
class TestWordPressChangePublisher:

    def create_item(self, site):
        from optimizer.models import QueueItem
        from seo.models import Page
        page = Page.objects.create(site=site, url='https://example.com/services', title='Services',
                                   wp_post_id=42)
        return QueueItem.objects.create(site=site, page=page, change_type='title', field='title',
                                        old_value='Services', suggested_value='Plumbing Services in Austin',
                                        ai_confidence=90)

    def test_webhook_payload(self, create_site, capture_post):
        site = create_site(url='https://example.com/')
        calls = capture_post(FakeResponse(200, {'ok': True}))

        result = send_webhook_to_wordpress(site, APPLY_EVENT, {'value': 'x'})

        assert result['success'] is True
        assert result['response'] == {'ok': True}
        url, kwargs = calls[0]
        assert url == 'https://example.com/wp-json/portal/v1/webhook'
        assert kwargs['headers']['X-Portal-Event'] == APPLY_EVENT

    def test_publish_sends_suggested_value(self, create_site, capture_post):
        import json
        site = create_site()
        item = self.create_item(site)
        calls = capture_post(FakeResponse(200, {'ok': True}))

        WordPressChangePublisher().publish(site, item)

        body = json.loads(calls[0][1]['data'])
        assert body['event_type'] == APPLY_EVENT
        assert body['data']['value'] == 'Plumbing Services in Austin'
        assert body['data']['page_id'] == 42
        assert body['data']['field'] == 'title'

    def test_revert_sends_old_value(self, create_site, capture_post):
        import json
        site = create_site()
        item = self.create_item(site)
        calls = capture_post(FakeResponse(200, None))

        WordPressChangePublisher().revert(site, item)

        body = json.loads(calls[0][1]['data'])
        assert body['event_type'] == REVERT_EVENT
        assert body['data']['value'] == 'Services'

    def test_http_failure_raises(self, create_site, capture_post):
        site = create_site()
        item = self.create_item(site)
        capture_post(FakeResponse(500, None, text='Internal error'))

        with pytest.raises(ChangePublishError, match='HTTP 500'):
            WordPressChangePublisher().publish(site, item)

    def test_connection_error_raises(self, create_site, capture_post):
        site = create_site()
        item = self.create_item(site)
        capture_post(requests.ConnectionError('refused'))

        with pytest.raises(ChangePublishError, match='refused'):
            WordPressChangePublisher().publish(site, item)
