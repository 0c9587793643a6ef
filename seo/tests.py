"""
Tests for seo app - recommendation and alert endpoints.
"""
import pytest
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken


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
            user = create_user()
        return Site.objects.create(user=user, name=name, url=url)
    return _create_site


@pytest.fixture
def create_recommendation():
    def _create_recommendation(site, title="Rewrite the title tag", **extra):
        from seo.models import Recommendation
        values = {'category': 'title', 'priority': 'high'}
        values.update(extra)
        return Recommendation.objects.create(site=site, title=title, **values)
    return _create_recommendation


@pytest.fixture
def create_alert():
    def _create_alert(site, alert_type="content_decay", severity="high", **extra):
        from seo.models import Alert
        return Alert.objects.create(site=site, alert_type=alert_type, severity=severity,
                                    title="Pages losing traffic", **extra)
    return _create_alert


@pytest.mark.django_db
class TestPageModel:

    def test_field_value_prefers_yoast_title(self, create_site):
        from seo.models import Page
        site = create_site()
        page = Page(site=site, url='https://example.com/a', title='WP title', yoast_title='SEO title',
                    yoast_description='Desc', h1_text='Heading')

        assert page.field_value('title') == 'SEO title'
        assert page.field_value('meta_description') == 'Desc'
        assert page.field_value('h1') == 'Heading'
        assert page.field_value('schema') == ''

        page.yoast_title = ''
        assert page.field_value('title') == 'WP title'


@pytest.mark.django_db
class TestRecommendationAPI:

    def test_list_recommendations(self, authenticated_client, create_site, create_recommendation):
        client, user = authenticated_client
        site = create_site(user=user)
        create_recommendation(site, "Fix title", priority='critical')
        create_recommendation(site, "Add meta", category='meta', priority='low')
        create_recommendation(site, "Old idea", status='dismissed')

        response = client.get(f'/api/v1/recommendations/?site_id={site.id}&status=pending')

        assert response.status_code == 200
        assert response.data['meta']['total'] == 2
        assert response.data['meta']['by_status'] == {'pending': 2, 'dismissed': 1}
        assert {r['title'] for r in response.data['data']} == {"Fix title", "Add meta"}

    def test_filter_by_priority_and_category(self, authenticated_client, create_site, create_recommendation):
        client, user = authenticated_client
        site = create_site(user=user)
        create_recommendation(site, "Fix title", priority='critical')
        create_recommendation(site, "Add meta", category='meta', priority='critical')

        response = client.get(f'/api/v1/recommendations/?site_id={site.id}&priority=critical&category=meta')

        assert [r['title'] for r in response.data['data']] == ["Add meta"]

    def test_zero_per_page_returns_one_per_page(self, authenticated_client, create_site, create_recommendation):
        client, user = authenticated_client
        site = create_site(user=user)
        create_recommendation(site, "Fix title")
        create_recommendation(site, "Add meta", category='meta')

        response = client.get(f'/api/v1/recommendations/?site_id={site.id}&per_page=0')

        assert response.status_code == 200
        assert response.data['meta']['per_page'] == 1
        assert response.data['meta']['total_pages'] == 2
        assert len(response.data['data']) == 1

    def test_list_requires_site_id(self, authenticated_client):
        client, _ = authenticated_client
        response = client.get('/api/v1/recommendations/')
        assert response.status_code == 400
        assert response.data['error']['code'] == 'MISSING_PARAM'

    def test_list_other_users_site(self, authenticated_client, create_site, create_user):
        client, _ = authenticated_client
        site = create_site(user=create_user(email='other@example.com'))
        response = client.get(f'/api/v1/recommendations/?site_id={site.id}')
        assert response.status_code == 403

    def test_dismiss_pending(self, authenticated_client, create_site, create_recommendation):
        client, user = authenticated_client
        site = create_site(user=user)
        rec = create_recommendation(site)

        response = client.post(f'/api/v1/recommendations/{rec.id}/dismiss/')

        assert response.status_code == 200
        rec.refresh_from_db()
        assert rec.status == 'dismissed'
        assert rec.reviewed_at is not None

    def test_dismiss_applied_conflicts(self, authenticated_client, create_site, create_recommendation):
        client, user = authenticated_client
        site = create_site(user=user)
        rec = create_recommendation(site, status='applied')

        response = client.post(f'/api/v1/recommendations/{rec.id}/dismiss/')

        assert response.status_code == 409
        assert response.data['error']['code'] == 'INVALID_STATUS'
        rec.refresh_from_db()
        assert rec.status == 'applied'


@pytest.mark.django_db
class TestAlertAPI:

    def test_list_alerts(self, authenticated_client, create_site, create_alert):
        client, user = authenticated_client
        site = create_site(user=user)
        create_alert(site)
        create_alert(site, alert_type='pending_actions', severity='medium')
        create_alert(site, alert_type='autopilot_applied', severity='info', status='resolved')

        response = client.get(f'/api/v1/alerts/?site_id={site.id}&status=active')

        assert response.status_code == 200
        assert response.data['meta']['total'] == 2
        assert response.data['meta']['active'] == 2

    def test_filter_by_severity(self, authenticated_client, create_site, create_alert):
        client, user = authenticated_client
        site = create_site(user=user)
        create_alert(site)
        create_alert(site, alert_type='pending_actions', severity='medium')

        response = client.get(f'/api/v1/alerts/?site_id={site.id}&severity=medium')

        assert [a['alert_type'] for a in response.data['data']] == ['pending_actions']

    def test_resolve_is_idempotent(self, authenticated_client, create_site, create_alert):
        client, user = authenticated_client
        site = create_site(user=user)
        alert = create_alert(site)

        first = client.put(f'/api/v1/alerts/{alert.id}/resolve/')
        second = client.put(f'/api/v1/alerts/{alert.id}/resolve/')

        assert first.status_code == 200
        assert second.status_code == 200
        assert first.data['data']['resolved_at'] == second.data['data']['resolved_at']
        alert.refresh_from_db()
        assert alert.status == 'resolved'

    def test_resolve_other_users_alert(self, authenticated_client, create_site, create_alert, create_user):
        client, _ = authenticated_client
        site = create_site(user=create_user(email='other@example.com'))
        alert = create_alert(site)

        response = client.put(f'/api/v1/alerts/{alert.id}/resolve/')

        assert response.status_code == 403
        alert.refresh_from_db()
        assert alert.status == 'active'
