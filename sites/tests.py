"""
Tests for sites app - Site and SiteKnowledge models.
"""
import pytest
from django.contrib.auth import get_user_model
from django.db import IntegrityError


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


@pytest.mark.django_db
class TestSiteModel:

    def test_domain(self, create_site):
        site = create_site(url="https://www.acme-plumbing.com/")
        assert site.domain == "www.acme-plumbing.com"

    def test_gsc_not_connected_by_default(self, create_site):
        site = create_site()
        assert not site.gsc_connected

    def test_gsc_connected_needs_property_and_token(self, create_site):
        site = create_site(gsc_refresh_token="1//refresh")
        assert not site.gsc_connected

        site.gsc_site_url = "sc-domain:example.com"
        assert site.gsc_connected

    def test_url_unique_per_user(self, create_site, create_user):
        owner = create_user()
        create_site(user=owner, url="https://dup.com")
        create_site(user=create_user(email="other@example.com"), url="https://dup.com")

        with pytest.raises(IntegrityError):
            create_site(user=owner, url="https://dup.com")


@pytest.mark.django_db
class TestSiteKnowledge:

    def test_knowledge_defaults(self, create_site):
        from sites.models import SiteKnowledge
        site = create_site()

        knowledge = SiteKnowledge.objects.create(site=site)

        assert knowledge.training_status == 'not_started'
        assert knowledge.business_profile == {}
        assert site.knowledge == knowledge

    def test_store_returns_none_without_knowledge(self, create_site):
        from optimizer.services import DjangoKnowledgeStore
        site = create_site()
        assert DjangoKnowledgeStore().get(site.id) is None

    def test_store_returns_profile(self, create_site):
        from django.utils import timezone
        from optimizer.services import DjangoKnowledgeStore
        from sites.models import SiteKnowledge
        site = create_site()
        trained = timezone.now()
        SiteKnowledge.objects.create(site=site, business_profile={'business_name': 'Acme'},
                                     last_trained_at=trained, training_status='completed')

        knowledge = DjangoKnowledgeStore().get(site.id)

        assert knowledge['business_profile'] == {'business_name': 'Acme'}
        assert knowledge['last_trained_at'] == trained
        assert knowledge['training_status'] == 'completed'

    def test_flagging_keeps_existing_profile(self, create_site):
        from optimizer.services import DjangoKnowledgeStore
        from sites.models import SiteKnowledge
        site = create_site()
        SiteKnowledge.objects.create(site=site, business_profile={'business_name': 'Acme'},
                                     training_status='completed')

        DjangoKnowledgeStore().flag_for_retraining(site.id)

        knowledge = SiteKnowledge.objects.get(site=site)
        assert knowledge.training_status == 'needs_refresh'
        assert knowledge.business_profile == {'business_name': 'Acme'}
