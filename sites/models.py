"""
Site and SiteKnowledge models.
"""
from django.db import models
from django.conf import settings


class Site(models.Model):
    """
    Represents a customer website managed through the portal.
    One user can have multiple sites.
    """
    # Business type choices
    BUSINESS_TYPE_CHOICES = [
        ('local_service', 'Local/Service Business'),
        ('ecommerce', 'E-Commerce'),
        ('content_blog', 'Content/Blog'),
        ('saas', 'SaaS/Software'),
        ('other', 'Other'),
    ]

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='sites'
    )
    name = models.CharField(max_length=255)
    url = models.URLField(help_text="Base URL of the site")
    is_active = models.BooleanField(default=True)
    last_synced_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    # Business Profile (Onboarding Wizard)
    business_type = models.CharField(
        max_length=50,
        choices=BUSINESS_TYPE_CHOICES,
        blank=True,
        null=True,
        help_text="Type of business"
    )
    primary_services = models.JSONField(
        default=list,
        blank=True,
        help_text="List of main services/products the business offers"
    )
    service_areas = models.JSONField(
        default=list,
        blank=True,
        help_text="List of geographic areas served (for local businesses)"
    )
    business_description = models.TextField(
        blank=True,
        help_text="Brief description of the business"
    )

    # Google Search Console Integration
    gsc_site_url = models.URLField(
        blank=True,
        null=True,
        help_text="GSC property URL (e.g., https://example.com/)"
    )
    gsc_access_token = models.TextField(
        blank=True,
        null=True,
        help_text="GSC OAuth access token"
    )
    gsc_refresh_token = models.TextField(
        blank=True,
        null=True,
        help_text="GSC OAuth refresh token"
    )
    gsc_token_expires_at = models.DateTimeField(
        blank=True,
        null=True,
        help_text="When the access token expires"
    )

    class Meta:
        db_table = 'sites'
        ordering = ['-created_at']
        unique_together = [['user', 'url']]

    def __str__(self):
        return f"{self.name} ({self.url})"

    @property
    def domain(self):
        from urllib.parse import urlparse
        return urlparse(self.url).netloc or self.url

    @property
    def gsc_connected(self):
        """Search Console is usable once a property and some credential are stored."""
        return bool(self.gsc_site_url and (self.gsc_access_token or self.gsc_refresh_token))


class SiteKnowledge(models.Model):
    """
    Cached business-knowledge profile the AI works from.
    Rebuilt by the training job; the optimizer only reads it and flags it stale.
    """
    TRAINING_STATUS_CHOICES = [
        ('not_started', 'Not Started'),
        ('in_progress', 'In Progress'),
        ('completed', 'Completed'),
        ('needs_refresh', 'Needs Refresh'),
    ]

    site = models.OneToOneField(Site, on_delete=models.CASCADE, related_name='knowledge')
    business_profile = models.JSONField(
        default=dict,
        blank=True,
        help_text="Business name, industry, services, audience, brand voice"
    )
    last_trained_at = models.DateTimeField(null=True, blank=True)
    training_status = models.CharField(max_length=20, choices=TRAINING_STATUS_CHOICES, default='not_started')
    retrain_requested_at = models.DateTimeField(null=True, blank=True)
    pages_analyzed = models.IntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'site_knowledge'

    def __str__(self):
        return f"Knowledge for {self.site.name} ({self.training_status})"
