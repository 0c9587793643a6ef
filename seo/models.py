"""
SEO models — per-page traffic metrics, tracked keywords, AI recommendations and alerts.

Tables are organised into two domains:
  1. Metrics      — Page, TrackedKeyword
  2. AI Brain     — Recommendation, Alert
"""

import uuid
from django.db import models
from django.db.models import Q
from sites.models import Site


# ─────────────────────────────────────────────────────────────
# 1. METRICS
# ─────────────────────────────────────────────────────────────

class Page(models.Model):
    DECAY_SEVERITY_CHOICES = [
        ('critical', 'Critical'), ('high', 'High'), ('medium', 'Medium'),
    ]

    site = models.ForeignKey(Site, on_delete=models.CASCADE, related_name='pages')
    wp_post_id = models.IntegerField(null=True, blank=True, help_text="WordPress post/page ID")
    url = models.URLField(max_length=2048)
    title = models.CharField(max_length=500)
    status = models.CharField(max_length=20, default='publish', choices=[
        ('publish', 'Published'), ('draft', 'Draft'), ('private', 'Private'),
    ])

    yoast_title = models.CharField(max_length=500, blank=True)
    yoast_description = models.TextField(blank=True)
    h1_text = models.CharField(max_length=500, blank=True)

    # Search Console traffic, refreshed by the sync job
    clicks_28d = models.IntegerField(default=0)
    clicks_prev_28d = models.IntegerField(null=True, blank=True)
    impressions_28d = models.IntegerField(default=0)
    impressions_7d = models.IntegerField(default=0)
    avg_position = models.FloatField(null=True, blank=True)

    is_decaying = models.BooleanField(default=False)
    decay_severity = models.CharField(max_length=20, choices=DECAY_SEVERITY_CHOICES, blank=True, null=True)
    decay_detected_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'pages'
        ordering = ['-clicks_28d']
        indexes = [
            models.Index(fields=['site', 'status'], name='pages_site_id_status_idx'),
            models.Index(fields=['site', '-clicks_28d'], name='pages_site_clicks_idx'),
            models.Index(fields=['site', 'is_decaying'], name='pages_site_decaying_idx'),
            models.Index(fields=['url'], name='pages_url_idx'),
        ]

    def __str__(self):
        return f"{self.title} ({self.site.name})"

    def field_value(self, change_type):
        """Current live value of the field a change type rewrites."""
        if change_type == 'title':
            return self.yoast_title or self.title
        if change_type == 'meta_description':
            return self.yoast_description
        if change_type == 'h1':
            return self.h1_text
        return ''


class TrackedKeyword(models.Model):
    site = models.ForeignKey(Site, on_delete=models.CASCADE, related_name='tracked_keywords')
    page = models.ForeignKey(Page, on_delete=models.SET_NULL, null=True, blank=True,
        related_name='tracked_keywords')
    keyword = models.CharField(max_length=255)
    current_position = models.FloatField(null=True, blank=True)
    previous_position = models.FloatField(null=True, blank=True)
    best_position = models.FloatField(null=True, blank=True)
    clicks = models.IntegerField(default=0)
    impressions = models.IntegerField(default=0)
    is_active = models.BooleanField(default=True)
    last_checked_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'tracked_keywords'
        unique_together = [('site', 'keyword')]
        indexes = [
            models.Index(fields=['site', 'is_active'], name='tracked_kw_site_active_idx'),
        ]

    def __str__(self):
        return f"{self.keyword} @ {self.current_position}"


# ─────────────────────────────────────────────────────────────
# 2. AI BRAIN
# ─────────────────────────────────────────────────────────────

class Recommendation(models.Model):
    """
    One actionable change proposal. Never deleted; status is the audit trail.
    """
    CATEGORY_CHOICES = [
        ('title', 'Title'), ('meta', 'Meta'), ('content', 'Content'),
        ('technical', 'Technical'), ('keyword', 'Keyword'),
    ]
    PRIORITY_CHOICES = [
        ('critical', 'Critical'), ('high', 'High'), ('medium', 'Medium'), ('low', 'Low'),
    ]
    STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('auto_approved', 'Auto Approved'),
        ('applied', 'Applied'),
        ('rejected', 'Rejected'),
        ('dismissed', 'Dismissed'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    site = models.ForeignKey(Site, on_delete=models.CASCADE, related_name='recommendations')
    page = models.ForeignKey(Page, on_delete=models.SET_NULL, null=True, blank=True,
        related_name='recommendations')
    page_url = models.CharField(max_length=2048, blank=True)
    category = models.CharField(max_length=20, choices=CATEGORY_CHOICES)
    priority = models.CharField(max_length=20, choices=PRIORITY_CHOICES, default='medium')
    title = models.CharField(max_length=500)
    description = models.TextField(blank=True)
    field_name = models.CharField(max_length=50, blank=True,
        help_text="Change type the suggestion rewrites (title, meta_description, h1, schema)")
    current_value = models.TextField(blank=True)
    suggested_value = models.TextField(blank=True)
    confidence = models.IntegerField(null=True, blank=True, help_text="AI confidence, 0-100")
    impact_score = models.IntegerField(null=True, blank=True, help_text="Estimated impact, 1-10")
    auto_fixable = models.BooleanField(default=False)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='pending')
    ai_model = models.CharField(max_length=100, blank=True)
    generated_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    reviewed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'seo_recommendations'
        ordering = ['-generated_at']
        constraints = [
            models.UniqueConstraint(fields=['site', 'page', 'title'], name='uniq_recommendation_page_title'),
            models.UniqueConstraint(fields=['site', 'title'], condition=Q(page__isnull=True),
                name='uniq_recommendation_sitewide_title'),
        ]
        indexes = [
            models.Index(fields=['site', 'status'], name='seo_rec_site_status_idx'),
            models.Index(fields=['site', 'priority'], name='seo_rec_site_priority_idx'),
        ]

    def __str__(self):
        return f"[{self.priority}] {self.title}"


class Alert(models.Model):
    SEVERITY_CHOICES = [
        ('critical', 'Critical'), ('high', 'High'), ('medium', 'Medium'),
        ('low', 'Low'), ('warning', 'Warning'), ('info', 'Info'),
    ]
    STATUS_CHOICES = [('active', 'Active'), ('resolved', 'Resolved')]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    site = models.ForeignKey(Site, on_delete=models.CASCADE, related_name='alerts')
    alert_type = models.CharField(max_length=50)
    severity = models.CharField(max_length=20, choices=SEVERITY_CHOICES)
    title = models.CharField(max_length=255)
    message = models.TextField(blank=True)
    data = models.JSONField(default=dict, blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='active')
    triggered_at = models.DateTimeField(auto_now_add=True)
    resolved_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'seo_alerts'
        ordering = ['-triggered_at']
        indexes = [
            models.Index(fields=['site', 'status'], name='seo_alerts_site_status_idx'),
            models.Index(fields=['site', 'alert_type'], name='seo_alerts_site_type_idx'),
        ]

    def __str__(self):
        return f"[{self.severity}] {self.alert_type}: {self.title}"
