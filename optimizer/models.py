"""
Optimizer models — optimization runs and the autopilot queue.

  1. Runs       — OptimizationRun
  2. Autopilot  — AutopilotSettings, QueueItem, AutopilotDailyCounter
"""

import uuid
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.db.models import Q
from sites.models import Site


# ─────────────────────────────────────────────────────────────
# 1. RUNS
# ─────────────────────────────────────────────────────────────

class OptimizationRun(models.Model):
    MODE_CHOICES = [('full', 'Full'), ('quick', 'Quick')]
    STATUS_CHOICES = [('running', 'Running'), ('completed', 'Completed'), ('error', 'Error')]
    TERMINAL_STATUSES = ('completed', 'error')

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    # No FK constraint: a run is recorded even when the site lookup fails.
    site = models.ForeignKey(Site, on_delete=models.CASCADE, related_name='optimization_runs',
        db_constraint=False)
    mode = models.CharField(max_length=10, choices=MODE_CHOICES, default='full')
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='running')
    results = models.JSONField(default=dict, blank=True)
    recommendations_generated = models.IntegerField(default=0)
    auto_applied = models.IntegerField(default=0)
    alerts_raised = models.IntegerField(default=0)
    ai_model = models.CharField(max_length=100, blank=True)
    error_message = models.TextField(blank=True, null=True)
    started_at = models.DateTimeField()
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'optimization_runs'
        ordering = ['-started_at']
        indexes = [
            models.Index(fields=['site', 'status'], name='opt_runs_site_status_idx'),
            models.Index(fields=['site', '-started_at'], name='opt_runs_site_started_idx'),
        ]

    def __str__(self):
        return f"{self.mode} run {self.id} ({self.status})"

    @property
    def is_terminal(self):
        return self.status in self.TERMINAL_STATUSES

    def _update_if_running(self, **fields):
        """
        Write fields only while the row is still running. Returns False when
        the run already reached a terminal status.
        """
        updated = OptimizationRun.objects.filter(pk=self.pk, status='running').update(**fields)
        if updated:
            for name, value in fields.items():
                setattr(self, name, value)
        return bool(updated)

    def save_progress(self, results):
        return self._update_if_running(results=results)

    def mark_completed(self, results, completed_at, recommendations_generated=0, auto_applied=0,
                       alerts_raised=0):
        return self._update_if_running(
            status='completed',
            results=results,
            recommendations_generated=recommendations_generated,
            auto_applied=auto_applied,
            alerts_raised=alerts_raised,
            completed_at=completed_at,
        )

    def mark_error(self, message, completed_at):
        return self._update_if_running(
            status='error',
            error_message=message,
            completed_at=completed_at,
        )


# ─────────────────────────────────────────────────────────────
# 2. AUTOPILOT
# ─────────────────────────────────────────────────────────────

class AutopilotSettings(models.Model):
    DEFAULT_ALLOWED_CHANGE_TYPES = ['title', 'meta_description']

    site = models.OneToOneField(Site, on_delete=models.CASCADE, related_name='autopilot_settings')
    enabled = models.BooleanField(default=False)
    allowed_change_types = models.JSONField(default=list, blank=True)
    confidence_threshold = models.IntegerField(
        default=80, validators=[MinValueValidator(0), MaxValueValidator(100)])
    max_daily_changes = models.IntegerField(default=10, validators=[MinValueValidator(1)])
    high_traffic_threshold = models.IntegerField(
        default=1000, validators=[MinValueValidator(0)], help_text="Impressions per week")
    auto_revert_threshold = models.IntegerField(
        default=20, validators=[MinValueValidator(1), MaxValueValidator(100)],
        help_text="Percent metric drop that triggers a rollback")
    notify_on_apply = models.BooleanField(default=True)
    notify_on_revert = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'autopilot_settings'
        verbose_name_plural = 'autopilot settings'

    def __str__(self):
        return f"Autopilot for {self.site.name} ({'on' if self.enabled else 'off'})"

    @classmethod
    def for_site(cls, site):
        settings_obj, _ = cls.objects.get_or_create(
            site=site,
            defaults={'allowed_change_types': list(cls.DEFAULT_ALLOWED_CHANGE_TYPES)},
        )
        return settings_obj


class QueueItem(models.Model):
    STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('approved', 'Approved'),
        ('rejected', 'Rejected'),
        ('applied', 'Applied'),
        ('reverted', 'Reverted'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    site = models.ForeignKey(Site, on_delete=models.CASCADE, related_name='autopilot_queue')
    recommendation = models.ForeignKey('seo.Recommendation', on_delete=models.SET_NULL, null=True,
        blank=True, related_name='queue_items')
    page = models.ForeignKey('seo.Page', on_delete=models.SET_NULL, null=True, blank=True,
        related_name='autopilot_queue')
    run = models.ForeignKey(OptimizationRun, on_delete=models.SET_NULL, null=True, blank=True,
        related_name='queue_items')
    change_type = models.CharField(max_length=30)
    field = models.CharField(max_length=50)
    old_value = models.TextField(blank=True)
    suggested_value = models.TextField()
    ai_confidence = models.IntegerField(validators=[MinValueValidator(0), MaxValueValidator(100)])
    ai_reasoning = models.TextField(blank=True)
    is_high_traffic = models.BooleanField(default=False)
    requires_approval = models.BooleanField(default=False)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='pending')
    approved_by = models.CharField(max_length=255, blank=True, null=True)
    approved_at = models.DateTimeField(null=True, blank=True)
    rejected_at = models.DateTimeField(null=True, blank=True)
    applied_by = models.CharField(max_length=255, blank=True, null=True)
    applied_at = models.DateTimeField(null=True, blank=True)
    baseline_clicks = models.IntegerField(null=True, blank=True)
    monitor_until = models.DateTimeField(null=True, blank=True)
    reverted_at = models.DateTimeField(null=True, blank=True)
    revert_reason = models.TextField(blank=True, null=True)
    last_error = models.TextField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'autopilot_queue'
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(fields=['recommendation'], condition=Q(recommendation__isnull=False),
                name='uniq_queue_item_recommendation'),
        ]
        indexes = [
            models.Index(fields=['site', 'status'], name='autopilot_q_site_status_idx'),
            models.Index(fields=['status', 'monitor_until'], name='autopilot_q_monitor_idx'),
        ]

    def __str__(self):
        return f"[{self.status}] {self.change_type}: {self.suggested_value[:60]}"


class AutopilotDailyCounter(models.Model):
    """Changes applied per site per calendar day. The daily cap is enforced against this row."""
    site = models.ForeignKey(Site, on_delete=models.CASCADE, related_name='autopilot_daily_counters')
    day = models.DateField()
    applied_count = models.IntegerField(default=0)

    class Meta:
        db_table = 'autopilot_daily_counters'
        unique_together = [('site', 'day')]

    def __str__(self):
        return f"{self.site_id} {self.day}: {self.applied_count}"
