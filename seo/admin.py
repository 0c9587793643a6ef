from django.contrib import admin
from .models import Page, TrackedKeyword, Recommendation, Alert


@admin.register(Page)
class PageAdmin(admin.ModelAdmin):
    list_display = ('title', 'site', 'url', 'clicks_28d', 'clicks_prev_28d', 'is_decaying', 'decay_severity')
    list_filter = ('is_decaying', 'decay_severity', 'status', 'site')
    search_fields = ('title', 'url', 'site__name')
    readonly_fields = ('created_at', 'updated_at', 'decay_detected_at')


@admin.register(TrackedKeyword)
class TrackedKeywordAdmin(admin.ModelAdmin):
    list_display = ('keyword', 'site', 'current_position', 'previous_position', 'best_position', 'last_checked_at')
    list_filter = ('is_active', 'site')
    search_fields = ('keyword', 'site__name')


@admin.register(Recommendation)
class RecommendationAdmin(admin.ModelAdmin):
    list_display = ('title', 'site', 'category', 'priority', 'confidence', 'status', 'generated_at')
    list_filter = ('status', 'priority', 'category')
    search_fields = ('title', 'page_url', 'site__name')
    readonly_fields = ('generated_at', 'updated_at', 'ai_model')


@admin.register(Alert)
class AlertAdmin(admin.ModelAdmin):
    list_display = ('alert_type', 'severity', 'site', 'title', 'status', 'triggered_at')
    list_filter = ('status', 'severity', 'alert_type')
    search_fields = ('title', 'site__name')
    readonly_fields = ('triggered_at', 'resolved_at', 'data')
