from django.contrib import admin
from .models import OptimizationRun, AutopilotSettings, QueueItem, AutopilotDailyCounter


@admin.register(OptimizationRun)
class OptimizationRunAdmin(admin.ModelAdmin):
    list_display = ('id', 'site_id', 'mode', 'status', 'recommendations_generated', 'auto_applied',
                    'alerts_raised', 'started_at', 'completed_at')
    list_filter = ('status', 'mode')
    search_fields = ('id', 'error_message')
    readonly_fields = [f.name for f in OptimizationRun._meta.fields]

    def has_add_permission(self, request):
        return False


@admin.register(AutopilotSettings)
class AutopilotSettingsAdmin(admin.ModelAdmin):
    list_display = ('site', 'enabled', 'confidence_threshold', 'max_daily_changes',
                    'high_traffic_threshold', 'auto_revert_threshold', 'updated_at')
    list_filter = ('enabled',)
    search_fields = ('site__name', 'site__url')


@admin.register(QueueItem)
class QueueItemAdmin(admin.ModelAdmin):
    list_display = ('id', 'site', 'change_type', 'ai_confidence', 'is_high_traffic', 'requires_approval',
                    'status', 'applied_at', 'reverted_at')
    list_filter = ('status', 'change_type', 'requires_approval', 'is_high_traffic')
    search_fields = ('site__name', 'suggested_value')
    readonly_fields = ('status', 'approved_by', 'approved_at', 'rejected_at', 'applied_by', 'applied_at',
                       'baseline_clicks', 'monitor_until', 'reverted_at', 'revert_reason', 'last_error',
                       'created_at', 'updated_at')


@admin.register(AutopilotDailyCounter)
class AutopilotDailyCounterAdmin(admin.ModelAdmin):
    list_display = ('site', 'day', 'applied_count')
    list_filter = ('day',)
    readonly_fields = ('site', 'day', 'applied_count')
