from django.contrib import admin
from .models import Site, SiteKnowledge


@admin.register(Site)
class SiteAdmin(admin.ModelAdmin):
    list_display = ('name', 'url', 'user', 'is_active', 'last_synced_at', 'created_at')
    list_filter = ('is_active', 'created_at')
    search_fields = ('name', 'url', 'user__email')
    readonly_fields = ('created_at', 'updated_at', 'last_synced_at')
    exclude = ('gsc_access_token', 'gsc_refresh_token')


@admin.register(SiteKnowledge)
class SiteKnowledgeAdmin(admin.ModelAdmin):
    list_display = ('site', 'training_status', 'last_trained_at', 'retrain_requested_at', 'pages_analyzed')
    list_filter = ('training_status',)
    search_fields = ('site__name', 'site__url')
    readonly_fields = ('created_at', 'updated_at')
