from django.contrib import admin
from django.contrib.auth.admin import UserAdmin

from .models import User


@admin.register(User)
class PortalUserAdmin(UserAdmin):
    list_display = ('email', 'username', 'is_staff', 'created_at')
    search_fields = ('email', 'username')
    ordering = ('-created_at',)
