from django.contrib import admin

from .models import AuditLogEntry


@admin.register(AuditLogEntry)
class AuditLogEntryAdmin(admin.ModelAdmin):
    list_display = ('timestamp', 'severity', 'action_type', 'actor_id', 'actor_email', 'resource_type', 'resource_id')
    list_filter = ('severity', 'action_type', 'resource_type')
    search_fields = ('actor_email', 'actor_id', 'resource_id')

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
