from django.contrib import admin

from .models import Dispute


@admin.register(Dispute)
class DisputeAdmin(admin.ModelAdmin):
    list_display = ('id', 'order', 'buyer', 'seller', 'reason', 'status', 'resolution', 'created_at')
    list_filter = ('status', 'reason', 'resolution')
    search_fields = ('buyer__email', 'seller__email', 'description')
    readonly_fields = ('order', 'buyer', 'seller', 'status', 'resolution', 'refund_amount', 'admin', 'resolved_at')

    def has_delete_permission(self, request, obj=None):
        return False
