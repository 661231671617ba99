from django.contrib import admin

from .models import EscrowTransaction


@admin.register(EscrowTransaction)
class EscrowTransactionAdmin(admin.ModelAdmin):
    list_display = ('id', 'order', 'buyer', 'seller', 'amount', 'status', 'held_at', 'released_at', 'refunded_at')
    list_filter = ('status',)
    search_fields = ('payment_reference', 'buyer__email', 'seller__email')
    readonly_fields = (
        'order', 'buyer', 'seller', 'amount', 'status', 'held_at', 'released_at', 'released_by',
        'disputed_at', 'refunded_at', 'refunded_by', 'refunded_amount',
    )

    def has_delete_permission(self, request, obj=None):
        return False
