from django.contrib import admin

from .models import Order, OrderItem


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    readonly_fields = ('product_ref', 'product_title', 'quantity', 'unit_price', 'line_total')
    can_delete = False


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ('id', 'buyer', 'seller', 'total_amount', 'status', 'buyer_confirmed', 'created_at')
    list_filter = ('status', 'buyer_confirmed')
    search_fields = ('buyer__email', 'seller__email', 'tracking_number')
    readonly_fields = ('total_amount', 'status', 'active_dispute', 'buyer_confirmed', 'buyer_confirmed_at', 'delivered_at')
    inlines = [OrderItemInline]
