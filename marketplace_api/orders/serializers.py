from rest_framework import serializers

from .models import Order, OrderItem, OrderStatus


class OrderItemSerializer(serializers.ModelSerializer):
    class Meta:
        model = OrderItem
        fields = ['id', 'product_ref', 'product_title', 'quantity', 'unit_price', 'line_total']
        read_only_fields = fields


class OrderSerializer(serializers.ModelSerializer):
    """
    Read-only representation of an order with its line items and the escrow
    status, when an escrow exists.
    """
    buyer_email = serializers.EmailField(source='buyer.email', read_only=True)
    seller_email = serializers.EmailField(source='seller.email', read_only=True)
    items = OrderItemSerializer(many=True, read_only=True)
    dispute_id = serializers.IntegerField(source='active_dispute_id', read_only=True)
    escrow_status = serializers.SerializerMethodField()

    class Meta:
        model = Order
        fields = [
            'id', 'buyer', 'buyer_email', 'seller', 'seller_email', 'items', 'total_amount',
            'status', 'buyer_confirmed', 'buyer_confirmed_at', 'tracking_number',
            'estimated_delivery_date', 'delivered_at', 'dispute_id', 'escrow_status',
            'cancellation_reason', 'cancelled_at', 'created_at', 'updated_at',
        ]
        read_only_fields = fields

    def get_escrow_status(self, obj):
        escrow = getattr(obj, 'escrow', None)
        return escrow.status if escrow is not None else None


class OrderAdvanceSerializer(serializers.Serializer):
    target_status = serializers.ChoiceField(choices=OrderStatus.choices)
    tracking_number = serializers.CharField(max_length=100, required=False, allow_blank=True)
    estimated_delivery_date = serializers.DateTimeField(required=False, allow_null=True)


class OrderCancelSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default='')


class ShipmentUpdateSerializer(serializers.Serializer):
    tracking_number = serializers.CharField(max_length=100, required=False, allow_blank=True)
    estimated_delivery_date = serializers.DateTimeField(required=False, allow_null=True)

    def validate(self, attrs):
        if not attrs.get('tracking_number') and not attrs.get('estimated_delivery_date'):
            raise serializers.ValidationError("Provide a tracking number or an estimated delivery date.")
        return attrs
