from decimal import Decimal

from rest_framework import serializers

from .models import EscrowTransaction


class EscrowTransactionSerializer(serializers.ModelSerializer):
    order_id = serializers.IntegerField(source="order.id", read_only=True)
    order_status = serializers.CharField(source="order.status", read_only=True)
    buyer_email = serializers.EmailField(source="buyer.email", read_only=True)
    seller_email = serializers.EmailField(source="seller.email", read_only=True)

    class Meta:
        model = EscrowTransaction
        fields = (
            "id",
            "order_id",
            "order_status",
            "buyer",
            "buyer_email",
            "seller",
            "seller_email",
            "amount",
            "status",
            "payment_reference",
            "dispute_reason",
            "held_at",
            "released_at",
            "released_by",
            "disputed_at",
            "refunded_at",
            "refunded_by",
            "refunded_amount",
            "release_requested_at",
            "release_requested_by",
            "created_at",
            "updated_at",
        )
        read_only_fields = fields


class EscrowCreateSerializer(serializers.Serializer):
    order_id = serializers.IntegerField()
    buyer_id = serializers.IntegerField()
    seller_id = serializers.IntegerField()
    amount = serializers.DecimalField(max_digits=14, decimal_places=2, min_value=Decimal("0.01"))


class EscrowHoldSerializer(serializers.Serializer):
    payment_reference = serializers.CharField(max_length=255, required=False, allow_blank=True)


class EscrowDisputeSerializer(serializers.Serializer):
    reason = serializers.CharField()


class EscrowRefundSerializer(serializers.Serializer):
    amount = serializers.DecimalField(
        max_digits=14,
        decimal_places=2,
        min_value=Decimal("0.01"),
    )
