from decimal import Decimal

from rest_framework import serializers

from .models import Dispute, DisputeReason, DisputeResolution


class DisputeCreateSerializer(serializers.Serializer):
    """
    Input for opening a dispute. Length and state rules are enforced by the
    dispute service so that they apply to every caller, not only HTTP.
    """
    reason = serializers.ChoiceField(choices=DisputeReason.choices)
    description = serializers.CharField()
    evidence_urls = serializers.ListField(
        child=serializers.CharField(max_length=500),
        required=False,
        default=list,
    )


class DisputeDetailSerializer(serializers.ModelSerializer):
    """
    Serializer for retrieving a single dispute with all its details.
    """
    buyer = serializers.StringRelatedField()
    seller = serializers.StringRelatedField()
    admin = serializers.StringRelatedField()

    class Meta:
        model = Dispute
        fields = [
            'id', 'order', 'buyer', 'seller', 'reason', 'description', 'evidence_urls', 'status',
            'resolution', 'refund_amount', 'admin', 'admin_notes', 'created_at', 'reviewed_at',
            'resolved_at', 'closed_at', 'updated_at',
        ]
        read_only_fields = fields


class DisputeResolveSerializer(serializers.Serializer):
    resolution = serializers.ChoiceField(choices=DisputeResolution.choices)
    admin_notes = serializers.CharField(allow_blank=True)
    refund_amount = serializers.DecimalField(
        max_digits=14,
        decimal_places=2,
        required=False,
        allow_null=True,
        min_value=Decimal('0.01'),
    )


class DisputeCloseSerializer(serializers.Serializer):
    admin_notes = serializers.CharField(required=False, allow_blank=True, default='')
