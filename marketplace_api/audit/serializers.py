from rest_framework import serializers

from .models import AuditAction, AuditLogEntry, AuditSeverity


class AuditLogEntrySerializer(serializers.ModelSerializer):
    class Meta:
        model = AuditLogEntry
        fields = [
            'id', 'timestamp', 'severity', 'action_type', 'actor_id', 'actor_email',
            'resource_type', 'resource_id', 'metadata',
        ]
        read_only_fields = fields


class AuditLogQuerySerializer(serializers.Serializer):
    """Query string filters accepted by the audit log endpoints."""
    actor_id = serializers.CharField(required=False)
    actor_email = serializers.EmailField(required=False)
    action_type = serializers.ChoiceField(choices=AuditAction.choices, required=False)
    severity = serializers.ChoiceField(choices=AuditSeverity.choices, required=False)
    start = serializers.DateTimeField(required=False)
    end = serializers.DateTimeField(required=False)
    limit = serializers.IntegerField(required=False, min_value=1, max_value=1000)

    def validate(self, attrs):
        if attrs.get('start') and attrs.get('end') and attrs['start'] > attrs['end']:
            raise serializers.ValidationError("'start' must be before 'end'.")
        return attrs


class AuditStatsQuerySerializer(serializers.Serializer):
    days = serializers.IntegerField(required=False, min_value=1, max_value=365)
