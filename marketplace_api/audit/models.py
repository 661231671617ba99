from django.core.serializers.json import DjangoJSONEncoder
from django.db import models
from django.utils import timezone


class AuditAction(models.TextChoices):
    ESCROW_CREATE = 'escrow_create', 'Escrow Created'
    ESCROW_HOLD = 'escrow_hold', 'Escrow Held'
    ESCROW_RELEASE = 'escrow_release', 'Escrow Released'
    ESCROW_RELEASE_REQUEST = 'escrow_release_request', 'Escrow Release Requested'
    ESCROW_DISPUTE = 'escrow_dispute', 'Escrow Disputed'
    ESCROW_REFUND = 'escrow_refund', 'Escrow Refunded'
    ORDER_STATUS_CHANGE = 'order_status_change', 'Order Status Changed'
    ORDER_DELIVERY_CONFIRM = 'order_delivery_confirm', 'Order Delivery Confirmed'
    ORDER_CANCEL = 'order_cancel', 'Order Cancelled'
    ORDER_SHIPMENT_UPDATE = 'order_shipment_update', 'Order Shipment Updated'
    DISPUTE_OPEN = 'dispute_open', 'Dispute Opened'
    DISPUTE_REVIEW = 'dispute_review', 'Dispute Under Review'
    DISPUTE_RESOLVE = 'dispute_resolve', 'Dispute Resolved'
    DISPUTE_CLOSE = 'dispute_close', 'Dispute Closed'


class AuditSeverity(models.TextChoices):
    INFO = 'info', 'Info'
    WARNING = 'warning', 'Warning'
    CRITICAL = 'critical', 'Critical'


CRITICAL_ACTIONS = frozenset({
    AuditAction.ESCROW_REFUND,
    AuditAction.ESCROW_RELEASE,
    AuditAction.DISPUTE_RESOLVE,
})

WARNING_ACTIONS = frozenset({
    AuditAction.ESCROW_DISPUTE,
    AuditAction.DISPUTE_OPEN,
    AuditAction.ORDER_CANCEL,
})


def severity_for_action(action_type):
    if action_type in CRITICAL_ACTIONS:
        return AuditSeverity.CRITICAL
    if action_type in WARNING_ACTIONS:
        return AuditSeverity.WARNING
    return AuditSeverity.INFO


class AppendOnlyError(Exception):
    pass


class AuditLogQuerySet(models.QuerySet):
    def update(self, **kwargs):
        raise AppendOnlyError("Audit log entries cannot be updated.")

    def delete(self):
        raise AppendOnlyError("Audit log entries cannot be deleted.")


class AuditLogEntry(models.Model):
    """
    One immutable row per business mutation.

    Rows reference the affected record by type and id only, so they survive
    independently of the records they describe.
    """
    actor_id = models.CharField(max_length=64)
    actor_email = models.EmailField(blank=True)
    action_type = models.CharField(max_length=40, choices=AuditAction.choices)
    severity = models.CharField(max_length=10, choices=AuditSeverity.choices, default=AuditSeverity.INFO)
    resource_type = models.CharField(max_length=40)
    resource_id = models.CharField(max_length=64)
    metadata = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)
    timestamp = models.DateTimeField(default=timezone.now, editable=False)

    objects = AuditLogQuerySet.as_manager()

    class Meta:
        ordering = ['-timestamp', '-id']
        indexes = [
            models.Index(fields=['-timestamp'], name='audit_timestamp_desc_idx'),
            models.Index(fields=['actor_id'], name='audit_actor_idx'),
            models.Index(fields=['resource_type', 'resource_id'], name='audit_resource_idx'),
        ]

    def __str__(self):
        return f"{self.action_type} on {self.resource_type}:{self.resource_id} by {self.actor_id}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise AppendOnlyError("Audit log entries are write-once.")
        self.severity = severity_for_action(self.action_type)
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise AppendOnlyError("Audit log entries cannot be deleted.")
