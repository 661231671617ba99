from django.conf import settings
from django.db import models
from django.db.models import Q

from marketplace_api.transitions import TransitionQuerySet


class DisputeReason(models.TextChoices):
    NOT_RECEIVED = 'not_received', 'Item Not Received'
    WRONG_ITEM = 'wrong_item', 'Wrong Item'
    DAMAGED = 'damaged', 'Damaged'
    FAKE_PRODUCT = 'fake_product', 'Fake Product'
    OTHER = 'other', 'Other'


class DisputeStatus(models.TextChoices):
    OPEN = 'open', 'Open'
    UNDER_REVIEW = 'under_review', 'Under Review'
    RESOLVED = 'resolved', 'Resolved'
    CLOSED = 'closed', 'Closed'


class DisputeResolution(models.TextChoices):
    REFUND_BUYER = 'refund_buyer', 'Refund Buyer'
    RELEASE_SELLER = 'release_seller', 'Release Seller'
    PARTIAL_REFUND = 'partial_refund', 'Partial Refund'


ACTIVE_STATUSES = frozenset({DisputeStatus.OPEN, DisputeStatus.UNDER_REVIEW})
FINAL_STATUSES = frozenset({DisputeStatus.RESOLVED, DisputeStatus.CLOSED})


class DisputeQuerySet(TransitionQuerySet):
    def active(self):
        return self.filter(status__in=ACTIVE_STATUSES)

    def for_party(self, user_id):
        return self.filter(Q(buyer_id=user_id) | Q(seller_id=user_id))


class Dispute(models.Model):
    order = models.ForeignKey('orders.Order', on_delete=models.PROTECT, related_name='disputes')
    buyer = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name='disputes_raised')
    seller = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name='disputes_received')

    reason = models.CharField(max_length=20, choices=DisputeReason.choices)
    description = models.TextField()
    evidence_urls = models.JSONField(default=list, blank=True)

    status = models.CharField(max_length=20, choices=DisputeStatus.choices, default=DisputeStatus.OPEN, db_index=True)
    resolution = models.CharField(max_length=20, choices=DisputeResolution.choices, blank=True)
    refund_amount = models.DecimalField(max_digits=14, decimal_places=2, null=True, blank=True)

    admin = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='disputes_handled',
    )
    admin_notes = models.TextField(blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    reviewed_at = models.DateTimeField(null=True, blank=True)
    resolved_at = models.DateTimeField(null=True, blank=True)
    closed_at = models.DateTimeField(null=True, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = DisputeQuerySet.as_manager()

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['order', 'status'], name='dispute_order_status_idx'),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['order'],
                condition=Q(status__in=['open', 'under_review']),
                name='one_active_dispute_per_order',
            ),
        ]

    def __str__(self):
        return f"Dispute #{self.pk} on order #{self.order_id} ({self.reason}) {self.status}"

    @property
    def is_active(self):
        return self.status in ACTIVE_STATUSES
