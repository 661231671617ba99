from django.conf import settings
from django.db import models

from marketplace_api.transitions import TransitionQuerySet
from orders.models import Order


class EscrowStatus(models.TextChoices):
    PENDING = 'pending', 'Pending'
    HELD = 'held', 'Held'
    RELEASED = 'released', 'Released'
    DISPUTED = 'disputed', 'Disputed'
    REFUNDED = 'refunded', 'Refunded'


TERMINAL_STATUSES = frozenset({EscrowStatus.RELEASED, EscrowStatus.REFUNDED})


class EscrowQuerySet(TransitionQuerySet):
    def for_party(self, user_id):
        return self.filter(models.Q(buyer_id=user_id) | models.Q(seller_id=user_id))


class EscrowTransaction(models.Model):
    order = models.OneToOneField(Order, related_name='escrow', on_delete=models.PROTECT)
    buyer = models.ForeignKey(settings.AUTH_USER_MODEL, related_name='escrows_paid', on_delete=models.PROTECT)
    seller = models.ForeignKey(settings.AUTH_USER_MODEL, related_name='escrows_owed', on_delete=models.PROTECT)
    amount = models.DecimalField(max_digits=14, decimal_places=2, editable=False)
    status = models.CharField(max_length=20, choices=EscrowStatus.choices, default=EscrowStatus.PENDING, db_index=True)

    payment_reference = models.CharField(max_length=255, blank=True)
    dispute_reason = models.TextField(blank=True)

    held_at = models.DateTimeField(null=True, blank=True)
    released_at = models.DateTimeField(null=True, blank=True)
    disputed_at = models.DateTimeField(null=True, blank=True)
    refunded_at = models.DateTimeField(null=True, blank=True)

    released_by = models.CharField(max_length=64, blank=True)
    refunded_by = models.CharField(max_length=64, blank=True)
    refunded_amount = models.DecimalField(max_digits=14, decimal_places=2, null=True, blank=True)

    # Seller asked an administrator to release funds
    release_requested_at = models.DateTimeField(null=True, blank=True)
    release_requested_by = models.CharField(max_length=64, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = EscrowQuerySet.as_manager()

    class Meta:
        ordering = ['-created_at']
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount__gt=0),
                name='escrow_amount_positive',
            ),
        ]

    def __str__(self):
        return f"Escrow for order #{self.order_id} ({self.amount}) {self.status}"

    @property
    def is_finalized(self):
        return self.status in TERMINAL_STATUSES
