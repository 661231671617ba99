from decimal import Decimal

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models, transaction
from django.db.models import Q

from marketplace_api.transitions import TransitionQuerySet


class OrderStatus(models.TextChoices):
    PENDING_PAYMENT = 'pending_payment', 'Pending Payment'
    PAYMENT_RECEIVED = 'payment_received', 'Payment Received'
    PROCESSING = 'processing', 'Processing'
    SHIPPED = 'shipped', 'Shipped'
    DELIVERED = 'delivered', 'Delivered'
    COMPLETED = 'completed', 'Completed'
    CANCELLED = 'cancelled', 'Cancelled'
    DISPUTED = 'disputed', 'Disputed'


class OrderQuerySet(TransitionQuerySet):
    def for_buyer(self, user_id):
        return self.filter(buyer_id=user_id)

    def for_seller(self, user_id):
        return self.filter(seller_id=user_id)

    @transaction.atomic
    def create_with_items(self, *, buyer, seller, items, **extra):
        """
        Create an order and its line items, freezing the total.

        ``items`` is an iterable of dicts with ``product_ref``, ``quantity``,
        ``unit_price`` and optionally ``product_title``.
        """
        lines = []
        for item in items:
            quantity = int(item['quantity'])
            unit_price = Decimal(str(item['unit_price'])).quantize(settings.MONEY_QUANTUM)
            if quantity < 1:
                raise ValueError("Quantity must be at least 1.")
            if unit_price < 0:
                raise ValueError("Unit price cannot be negative.")
            lines.append(OrderItem(
                product_ref=item['product_ref'],
                product_title=item.get('product_title', ''),
                quantity=quantity,
                unit_price=unit_price,
                line_total=(unit_price * quantity).quantize(settings.MONEY_QUANTUM),
            ))
        if not lines:
            raise ValueError("An order needs at least one line item.")

        order = self.create(
            buyer=buyer,
            seller=seller,
            total_amount=sum((line.line_total for line in lines), Decimal('0.00')),
            **extra,
        )
        for line in lines:
            line.order = order
        OrderItem.objects.bulk_create(lines)
        return order


class Order(models.Model):
    buyer = models.ForeignKey(settings.AUTH_USER_MODEL, related_name='purchases', on_delete=models.PROTECT)
    seller = models.ForeignKey(settings.AUTH_USER_MODEL, related_name='sales', on_delete=models.PROTECT)
    total_amount = models.DecimalField(max_digits=14, decimal_places=2, editable=False)
    status = models.CharField(max_length=20, choices=OrderStatus.choices, default=OrderStatus.PENDING_PAYMENT, db_index=True)

    buyer_confirmed = models.BooleanField(default=False)
    buyer_confirmed_at = models.DateTimeField(null=True, blank=True)

    tracking_number = models.CharField(max_length=100, blank=True)
    estimated_delivery_date = models.DateTimeField(null=True, blank=True)
    delivered_at = models.DateTimeField(null=True, blank=True)

    active_dispute = models.ForeignKey(
        'disputes.Dispute',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='+',
    )

    cancellation_reason = models.TextField(blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = OrderQuerySet.as_manager()

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['buyer', '-created_at'], name='order_buyer_created_idx'),
            models.Index(fields=['seller', '-created_at'], name='order_seller_created_idx'),
        ]
        constraints = [
            models.CheckConstraint(
                condition=(
                    Q(status=OrderStatus.DISPUTED, active_dispute__isnull=False)
                    | (~Q(status=OrderStatus.DISPUTED) & Q(active_dispute__isnull=True))
                ),
                name='order_dispute_reference_matches_status',
            ),
        ]

    def __str__(self):
        return f"Order #{self.pk} ({self.buyer} -> {self.seller}) {self.status}"

    @property
    def dispute_id(self):
        return self.active_dispute_id


class OrderItem(models.Model):
    order = models.ForeignKey(Order, related_name='items', on_delete=models.CASCADE)
    product_ref = models.CharField(max_length=100)
    product_title = models.CharField(max_length=255, blank=True)
    quantity = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    unit_price = models.DecimalField(max_digits=14, decimal_places=2)
    line_total = models.DecimalField(max_digits=14, decimal_places=2)

    def __str__(self):
        return f"{self.quantity} x {self.product_ref} ({self.line_total})"
