import logging
from datetime import timedelta

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from accounts import guards
from audit.models import AuditAction
from audit.services import AuditService
from marketplace_api.exceptions import InvalidState, InvalidTransition, NotFound
from notifications import events
from .models import Order, OrderStatus

logger = logging.getLogger(__name__)


FORWARD_EDGES = {
    OrderStatus.PENDING_PAYMENT: OrderStatus.PAYMENT_RECEIVED,
    OrderStatus.PAYMENT_RECEIVED: OrderStatus.PROCESSING,
    OrderStatus.PROCESSING: OrderStatus.SHIPPED,
    OrderStatus.SHIPPED: OrderStatus.DELIVERED,
    OrderStatus.DELIVERED: OrderStatus.COMPLETED,
}

SELLER_TARGETS = frozenset({OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.DELIVERED})
SYSTEM_TARGETS = frozenset({OrderStatus.PAYMENT_RECEIVED, OrderStatus.COMPLETED})
SHIPMENT_TARGETS = frozenset({OrderStatus.SHIPPED, OrderStatus.DELIVERED})
SHIPMENT_EDITABLE = frozenset({OrderStatus.PROCESSING, OrderStatus.SHIPPED})

CANCELLABLE = frozenset({OrderStatus.PENDING_PAYMENT, OrderStatus.PAYMENT_RECEIVED})
DISPUTABLE = frozenset({
    OrderStatus.PAYMENT_RECEIVED,
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
})
DISPUTE_EXITS = frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED})


class OrderLifecycleService:
    """
    Owns the fulfillment status of an order.

    The order only ever moves along FORWARD_EDGES, into ``cancelled`` from
    the two pre-fulfillment states, or into and out of ``disputed`` through
    ``enter_dispute``/``exit_dispute`` which are reserved for the dispute
    service. Every status write is a conditional update on the status that
    was validated, so concurrent callers cannot both move the order from the
    same starting point.
    """

    def __init__(self, audit_service=None, escrow_service=None):
        self.audit = audit_service or AuditService()
        self._escrow_service = escrow_service

    @property
    def escrow_service(self):
        if self._escrow_service is None:
            from escrow.services import EscrowService
            self._escrow_service = EscrowService(audit_service=self.audit)
        return self._escrow_service

    def get_order(self, order_id):
        try:
            return Order.objects.select_related('buyer', 'seller').get(pk=order_id)
        except Order.DoesNotExist:
            raise NotFound("Order not found.")

    def advance(self, order_id, principal, target_status, tracking_number=None, estimated_delivery_date=None):
        order = self.get_order(order_id)

        if target_status in SELLER_TARGETS:
            guards.require(guards.is_seller(principal, order), "Only the seller can update fulfillment of this order.")
        elif target_status in SYSTEM_TARGETS:
            guards.require(guards.is_system(principal), "Only the system can move an order to this status.")
        else:
            raise InvalidTransition(f"Orders cannot be advanced to '{target_status}'.")

        if FORWARD_EDGES.get(order.status) != target_status:
            raise InvalidTransition(f"Cannot move order from '{order.status}' to '{target_status}'.")

        now = timezone.now()
        changes = {'status': target_status}
        if target_status in SHIPMENT_TARGETS:
            if tracking_number:
                changes['tracking_number'] = tracking_number
            if estimated_delivery_date:
                changes['estimated_delivery_date'] = estimated_delivery_date
            elif target_status == OrderStatus.SHIPPED and not order.estimated_delivery_date:
                changes['estimated_delivery_date'] = now + timedelta(days=settings.ORDER_DEFAULT_DELIVERY_DAYS)
        if target_status == OrderStatus.DELIVERED:
            changes['delivered_at'] = now

        with transaction.atomic():
            if not Order.objects.transition(order.pk, order.status, **changes):
                raise InvalidTransition("The order was changed by another request. Reload and try again.")
            self.audit.record(
                principal,
                AuditAction.ORDER_STATUS_CHANGE,
                'order',
                order.pk,
                {'from': order.status, 'to': target_status, 'tracking_number': changes.get('tracking_number', '')},
            )

        logger.info("Order advanced", extra={'order_id': order.pk, 'from': order.status, 'to': target_status})
        events.emit(
            'order_status_changed',
            recipients=[order.buyer.email, order.seller.email],
            order_id=order.pk,
            status=target_status,
        )
        order.refresh_from_db()
        return order

    def update_shipment(self, order_id, principal, tracking_number=None, estimated_delivery_date=None):
        order = self.get_order(order_id)
        guards.require(guards.is_seller(principal, order), "Only the seller can update shipment details.")

        if order.status not in SHIPMENT_EDITABLE:
            raise InvalidState("Shipment details can only be changed while the order is processing or shipped.")

        changes = {}
        if tracking_number:
            changes['tracking_number'] = tracking_number
        if estimated_delivery_date:
            changes['estimated_delivery_date'] = estimated_delivery_date
        if not changes:
            return order

        with transaction.atomic():
            if not Order.objects.transition(order.pk, SHIPMENT_EDITABLE, **changes):
                raise InvalidState("Shipment details can only be changed while the order is processing or shipped.")
            self.audit.record(principal, AuditAction.ORDER_SHIPMENT_UPDATE, 'order', order.pk, changes)

        order.refresh_from_db()
        return order

    def confirm_delivery(self, order_id, principal):
        order = self.get_order(order_id)
        guards.require(guards.is_buyer(principal, order), "Only the buyer can confirm delivery.")

        if order.status != OrderStatus.DELIVERED or order.buyer_confirmed:
            raise InvalidState("Order must be delivered before it can be confirmed.")

        now = timezone.now()
        with transaction.atomic():
            claimed = Order.objects.filter(buyer_confirmed=False).transition(
                order.pk,
                OrderStatus.DELIVERED,
                status=OrderStatus.COMPLETED,
                buyer_confirmed=True,
                buyer_confirmed_at=now,
            )
            if not claimed:
                raise InvalidState("Order must be delivered before it can be confirmed.")
            self.audit.record(
                principal,
                AuditAction.ORDER_DELIVERY_CONFIRM,
                'order',
                order.pk,
                {'from': OrderStatus.DELIVERED, 'to': OrderStatus.COMPLETED},
            )

            escrow = getattr(order, 'escrow', None)
            if escrow is None:
                logger.warning("Delivery confirmed for order without escrow", extra={'order_id': order.pk})
            else:
                self.escrow_service.release(escrow.pk, approved_by=principal)

        events.emit(
            'delivery_confirmed',
            recipients=[order.seller.email],
            order_id=order.pk,
        )
        order.refresh_from_db()
        return order

    def cancel(self, order_id, principal, reason=''):
        order = self.get_order(order_id)
        guards.require(guards.can_view(principal, order), "Not authorised to cancel this order.")

        if order.status not in CANCELLABLE:
            raise InvalidState(f"An order that is '{order.status}' cannot be cancelled.")

        with transaction.atomic():
            cancelled = Order.objects.transition(
                order.pk,
                CANCELLABLE,
                status=OrderStatus.CANCELLED,
                cancellation_reason=reason or '',
                cancelled_at=timezone.now(),
            )
            if not cancelled:
                raise InvalidState("The order can no longer be cancelled.")
            self.audit.record(
                principal,
                AuditAction.ORDER_CANCEL,
                'order',
                order.pk,
                {'from': order.status, 'reason': reason or ''},
            )

        events.emit(
            'order_cancelled',
            recipients=[order.buyer.email, order.seller.email],
            order_id=order.pk,
            reason=reason or '',
        )
        order.refresh_from_db()
        return order

    def enter_dispute(self, order_id, dispute_id, principal):
        """Internal: called by the dispute service when a dispute opens."""
        order = self.get_order(order_id)
        if order.status == OrderStatus.DISPUTED and order.active_dispute_id == dispute_id:
            return order
        if order.status not in DISPUTABLE:
            raise InvalidState(f"An order that is '{order.status}' cannot be disputed.")

        if not Order.objects.transition(order.pk, order.status, status=OrderStatus.DISPUTED, active_dispute_id=dispute_id):
            raise InvalidState("The order was changed by another request. Reload and try again.")
        self.audit.record(
            principal,
            AuditAction.ORDER_STATUS_CHANGE,
            'order',
            order.pk,
            {'from': order.status, 'to': OrderStatus.DISPUTED, 'dispute_id': dispute_id},
        )
        order.refresh_from_db()
        return order

    def exit_dispute(self, order_id, final_status, principal):
        """Internal: called by the dispute service when a dispute resolves."""
        if final_status not in DISPUTE_EXITS:
            raise InvalidTransition(f"A disputed order cannot move to '{final_status}'.")

        order = self.get_order(order_id)
        if order.status != OrderStatus.DISPUTED:
            raise InvalidState("The order is not under dispute.")

        dispute_id = order.active_dispute_id
        if not Order.objects.transition(order.pk, OrderStatus.DISPUTED, status=final_status, active_dispute=None):
            raise InvalidState("The order is not under dispute.")
        self.audit.record(
            principal,
            AuditAction.ORDER_STATUS_CHANGE,
            'order',
            order.pk,
            {'from': OrderStatus.DISPUTED, 'to': final_status, 'dispute_id': dispute_id},
        )
        order.refresh_from_db()
        return order
