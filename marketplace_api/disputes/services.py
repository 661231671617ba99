import logging

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from accounts import guards
from audit.models import AuditAction
from audit.services import AuditService
from escrow.services import EscrowService, to_money
from marketplace_api.exceptions import (
    AlreadyResolved,
    Conflict,
    InvalidState,
    NotFound,
    ValidationError,
)
from notifications import events
from orders.models import Order, OrderStatus
from orders.services import DISPUTABLE, OrderLifecycleService
from .models import (
    ACTIVE_STATUSES,
    FINAL_STATUSES,
    Dispute,
    DisputeReason,
    DisputeResolution,
    DisputeStatus,
)

logger = logging.getLogger(__name__)


# Final order status for each resolution. A partial refund counts as a
# fulfilled order with a negotiated adjustment.
RESOLUTION_ORDER_STATUS = {
    DisputeResolution.REFUND_BUYER: OrderStatus.CANCELLED,
    DisputeResolution.RELEASE_SELLER: OrderStatus.COMPLETED,
    DisputeResolution.PARTIAL_REFUND: OrderStatus.COMPLETED,
}

MAX_EVIDENCE_URL_LENGTH = 500


class DisputeService:
    """
    Contested claims on an order.

    Opening a dispute freezes both the order and its escrow; resolving it
    applies exactly one fund disposition and moves the order to its final
    status. Both run inside a single database transaction so that a failure
    in any step leaves no partial dispute behind.
    """

    def __init__(self, audit_service=None, escrow_service=None, order_service=None):
        self.audit = audit_service or AuditService()
        self.escrow_service = escrow_service or EscrowService(audit_service=self.audit)
        self.order_service = order_service or OrderLifecycleService(
            audit_service=self.audit,
            escrow_service=self.escrow_service,
        )

    def get_dispute(self, dispute_id):
        try:
            return Dispute.objects.select_related('order', 'buyer', 'seller').get(pk=dispute_id)
        except Dispute.DoesNotExist:
            raise NotFound("Dispute not found.")

    def open(self, order_id, principal, reason, description, evidence_urls=None):
        try:
            order = Order.objects.select_related('buyer', 'seller').get(pk=order_id)
        except Order.DoesNotExist:
            raise NotFound("Order not found.")

        guards.require(guards.is_buyer(principal, order), "Only the buyer can open a dispute on this order.")

        if order.status not in DISPUTABLE and order.status != OrderStatus.DISPUTED:
            raise InvalidState(f"An order that is '{order.status}' cannot be disputed.")

        if reason not in DisputeReason.values:
            raise ValidationError(f"Unknown dispute reason '{reason}'.")
        minimum = settings.DISPUTE_MIN_DESCRIPTION_LENGTH
        if not isinstance(description, (str, type(None))) or len((description or '').strip()) < minimum:
            raise ValidationError(f"Description must be at least {minimum} characters long.")
        if not isinstance(evidence_urls, (list, tuple, type(None))):
            raise ValidationError("Evidence references must be a list.")
        evidence_urls = list(evidence_urls or [])
        if not all(isinstance(url, str) and 0 < len(url) <= MAX_EVIDENCE_URL_LENGTH for url in evidence_urls):
            raise ValidationError(
                f"Evidence references must be non-empty strings of at most {MAX_EVIDENCE_URL_LENGTH} characters."
            )

        if Dispute.objects.active().filter(order_id=order.pk).exists():
            raise Conflict("An active dispute already exists for this order.")
        if order.status == OrderStatus.DISPUTED:
            raise InvalidState("The order is already under dispute.")

        escrow = getattr(order, 'escrow', None)
        if escrow is None:
            raise InvalidState("The order has no escrow to dispute.")

        with transaction.atomic():
            try:
                with transaction.atomic():
                    dispute = Dispute.objects.create(
                        order=order,
                        buyer_id=order.buyer_id,
                        seller_id=order.seller_id,
                        reason=reason,
                        description=description,
                        evidence_urls=evidence_urls,
                    )
            except IntegrityError:
                raise Conflict("An active dispute already exists for this order.")

            self.audit.record(
                principal,
                AuditAction.DISPUTE_OPEN,
                'dispute',
                dispute.pk,
                {'order_id': order.pk, 'reason': reason, 'evidence_count': len(evidence_urls)},
            )
            self.order_service.enter_dispute(order.pk, dispute.pk, principal)
            self.escrow_service.freeze(escrow.pk, reason, principal)

        logger.info("Dispute opened", extra={'dispute_id': dispute.pk, 'order_id': order.pk, 'reason': reason})
        events.emit(
            'dispute_opened',
            recipients=[order.seller.email, order.buyer.email],
            notify_admins=True,
            order_id=order.pk,
            dispute_id=dispute.pk,
            reason=reason,
        )
        return dispute

    def _validate_resolution(self, dispute, resolution, admin_notes, refund_amount):
        if resolution not in DisputeResolution.values:
            raise ValidationError(f"Unknown resolution '{resolution}'.")
        if not (admin_notes or '').strip():
            raise ValidationError("Admin notes are required to resolve a dispute.")

        if resolution != DisputeResolution.PARTIAL_REFUND:
            if refund_amount not in (None, ''):
                raise ValidationError("A refund amount is only accepted for a partial refund.")
            return None

        if refund_amount in (None, ''):
            raise ValidationError("A refund amount is required for a partial refund.")
        amount = to_money(refund_amount, 'refund_amount')
        total = dispute.order.total_amount
        if amount <= 0 or amount > total:
            raise ValidationError(f"Refund amount must be greater than 0 and at most {total}.")
        return amount

    def resolve(self, dispute_id, principal, resolution, admin_notes, refund_amount=None):
        guards.require(guards.is_admin(principal), "Only an administrator can resolve disputes.")

        dispute = self.get_dispute(dispute_id)
        if dispute.status in FINAL_STATUSES:
            raise AlreadyResolved(f"Dispute is already {dispute.status}.")

        amount = self._validate_resolution(dispute, resolution, admin_notes, refund_amount)
        order = dispute.order
        escrow = getattr(order, 'escrow', None)
        if escrow is None:
            raise InvalidState("The disputed order has no escrow.")

        final_status = RESOLUTION_ORDER_STATUS[resolution]
        now = timezone.now()

        with transaction.atomic():
            claimed = Dispute.objects.transition(
                dispute.pk,
                ACTIVE_STATUSES,
                status=DisputeStatus.RESOLVED,
                resolution=resolution,
                refund_amount=amount,
                admin_id=principal.id,
                admin_notes=admin_notes,
                resolved_at=now,
            )
            if not claimed:
                raise AlreadyResolved("Dispute was resolved by another request.")

            if resolution == DisputeResolution.RELEASE_SELLER:
                escrow = self.escrow_service.release(escrow.pk, approved_by=principal, dispute_id=dispute.pk)
            else:
                escrow = self.escrow_service.refund(
                    escrow.pk,
                    amount if amount is not None else escrow.amount,
                    approved_by=principal,
                    dispute_id=dispute.pk,
                )
            order = self.order_service.exit_dispute(order.pk, final_status, principal)

            self.audit.record(
                principal,
                AuditAction.DISPUTE_RESOLVE,
                'dispute',
                dispute.pk,
                {
                    'order_id': order.pk,
                    'resolution': resolution,
                    'refund_amount': amount,
                    'order_status': order.status,
                    'escrow_status': escrow.status,
                },
            )

        dispute.refresh_from_db()
        logger.info(
            "Dispute resolved",
            extra={'dispute_id': dispute.pk, 'resolution': resolution, 'order_status': order.status}
        )
        events.emit(
            'dispute_resolved',
            recipients=[dispute.buyer.email, dispute.seller.email],
            order_id=order.pk,
            dispute_id=dispute.pk,
            resolution=resolution,
            refund_amount=amount,
        )
        return {
            'dispute': dispute,
            'order_status': order.status,
            'escrow_status': escrow.status,
        }

    def start_review(self, dispute_id, principal):
        guards.require(guards.is_admin(principal), "Only an administrator can review disputes.")
        dispute = self.get_dispute(dispute_id)
        if dispute.status in FINAL_STATUSES:
            raise AlreadyResolved(f"Dispute is already {dispute.status}.")

        with transaction.atomic():
            started = Dispute.objects.transition(
                dispute.pk,
                DisputeStatus.OPEN,
                status=DisputeStatus.UNDER_REVIEW,
                admin_id=principal.id,
                reviewed_at=timezone.now(),
            )
            if not started:
                raise InvalidState("Only an open dispute can be taken under review.")
            self.audit.record(principal, AuditAction.DISPUTE_REVIEW, 'dispute', dispute.pk, {'order_id': dispute.order_id})

        dispute.refresh_from_db()
        events.emit(
            'dispute_under_review',
            recipients=[dispute.buyer.email, dispute.seller.email],
            order_id=dispute.order_id,
            dispute_id=dispute.pk,
        )
        return dispute

    def close(self, dispute_id, principal, admin_notes=''):
        guards.require(guards.is_admin(principal), "Only an administrator can close disputes.")
        dispute = self.get_dispute(dispute_id)
        if dispute.status == DisputeStatus.CLOSED:
            raise AlreadyResolved("Dispute is already closed.")

        with transaction.atomic():
            closed = Dispute.objects.transition(
                dispute.pk,
                DisputeStatus.RESOLVED,
                status=DisputeStatus.CLOSED,
                closed_at=timezone.now(),
            )
            if not closed:
                dispute.refresh_from_db(fields=['status'])
                if dispute.status == DisputeStatus.CLOSED:
                    raise AlreadyResolved("Dispute is already closed.")
                raise InvalidState("Only a resolved dispute can be closed.")
            self.audit.record(
                principal,
                AuditAction.DISPUTE_CLOSE,
                'dispute',
                dispute.pk,
                {'order_id': dispute.order_id, 'notes': admin_notes or ''},
            )

        dispute.refresh_from_db()
        return dispute

    def disputes_for_order(self, order_id, principal, statuses=None):
        try:
            order = Order.objects.get(pk=order_id)
        except Order.DoesNotExist:
            raise NotFound("Order not found.")
        guards.require(guards.is_owner_or_admin(principal, order), "Not authorised to view disputes for this order.")

        queryset = Dispute.objects.filter(order_id=order.pk)
        if statuses:
            unknown = set(statuses) - set(DisputeStatus.values)
            if unknown:
                raise ValidationError(f"Unknown dispute status: {', '.join(sorted(unknown))}.")
            queryset = queryset.filter(status__in=list(statuses))
        return list(queryset.order_by('-created_at', '-id'))
