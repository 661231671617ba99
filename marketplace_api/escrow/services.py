from decimal import Decimal, InvalidOperation
import logging

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from accounts import guards
from audit.models import AuditAction
from audit.services import AuditService
from marketplace_api.exceptions import (
    AlreadyExists,
    AlreadyFinalized,
    Conflict,
    InvalidState,
    NotFound,
    ValidationError,
)
from notifications import events
from orders.models import Order
from .models import EscrowStatus, EscrowTransaction, TERMINAL_STATUSES

logger = logging.getLogger(__name__)


def to_money(value, field_name='amount'):
    try:
        amount = Decimal(str(value)).quantize(settings.MONEY_QUANTUM)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"'{field_name}' must be a decimal amount.")
    if not amount.is_finite():
        raise ValidationError(f"'{field_name}' must be a decimal amount.")
    return amount


class EscrowService:
    """
    Custody of buyer funds for one order.

    This is the only place that sets ``released`` or ``refunded``. Each
    mutator re-reads the escrow, rejects terminal rows with
    ``AlreadyFinalized`` and then applies its change as a single conditional
    update, so at most one payout outcome can ever be written.
    """

    def __init__(self, audit_service=None):
        self.audit = audit_service or AuditService()

    def get_escrow(self, transaction_id):
        try:
            return EscrowTransaction.objects.select_related('buyer', 'seller', 'order').get(pk=transaction_id)
        except EscrowTransaction.DoesNotExist:
            raise NotFound("Escrow transaction not found.")

    def create(self, order_id, buyer_id, seller_id, amount, principal):
        guards.require(
            guards.is_system(principal) or guards.is_admin(principal),
            "Only the system or an administrator can open an escrow.",
        )
        try:
            order = Order.objects.get(pk=order_id)
        except Order.DoesNotExist:
            raise NotFound("Order not found.")

        amount = to_money(amount)
        if order.buyer_id != buyer_id or order.seller_id != seller_id:
            raise ValidationError("Escrow parties must match the order's buyer and seller.")
        if amount <= 0 or amount != order.total_amount:
            raise ValidationError("Escrow amount must equal the order total.")
        if EscrowTransaction.objects.filter(order_id=order.pk).exists():
            raise AlreadyExists("An escrow already exists for this order.")

        try:
            with transaction.atomic():
                escrow = EscrowTransaction.objects.create(
                    order=order,
                    buyer_id=buyer_id,
                    seller_id=seller_id,
                    amount=amount,
                )
                self.audit.record(
                    principal,
                    AuditAction.ESCROW_CREATE,
                    'escrow',
                    escrow.pk,
                    {'order_id': order.pk, 'amount': amount},
                )
        except IntegrityError:
            raise AlreadyExists("An escrow already exists for this order.")

        logger.info("Escrow created", extra={'escrow_id': escrow.pk, 'order_id': order.pk})
        return escrow

    def _apply(self, escrow, from_statuses, principal, action_type, metadata, queryset=None, **changes):
        if escrow.status in TERMINAL_STATUSES:
            raise AlreadyFinalized(f"Escrow is already {escrow.status}.")
        if escrow.status not in from_statuses:
            raise InvalidState(f"Escrow is '{escrow.status}'; expected one of {', '.join(sorted(from_statuses))}.")

        queryset = queryset if queryset is not None else EscrowTransaction.objects.all()
        with transaction.atomic():
            if not queryset.transition(escrow.pk, from_statuses, **changes):
                # Lost a race; report what the winner left behind.
                escrow.refresh_from_db(fields=['status'])
                if escrow.status in TERMINAL_STATUSES:
                    raise AlreadyFinalized(f"Escrow is already {escrow.status}.")
                raise InvalidState(f"Escrow is '{escrow.status}'.")
            self.audit.record(principal, action_type, 'escrow', escrow.pk, metadata)

        escrow.refresh_from_db()
        logger.info(
            "Escrow updated",
            extra={'escrow_id': escrow.pk, 'action': str(action_type), 'status': escrow.status}
        )
        return escrow

    def hold(self, transaction_id, principal, payment_reference=None):
        guards.require(
            guards.is_system(principal) or guards.is_admin(principal),
            "Only the system or an administrator can mark funds as held.",
        )
        escrow = self.get_escrow(transaction_id)
        escrow = self._apply(
            escrow,
            {EscrowStatus.PENDING},
            principal,
            AuditAction.ESCROW_HOLD,
            {'order_id': escrow.order_id, 'payment_reference': payment_reference or ''},
            status=EscrowStatus.HELD,
            held_at=timezone.now(),
            payment_reference=payment_reference or '',
        )
        events.emit(
            'escrow_held',
            recipients=[escrow.buyer.email, escrow.seller.email],
            order_id=escrow.order_id,
            amount=escrow.amount,
        )
        return escrow

    def _settlement_queryset(self, escrow, dispute_id):
        """
        Payouts on an order under dispute belong to that dispute's resolution.

        The order's active dispute is part of the update condition, so a
        dispute opened concurrently also makes a direct payout fail.
        """
        active_dispute_id = escrow.order.active_dispute_id
        if escrow.status not in TERMINAL_STATUSES and active_dispute_id != dispute_id:
            if active_dispute_id is not None:
                raise InvalidState(
                    f"Order #{escrow.order_id} is under dispute; its escrow is settled by resolving dispute "
                    f"#{active_dispute_id}."
                )
            raise InvalidState("The order has no active dispute to settle.")
        return EscrowTransaction.objects.filter(order__active_dispute_id=dispute_id)

    def release(self, transaction_id, approved_by, dispute_id=None):
        escrow = self.get_escrow(transaction_id)
        guards.require(
            guards.is_admin(approved_by) or guards.is_system(approved_by) or guards.is_buyer(approved_by, escrow),
            "Only the buyer, the system or an administrator can release this escrow.",
        )
        if escrow.status == EscrowStatus.DISPUTED and not (guards.is_admin(approved_by) or guards.is_system(approved_by)):
            raise InvalidState("A disputed escrow can only be released through dispute resolution.")
        queryset = self._settlement_queryset(escrow, dispute_id)

        escrow = self._apply(
            escrow,
            {EscrowStatus.HELD, EscrowStatus.DISPUTED},
            approved_by,
            AuditAction.ESCROW_RELEASE,
            {'order_id': escrow.order_id, 'from': escrow.status, 'amount': escrow.amount},
            queryset=queryset,
            status=EscrowStatus.RELEASED,
            released_at=timezone.now(),
            released_by=approved_by.actor_id,
        )
        events.emit(
            'escrow_released',
            recipients=[escrow.seller.email, escrow.buyer.email],
            order_id=escrow.order_id,
            amount=escrow.amount,
        )
        return escrow

    def dispute(self, transaction_id, reason, principal):
        guards.require(
            guards.is_admin(principal) or guards.is_system(principal),
            "Only the system or an administrator can dispute an escrow. Buyers open a dispute on the order.",
        )
        return self.freeze(transaction_id, reason, principal)

    def freeze(self, transaction_id, reason, principal):
        """Internal: called by the dispute service when a dispute opens."""
        escrow = self.get_escrow(transaction_id)
        if escrow.status == EscrowStatus.DISPUTED:
            return escrow
        return self._apply(
            escrow,
            {EscrowStatus.HELD},
            principal,
            AuditAction.ESCROW_DISPUTE,
            {'order_id': escrow.order_id, 'reason': reason or ''},
            status=EscrowStatus.DISPUTED,
            disputed_at=timezone.now(),
            dispute_reason=reason or '',
        )

    def refund(self, transaction_id, amount, approved_by, dispute_id=None):
        guards.require(
            guards.is_admin(approved_by) or guards.is_system(approved_by),
            "Only the system or an administrator can refund an escrow.",
        )
        escrow = self.get_escrow(transaction_id)
        if escrow.status in TERMINAL_STATUSES:
            raise AlreadyFinalized(f"Escrow is already {escrow.status}.")

        amount = to_money(amount)
        if amount <= 0 or amount > escrow.amount:
            raise ValidationError(f"Refund amount must be greater than 0 and at most {escrow.amount}.")
        queryset = self._settlement_queryset(escrow, dispute_id)

        escrow = self._apply(
            escrow,
            {EscrowStatus.DISPUTED},
            approved_by,
            AuditAction.ESCROW_REFUND,
            {'order_id': escrow.order_id, 'amount': amount, 'escrow_amount': escrow.amount},
            queryset=queryset,
            status=EscrowStatus.REFUNDED,
            refunded_at=timezone.now(),
            refunded_by=approved_by.actor_id,
            refunded_amount=amount,
        )
        events.emit(
            'escrow_refunded',
            recipients=[escrow.buyer.email, escrow.seller.email],
            order_id=escrow.order_id,
            amount=amount,
        )
        return escrow

    def request_release(self, transaction_id, principal):
        escrow = self.get_escrow(transaction_id)
        guards.require(guards.is_seller(principal, escrow), "Only the seller can request a release.")
        if escrow.release_requested_at is not None and escrow.status == EscrowStatus.HELD:
            raise Conflict("A release has already been requested for this escrow.")

        try:
            escrow = self._apply(
                escrow,
                {EscrowStatus.HELD},
                principal,
                AuditAction.ESCROW_RELEASE_REQUEST,
                {'order_id': escrow.order_id},
                queryset=EscrowTransaction.objects.filter(release_requested_at__isnull=True),
                release_requested_at=timezone.now(),
                release_requested_by=principal.actor_id,
            )
        except InvalidState as exc:
            if isinstance(exc, AlreadyFinalized) or escrow.status != EscrowStatus.HELD:
                raise
            raise Conflict("A release has already been requested for this escrow.")

        events.emit(
            'escrow_release_requested',
            notify_admins=True,
            order_id=escrow.order_id,
            escrow_id=escrow.pk,
            seller=escrow.seller.email,
        )
        return escrow
