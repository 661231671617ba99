from decimal import Decimal

import pytest

from audit.models import AuditAction, AuditLogEntry, AuditSeverity
from escrow.models import EscrowStatus, EscrowTransaction
from escrow.services import EscrowService
from marketplace_api.exceptions import (
    AlreadyExists,
    AlreadyFinalized,
    Conflict,
    InvalidState,
    Unauthorized,
    ValidationError,
)
from orders.models import OrderStatus


pytestmark = pytest.mark.django_db


@pytest.fixture
def service():
    return EscrowService()


class TestCreateAndHold:

    def test_system_creates_and_holds(self, service, make_order, buyer, seller, system_principal):
        order = make_order(OrderStatus.PAYMENT_RECEIVED)

        escrow = service.create(order.pk, buyer.pk, seller.pk, '150000.00', system_principal)
        assert escrow.status == EscrowStatus.PENDING
        assert escrow.amount == Decimal('150000.00')

        escrow = service.hold(escrow.pk, system_principal, payment_reference='PAY-REF-1')
        assert escrow.status == EscrowStatus.HELD
        assert escrow.held_at is not None
        assert escrow.payment_reference == 'PAY-REF-1'

        actions = list(AuditLogEntry.objects.order_by('id').values_list('action_type', flat=True))
        assert actions == [AuditAction.ESCROW_CREATE, AuditAction.ESCROW_HOLD]

    def test_amount_must_match_order_total(self, service, make_order, buyer, seller, system_principal):
        order = make_order(OrderStatus.PAYMENT_RECEIVED)
        with pytest.raises(ValidationError):
            service.create(order.pk, buyer.pk, seller.pk, '149999.99', system_principal)
        assert not EscrowTransaction.objects.exists()

    def test_parties_must_match_order(self, service, make_order, buyer, stranger, system_principal):
        order = make_order(OrderStatus.PAYMENT_RECEIVED)
        with pytest.raises(ValidationError):
            service.create(order.pk, buyer.pk, stranger.pk, '150000.00', system_principal)

    def test_one_escrow_per_order(self, service, make_order, buyer, seller, system_principal):
        order = make_order(OrderStatus.PAYMENT_RECEIVED)
        service.create(order.pk, buyer.pk, seller.pk, '150000.00', system_principal)
        with pytest.raises(AlreadyExists):
            service.create(order.pk, buyer.pk, seller.pk, '150000.00', system_principal)

    def test_buyer_cannot_create(self, service, make_order, buyer, seller, buyer_principal):
        order = make_order(OrderStatus.PAYMENT_RECEIVED)
        with pytest.raises(Unauthorized):
            service.create(order.pk, buyer.pk, seller.pk, '150000.00', buyer_principal)

    def test_hold_twice_is_invalid(self, service, shipped_order, system_principal):
        with pytest.raises(InvalidState):
            service.hold(shipped_order.escrow.pk, system_principal)


class TestPayoutExclusivity:

    def test_release_then_refund_fails(self, service, shipped_order, admin_principal):
        escrow = service.release(shipped_order.escrow.pk, approved_by=admin_principal)
        assert escrow.status == EscrowStatus.RELEASED
        assert escrow.released_at is not None

        with pytest.raises(AlreadyFinalized):
            service.refund(escrow.pk, '1000.00', approved_by=admin_principal)
        with pytest.raises(AlreadyFinalized):
            service.release(escrow.pk, approved_by=admin_principal)
        with pytest.raises(AlreadyFinalized):
            service.dispute(escrow.pk, 'late', admin_principal)

        escrow.refresh_from_db()
        assert escrow.status == EscrowStatus.RELEASED
        assert escrow.refunded_at is None

    def test_refund_then_release_fails(self, service, make_order, make_escrow, admin_principal):
        escrow = make_escrow(make_order(OrderStatus.SHIPPED), status=EscrowStatus.DISPUTED)

        escrow = service.refund(escrow.pk, '150000.00', approved_by=admin_principal)
        assert escrow.status == EscrowStatus.REFUNDED
        assert escrow.refunded_amount == Decimal('150000.00')
        assert escrow.refunded_by == str(admin_principal.id)

        with pytest.raises(AlreadyFinalized):
            service.release(escrow.pk, approved_by=admin_principal)
        escrow.refresh_from_db()
        assert escrow.released_at is None

    def test_refund_only_from_disputed(self, service, shipped_order, admin_principal):
        with pytest.raises(InvalidState):
            service.refund(shipped_order.escrow.pk, '100.00', approved_by=admin_principal)

    @pytest.mark.parametrize('amount', ['0', '-5', '150000.01'])
    def test_refund_amount_bounds(self, service, make_order, make_escrow, admin_principal, amount):
        escrow = make_escrow(make_order(OrderStatus.SHIPPED), status=EscrowStatus.DISPUTED)
        with pytest.raises(ValidationError):
            service.refund(escrow.pk, amount, approved_by=admin_principal)

    def test_racing_release_is_reported_as_finalized(self, service, shipped_order, admin_principal, monkeypatch):
        escrow_id = shipped_order.escrow.pk
        stale = EscrowTransaction.objects.get(pk=escrow_id)
        service.release(escrow_id, approved_by=admin_principal)
        monkeypatch.setattr(service, 'get_escrow', lambda transaction_id: stale)

        with pytest.raises(AlreadyFinalized):
            service.release(escrow_id, approved_by=admin_principal)
        assert AuditLogEntry.objects.filter(action_type=AuditAction.ESCROW_RELEASE).count() == 1


class TestPermissions:

    def test_seller_cannot_release(self, service, shipped_order, seller_principal):
        with pytest.raises(Unauthorized):
            service.release(shipped_order.escrow.pk, approved_by=seller_principal)

    def test_buyer_cannot_release_disputed_escrow(self, service, make_order, make_escrow, buyer_principal):
        escrow = make_escrow(make_order(OrderStatus.SHIPPED), status=EscrowStatus.DISPUTED)
        with pytest.raises(InvalidState):
            service.release(escrow.pk, approved_by=buyer_principal)

    def test_buyer_cannot_refund(self, service, make_order, make_escrow, buyer_principal):
        escrow = make_escrow(make_order(OrderStatus.SHIPPED), status=EscrowStatus.DISPUTED)
        with pytest.raises(Unauthorized):
            service.refund(escrow.pk, '10.00', approved_by=buyer_principal)


class TestReleaseRequest:

    def test_first_request_wins(self, service, shipped_order, seller_principal, django_capture_on_commit_callbacks):
        escrow_id = shipped_order.escrow.pk
        with django_capture_on_commit_callbacks() as callbacks:
            escrow = service.request_release(escrow_id, seller_principal)
        assert escrow.release_requested_at is not None
        assert escrow.release_requested_by == str(seller_principal.id)
        assert escrow.status == EscrowStatus.HELD
        assert len(callbacks) == 1

        with pytest.raises(Conflict):
            service.request_release(escrow_id, seller_principal)

    def test_only_seller_may_request(self, service, shipped_order, buyer_principal):
        with pytest.raises(Unauthorized):
            service.request_release(shipped_order.escrow.pk, buyer_principal)

    def test_not_after_release(self, service, shipped_order, seller_principal, admin_principal):
        service.release(shipped_order.escrow.pk, approved_by=admin_principal)
        with pytest.raises(AlreadyFinalized):
            service.request_release(shipped_order.escrow.pk, seller_principal)


def test_payout_actions_are_critical(shipped_order, admin_principal):
    EscrowService().release(shipped_order.escrow.pk, approved_by=admin_principal)
    entry = AuditLogEntry.objects.get(action_type=AuditAction.ESCROW_RELEASE)
    assert entry.severity == AuditSeverity.CRITICAL
    assert entry.metadata['amount'] == '150000.00'
