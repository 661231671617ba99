import pytest
from django.utils import timezone
from rest_framework.test import APIClient

from accounts.models import CustomUser, Role
from accounts.principal import Principal
from escrow.models import EscrowStatus, EscrowTransaction
from orders.models import Order, OrderStatus


@pytest.fixture
def buyer(db):
    return CustomUser.objects.create_user(email='buyer@example.com', password='pass1234', roles=[Role.BUYER])


@pytest.fixture
def seller(db):
    return CustomUser.objects.create_user(email='seller@example.com', password='pass1234', roles=[Role.SELLER])


@pytest.fixture
def stranger(db):
    return CustomUser.objects.create_user(email='stranger@example.com', password='pass1234', roles=[Role.BUYER])


@pytest.fixture
def admin_user(db):
    return CustomUser.objects.create_user(email='admin@example.com', password='pass1234', is_staff=True)


@pytest.fixture
def buyer_principal(buyer):
    return Principal.from_user(buyer)


@pytest.fixture
def seller_principal(seller):
    return Principal.from_user(seller)


@pytest.fixture
def stranger_principal(stranger):
    return Principal.from_user(stranger)


@pytest.fixture
def admin_principal(admin_user):
    return Principal.from_user(admin_user)


@pytest.fixture
def system_principal():
    return Principal.system()


@pytest.fixture
def make_order(buyer, seller):
    def _make_order(status=OrderStatus.PENDING_PAYMENT, unit_price='150000.00', quantity=1, **extra):
        order = Order.objects.create_with_items(
            buyer=buyer,
            seller=seller,
            items=[{'product_ref': 'SKU-1', 'product_title': 'Phone', 'quantity': quantity, 'unit_price': unit_price}],
        )
        if status != OrderStatus.PENDING_PAYMENT or extra:
            Order.objects.filter(pk=order.pk).update(status=status, **extra)
            order.refresh_from_db()
        return order
    return _make_order


@pytest.fixture
def make_escrow():
    def _make_escrow(order, status=EscrowStatus.HELD):
        escrow = EscrowTransaction.objects.create(
            order=order,
            buyer_id=order.buyer_id,
            seller_id=order.seller_id,
            amount=order.total_amount,
        )
        if status != EscrowStatus.PENDING:
            EscrowTransaction.objects.filter(pk=escrow.pk).update(status=status, held_at=timezone.now())
            escrow.refresh_from_db()
        return escrow
    return _make_escrow


@pytest.fixture
def shipped_order(make_order, make_escrow):
    order = make_order(OrderStatus.SHIPPED)
    make_escrow(order)
    return order


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def client_for():
    def _client_for(user):
        client = APIClient()
        client.force_authenticate(user=user)
        return client
    return _client_for
