import pytest
from django.urls import reverse

from escrow.models import EscrowStatus
from orders.models import OrderStatus


pytestmark = pytest.mark.django_db

DESCRIPTION = "Screen arrived cracked in two places and the box was crushed on one side as well."


class TestAuth:

    def test_token_and_current_user(self, api_client, buyer):
        response = api_client.post(
            reverse('token-obtain-pair'),
            {'email': buyer.email, 'password': 'pass1234'},
            format='json',
        )
        assert response.status_code == 200
        access = response.data['access']

        api_client.credentials(HTTP_AUTHORIZATION=f'Bearer {access}')
        response = api_client.get(reverse('current-user'))
        assert response.status_code == 200
        assert response.data['email'] == buyer.email
        assert response.data['effective_roles'] == ['buyer']

    def test_anonymous_requests_are_rejected(self, api_client):
        assert api_client.get(reverse('order-list')).status_code == 401


class TestOrderEndpoints:

    def test_list_is_scoped_to_parties(self, client_for, make_order, buyer, stranger, admin_user):
        order = make_order()

        response = client_for(buyer).get(reverse('order-list'))
        assert [row['id'] for row in response.data['results']] == [order.pk]

        assert client_for(stranger).get(reverse('order-list')).data['results'] == []
        assert len(client_for(admin_user).get(reverse('order-list')).data['results']) == 1

    def test_role_and_status_filters(self, client_for, make_order, buyer):
        make_order(OrderStatus.SHIPPED)
        client = client_for(buyer)

        assert len(client.get(reverse('order-list'), {'role': 'buyer'}).data['results']) == 1
        assert client.get(reverse('order-list'), {'role': 'seller'}).data['results'] == []
        assert client.get(reverse('order-list'), {'status': 'delivered'}).data['results'] == []

    def test_detail_hidden_from_outsiders(self, client_for, make_order, stranger):
        order = make_order()
        response = client_for(stranger).get(reverse('order-detail', args=[order.pk]))
        assert response.status_code == 403
        assert response.data['code'] == 'unauthorized'

    def test_missing_order(self, client_for, buyer):
        response = client_for(buyer).get(reverse('order-detail', args=[404404]))
        assert response.status_code == 404
        assert response.data['code'] == 'not_found'

    def test_skipping_a_state_returns_conflict(self, client_for, make_order, seller):
        order = make_order(OrderStatus.PROCESSING)
        response = client_for(seller).post(
            reverse('order-advance', args=[order.pk]),
            {'target_status': 'delivered'},
            format='json',
        )
        assert response.status_code == 409
        assert response.data['status'] == 'error'
        assert response.data['code'] == 'invalid_transition'

    def test_ship_with_tracking(self, client_for, make_order, seller):
        order = make_order(OrderStatus.PROCESSING)
        response = client_for(seller).post(
            reverse('order-advance', args=[order.pk]),
            {'target_status': 'shipped', 'tracking_number': 'GIG-998877'},
            format='json',
        )
        assert response.status_code == 200
        assert response.data['order']['status'] == 'shipped'
        assert response.data['order']['tracking_number'] == 'GIG-998877'

    def test_confirm_delivery_releases_escrow(self, client_for, make_order, make_escrow, buyer):
        order = make_order(OrderStatus.DELIVERED)
        make_escrow(order)

        response = client_for(buyer).post(reverse('order-confirm-delivery', args=[order.pk]))
        assert response.status_code == 200
        assert response.data['order']['status'] == 'completed'
        assert response.data['order']['escrow_status'] == EscrowStatus.RELEASED

    def test_confirm_before_delivery(self, client_for, shipped_order, buyer):
        response = client_for(buyer).post(reverse('order-confirm-delivery', args=[shipped_order.pk]))
        assert response.status_code == 409
        assert response.data['code'] == 'invalid_state'

    def test_cancel(self, client_for, make_order, buyer):
        order = make_order(OrderStatus.PAYMENT_RECEIVED)
        response = client_for(buyer).post(reverse('order-cancel', args=[order.pk]), {'reason': 'Found it cheaper'}, format='json')
        assert response.status_code == 200
        assert response.data['order']['status'] == 'cancelled'

    def test_shipment_update_requires_a_field(self, client_for, make_order, seller):
        order = make_order(OrderStatus.SHIPPED)
        response = client_for(seller).patch(reverse('order-shipment', args=[order.pk]), {}, format='json')
        assert response.status_code == 400
        assert response.data['code'] == 'validation_error'


class TestDisputeEndpoints:

    def open_dispute(self, client, order, description=DESCRIPTION):
        return client.post(
            reverse('order-disputes', args=[order.pk]),
            {'reason': 'damaged', 'description': description, 'evidence_urls': ['https://img.example.com/1.png']},
            format='json',
        )

    def test_open_and_resolve(self, client_for, shipped_order, buyer, admin_user):
        response = self.open_dispute(client_for(buyer), shipped_order)
        assert response.status_code == 201
        dispute_id = response.data['dispute']['id']

        response = client_for(admin_user).post(
            reverse('disputes-resolve', args=[dispute_id]),
            {'resolution': 'partial_refund', 'admin_notes': 'Split the difference.', 'refund_amount': '60000.00'},
            format='json',
        )
        assert response.status_code == 200
        assert response.data['order_status'] == 'completed'
        assert response.data['escrow_status'] == 'refunded'
        assert response.data['dispute']['status'] == 'resolved'

        response = client_for(admin_user).post(
            reverse('disputes-resolve', args=[dispute_id]),
            {'resolution': 'refund_buyer', 'admin_notes': 'Again.'},
            format='json',
        )
        assert response.status_code == 409
        assert response.data['code'] == 'already_resolved'

    def test_short_description(self, client_for, shipped_order, buyer):
        response = self.open_dispute(client_for(buyer), shipped_order, description='Broken.')
        assert response.status_code == 400
        assert response.data['code'] == 'validation_error'

    def test_seller_cannot_open(self, client_for, shipped_order, seller):
        response = self.open_dispute(client_for(seller), shipped_order)
        assert response.status_code == 403
        assert response.data['code'] == 'unauthorized'

    def test_outsider_gets_forbidden_before_input_checks(self, client_for, shipped_order, stranger):
        response = client_for(stranger).post(
            reverse('order-disputes', args=[shipped_order.pk]),
            {'reason': 'changed_mind', 'description': 'short'},
            format='json',
        )
        assert response.status_code == 403
        assert response.data['code'] == 'unauthorized'

    def test_missing_order_is_reported_before_input_checks(self, client_for, buyer):
        response = client_for(buyer).post(reverse('order-disputes', args=[404404]), {}, format='json')
        assert response.status_code == 404
        assert response.data['code'] == 'not_found'

    def test_second_dispute_conflicts(self, client_for, shipped_order, buyer):
        client = client_for(buyer)
        self.open_dispute(client, shipped_order)
        response = self.open_dispute(client, shipped_order)
        assert response.status_code == 409
        assert response.data['code'] == 'conflict'

    def test_non_admin_cannot_resolve(self, client_for, shipped_order, buyer):
        client = client_for(buyer)
        dispute_id = self.open_dispute(client, shipped_order).data['dispute']['id']

        response = client.post(
            reverse('disputes-resolve', args=[dispute_id]),
            {'resolution': 'refund_buyer', 'admin_notes': 'Please.'},
            format='json',
        )
        assert response.status_code == 403

    def test_list_and_order_disputes(self, client_for, shipped_order, buyer, seller, stranger):
        self.open_dispute(client_for(buyer), shipped_order)

        assert len(client_for(seller).get(reverse('disputes-list')).data['results']) == 1
        assert client_for(stranger).get(reverse('disputes-list')).data['results'] == []

        response = client_for(seller).get(reverse('order-disputes', args=[shipped_order.pk]), {'status': 'open,under_review'})
        assert response.status_code == 200
        assert len(response.data) == 1

    def test_review_and_close(self, client_for, shipped_order, buyer, admin_user):
        dispute_id = self.open_dispute(client_for(buyer), shipped_order).data['dispute']['id']
        admin = client_for(admin_user)

        assert admin.post(reverse('disputes-review', args=[dispute_id])).data['dispute']['status'] == 'under_review'
        response = admin.post(reverse('disputes-close', args=[dispute_id]), {}, format='json')
        assert response.status_code == 409
        assert response.data['code'] == 'invalid_state'


class TestEscrowEndpoints:

    def test_admin_creates_and_holds(self, client_for, make_order, buyer, seller, admin_user):
        order = make_order(OrderStatus.PAYMENT_RECEIVED)
        admin = client_for(admin_user)

        response = admin.post(
            reverse('escrow-list'),
            {'order_id': order.pk, 'buyer_id': buyer.pk, 'seller_id': seller.pk, 'amount': '150000.00'},
            format='json',
        )
        assert response.status_code == 201
        escrow_id = response.data['escrow']['id']

        response = admin.post(reverse('escrow-hold', args=[escrow_id]), {'payment_reference': 'PSK-1'}, format='json')
        assert response.data['escrow']['status'] == 'held'

    def test_buyer_cannot_hold(self, client_for, make_order, make_escrow, buyer):
        escrow = make_escrow(make_order(OrderStatus.PAYMENT_RECEIVED), status=EscrowStatus.PENDING)
        response = client_for(buyer).post(reverse('escrow-hold', args=[escrow.pk]), {}, format='json')
        assert response.status_code == 403

    def test_buyer_cannot_freeze_escrow_directly(self, client_for, shipped_order, buyer):
        response = client_for(buyer).post(
            reverse('escrow-dispute', args=[shipped_order.escrow.pk]),
            {'reason': 'Item not as described'},
            format='json',
        )
        assert response.status_code == 403
        shipped_order.escrow.refresh_from_db()
        assert shipped_order.escrow.status == EscrowStatus.HELD

    def test_double_release_is_rejected(self, client_for, shipped_order, admin_user):
        admin = client_for(admin_user)
        escrow_id = shipped_order.escrow.pk

        assert admin.post(reverse('escrow-release', args=[escrow_id])).status_code == 200
        response = admin.post(reverse('escrow-release', args=[escrow_id]))
        assert response.status_code == 409
        assert response.data['code'] == 'already_finalized'

    def test_seller_requests_release(self, client_for, shipped_order, seller):
        response = client_for(seller).post(reverse('escrow-request-release', args=[shipped_order.escrow.pk]))
        assert response.status_code == 200
        assert response.data['escrow']['release_requested_by'] == str(seller.pk)

    def test_list_is_scoped(self, client_for, shipped_order, seller, stranger):
        assert len(client_for(seller).get(reverse('escrow-list')).data['results']) == 1
        assert client_for(stranger).get(reverse('escrow-list')).data['results'] == []


class TestAuditEndpoints:

    def test_admin_reads_export_and_stats(self, client_for, make_order, buyer, admin_user):
        order = make_order()
        client_for(buyer).post(reverse('order-cancel', args=[order.pk]), {}, format='json')
        admin = client_for(admin_user)

        response = admin.get(reverse('audit-log-list'), {'severity': 'warning'})
        assert response.status_code == 200
        assert response.data['count'] == 1
        assert response.data['results'][0]['action_type'] == 'order_cancel'

        response = admin.get(reverse('audit-log-export'))
        assert response.status_code == 200
        assert response['Content-Type'] == 'text/csv'
        assert 'attachment; filename="audit-logs-' in response['Content-Disposition']
        assert b'order_cancel' in response.content

        response = admin.get(reverse('audit-log-stats'), {'days': 7})
        assert response.data['days'] == 7
        assert response.data['total_logs'] == 1

    def test_non_admins_are_refused(self, client_for, buyer):
        for name in ('audit-log-list', 'audit-log-export', 'audit-log-stats'):
            assert client_for(buyer).get(reverse(name)).status_code == 403

    def test_invalid_filter(self, client_for, admin_user):
        response = client_for(admin_user).get(reverse('audit-log-list'), {'severity': 'loud'})
        assert response.status_code == 400
        assert response.data['code'] == 'validation_error'
