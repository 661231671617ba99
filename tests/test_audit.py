import csv
import io
from datetime import timedelta
from unittest import mock

import pytest
from django.db import DatabaseError
from django.utils import timezone

from accounts.principal import Principal
from audit.models import AppendOnlyError, AuditAction, AuditLogEntry, AuditSeverity
from audit.services import CSV_HEADERS, AuditService
from marketplace_api.exceptions import Unauthorized
from orders.models import OrderStatus
from orders.services import OrderLifecycleService


pytestmark = pytest.mark.django_db


@pytest.fixture
def service():
    return AuditService()


@pytest.fixture
def entries(service, admin_principal, buyer_principal, system_principal):
    service.record(system_principal, AuditAction.ESCROW_HOLD, 'escrow', 1, {'payment_reference': 'P-1'})
    service.record(buyer_principal, AuditAction.DISPUTE_OPEN, 'dispute', 7, {'reason': 'damaged'})
    service.record(admin_principal, AuditAction.ESCROW_REFUND, 'escrow', 1, {'amount': '60000.00'})
    return list(AuditLogEntry.objects.order_by('id'))


class TestAppendOnly:

    def test_entries_cannot_be_changed(self, entries):
        entry = entries[0]
        entry.resource_id = '2'
        with pytest.raises(AppendOnlyError):
            entry.save()
        with pytest.raises(AppendOnlyError):
            entry.delete()

    def test_bulk_update_and_delete_are_blocked(self, entries):
        with pytest.raises(AppendOnlyError):
            AuditLogEntry.objects.filter(pk=entries[0].pk).update(resource_id='x')
        with pytest.raises(AppendOnlyError):
            AuditLogEntry.objects.all().delete()
        assert AuditLogEntry.objects.count() == 3

    def test_severity_follows_action(self, entries):
        assert [entry.severity for entry in entries] == [
            AuditSeverity.INFO,
            AuditSeverity.WARNING,
            AuditSeverity.CRITICAL,
        ]


class TestRecord:

    def test_records_actor_details(self, entries, buyer_principal):
        entry = entries[1]
        assert entry.actor_id == str(buyer_principal.id)
        assert entry.actor_email == buyer_principal.email
        assert entry.resource_type == 'dispute'
        assert entry.resource_id == '7'
        assert entry.metadata == {'reason': 'damaged'}

    def test_system_actor(self, entries):
        assert entries[0].actor_id == 'system'
        assert entries[0].actor_email == ''

    def test_write_failure_is_swallowed_and_reported(self, service, buyer_principal):
        with mock.patch.object(AuditLogEntry.objects, 'create', side_effect=DatabaseError('disk full')), \
                mock.patch('audit.services.events.emit') as emit:
            assert service.record(buyer_principal, AuditAction.ORDER_CANCEL, 'order', 3) is None

        emit.assert_called_once()
        assert emit.call_args.args[0] == 'audit_write_failed'
        assert emit.call_args.kwargs['notify_admins'] is True

    def test_failed_audit_does_not_undo_business_change(self, make_order, buyer_principal):
        order = make_order()
        with mock.patch.object(AuditLogEntry.objects, 'create', side_effect=DatabaseError('disk full')):
            order = OrderLifecycleService().cancel(order.pk, buyer_principal, 'No longer needed')

        order.refresh_from_db()
        assert order.status == OrderStatus.CANCELLED
        assert not AuditLogEntry.objects.exists()


class TestSearch:

    def test_admin_only(self, service, entries, buyer_principal):
        with pytest.raises(Unauthorized):
            service.search(buyer_principal)

    def test_newest_first(self, service, entries, admin_principal):
        results = service.search(admin_principal)
        assert [entry.pk for entry in results] == [entry.pk for entry in reversed(entries)]

    def test_filters(self, service, entries, admin_principal, buyer_principal):
        assert [e.action_type for e in service.search(admin_principal, severity='critical')] == ['escrow_refund']
        assert len(service.search(admin_principal, actor_email=buyer_principal.email.upper())) == 1
        assert len(service.search(admin_principal, actor_id='system')) == 1
        assert len(service.search(admin_principal, action_type=AuditAction.ESCROW_HOLD)) == 1
        assert len(service.search(admin_principal, limit=2)) == 2
        assert service.search(admin_principal, start=timezone.now() + timedelta(minutes=5)) == []


class TestExportAndStats:

    def test_export_csv(self, service, entries):
        rows = list(csv.reader(io.StringIO(service.export_csv(entries))))
        assert rows[0] == CSV_HEADERS
        assert len(rows) == 4
        severity, action, actor_id, actor_email, resource_type, resource_id, metadata = rows[3][1:]
        assert (severity, action) == ('critical', 'escrow_refund')
        assert actor_email == 'admin@example.com'
        assert (resource_type, resource_id) == ('escrow', '1')
        assert metadata == '{"amount": "60000.00"}'

    def test_export_quotes_every_field(self, service, entries):
        first_line = service.export_csv(entries).splitlines()[0]
        assert first_line.startswith('"Timestamp","Severity"')

    def test_stats(self, service, entries, admin_principal):
        stats = service.stats(admin_principal)

        assert stats['days'] == 30
        assert stats['total_logs'] == 3
        assert stats['by_severity'] == {'info': 1, 'warning': 1, 'critical': 1}
        assert {row['action'] for row in stats['top_actions']} == {'escrow_hold', 'dispute_open', 'escrow_refund'}
        assert {row['actor_id'] for row in stats['top_actors']} == {
            'system',
            str(admin_principal.id),
            entries[1].actor_id,
        }

    def test_stats_requires_admin(self, service, entries):
        with pytest.raises(Unauthorized):
            service.stats(Principal(id=99, email='x@example.com'))
