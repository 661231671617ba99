import csv
import io
import json
import logging
from datetime import timedelta

from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder
from django.db import DatabaseError, transaction
from django.db.models import Count
from django.utils import timezone

from accounts import guards
from notifications import events
from .models import AuditLogEntry, AuditSeverity

logger = logging.getLogger(__name__)


CSV_HEADERS = [
    "Timestamp", "Severity", "Action", "Actor ID", "Actor Email",
    "Resource Type", "Resource ID", "Metadata",
]


class AuditService:
    """
    Append-only audit trail.

    ``record`` is observational with respect to business state: a failed
    write is logged and reported to administrators but never raised, so it
    cannot roll back the transition that triggered it.
    """

    def record(self, principal, action_type, resource_type, resource_id, metadata=None):
        try:
            # Savepoint: a failed insert must not poison the caller's transaction.
            with transaction.atomic():
                entry = AuditLogEntry.objects.create(
                    actor_id=principal.actor_id,
                    actor_email=principal.email or '',
                    action_type=action_type,
                    resource_type=resource_type,
                    resource_id=str(resource_id),
                    metadata=metadata or {},
                )
            return entry
        except DatabaseError:
            logger.exception(
                "Audit log write failed",
                extra={
                    'action_type': str(action_type),
                    'resource_type': resource_type,
                    'resource_id': str(resource_id),
                }
            )
            events.emit(
                'audit_write_failed',
                notify_admins=True,
                actor_id=principal.actor_id,
                action_type=str(action_type),
                resource_type=resource_type,
                resource_id=str(resource_id),
            )
            return None

    def search(self, principal, *, actor_id=None, actor_email=None, action_type=None,
               severity=None, start=None, end=None, limit=None):
        guards.require(guards.is_admin(principal), "Administrator access required.")

        queryset = AuditLogEntry.objects.all()
        if actor_id:
            queryset = queryset.filter(actor_id=actor_id)
        if actor_email:
            queryset = queryset.filter(actor_email__iexact=actor_email)
        if action_type:
            queryset = queryset.filter(action_type=action_type)
        if severity:
            queryset = queryset.filter(severity=severity)
        if start:
            queryset = queryset.filter(timestamp__gte=start)
        if end:
            queryset = queryset.filter(timestamp__lte=end)

        queryset = queryset.order_by('-timestamp', '-id')
        if limit:
            queryset = queryset[:limit]
        return list(queryset)

    def export_csv(self, entries):
        buffer = io.StringIO()
        writer = csv.writer(buffer, quoting=csv.QUOTE_ALL)
        writer.writerow(CSV_HEADERS)
        for entry in entries:
            writer.writerow([
                entry.timestamp.isoformat(),
                entry.severity,
                entry.action_type,
                entry.actor_id,
                entry.actor_email,
                entry.resource_type,
                entry.resource_id,
                json.dumps(entry.metadata, cls=DjangoJSONEncoder, sort_keys=True),
            ])
        return buffer.getvalue()

    def stats(self, principal, days=None):
        guards.require(guards.is_admin(principal), "Administrator access required.")

        days = days or settings.AUDIT_STATS_DEFAULT_DAYS
        queryset = AuditLogEntry.objects.filter(timestamp__gte=timezone.now() - timedelta(days=days))

        by_severity = {value: 0 for value in AuditSeverity.values}
        for row in queryset.values('severity').annotate(count=Count('id')).order_by():
            by_severity[row['severity']] = row['count']

        top_actions = [
            {'action': row['action_type'], 'count': row['count']}
            for row in queryset.values('action_type').annotate(count=Count('id')).order_by('-count', 'action_type')[:10]
        ]
        top_actors = [
            {'actor_id': row['actor_id'], 'actor_email': row['actor_email'] or 'Unknown', 'count': row['count']}
            for row in queryset.values('actor_id', 'actor_email').annotate(count=Count('id')).order_by('-count', 'actor_id')[:10]
        ]

        return {
            'days': days,
            'total_logs': queryset.count(),
            'by_severity': by_severity,
            'top_actions': top_actions,
            'top_actors': top_actors,
        }
