"""
Fire-and-forget delivery of domain events to the notification sink.

``emit`` never raises and never blocks the caller: the Celery task is queued
only after the surrounding database transaction commits, so a rolled-back
transition produces no notification, and a broker failure is logged instead
of surfacing to the business operation.
"""
import json
import logging
from functools import partial

from django.core.serializers.json import DjangoJSONEncoder
from django.db import transaction

from .tasks import task_send_event_email
from .utils import admin_emails


logger = logging.getLogger(__name__)


def _json_safe(context):
    return json.loads(json.dumps(context, cls=DjangoJSONEncoder))


def _dispatch(event_type, recipients, context, notify_admins):
    try:
        recipients = list(recipients)
        if notify_admins:
            recipients.extend(email for email in admin_emails() if email not in recipients)
        task_send_event_email.delay(event_type, recipients, context)
    except Exception:
        logger.exception("Failed to queue notification", extra={'event_type': event_type})


def emit(event_type, recipients=(), notify_admins=False, **context):
    try:
        payload = _json_safe(context)
        transaction.on_commit(
            partial(_dispatch, event_type, [r for r in recipients if r], payload, notify_admins)
        )
    except Exception:
        logger.exception("Failed to schedule notification", extra={'event_type': event_type})
