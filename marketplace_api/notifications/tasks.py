import logging

from celery import shared_task

from .utils import send_event_email


logger = logging.getLogger(__name__)


@shared_task(bind=True, max_retries=3, default_retry_delay=60)
def task_send_event_email(self, event_type, recipients, context):
    """Deliver one domain event to the given recipients by e-mail."""
    if not recipients:
        return {'status': 'skipped', 'event_type': event_type}
    try:
        send_event_email(event_type, recipients, context)
    except Exception as exc:
        logger.warning(
            "Notification delivery failed, retrying",
            extra={'event_type': event_type, 'attempt': self.request.retries},
        )
        raise self.retry(exc=exc)
    return {'status': 'sent', 'event_type': event_type, 'recipients': len(recipients)}
