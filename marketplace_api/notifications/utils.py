from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.mail import send_mail
from django.db import connection
from django.db.models import Q, TextField
from django.db.models.functions import Cast

from accounts.models import Role


User = get_user_model()


EVENT_SUBJECTS = {
    'order_status_changed': "Order #{order_id} is now {status}",
    'order_cancelled': "Order #{order_id} was cancelled",
    'delivery_confirmed': "Buyer confirmed delivery of order #{order_id}",
    'escrow_held': "Payment for order #{order_id} is held in escrow",
    'escrow_released': "Escrow for order #{order_id} was released",
    'escrow_refunded': "Escrow for order #{order_id} was refunded",
    'escrow_release_requested': "Seller requested release for order #{order_id}",
    'dispute_opened': "A dispute was opened on order #{order_id}",
    'dispute_under_review': "Dispute #{dispute_id} is under review",
    'dispute_resolved': "Dispute #{dispute_id} has been resolved",
    'audit_write_failed': "Audit log write failed",
}


def admin_emails():
    """E-mail addresses of every active administrator account."""
    active = User.objects.filter(is_active=True)
    emails = set(
        active.filter(Q(is_staff=True) | Q(groups__name=settings.ADMIN_GROUP_NAME))
        .values_list('email', flat=True)
    )
    if connection.features.supports_json_field_contains:
        emails.update(active.filter(roles__contains=[Role.ADMIN.value]).values_list('email', flat=True))
    else:
        # Narrow to rows whose serialized roles mention the role, then check the decoded list.
        candidates = (
            active.annotate(roles_text=Cast('roles', output_field=TextField()))
            .filter(roles_text__contains=f'"{Role.ADMIN.value}"')
            .values_list('email', 'roles')
        )
        emails.update(email for email, roles in candidates if Role.ADMIN.value in (roles or []))
    return sorted(emails)


def build_subject(event_type, context):
    template = EVENT_SUBJECTS.get(event_type, event_type.replace('_', ' ').capitalize())
    try:
        return template.format(**context)
    except KeyError:
        return template


def send_event_email(event_type, recipients, context):
    details = "\n".join(f"    {key}: {value}" for key, value in sorted(context.items()))
    message = f"""
    Hello,

    {build_subject(event_type, context)}.

{details}

    You can follow up from your dashboard: {settings.FRONTEND_DOMAIN}

    The {settings.SITE_NAME} Team
    """
    send_mail(
        subject=build_subject(event_type, context),
        message=message.strip(),
        from_email=settings.DEFAULT_FROM_EMAIL,
        recipient_list=list(recipients),
        fail_silently=False,
    )
