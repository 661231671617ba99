from django.conf import settings
from django.core.management.base import BaseCommand
from django.contrib.auth.models import Group, Permission
from django.contrib.contenttypes.models import ContentType
from django.contrib.auth import get_user_model
from disputes.models import Dispute
from escrow.models import EscrowTransaction
from audit.models import AuditLogEntry
from orders.models import Order

User = get_user_model()

class Command(BaseCommand):
    help = "Creates the administrators group and assigns adjudication permissions. Optionally assign a user."

    def add_arguments(self, parser):
        parser.add_argument('--email', type=str, help='Email of user to add to the administrators group')

    def handle(self, *args, **options):
        group_name = settings.ADMIN_GROUP_NAME
        permissions_needed = {
            Order: ["view_order", "change_order"],
            Dispute: ["view_dispute", "change_dispute"],
            EscrowTransaction: ["view_escrowtransaction", "change_escrowtransaction"],
            AuditLogEntry: ["view_auditlogentry"],
        }

        group, created = Group.objects.get_or_create(name=group_name)

        if created:
            self.stdout.write(self.style.SUCCESS(f"Created group: {group_name}"))
        else:
            self.stdout.write(f"Group '{group_name}' already exists.")

        for model, codenames in permissions_needed.items():
            content_type = ContentType.objects.get_for_model(model)
            for perm in Permission.objects.filter(content_type=content_type, codename__in=codenames):
                group.permissions.add(perm)

        self.stdout.write(self.style.SUCCESS(f"Assigned order, dispute, escrow and audit permissions to {group_name}."))

        email = options['email']
        if email:
            try:
                user = User.objects.get(email=email)
                user.groups.add(group)
                self.stdout.write(self.style.SUCCESS(f"User {email} added to {group_name}."))
            except User.DoesNotExist:
                self.stdout.write(self.style.ERROR(f"User with email {email} does not exist."))
