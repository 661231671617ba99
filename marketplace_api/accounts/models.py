from django.core.exceptions import ValidationError
from django.db import models
from django.contrib.auth.models import AbstractUser, BaseUserManager
from auditlog.registry import auditlog
from auditlog.models import AuditlogHistoryField


class Role(models.TextChoices):
    """Closed set of roles a principal can hold."""
    BUYER = 'buyer', 'Buyer'
    SELLER = 'seller', 'Seller'
    ADMIN = 'admin', 'Administrator'
    SYSTEM = 'system', 'System'


class CustomUserManager(BaseUserManager):
    """
    Manager for CustomUser. Handles user and superuser creation using email as the unique identifier.
    """
    def create_user(self, email, password=None, **extra_fields):
        if not email:
            raise ValueError("Email is required.")
        email = self.normalize_email(email)
        user = self.model(email=email, **extra_fields)
        user.set_password(password)
        validate_roles(user.roles)
        user.save(using=self._db)
        return user

    def create_superuser(self, email, password=None, **extra_fields):
        extra_fields.setdefault('is_staff', True)
        extra_fields.setdefault('is_superuser', True)
        extra_fields.setdefault('is_active', True)

        return self.create_user(email, password, **extra_fields)


def validate_roles(value):
    if not isinstance(value, list):
        raise ValidationError("Roles must be a list.")
    unknown = [role for role in value if role not in Role.values]
    if unknown:
        raise ValidationError(f"Unknown roles: {', '.join(map(str, unknown))}")


class CustomUser(AbstractUser):
    """
    Marketplace account. Uses email as the unique identifier.

    ``roles`` holds values of ``Role``; staff users and members of the
    administrators group are treated as admins regardless of this list.
    Role changes are kept in the auditlog history.
    """
    email = models.EmailField(unique=True, blank=False)
    roles = models.JSONField(default=list, blank=True, validators=[validate_roles])
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    username = None

    USERNAME_FIELD = 'email'
    REQUIRED_FIELDS = []

    objects = CustomUserManager()

    history = AuditlogHistoryField()

    def __str__(self):
        return self.email


auditlog.register(CustomUser, include_fields=['roles', 'is_staff', 'is_active'])
