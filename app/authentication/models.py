"""
Authentication models.

The chat core consumes user identity only: who a participant is and which
marketplace role they act in. Registration, social login and profile
management live outside this service.

Models:
    - User: Custom user model with email-based authentication and a
      marketplace role

Related files:
    - managers.py: Custom user manager for email-based creation
"""

from django.contrib.auth.models import AbstractBaseUser, PermissionsMixin
from django.db import models

from authentication.managers import UserManager


class UserRole(models.TextChoices):
    """
    Marketplace role a user acts in.

    Providers list properties, vehicles or tours; SUPER_ADMIN runs the
    back office and support desk.
    """

    CUSTOMER = "CUSTOMER", "Customer"
    PROPERTY_OWNER = "PROPERTY_OWNER", "Property Owner"
    VEHICLE_OWNER = "VEHICLE_OWNER", "Vehicle Owner"
    TOUR_GUIDE = "TOUR_GUIDE", "Tour Guide"
    SUPER_ADMIN = "SUPER_ADMIN", "Super Admin"


PROVIDER_ROLES = frozenset(
    [UserRole.PROPERTY_OWNER, UserRole.VEHICLE_OWNER, UserRole.TOUR_GUIDE]
)


class User(AbstractBaseUser, PermissionsMixin):
    """
    Custom User model using email as the primary identifier.

    Fields:
        email: Primary identifier, unique, used for login
        first_name / last_name: Display name shown in chat
        role: Marketplace role (drives who may chat with whom)
        is_active: Whether the user account is active
        is_staff: Whether the user can access Django admin
        date_joined: When the user account was created
        updated_at: When the user record was last modified

    Usage:
        customer = User.objects.create_user(
            email='guest@example.com',
            password='securepassword',
        )
        host = User.objects.create_user(
            email='host@example.com',
            password='securepassword',
            role=UserRole.PROPERTY_OWNER,
        )
    """

    email = models.EmailField(
        unique=True,
        db_index=True,
        max_length=254,
        help_text="User's email address (primary identifier)",
    )
    first_name = models.CharField(max_length=150, blank=True)
    last_name = models.CharField(max_length=150, blank=True)

    role = models.CharField(
        max_length=20,
        choices=UserRole.choices,
        default=UserRole.CUSTOMER,
        db_index=True,
        help_text="Marketplace role the user acts in",
    )

    is_active = models.BooleanField(
        default=True,
        help_text="Whether this user account is active. Deselect instead of deleting.",
    )
    is_staff = models.BooleanField(
        default=False,
        help_text="Whether the user can access the admin site.",
    )

    date_joined = models.DateTimeField(
        auto_now_add=True,
        help_text="When the user account was created",
    )
    updated_at = models.DateTimeField(
        auto_now=True,
        help_text="When the user record was last modified",
    )

    USERNAME_FIELD = "email"
    REQUIRED_FIELDS = []

    objects = UserManager()

    class Meta:
        verbose_name = "user"
        verbose_name_plural = "users"
        ordering = ["-date_joined"]

    def __str__(self):
        """Return the user's email as string representation."""
        return self.email

    def get_full_name(self):
        """Return "first last", or the email when no name is set."""
        full_name = f"{self.first_name} {self.last_name}".strip()
        return full_name or self.email

    def get_short_name(self):
        """Return the first name, or the email local part."""
        return self.first_name or self.email.split("@")[0]

    @property
    def is_provider(self) -> bool:
        """True for property owners, vehicle owners and tour guides."""
        return self.role in PROVIDER_ROLES

    @property
    def is_super_admin(self) -> bool:
        """True for back-office admins (role or Django superuser)."""
        return self.role == UserRole.SUPER_ADMIN or self.is_superuser

    @property
    def can_moderate(self) -> bool:
        """Whether the user may approve or remove flagged messages."""
        return self.is_super_admin or self.is_staff
