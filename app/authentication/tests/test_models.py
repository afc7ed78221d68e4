"""
Tests for the User model.

The chat core reads three things from a user: who they are, which
marketplace role they act in, and whether they may moderate. These tests
pin those properties down.
"""

import pytest
from django.db import IntegrityError

from authentication.models import User, UserRole
from authentication.tests.factories import AdminFactory, ProviderFactory, UserFactory


class TestUserModel:
    """Field constraints and string helpers."""

    def test_user_email_must_be_unique(self, db, user):
        """
        Email addresses must be unique across all users.

        Why it matters: Email is the USERNAME_FIELD, so duplicates would
        create login ambiguity.
        """
        with pytest.raises(IntegrityError):
            User.objects.create_user(email=user.email, password="DifferentPass123!")

    def test_default_role_is_customer(self, db):
        user = User.objects.create_user(email="new@example.com", password="TestPass123!")

        assert user.role == UserRole.CUSTOMER

    def test_str_returns_email(self, db, user):
        assert str(user) == user.email

    def test_full_name_joins_first_and_last(self, db):
        user = UserFactory(first_name="Jane", last_name="Doe")

        assert user.get_full_name() == "Jane Doe"

    def test_full_name_falls_back_to_email(self, db):
        """
        Why it matters: Chat notifications are titled with the sender's
        name; a user who never set one must still render as something.
        """
        user = UserFactory(first_name="", last_name="")

        assert user.get_full_name() == user.email

    def test_short_name_falls_back_to_email_local_part(self, db):
        user = UserFactory(email="traveller@example.com", first_name="")

        assert user.get_short_name() == "traveller"


class TestUserRoleProperties:
    """Role-derived flags used by conversation and moderation rules."""

    @pytest.mark.parametrize(
        "role",
        [UserRole.PROPERTY_OWNER, UserRole.VEHICLE_OWNER, UserRole.TOUR_GUIDE],
    )
    def test_provider_roles(self, db, role):
        assert ProviderFactory(role=role).is_provider is True

    def test_customer_is_not_provider(self, db, user):
        assert user.is_provider is False

    def test_super_admin_role_can_moderate(self, db):
        admin = AdminFactory()

        assert admin.is_super_admin is True
        assert admin.can_moderate is True

    def test_django_superuser_counts_as_super_admin(self, db):
        """
        Given a superuser created with an explicit CUSTOMER role
        When checking admin status
        Then is_superuser alone is enough
        """
        root = User.objects.create_superuser(
            email="root@example.com", password="x", role=UserRole.CUSTOMER
        )

        assert root.is_super_admin is True

    def test_staff_can_moderate_without_admin_role(self, db):
        staff = UserFactory(is_staff=True)

        assert staff.is_super_admin is False
        assert staff.can_moderate is True

    def test_customer_cannot_moderate(self, db, user):
        assert user.can_moderate is False
