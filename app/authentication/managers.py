"""
Custom user manager for handle-based authentication.

This module provides the UserManager class that handles user creation
with the chat handle as the primary identifier.

Related files:
    - models.py: User model that uses this manager

Security:
    - Passwords are automatically hashed via set_password()
    - Handles are stored as given; uniqueness is case-insensitive
"""

from django.contrib.auth.models import BaseUserManager


class UserManager(BaseUserManager):
    """
    Custom manager for User model with handle-based authentication.

    Usage:
        # Create a regular user
        user = User.objects.create_user(
            handle="alice",
            password="securepassword",
            display_name="Alice",
        )

        # Create a superuser
        admin = User.objects.create_superuser(
            handle="ops",
            password="adminpassword",
        )
    """

    def get_by_natural_key(self, handle):
        """Look up users case-insensitively so login matches the unique rule."""
        return self.get(handle__iexact=handle)

    def create_user(self, handle, password=None, **extra_fields):
        """
        Create and save a regular user with the given handle and password.

        Args:
            handle: Unique chat handle (required)
            password: User's password (optional; unusable if omitted)
            **extra_fields: Additional fields to set on the user

        Returns:
            User: The created user instance

        Raises:
            ValueError: If handle is not provided
        """
        if not handle:
            raise ValueError("The Handle field must be set")

        extra_fields.setdefault("is_staff", False)
        extra_fields.setdefault("is_superuser", False)
        extra_fields.setdefault("display_name", handle)

        email = extra_fields.pop("email", None)
        if email:
            extra_fields["email"] = self.normalize_email(email)

        user = self.model(handle=handle, **extra_fields)

        if password:
            user.set_password(password)
        else:
            user.set_unusable_password()

        user.save(using=self._db)
        return user

    def create_superuser(self, handle, password=None, **extra_fields):
        """
        Create and save a superuser with the given handle and password.

        Raises:
            ValueError: If is_staff or is_superuser is not True
        """
        extra_fields.setdefault("is_staff", True)
        extra_fields.setdefault("is_superuser", True)

        if extra_fields.get("is_staff") is not True:
            raise ValueError("Superuser must have is_staff=True.")
        if extra_fields.get("is_superuser") is not True:
            raise ValueError("Superuser must have is_superuser=True.")

        return self.create_user(handle, password, **extra_fields)
