"""
Authentication models.

This module defines the user model consumed by the messaging core:
- User: Chat identity with a unique, immutable handle

Related files:
    - managers.py: Custom user manager for handle-based creation
    - chat/presence.py: Owns online accounting; is_online here is a cache

Security:
    - User passwords hashed with Django's password hashers
    - public_key is an opaque placeholder and is never interpreted
"""

import re
import uuid

from django.contrib.auth.models import AbstractBaseUser, PermissionsMixin
from django.core.exceptions import ValidationError
from django.db import models
from django.db.models.functions import Lower
from django.utils import timezone

from authentication.managers import UserManager


HANDLE_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{3,30}$")


def validate_handle_format(value):
    """Validate handle format: 3-30 chars, alphanumeric + _ + -."""
    if not HANDLE_PATTERN.match(value or ""):
        raise ValidationError(
            "Handle must be 3-30 characters and contain only "
            "letters, numbers, underscores, and hyphens."
        )


class User(AbstractBaseUser, PermissionsMixin):
    """
    Chat user identified by a unique handle.

    Fields:
        id: UUID primary key
        handle: Unique (case-insensitive), immutable after creation
        display_name: Name shown next to messages
        email: Optional contact address
        public_key: Opaque capability placeholder (not a security mechanism)
        bio: Free-form profile text
        profile_picture: URL of the user's avatar
        is_online: Cached presence flag, written by the presence tracker
        last_active: Last login/logout/activity ping
        is_active: Whether the account may authenticate
        is_staff: Whether the user can access Django admin
        date_joined: When the account was created

    Note:
        Users are never deleted by the messaging core.
    """

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for this user",
    )

    handle = models.CharField(
        max_length=30,
        unique=True,
        validators=[validate_handle_format],
        help_text="Unique chat handle (3-30 chars, immutable after creation)",
    )

    display_name = models.CharField(
        max_length=100,
        blank=True,
        default="",
        help_text="Name shown next to messages",
    )

    email = models.EmailField(
        blank=True,
        default="",
        max_length=254,
        help_text="Optional contact email address",
    )

    public_key = models.TextField(
        blank=True,
        default="",
        help_text="Opaque public-key placeholder published by the client",
    )

    bio = models.CharField(
        max_length=500,
        blank=True,
        default="",
    )

    profile_picture = models.URLField(
        max_length=500,
        blank=True,
        default="",
    )

    # Presence cache (source of truth is chat.presence.PresenceTracker)
    is_online = models.BooleanField(
        default=False,
        db_index=True,
        help_text="Cached online flag; may be briefly stale during multi-tab disconnects",
    )
    last_active = models.DateTimeField(
        default=timezone.now,
        help_text="Last time the user connected, disconnected or pinged",
    )

    is_active = models.BooleanField(
        default=True,
        help_text="Whether this user account is active. Deselect instead of deleting.",
    )
    is_staff = models.BooleanField(
        default=False,
        help_text="Whether the user can access the admin site.",
    )

    date_joined = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    USERNAME_FIELD = "handle"
    REQUIRED_FIELDS = []

    objects = UserManager()

    class Meta:
        verbose_name = "user"
        verbose_name_plural = "users"
        ordering = ["handle"]
        constraints = [
            models.UniqueConstraint(
                Lower("handle"),
                name="unique_user_handle_ci",
            ),
        ]

    def __str__(self):
        """Return the handle as string representation."""
        return self.handle

    @classmethod
    def from_db(cls, db, field_names, values):
        """Remember the loaded handle so save() can reject changes."""
        instance = super().from_db(db, field_names, values)
        if "handle" in field_names:
            instance._loaded_handle = instance.handle
        return instance

    def save(self, *args, **kwargs):
        """Persist the user, refusing to rename an existing handle."""
        loaded = getattr(self, "_loaded_handle", None)
        if not self._state.adding and loaded is not None and loaded != self.handle:
            raise ValidationError("Handle cannot be changed after creation.")
        super().save(*args, **kwargs)
        self._loaded_handle = self.handle

    def get_full_name(self):
        """Return the display name, falling back to the handle."""
        return self.display_name or self.handle

    def get_short_name(self):
        """Return the handle."""
        return self.handle
