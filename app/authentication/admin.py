"""
Django admin configuration for authentication models.

Related files:
    - models.py: Model definitions
"""

from django.contrib import admin

from authentication.models import User


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    """
    Admin configuration for User model.

    Handles are shown read-only on existing users because they are
    immutable after creation.
    """

    list_display = (
        "handle",
        "display_name",
        "is_online",
        "last_active",
        "is_active",
        "is_staff",
    )
    list_filter = ("is_online", "is_active", "is_staff")
    search_fields = ("handle", "display_name", "email")
    ordering = ("handle",)
    exclude = ("password", "groups", "user_permissions")

    def get_readonly_fields(self, request, obj=None):
        """Lock the handle once the user exists; presence fields are derived."""
        readonly = ["is_online", "last_active", "date_joined", "last_login"]
        if obj is not None:
            readonly.append("handle")
        return readonly
