"""
Authentication models.

User is the identity every chat operation is keyed by. The integer primary
key is the only identifier the chat core compares; email is the login
handle and display_name is what clients render.

Related files:
    - managers.py: Custom user manager for email-based creation
    - middleware.py: WebSocket JWT authentication
"""

from django.contrib.auth.models import AbstractBaseUser, PermissionsMixin
from django.db import models

from authentication.managers import UserManager


class User(AbstractBaseUser, PermissionsMixin):
    """
    Custom User model using email as the login identifier.

    Fields:
        email: Login handle, unique
        display_name: Name shown to other participants
        is_online: Presence flag, written by the connection layer
        is_active: Whether the user account is active
        is_staff: Whether the user can access Django admin
        date_joined: When the user account was created
        updated_at: When the user record was last modified

    Usage:
        user = User.objects.create_user(
            email='user@example.com',
            password='securepassword'
        )
    """

    email = models.EmailField(
        unique=True,
        db_index=True,
        max_length=254,
        help_text="User's email address (login identifier)",
    )
    display_name = models.CharField(
        max_length=150,
        blank=True,
        help_text="Name shown to other chat participants",
    )
    is_online = models.BooleanField(
        default=False,
        help_text="Whether the user currently has a live connection",
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
        return self.email

    def get_full_name(self):
        return self.display_name or self.email

    def get_short_name(self):
        return self.display_name or self.email.split("@")[0]

    def set_online(self, online: bool) -> None:
        """Persist the presence flag without touching other columns."""
        if self.is_online == online:
            return
        self.is_online = online
        self.save(update_fields=["is_online", "updated_at"])
