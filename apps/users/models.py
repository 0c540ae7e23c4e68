# apps/users/models.py
from django.contrib.auth.models import AbstractUser
from django.db import models


class User(AbstractUser):
    CUSTOMER = 'customer'
    ADMIN = 'admin'
    USER_TYPE_CHOICES = (
        (CUSTOMER, 'Customer'),
        (ADMIN, 'Admin'),
    )

    user_type = models.CharField(max_length=10, choices=USER_TYPE_CHOICES, default=CUSTOMER)
    full_name = models.CharField(max_length=255, blank=True)
    phone = models.CharField(max_length=20, blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)

    @property
    def role(self):
        """Support role used by the chat: staff accounts always act as admins."""
        if self.user_type == self.ADMIN or self.is_staff or self.is_superuser:
            return self.ADMIN
        return self.CUSTOMER

    @property
    def display_name(self):
        return self.full_name.strip() or self.email or self.username

    def __str__(self):
        return self.email or self.username
