# apps/chat/models.py
from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils import timezone


class ChatThread(models.Model):
    OPEN = 'open'
    CLOSED = 'closed'
    STATUS_CHOICES = (
        (OPEN, 'Open'),
        (CLOSED, 'Closed'),
    )

    customer = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='support_threads')
    customer_ip = models.CharField(max_length=45, blank=True, default='')
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default=OPEN)
    last_message_text = models.TextField(blank=True, default='')
    last_message_at = models.DateTimeField(default=timezone.now, db_index=True)
    unread_for_admin = models.PositiveIntegerField(default=0)
    unread_for_customer = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-last_message_at', '-id']
        constraints = [
            # canonical thread: at most one open thread per customer
            models.UniqueConstraint(
                fields=['customer'],
                condition=Q(status='open'),
                name='chat_one_open_thread_per_customer',
            ),
        ]

    def __str__(self):
        return f"Thread #{self.pk} ({self.customer})"


class ChatMessage(models.Model):
    CUSTOMER = 'customer'
    ADMIN = 'admin'
    SENDER_CHOICES = (
        (CUSTOMER, 'Customer'),
        (ADMIN, 'Admin'),
    )

    thread = models.ForeignKey(ChatThread, on_delete=models.CASCADE, related_name='messages')
    sender_type = models.CharField(max_length=10, choices=SENDER_CHOICES)
    sender = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name='support_messages')
    text = models.TextField(blank=True, default='')
    image_url = models.CharField(max_length=500, blank=True, default='')
    client_message_id = models.CharField(max_length=64, blank=True, null=True)
    created_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        ordering = ['created_at', 'id']
        constraints = [
            models.UniqueConstraint(
                fields=['thread', 'client_message_id'],
                condition=Q(client_message_id__isnull=False),
                name='chat_unique_client_message_id',
            ),
        ]

    def __str__(self):
        return f"{self.sender_type}: {(self.text or self.image_url)[:30]}"
