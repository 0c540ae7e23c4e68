# apps/chat/admin.py
from django.contrib import admin
from django.utils.html import format_html

from .models import ChatMessage, ChatThread


class ChatMessageInline(admin.TabularInline):
    model = ChatMessage
    extra = 0
    can_delete = False
    fields = ("created_at", "sender_type", "sender", "text", "image_link")
    readonly_fields = fields

    def image_link(self, obj):
        if not obj.image_url:
            return "-"
        return format_html('<a href="{}" target="_blank">image</a>', obj.image_url)
    image_link.short_description = "Image"

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(ChatThread)
class ChatThreadAdmin(admin.ModelAdmin):
    list_display = ("id", "customer", "status", "last_message_preview", "last_message_at", "unread_for_admin", "unread_for_customer")
    list_filter = ("status",)
    search_fields = ("customer__email", "customer__full_name", "last_message_text", "customer_ip")
    ordering = ("-last_message_at",)
    readonly_fields = ("customer", "customer_ip", "last_message_text", "last_message_at", "unread_for_admin", "unread_for_customer", "created_at", "updated_at")
    inlines = [ChatMessageInline]

    def last_message_preview(self, obj):
        text = obj.last_message_text or ""
        return text[:40] + ("..." if len(text) > 40 else "")
    last_message_preview.short_description = "Last message"


@admin.register(ChatMessage)
class ChatMessageAdmin(admin.ModelAdmin):
    list_display = ("id", "thread", "sender_type", "sender", "text", "image_url", "created_at")
    list_filter = ("sender_type",)
    search_fields = ("text",)
    readonly_fields = ("thread", "sender_type", "sender", "text", "image_url", "client_message_id", "created_at")
