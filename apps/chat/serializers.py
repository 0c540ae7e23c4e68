# apps/chat/serializers.py
from rest_framework import serializers

from .models import ChatMessage, ChatThread


class MessageSerializer(serializers.ModelSerializer):
    thread_id = serializers.IntegerField(read_only=True)

    class Meta:
        model = ChatMessage
        fields = (
            'id',
            'thread_id',
            'sender_type',
            'text',
            'image_url',
            'client_message_id',
            'created_at',
        )
        read_only_fields = fields


class ThreadSerializer(serializers.ModelSerializer):
    thread_id = serializers.IntegerField(source='id', read_only=True)
    customer_id = serializers.IntegerField(read_only=True)

    class Meta:
        model = ChatThread
        fields = (
            'thread_id',
            'customer_id',
            'status',
            'last_message_text',
            'last_message_at',
            'unread_for_admin',
            'unread_for_customer',
        )
        read_only_fields = fields


class ThreadSummarySerializer(ThreadSerializer):
    """Admin list row: thread preview plus who the customer is and whether they are online."""
    customer_name = serializers.SerializerMethodField()
    customer_email = serializers.SerializerMethodField()
    customer_ip = serializers.CharField(read_only=True)
    customer_online = serializers.SerializerMethodField()
    customer_last_seen_at = serializers.SerializerMethodField()

    class Meta(ThreadSerializer.Meta):
        fields = ThreadSerializer.Meta.fields + (
            'customer_name',
            'customer_email',
            'customer_ip',
            'customer_online',
            'customer_last_seen_at',
        )
        read_only_fields = fields

    def get_customer_name(self, obj):
        return obj.customer.display_name

    def get_customer_email(self, obj):
        return obj.customer.email or None

    def get_customer_online(self, obj):
        presence = self.context.get('presence')
        return presence.is_online(obj.customer_id) if presence else False

    def get_customer_last_seen_at(self, obj):
        presence = self.context.get('presence')
        last_seen = presence.last_seen_at(obj.customer_id) if presence else None
        return last_seen.isoformat() if last_seen else None


class ThreadUpdateSerializer(serializers.ModelSerializer):
    """Payload of the thread_updated realtime event."""
    thread_id = serializers.IntegerField(source='id', read_only=True)
    last_text = serializers.CharField(source='last_message_text', read_only=True)
    last_at = serializers.DateTimeField(source='last_message_at', read_only=True)

    class Meta:
        model = ChatThread
        fields = (
            'thread_id',
            'last_text',
            'last_at',
            'unread_for_admin',
            'unread_for_customer',
        )
        read_only_fields = fields


class ImageUploadSerializer(serializers.Serializer):
    image = serializers.FileField()
    client_message_id = serializers.CharField(max_length=64, required=False, allow_blank=True)
