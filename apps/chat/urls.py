# apps/chat/urls.py
from django.urls import path
from rest_framework import permissions

from apps.users.permissions import IsCustomer, IsSupportAdmin
from . import views

customer_only = [permissions.IsAuthenticated, IsCustomer]
admin_only = [permissions.IsAuthenticated, IsSupportAdmin]

urlpatterns = [
    # customer
    path('thread/', views.OpenThreadView.as_view(), name='chat-open-thread'),
    path('thread/<int:pk>/messages/', views.ThreadMessagesView.as_view(permission_classes=customer_only), name='chat-thread-messages'),
    path('thread/<int:pk>/read/', views.MarkReadView.as_view(permission_classes=customer_only), name='chat-thread-read'),
    # customer or admin
    path('thread/<int:pk>/images/', views.ImageUploadView.as_view(), name='chat-thread-images'),
    # admin
    path('admin/threads/', views.AdminThreadListView.as_view(), name='chat-admin-threads'),
    path('admin/threads/<int:pk>/', views.AdminThreadDetailView.as_view(), name='chat-admin-thread-detail'),
    path('admin/threads/<int:pk>/messages/', views.ThreadMessagesView.as_view(permission_classes=admin_only), name='chat-admin-thread-messages'),
    path('admin/threads/<int:pk>/read/', views.MarkReadView.as_view(permission_classes=admin_only), name='chat-admin-thread-read'),
    path('admin/unread/', views.AdminUnreadView.as_view(), name='chat-admin-unread'),
]
