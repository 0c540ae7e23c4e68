# apps/users/permissions.py
from rest_framework import permissions


class IsSupportAdmin(permissions.BasePermission):
    message = "Admin access required"

    def has_permission(self, request, view):
        user = request.user
        return bool(user and user.is_authenticated and user.role == user.ADMIN)


class IsCustomer(permissions.BasePermission):
    message = "Customer access required"

    def has_permission(self, request, view):
        user = request.user
        return bool(user and user.is_authenticated and user.role == user.CUSTOMER)
