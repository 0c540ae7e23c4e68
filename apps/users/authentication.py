# apps/users/authentication.py
import logging
from typing import NamedTuple

from django.contrib.auth import get_user_model
from rest_framework_simplejwt.exceptions import TokenError
from rest_framework_simplejwt.settings import api_settings
from rest_framework_simplejwt.tokens import AccessToken

from apps.chat.exceptions import AuthenticationFailure

logger = logging.getLogger(__name__)
User = get_user_model()


class Identity(NamedTuple):
    user_id: int
    role: str

    @property
    def is_admin(self):
        return self.role == User.ADMIN

    @property
    def is_customer(self):
        return self.role == User.CUSTOMER


def identity_for_user(user):
    return Identity(user_id=user.pk, role=user.role)


def verify_credential(credential):
    """
    Resolve a bearer access token to an Identity.

    Accepts the raw token or a "Bearer <token>" header value. Raises
    AuthenticationFailure for anything that is not a valid access token of
    an active user.
    """
    if not credential or not isinstance(credential, str):
        raise AuthenticationFailure("Credential required")

    token = credential.strip()
    if token.lower().startswith("bearer "):
        token = token[len("bearer "):].strip()

    try:
        payload = AccessToken(token)
        user_id = payload[api_settings.USER_ID_CLAIM]
    except (TokenError, KeyError) as e:
        logger.info("Rejected credential: %s", e)
        raise AuthenticationFailure("Invalid or expired token") from e

    try:
        user = User.objects.get(pk=user_id, is_active=True)
    except User.DoesNotExist:
        raise AuthenticationFailure("User not found")

    return identity_for_user(user)
