"""
Custom DRF authentication classes.

Tokens are issued upstream by the identity service; this module only
verifies them and maps the subject to an active principal.
"""
import logging
import jwt
from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from rest_framework import exceptions
from rest_framework.authentication import BaseAuthentication, get_authorization_header

from apps.core.middleware import bind_tenant_to_thread

logger = logging.getLogger(__name__)


class JWTAuthentication(BaseAuthentication):
    """
    Authenticate requests carrying ``Authorization: Bearer <jwt>``.

    The principal id is read from the ``sub`` claim, falling back to
    ``user_id``. Requests without a bearer header are left anonymous so
    permission classes can decide.
    """

    keyword = 'Bearer'

    def authenticate(self, request):
        auth = get_authorization_header(request).split()
        if not auth or auth[0].lower() != self.keyword.lower().encode():
            return None

        if len(auth) != 2:
            raise exceptions.AuthenticationFailed('Invalid authorization header')

        try:
            token = auth[1].decode()
        except UnicodeError:
            raise exceptions.AuthenticationFailed('Invalid authorization header')

        return self.authenticate_token(token, request)

    def authenticate_token(self, token, request=None):
        try:
            payload = jwt.decode(
                token,
                settings.JWT_SECRET_KEY,
                algorithms=[getattr(settings, 'JWT_ALGORITHM', 'HS256')]
            )
        except jwt.ExpiredSignatureError:
            raise exceptions.AuthenticationFailed('Token has expired')
        except jwt.InvalidTokenError:
            raise exceptions.AuthenticationFailed('Invalid token')

        user_id = payload.get('sub') or payload.get('user_id')
        if not user_id:
            raise exceptions.AuthenticationFailed('Invalid token')

        from apps.rbac.models import User

        try:
            user = User.objects.select_related('tenant').get(id=user_id, is_active=True)
        except (User.DoesNotExist, ValueError, DjangoValidationError):
            logger.info(
                "Token subject is not an active principal",
                extra={'request_id': getattr(request, 'request_id', None)}
            )
            raise exceptions.AuthenticationFailed('Invalid token')

        bind_tenant_to_thread(user.tenant_id)
        return (user, payload)

    def authenticate_header(self, request):
        return self.keyword
