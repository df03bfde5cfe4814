"""
Bearer token authentication.

Protected views are wrapped with ``auth_required``; the decorator resolves the
token and hands the view an ``AuthContext`` through the ``auth`` keyword
argument instead of stashing the user in a global.
"""

import logging
from dataclasses import dataclass
from functools import wraps

from flask import request

from .errors import AuthenticationFailure
from .logging_utils import get_request_id
from .models import AccessToken, User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthContext:
    user: User
    token: AccessToken
    request_id: str


def bearer_token() -> str:
    header = request.headers.get('Authorization', '')
    scheme, _, token = header.partition(' ')
    if scheme.lower() != 'bearer' or not token.strip():
        return ''
    return token.strip()


def authenticate_request() -> AuthContext:
    token = bearer_token()
    resolved = AccessToken.resolve(token) if token else None
    if not resolved:
        logger.info('auth_rejected path=%s', request.path)
        raise AuthenticationFailure()
    user, access_token = resolved
    return AuthContext(user=user, token=access_token, request_id=get_request_id())


def auth_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        kwargs['auth'] = authenticate_request()
        return f(*args, **kwargs)
    return decorated_function
