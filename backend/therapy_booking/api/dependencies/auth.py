# backend/therapy_booking/api/dependencies/auth.py
"""
Authentication and authorization dependencies.

Tokens are issued by the surrounding application. This module only
verifies them: a bearer JWT carrying ``sub`` (user id) and ``role``.
"""

import logging
from typing import Any, Callable, Dict, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import jwt
from jwt import PyJWTError
from sqlalchemy.orm import Session

from ...core.config import settings
from ...core.enums import RoleName
from ...core.exceptions import ForbiddenException, UnauthorizedException
from ...principal import UserPrincipal
from ...repositories.factory import RepositoryFactory
from .database import get_db

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def decode_access_token(token: str) -> Dict[str, Any]:
    return jwt.decode(
        token,
        settings.jwt_secret_key.get_secret_value(),
        algorithms=[settings.jwt_algorithm],
        options={"verify_aud": False},
    )


def _credentials_exception(message: str = "Could not validate credentials") -> Exception:
    exc = UnauthorizedException(message).to_http_exception()
    exc.headers = {"WWW-Authenticate": "Bearer"}
    return exc


def get_current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> UserPrincipal:
    """
    Resolve the caller from the Authorization header.

    Raises:
        HTTPException: 401 when the token is missing, invalid, or names an unknown user
    """
    if credentials is None or not credentials.credentials:
        raise _credentials_exception("Not authenticated")

    try:
        payload = decode_access_token(credentials.credentials)
    except PyJWTError as e:
        logger.info(f"Rejected bearer token: {type(e).__name__}")
        raise _credentials_exception()

    user_id = payload.get("sub")
    try:
        role = RoleName(str(payload.get("role", "")).upper())
    except ValueError:
        raise _credentials_exception("Token carries an unknown role")
    if not user_id:
        raise _credentials_exception()

    user = RepositoryFactory.create_user_repository(db).get_by_id(user_id)
    if user is None or user.role != role.value:
        raise _credentials_exception()

    return UserPrincipal(user_id=user.id, role=role)


def require_roles(*roles: RoleName) -> Callable[..., UserPrincipal]:
    """
    Dependency factory restricting an endpoint to the given roles.

    Usage:
        principal: UserPrincipal = Depends(require_roles(RoleName.ADMIN))
    """

    def dependency(principal: UserPrincipal = Depends(get_current_principal)) -> UserPrincipal:
        if principal.role not in roles:
            raise ForbiddenException(
                "Your role cannot perform this action",
                details={"role": principal.role.value},
            ).to_http_exception()
        return principal

    return dependency
