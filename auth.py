"""Access gate: bearer tokens and the single role predicate used by every route.

Tokens are JWTs carrying ``{id, role}`` and expire after
``settings.jwt_expiration_minutes``. A missing, malformed or expired token is
always answered with 401; a valid token with the wrong role gets 403.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import jwt
from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from config import settings
from errors import Forbidden, Unauthorized
from users import Principal, Role

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def create_access_token(principal: Principal, expires_minutes: Optional[int] = None) -> str:
    minutes = settings.jwt_expiration_minutes if expires_minutes is None else expires_minutes
    payload = {
        "id": principal.id,
        "role": principal.role.value,
        "exp": datetime.now(timezone.utc) + timedelta(minutes=minutes),
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> Principal:
    try:
        payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError as e:
        raise Unauthorized("Token expired") from e
    except jwt.InvalidTokenError as e:
        raise Unauthorized("Invalid token") from e

    try:
        return Principal(id=int(payload["id"]), role=Role(payload["role"]))
    except (KeyError, TypeError, ValueError) as e:
        raise Unauthorized("Invalid token") from e


def authorize(principal: Principal, *roles: Role) -> Principal:
    """Raise Forbidden unless the principal holds one of the roles."""
    if roles and principal.role not in roles:
        allowed = " or ".join(r.value for r in roles)
        raise Forbidden(f"Access denied, {allowed} only")
    return principal


# --- FastAPI dependencies ---
def get_current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
) -> Principal:
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=401,
            detail="No token, authorization denied",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return decode_token(credentials.credentials)
    except Unauthorized as e:
        logger.info(f"Rejected bearer token: {e.message}")
        raise HTTPException(status_code=401, detail=e.message, headers={"WWW-Authenticate": "Bearer"}) from e


def require_role(*roles: Role) -> Callable[..., Principal]:
    """Dependency factory: the authenticated principal, restricted to the given roles."""

    def dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
        try:
            return authorize(principal, *roles)
        except Forbidden as e:
            raise HTTPException(status_code=403, detail=e.message) from e

    return dependency
