"""API dependencies for authentication, authorization and the vote caster."""

import ipaddress
from typing import Annotated
from uuid import UUID

import asyncpg
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from urna.core.config import settings
from urna.core.database import get_db
from urna.core.logging_config import security_logger
from urna.core.security import decode_access_token
from urna.services.realtime import get_broadcaster
from urna.services.users import get_user_by_id
from urna.services.voting import VoteCaster

security = HTTPBearer()


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
) -> dict:
    """
    Dependency to get the current authenticated operator.

    Validates the JWT token and returns the user row without its password hash.
    """
    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise _unauthorized("Invalid authentication credentials")

    user_id = payload.get("sub")
    if user_id is None:
        raise _unauthorized("Invalid authentication credentials")

    try:
        user = await get_user_by_id(conn, UUID(user_id))
    except ValueError:
        raise _unauthorized("Invalid authentication credentials") from None

    if user is None or not user.get("active", True):
        raise _unauthorized("User not found or inactive")

    user.pop("password_hash", None)
    return user


def require_admin(
    request: Request, current_user: Annotated[dict, Depends(get_current_user)]
) -> dict:
    """
    Dependency to require admin role.

    Raises HTTP 403 if user is not an admin.
    """
    if current_user.get("role") != "admin":
        security_logger.log_unauthorized_access(
            user_id=current_user["id"],
            resource=request.url.path,
            ip_address=client_ip(request),
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required"
        )
    return current_user


def get_vote_caster() -> VoteCaster:
    """Vote caster publishing to the realtime broadcaster."""
    return VoteCaster(
        notifier=get_broadcaster(),
        timeout=settings.VOTE_COMMIT_TIMEOUT_SECONDS,
    )


def client_ip(request: Request) -> str | None:
    """Peer address, or None when it is not an IP (test clients, unix sockets)."""
    if not request.client:
        return None
    try:
        return str(ipaddress.ip_address(request.client.host))
    except ValueError:
        return None


def request_meta(request: Request) -> dict:
    """Caller IP and user agent, as keyword arguments for ``create_audit_log``."""
    return {"ip_address": client_ip(request), "user_agent": request.headers.get("user-agent")}
