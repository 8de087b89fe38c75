"""Authentication routes."""

from typing import Annotated

import asyncpg
from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field, field_validator

from urna.api.deps import client_ip, get_current_user, require_admin
from urna.core.database import get_db
from urna.core.logging_config import get_logger, security_logger
from urna.core.rate_limiting import login_rate_limiter
from urna.core.responses import success_response
from urna.core.security import (
    DUMMY_PASSWORD_HASH,
    create_access_token,
    hash_password,
    verify_password,
)
from urna.core.validation import PasswordValidator, is_valid_email, sanitize_string
from urna.services.audit import AuditAction, create_audit_log
from urna.services.users import (
    USER_ROLES,
    create_user,
    get_user_by_email,
    update_user_last_login,
)

router = APIRouter(prefix="/auth", tags=["Authentication"])
logger = get_logger(__name__)


class RegisterRequest(BaseModel):
    """Operator registration request with validation."""

    name: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., max_length=255)
    password: str = Field(
        ..., min_length=8, max_length=128, description="Password (min 8 characters)"
    )
    role: str = Field("operator", description="User role: 'admin' or 'operator'")

    @field_validator("name")
    @classmethod
    def sanitize_name(cls, v: str) -> str:
        return sanitize_string(v, max_length=255)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        v = sanitize_string(v, max_length=255).lower()
        if not is_valid_email(v):
            raise ValueError("Invalid email address")
        return v

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        """Validate password strength."""
        is_valid, error = PasswordValidator.validate(v)
        if not is_valid:
            raise ValueError(error)
        return v

    @field_validator("role")
    @classmethod
    def validate_role(cls, v: str) -> str:
        if v not in USER_ROLES:
            raise ValueError("Role must be 'admin' or 'operator'")
        return v


class LoginRequest(BaseModel):
    """Operator login request."""

    email: str = Field(..., max_length=255)
    password: str = Field(..., max_length=128)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return sanitize_string(v, max_length=255).lower()


def _token_payload(user: dict) -> dict:
    access_token = create_access_token(data={"sub": str(user["id"]), "role": user["role"]})
    security_logger.log_token_creation(str(user["id"]), "access")
    user_data = {k: v for k, v in user.items() if k != "password_hash"}
    return {"access_token": access_token, "token_type": "bearer", "user": user_data}


@router.post("/login")
async def login(
    request: LoginRequest,
    http_request: Request,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
):
    """
    Authenticate an operator and return a JWT token.

    Failed attempts are rate limited per email and per IP, with a temporary
    lockout after too many failures.
    """
    ip_address = client_ip(http_request)
    user_agent = http_request.headers.get("user-agent")

    allowed, error_msg = login_rate_limiter.check_login_allowed(request.email, ip_address)
    if not allowed:
        security_logger.log_login_attempt(
            email=request.email,
            success=False,
            ip_address=ip_address,
            user_agent=user_agent,
            reason="rate_limited",
        )
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=error_msg)

    user = await get_user_by_email(conn, request.email)

    # Verify against a dummy hash when the email is unknown so timing does not leak it
    password_hash = user["password_hash"] if user else DUMMY_PASSWORD_HASH
    password_valid = verify_password(request.password, password_hash)

    if not (user and password_valid and user["active"]):
        login_rate_limiter.record_failed_attempt(request.email, ip_address)
        if not user:
            reason = "unknown_email"
        elif not password_valid:
            reason = "invalid_password"
        else:
            reason = "inactive"
        security_logger.log_login_attempt(
            email=request.email,
            success=False,
            ip_address=ip_address,
            user_agent=user_agent,
            reason=reason,
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    login_rate_limiter.record_successful_login(request.email, ip_address)
    await update_user_last_login(conn, user["id"])
    await create_audit_log(
        conn,
        AuditAction.LOGIN,
        user_id=user["id"],
        table_name="users",
        record_id=user["id"],
        ip_address=ip_address,
        user_agent=user_agent,
    )
    security_logger.log_login_attempt(
        email=request.email,
        success=True,
        ip_address=ip_address,
        user_agent=user_agent,
    )

    return success_response(data=_token_payload(user), message="Login successful")


@router.get("/me")
async def me(current_user: Annotated[dict, Depends(get_current_user)]):
    """Return the authenticated operator."""
    return success_response(data=current_user)


@router.post("/logout")
async def logout(
    http_request: Request,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: Annotated[dict, Depends(get_current_user)],
):
    """
    Record a logout.

    Tokens are stateless; the client discards its token.
    """
    await create_audit_log(
        conn,
        AuditAction.LOGOUT,
        user_id=current_user["id"],
        table_name="users",
        record_id=current_user["id"],
        ip_address=client_ip(http_request),
        user_agent=http_request.headers.get("user-agent"),
    )
    return success_response(message="Logout successful")


@router.post("/refresh")
async def refresh(current_user: Annotated[dict, Depends(get_current_user)]):
    """Issue a fresh token for the current operator."""
    return success_response(data=_token_payload(current_user))


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(
    request: RegisterRequest,
    http_request: Request,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    admin_user: Annotated[dict, Depends(require_admin)],
):
    """Register a new operator (admin only)."""
    logger.info(f"Operator registration by admin {admin_user['email']} for: {request.email}")

    if await get_user_by_email(conn, request.email):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Email already registered",
        )

    user = await create_user(
        conn,
        name=request.name,
        email=request.email,
        password_hash=hash_password(request.password),
        role=request.role,
    )

    await create_audit_log(
        conn,
        AuditAction.USER_CREATED,
        user_id=admin_user["id"],
        table_name="users",
        record_id=user["id"],
        new_data={"name": user["name"], "email": user["email"], "role": user["role"]},
        ip_address=client_ip(http_request),
        user_agent=http_request.headers.get("user-agent"),
    )
    security_logger.log_operator_registration(
        email=user["email"], role=user["role"], created_by=admin_user["id"]
    )

    return success_response(data=user, message="Operator registered successfully")
