"""Voting booth registry API routes."""

from datetime import UTC, datetime
import ipaddress
from typing import Annotated
from uuid import UUID

import asyncpg
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, Field, field_validator

from urna.api.deps import client_ip, request_meta, require_admin
from urna.core.config import settings
from urna.core.database import get_db
from urna.core.logging_config import get_logger
from urna.core.responses import paginated_response, success_response
from urna.services import booths as booth_service
from urna.services.audit import AuditAction, create_audit_log
from urna.services.realtime import get_broadcaster

router = APIRouter(prefix="/booths", tags=["Booths"])
logger = get_logger(__name__)

BOOTH_STATUS_PATTERN = "^(active|inactive|maintenance)$"


def _with_status(booth: dict) -> dict:
    booth["connection_status"] = booth_service.connection_status(
        booth,
        datetime.now(UTC),
        settings.BOOTH_ONLINE_MINUTES,
        settings.BOOTH_WARNING_MINUTES,
    )
    return booth


def _normalize_ip(value: str | None) -> str | None:
    if value is None:
        return value
    return str(ipaddress.ip_address(value))


class BoothCreate(BaseModel):
    """Create booth request model."""

    number: str = Field(..., min_length=1, max_length=50)
    location: str = Field(..., min_length=1, max_length=255)
    status: str = Field("active", pattern=BOOTH_STATUS_PATTERN)
    ip_address: str | None = None
    election_id: UUID | None = None

    @field_validator("ip_address")
    @classmethod
    def validate_ip(cls, v: str | None) -> str | None:
        return _normalize_ip(v)


class BoothUpdate(BaseModel):
    """Update booth request model."""

    number: str | None = Field(None, min_length=1, max_length=50)
    location: str | None = Field(None, min_length=1, max_length=255)
    status: str | None = Field(None, pattern=BOOTH_STATUS_PATTERN)
    ip_address: str | None = None
    election_id: UUID | None = None

    @field_validator("ip_address")
    @classmethod
    def validate_ip(cls, v: str | None) -> str | None:
        return _normalize_ip(v)


@router.get("")
async def list_booths(
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: Annotated[dict, Depends(require_admin)],
    election_id: UUID | None = Query(None),
    status_filter: str | None = Query(None, alias="status"),
    search: str | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
):
    """List booths with their computed connection status."""
    booths, total = await booth_service.list_booths(
        conn,
        election_id=election_id,
        status=status_filter,
        search=search,
        limit=limit,
        offset=(page - 1) * limit,
    )
    return paginated_response([_with_status(booth) for booth in booths], page, limit, total)


@router.get("/{booth_id}")
async def get_booth(
    booth_id: UUID,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: Annotated[dict, Depends(require_admin)],
):
    booth = await booth_service.get_booth_by_id(conn, booth_id)
    if not booth:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Booth not found")
    return success_response(data=_with_status(booth))


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_booth(
    request: BoothCreate,
    http_request: Request,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: Annotated[dict, Depends(require_admin)],
):
    try:
        booth = await booth_service.create_booth(conn, **request.model_dump())
    except booth_service.DuplicateBoothNumber as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from None
    except asyncpg.ForeignKeyViolationError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Election not found") from None

    await create_audit_log(
        conn,
        AuditAction.CREATE,
        user_id=current_user["id"],
        table_name="booths",
        record_id=booth["id"],
        new_data=booth,
        **request_meta(http_request),
    )
    return success_response(data=_with_status(booth), message="Booth created successfully")


@router.put("/{booth_id}")
async def update_booth(
    booth_id: UUID,
    request: BoothUpdate,
    http_request: Request,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: Annotated[dict, Depends(require_admin)],
):
    old = await booth_service.get_booth_by_id(conn, booth_id)
    if not old:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Booth not found")

    try:
        booth = await booth_service.update_booth(
            conn, booth_id, **request.model_dump(exclude_unset=True)
        )
    except booth_service.DuplicateBoothNumber as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from None
    except asyncpg.ForeignKeyViolationError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Election not found") from None

    await create_audit_log(
        conn,
        AuditAction.UPDATE,
        user_id=current_user["id"],
        table_name="booths",
        record_id=booth_id,
        old_data=old,
        new_data=booth,
        **request_meta(http_request),
    )
    if request.status is not None and request.status != old["status"]:
        get_broadcaster().publish_booth_status(str(booth_id), booth["status"])
    return success_response(data=_with_status(booth), message="Booth updated successfully")


@router.delete("/{booth_id}")
async def delete_booth(
    booth_id: UUID,
    http_request: Request,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: Annotated[dict, Depends(require_admin)],
):
    old = await booth_service.get_booth_by_id(conn, booth_id)
    if not old:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Booth not found")

    await booth_service.delete_booth(conn, booth_id)
    await create_audit_log(
        conn,
        AuditAction.DELETE,
        user_id=current_user["id"],
        table_name="booths",
        record_id=booth_id,
        old_data=old,
        **request_meta(http_request),
    )
    return success_response(message="Booth deleted successfully")


@router.post("/{number}/ping")
async def ping_booth(
    number: str,
    http_request: Request,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
):
    """
    Heartbeat sent by a booth terminal.

    Records ``last_ping`` and the caller address, then broadcasts the booth
    connection status.
    """
    booth = await booth_service.record_ping(conn, number, client_ip(http_request))
    if not booth:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Booth not found")

    booth = _with_status(booth)
    get_broadcaster().publish_booth_status(booth["id"], booth["connection_status"])
    return success_response(
        data={"id": booth["id"], "number": booth["number"], "last_ping": booth["last_ping"]},
        message="Ping recorded",
    )
