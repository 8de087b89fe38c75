"""Elections API routes."""

from datetime import datetime
from typing import Annotated
from uuid import UUID

import asyncpg
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, Field, model_validator

from urna.api.deps import request_meta, require_admin
from urna.core.database import get_db
from urna.core.responses import paginated_response, success_response
from urna.services import elections as election_service
from urna.services.audit import AuditAction, create_audit_log

router = APIRouter(prefix="/elections", tags=["Elections"])


# ============================================
# PYDANTIC MODELS
# ============================================


class ElectionCreate(BaseModel):
    """Create election request model."""

    title: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    start_date: datetime
    end_date: datetime

    @model_validator(mode="after")
    def check_dates(self) -> "ElectionCreate":
        if self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        return self


class ElectionUpdate(BaseModel):
    """Update election request model."""

    title: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    status: str | None = Field(None, pattern="^(created|active|finished|cancelled)$")


# ============================================
# ELECTION CRUD ENDPOINTS
# ============================================


@router.get("")
async def list_elections(
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: Annotated[dict, Depends(require_admin)],
    search: str | None = Query(None),
    status_filter: str | None = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
):
    """List elections with vote and voter totals."""
    elections, total = await election_service.list_elections(
        conn,
        search=search,
        status=status_filter,
        limit=limit,
        offset=(page - 1) * limit,
    )
    return paginated_response(elections, page, limit, total)


@router.get("/{election_id}")
async def get_election(
    election_id: UUID,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: Annotated[dict, Depends(require_admin)],
):
    """Get an election with its candidates."""
    election = await election_service.get_election_by_id(
        conn, election_id, include_candidates=True
    )
    if not election:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Election not found")
    return success_response(data=election)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_election(
    request: ElectionCreate,
    http_request: Request,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: Annotated[dict, Depends(require_admin)],
):
    """Create a new election in ``created`` status."""
    election = await election_service.create_election(
        conn,
        title=request.title,
        description=request.description,
        start_date=request.start_date,
        end_date=request.end_date,
        created_by=UUID(current_user["id"]),
    )

    await create_audit_log(
        conn,
        AuditAction.CREATE,
        user_id=current_user["id"],
        table_name="elections",
        record_id=election["id"],
        new_data=election,
        **request_meta(http_request),
    )
    return success_response(data=election, message="Election created successfully")


@router.put("/{election_id}")
async def update_election(
    election_id: UUID,
    request: ElectionUpdate,
    http_request: Request,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: Annotated[dict, Depends(require_admin)],
):
    """
    Update election details or status.

    Status changes follow created -> active | cancelled and
    active -> finished | cancelled.
    """
    async with conn.transaction():
        old = await election_service.get_election_by_id(conn, election_id)
        if not old:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND, detail="Election not found"
            )

        try:
            election = await election_service.update_election(
                conn, election_id, **request.model_dump(exclude_unset=True)
            )
        except election_service.InvalidStatusTransition as e:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from None
        except ValueError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from None

        await create_audit_log(
            conn,
            AuditAction.UPDATE,
            user_id=current_user["id"],
            table_name="elections",
            record_id=election_id,
            old_data=old,
            new_data=election,
            **request_meta(http_request),
        )
    return success_response(data=election, message="Election updated successfully")


@router.delete("/{election_id}")
async def delete_election(
    election_id: UUID,
    http_request: Request,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: Annotated[dict, Depends(require_admin)],
):
    """Delete an election. Refused once it has votes."""
    old = await election_service.get_election_by_id(conn, election_id)
    if not old:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Election not found")

    if not await election_service.delete_election(conn, election_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Elections with recorded votes cannot be deleted",
        )

    await create_audit_log(
        conn,
        AuditAction.DELETE,
        user_id=current_user["id"],
        table_name="elections",
        record_id=election_id,
        old_data=old,
        **request_meta(http_request),
    )
    return success_response(message="Election deleted successfully")
