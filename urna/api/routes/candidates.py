"""Candidates API routes."""

from typing import Annotated
from uuid import UUID

import asyncpg
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, Field

from urna.api.deps import request_meta, require_admin
from urna.core.database import get_db
from urna.core.responses import paginated_response, success_response
from urna.services import candidates as candidate_service
from urna.services.audit import AuditAction, create_audit_log
from urna.services.elections import get_election_by_id

router = APIRouter(prefix="/candidates", tags=["Candidates"])


class CandidateCreate(BaseModel):
    """Create candidate request model."""

    election_id: UUID
    number: str = Field(..., min_length=1, max_length=10)
    name: str = Field(..., min_length=1, max_length=255)
    party: str = Field(..., min_length=1, max_length=100)
    photo_url: str | None = Field(None, max_length=500)


class CandidateUpdate(BaseModel):
    """Update candidate request model."""

    number: str | None = Field(None, min_length=1, max_length=10)
    name: str | None = Field(None, min_length=1, max_length=255)
    party: str | None = Field(None, min_length=1, max_length=100)
    photo_url: str | None = Field(None, max_length=500)


@router.get("")
async def list_candidates(
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: Annotated[dict, Depends(require_admin)],
    election_id: UUID | None = Query(None),
    search: str | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
):
    candidates, total = await candidate_service.list_candidates(
        conn,
        election_id=election_id,
        search=search,
        limit=limit,
        offset=(page - 1) * limit,
    )
    return paginated_response(candidates, page, limit, total)


@router.get("/{candidate_id}")
async def get_candidate(
    candidate_id: UUID,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: Annotated[dict, Depends(require_admin)],
):
    candidate = await candidate_service.get_candidate_by_id(conn, candidate_id)
    if not candidate:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Candidate not found")
    return success_response(data=candidate)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_candidate(
    request: CandidateCreate,
    http_request: Request,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: Annotated[dict, Depends(require_admin)],
):
    """Add a candidate to an election. Numbers are unique per election."""
    if not await get_election_by_id(conn, request.election_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Election not found")

    try:
        candidate = await candidate_service.create_candidate(
            conn,
            election_id=request.election_id,
            number=request.number,
            name=request.name,
            party=request.party,
            photo_url=request.photo_url,
        )
    except candidate_service.DuplicateCandidateNumber as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from None
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from None

    await create_audit_log(
        conn,
        AuditAction.CREATE,
        user_id=current_user["id"],
        table_name="candidates",
        record_id=candidate["id"],
        new_data=candidate,
        **request_meta(http_request),
    )
    return success_response(data=candidate, message="Candidate created successfully")


@router.put("/{candidate_id}")
async def update_candidate(
    candidate_id: UUID,
    request: CandidateUpdate,
    http_request: Request,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: Annotated[dict, Depends(require_admin)],
):
    old = await candidate_service.get_candidate_by_id(conn, candidate_id)
    if not old:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Candidate not found")

    try:
        candidate = await candidate_service.update_candidate(
            conn, candidate_id, **request.model_dump(exclude_unset=True)
        )
    except candidate_service.DuplicateCandidateNumber as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from None
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from None

    await create_audit_log(
        conn,
        AuditAction.UPDATE,
        user_id=current_user["id"],
        table_name="candidates",
        record_id=candidate_id,
        old_data=old,
        new_data=candidate,
        **request_meta(http_request),
    )
    return success_response(data=candidate, message="Candidate updated successfully")


@router.delete("/{candidate_id}")
async def delete_candidate(
    candidate_id: UUID,
    http_request: Request,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: Annotated[dict, Depends(require_admin)],
):
    """Delete a candidate. Refused once the candidate has votes."""
    old = await candidate_service.get_candidate_by_id(conn, candidate_id)
    if not old:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Candidate not found")

    if not await candidate_service.delete_candidate(conn, candidate_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Candidates with recorded votes cannot be deleted",
        )

    await create_audit_log(
        conn,
        AuditAction.DELETE,
        user_id=current_user["id"],
        table_name="candidates",
        record_id=candidate_id,
        old_data=old,
        **request_meta(http_request),
    )
    return success_response(message="Candidate deleted successfully")
