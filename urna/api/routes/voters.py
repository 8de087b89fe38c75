"""Voter registry API routes."""

from typing import Annotated
from uuid import UUID

import asyncpg
from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile, status
from pydantic import BaseModel, Field

from urna.api.deps import request_meta, require_admin
from urna.core.database import get_db
from urna.core.logging_config import get_logger
from urna.core.responses import paginated_response, success_response
from urna.services import voters as voter_service
from urna.services.audit import AuditAction, create_audit_log
from urna.services.elections import get_election_by_id

router = APIRouter(prefix="/voters", tags=["Voters"])
logger = get_logger(__name__)

MAX_IMPORT_BYTES = 5 * 1024 * 1024


class VoterCreate(BaseModel):
    """Create voter request model. Voting state is not accepted."""

    election_id: UUID
    registration_number: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=255)
    cpf: str = Field(..., min_length=11, max_length=14)
    email: str | None = Field(None, max_length=255)
    phone: str | None = Field(None, max_length=20)


class VoterUpdate(BaseModel):
    """Update voter request model. Voting state is not accepted."""

    registration_number: str | None = Field(None, min_length=1, max_length=50)
    name: str | None = Field(None, min_length=1, max_length=255)
    cpf: str | None = Field(None, min_length=11, max_length=14)
    email: str | None = Field(None, max_length=255)
    phone: str | None = Field(None, max_length=20)


@router.get("")
async def list_voters(
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: Annotated[dict, Depends(require_admin)],
    election_id: UUID | None = Query(None),
    has_voted: bool | None = Query(None),
    search: str | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
):
    voters, total = await voter_service.list_voters(
        conn,
        election_id=election_id,
        has_voted=has_voted,
        search=search,
        limit=limit,
        offset=(page - 1) * limit,
    )
    return paginated_response(voters, page, limit, total)


@router.get("/{voter_id}")
async def get_voter(
    voter_id: UUID,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: Annotated[dict, Depends(require_admin)],
):
    voter = await voter_service.get_voter_by_id(conn, voter_id)
    if not voter:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Voter not found")
    return success_response(data=voter)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_voter(
    request: VoterCreate,
    http_request: Request,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: Annotated[dict, Depends(require_admin)],
):
    """Register a voter. Registration number and CPF are unique per election."""
    if not await get_election_by_id(conn, request.election_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Election not found")

    try:
        voter = await voter_service.create_voter(conn, **request.model_dump())
    except voter_service.DuplicateVoter as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from None
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from None

    await create_audit_log(
        conn,
        AuditAction.CREATE,
        user_id=current_user["id"],
        table_name="voters",
        record_id=voter["id"],
        new_data=voter,
        **request_meta(http_request),
    )
    return success_response(data=voter, message="Voter created successfully")


@router.post("/import")
async def import_voters(
    http_request: Request,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: Annotated[dict, Depends(require_admin)],
    election_id: UUID = Form(...),
    file: UploadFile = File(...),
):
    """
    Bulk-register voters from a CSV file.

    Header: ``registration_number,name,cpf,email,phone``. Rows that fail
    validation are reported by line and skipped; the rest are imported.
    """
    if not await get_election_by_id(conn, election_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Election not found")

    content = await file.read()
    if len(content) > MAX_IMPORT_BYTES:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail="Import file too large (max 5MB)",
        )
    try:
        text = content.decode("utf-8")
    except UnicodeDecodeError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Import file must be UTF-8 CSV"
        ) from None

    try:
        summary = await voter_service.import_voters(conn, election_id, text)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from None

    await create_audit_log(
        conn,
        AuditAction.IMPORT,
        user_id=current_user["id"],
        table_name="voters",
        record_id=election_id,
        new_data={"filename": file.filename, "imported": summary["imported"], "rejected": summary["rejected"]},
        **request_meta(http_request),
    )
    return success_response(
        data=summary,
        message=f"{summary['imported']} voters imported, {summary['rejected']} rejected",
    )


@router.put("/{voter_id}")
async def update_voter(
    voter_id: UUID,
    request: VoterUpdate,
    http_request: Request,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: Annotated[dict, Depends(require_admin)],
):
    """Update registry fields. Voters who already voted are locked."""
    async with conn.transaction():
        old = await voter_service.get_voter_by_id(conn, voter_id)
        if not old:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Voter not found")

        try:
            voter = await voter_service.update_voter(
                conn, voter_id, **request.model_dump(exclude_unset=True)
            )
        except (voter_service.DuplicateVoter, voter_service.VoterLocked) as e:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from None
        except ValueError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from None

        if voter is None:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Voters who have already voted cannot be modified",
            )

        await create_audit_log(
            conn,
            AuditAction.UPDATE,
            user_id=current_user["id"],
            table_name="voters",
            record_id=voter_id,
            old_data=old,
            new_data=voter,
            **request_meta(http_request),
        )
    return success_response(data=voter, message="Voter updated successfully")


@router.delete("/{voter_id}")
async def delete_voter(
    voter_id: UUID,
    http_request: Request,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: Annotated[dict, Depends(require_admin)],
):
    """Delete a voter. Refused once the voter has voted."""
    old = await voter_service.get_voter_by_id(conn, voter_id)
    if not old:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Voter not found")

    if not await voter_service.delete_voter(conn, voter_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Voters who have already voted cannot be deleted",
        )

    await create_audit_log(
        conn,
        AuditAction.DELETE,
        user_id=current_user["id"],
        table_name="voters",
        record_id=voter_id,
        old_data=old,
        **request_meta(http_request),
    )
    return success_response(message="Voter deleted successfully")
