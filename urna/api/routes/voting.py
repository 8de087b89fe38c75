"""Booth-facing voting API routes."""

from typing import Annotated
from uuid import UUID

import asyncpg
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, Field, field_validator

from urna.api.deps import client_ip, get_current_user, get_vote_caster, request_meta
from urna.core.database import get_db
from urna.core.logging_config import get_logger
from urna.core.rate_limiting import vote_rate_limiter
from urna.core.responses import success_response
from urna.services import voting as voting_service
from urna.services.audit import AuditAction, create_audit_log
from urna.services.candidates import list_ballot_candidates
from urna.services.elections import get_active_election, get_election_by_id
from urna.services.voting import (
    BLANK_VOTE_TOKEN,
    NULL_VOTE_TOKEN,
    ElectionNotFound,
    Selection,
    VoteCaster,
)

router = APIRouter(prefix="/booth", tags=["Booth Voting"])
logger = get_logger(__name__)


# ============================================
# PYDANTIC MODELS
# ============================================


class ValidateVoterRequest(BaseModel):
    """Pre-check before the ballot is shown."""

    registration_number: str = Field(..., min_length=1, max_length=50)
    election_id: UUID | None = None


class CastVoteRequest(BaseModel):
    """
    Ballot submitted by a booth.

    ``selection`` is a candidate id, ``NULL_VOTE`` or ``BLANK_VOTE``.
    """

    election_id: UUID
    voter_registration_number: str = Field(..., min_length=1, max_length=50)
    selection: str = Field(..., min_length=1, max_length=64)
    booth_id: UUID | None = None

    @field_validator("selection")
    @classmethod
    def validate_selection(cls, v: str) -> str:
        Selection.parse(v)
        return v.strip()


async def _resolve_election(conn: asyncpg.Connection, election_id: UUID | None) -> dict:
    """The requested election, or the single active one when none is given."""
    if election_id is not None:
        election = await get_election_by_id(conn, election_id)
    else:
        election = await get_active_election(conn)
    if not election:
        raise ElectionNotFound(
            "Election not found" if election_id else "No active election"
        )
    return election


# ============================================
# BOOTH ENDPOINTS
# ============================================


@router.post("/voters/validate")
async def validate_voter(
    request: ValidateVoterRequest,
    http_request: Request,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: Annotated[dict, Depends(get_current_user)],
):
    """
    Check that a voter may vote now, without registering anything.

    Errors use the same codes as the vote endpoint: ``voter_not_found``,
    ``election_not_open`` and ``already_voted``.
    """
    election = await _resolve_election(conn, request.election_id)
    voter = await voting_service.check_voter_eligibility(
        conn, election, request.registration_number
    )

    await create_audit_log(
        conn,
        AuditAction.VOTER_VALIDATED,
        user_id=current_user["id"],
        table_name="voters",
        record_id=voter["id"],
        **request_meta(http_request),
    )
    return success_response(
        data={
            "election_id": str(election["id"]),
            "registration_number": voter["registration_number"],
            "name": voter["name"],
            "can_vote": True,
        },
        message="Voter may vote",
    )


@router.get("/candidates")
async def ballot_candidates(
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: Annotated[dict, Depends(get_current_user)],
    election_id: UUID | None = Query(None),
):
    """Ballot for the given election, or for the single active election."""
    election = await _resolve_election(conn, election_id)
    candidates = await list_ballot_candidates(conn, UUID(str(election["id"])))
    return success_response(
        data={
            "election": {
                "id": str(election["id"]),
                "title": election["title"],
                "status": election["status"],
                "start_date": election["start_date"],
                "end_date": election["end_date"],
            },
            "candidates": candidates,
            "options": [NULL_VOTE_TOKEN, BLANK_VOTE_TOKEN],
        }
    )


@router.post("/votes", status_code=status.HTTP_201_CREATED)
async def cast_vote(
    request: CastVoteRequest,
    http_request: Request,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: Annotated[dict, Depends(get_current_user)],
    caster: Annotated[VoteCaster, Depends(get_vote_caster)],
):
    """
    Register one ballot atomically.

    On success returns the receipt ``{verification_hash, timestamp}``.
    Rejections carry an error code; only ``persistence_unavailable`` is
    retryable, and a caller that lost the response should query the voter
    status before retrying.
    """
    source = str(request.booth_id) if request.booth_id else client_ip(http_request) or "unknown"
    allowed, error_msg = vote_rate_limiter.check_submission_allowed(source)
    if not allowed:
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=error_msg)
    vote_rate_limiter.record_submission(source)

    receipt = await caster.cast_vote(
        conn,
        voter_registration_number=request.voter_registration_number,
        election_id=request.election_id,
        selection=Selection.parse(request.selection),
        booth_id=request.booth_id,
    )

    try:
        await create_audit_log(
            conn,
            AuditAction.VOTE_REGISTERED,
            user_id=current_user["id"],
            table_name="votes",
            record_id=request.election_id,
            new_data={"booth_id": request.booth_id, "timestamp": receipt.timestamp},
            **request_meta(http_request),
        )
    except asyncpg.PostgresError as e:
        # The ballot is already committed
        logger.error(f"Audit entry for registered vote failed: {e}")

    return success_response(data=receipt.to_dict(), message="Vote registered successfully")


@router.get("/voters/{registration_number}/status")
async def voter_status(
    registration_number: str,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: Annotated[dict, Depends(get_current_user)],
    election_id: UUID = Query(...),
):
    """Whether the voter has a registered ballot in the election."""
    voter = await voting_service.get_voter_vote_status(conn, election_id, registration_number)
    if not voter:
        raise voting_service.VoterNotFound()
    return success_response(data=voter)


@router.get("/receipts/{verification_hash}")
async def verify_receipt(
    verification_hash: str,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    election_id: UUID = Query(...),
):
    """Confirm that a receipt token was recorded in the election."""
    receipt = await voting_service.verify_receipt(conn, election_id, verification_hash)
    if not receipt:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Receipt not found")
    return success_response(data=receipt, message="Receipt is valid")
