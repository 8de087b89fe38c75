"""Election results API routes."""

from datetime import UTC, datetime
from typing import Annotated
from uuid import UUID

import asyncpg
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import Response

from urna.api.deps import get_current_user, request_meta, require_admin
from urna.core.config import settings
from urna.core.database import get_db
from urna.core.responses import success_response
from urna.services import results as results_service
from urna.services.audit import AuditAction, create_audit_log
from urna.utils.csv_export import results_to_csv

router = APIRouter(prefix="/results", tags=["Results"])


@router.get("/dashboard/summary")
async def dashboard_summary(
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: Annotated[dict, Depends(get_current_user)],
):
    """Election, voter, vote and booth counts for the dashboard."""
    summary = await results_service.get_dashboard_summary(
        conn,
        now=datetime.now(UTC),
        online_minutes=settings.BOOTH_ONLINE_MINUTES,
        warning_minutes=settings.BOOTH_WARNING_MINUTES,
    )
    return success_response(data=summary)


@router.get("/{election_id}")
async def election_results(
    election_id: UUID,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: Annotated[dict, Depends(get_current_user)],
):
    """Per-candidate totals, null and blank totals, turnout and per-booth totals."""
    results = await results_service.get_election_results(conn, election_id)
    if not results:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Election not found")
    return success_response(data=results)


@router.get("/{election_id}/export")
async def export_results(
    election_id: UUID,
    http_request: Request,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: Annotated[dict, Depends(require_admin)],
    format: str = Query("csv", pattern="^csv$"),
):
    """Download results as CSV."""
    results = await results_service.get_election_results(conn, election_id)
    if not results:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Election not found")

    await create_audit_log(
        conn,
        AuditAction.RESULTS_EXPORTED,
        user_id=current_user["id"],
        table_name="elections",
        record_id=election_id,
        new_data={"format": format},
        **request_meta(http_request),
    )
    return Response(
        content=results_to_csv(results),
        media_type="text/csv",
        headers={
            "Content-Disposition": f'attachment; filename="results_{election_id}.csv"'
        },
    )
