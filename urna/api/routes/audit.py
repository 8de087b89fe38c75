"""API routes for audit log inspection."""

from datetime import UTC, datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status

from urna.api.deps import require_admin
from urna.core.database import get_db
from urna.core.responses import paginated_response, success_response
from urna.services import audit

router = APIRouter(prefix="/audit", tags=["Audit"])


# ============================================================================
# ENDPOINTS
# ============================================================================


@router.get("")
async def list_audit_logs(
    user_id: UUID | None = Query(None, description="Filter by operator ID"),
    action: str | None = Query(None, description="Filter by action"),
    table_name: str | None = Query(None, description="Filter by affected table"),
    record_id: UUID | None = Query(None, description="Filter by affected row"),
    start_date: datetime | None = Query(None, description="Filter from date"),
    end_date: datetime | None = Query(None, description="Filter to date"),
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(50, ge=1, le=200, description="Results per page"),
    conn=Depends(get_db),
    current_user=Depends(require_admin),
):
    """List audit logs with filtering and pagination.

    Query Parameters:
    - user_id: Filter by operator
    - action: Filter by action (login, create, update, vote_registered, etc.)
    - table_name: Filter by table (elections, candidates, voters, booths, users, votes)
    - record_id: Filter by specific row
    - start_date: Start date (ISO 8601)
    - end_date: End date (ISO 8601)
    - page: Page number (default: 1)
    - limit: Results per page (default: 50, max: 200)
    """
    logs, total = await audit.list_audit_logs(
        conn,
        user_id=user_id,
        action=action,
        table_name=table_name,
        record_id=record_id,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit,
    )
    return paginated_response(logs, page, limit, total)


@router.get("/statistics")
async def get_audit_statistics(
    conn=Depends(get_db),
    current_user=Depends(require_admin),
):
    """Most frequent actions, tables and operators, and activity over the last 24 hours."""
    stats = await audit.get_audit_statistics(conn)
    return success_response(
        data={**stats, "generated_at": datetime.now(UTC)},
        message="Audit statistics",
    )


@router.get("/{log_id}")
async def get_audit_log(
    log_id: UUID,
    conn=Depends(get_db),
    current_user=Depends(require_admin),
):
    """Get a single audit log entry."""
    log = await audit.get_audit_log_by_id(conn, log_id)
    if not log:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Audit log not found")
    return success_response(data=log)
