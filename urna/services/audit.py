"""Audit logging service for administrative changes."""

import json
from typing import Any
from uuid import UUID

import asyncpg

from urna.core.database import record_to_dict, records_to_list


# ============================================================================
# AUDIT LOG TYPES
# ============================================================================


class AuditAction:
    """Standard audit action types."""

    # Authentication
    LOGIN = "login"
    LOGOUT = "logout"
    USER_CREATED = "user_created"

    # Registry changes
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    IMPORT = "import"

    # Booth events
    VOTER_VALIDATED = "voter_validated"
    VOTE_REGISTERED = "vote_registered"

    # Data Access
    RESULTS_EXPORTED = "results_exported"


# ============================================================================
# AUDIT LOG FUNCTIONS
# ============================================================================


def _to_json(data: dict[str, Any] | None) -> str | None:
    if data is None:
        return None
    return json.dumps(data, default=str)


async def create_audit_log(
    conn: asyncpg.Connection,
    action: str,
    user_id: UUID | str | None = None,
    table_name: str | None = None,
    record_id: UUID | str | None = None,
    old_data: dict[str, Any] | None = None,
    new_data: dict[str, Any] | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> dict[str, Any]:
    """Create an audit log entry.

    Args:
        conn: Database connection
        action: Type of action (use AuditAction constants)
        user_id: ID of the operator performing the action (None for system actions)
        table_name: Table affected (elections, candidates, voters, booths, users)
        record_id: ID of the affected row
        old_data: Row state before the change
        new_data: Row state after the change
        ip_address: IP address of the caller
        user_agent: User agent string

    Returns:
        Created audit log entry
    """
    result = await conn.fetchrow(
        """
        INSERT INTO audit_logs (
            user_id, action, table_name, record_id,
            old_data, new_data, ip_address, user_agent
        )
        VALUES ($1, $2, $3, $4, $5::jsonb, $6::jsonb, $7::text::inet, $8)
        RETURNING id, user_id, action, table_name, record_id, created_at
        """,
        str(user_id) if user_id else None,
        action,
        table_name,
        str(record_id) if record_id else None,
        _to_json(old_data),
        _to_json(new_data),
        ip_address,
        user_agent,
    )
    return record_to_dict(result) or {}


def _decode_payloads(log: dict[str, Any]) -> dict[str, Any]:
    for key in ("old_data", "new_data"):
        if isinstance(log.get(key), str):
            log[key] = json.loads(log[key])
    return log


async def list_audit_logs(
    conn: asyncpg.Connection,
    user_id: UUID | None = None,
    action: str | None = None,
    table_name: str | None = None,
    record_id: UUID | None = None,
    start_date: Any = None,
    end_date: Any = None,
    page: int = 1,
    limit: int = 50,
) -> tuple[list[dict[str, Any]], int]:
    """List audit logs with filters and pagination.

    Returns:
        Tuple of (logs list, total count)
    """
    conditions = []
    params: list[Any] = []

    if user_id:
        params.append(user_id)
        conditions.append(f"al.user_id = ${len(params)}")

    if action:
        params.append(action)
        conditions.append(f"al.action = ${len(params)}")

    if table_name:
        params.append(table_name)
        conditions.append(f"al.table_name = ${len(params)}")

    if record_id:
        params.append(record_id)
        conditions.append(f"al.record_id = ${len(params)}")

    if start_date:
        params.append(start_date)
        conditions.append(f"al.created_at >= ${len(params)}")

    if end_date:
        params.append(end_date)
        conditions.append(f"al.created_at <= ${len(params)}")

    where_clause = "WHERE " + " AND ".join(conditions) if conditions else ""

    total_count = await conn.fetchval(
        f"SELECT COUNT(*) FROM audit_logs al {where_clause}", *params
    )

    offset = (page - 1) * limit
    results = await conn.fetch(
        f"""
        SELECT
            al.id, al.user_id, al.action, al.table_name, al.record_id,
            al.old_data, al.new_data, host(al.ip_address) AS ip_address,
            al.user_agent, al.created_at, u.name AS user_name, u.email AS user_email
        FROM audit_logs al
        LEFT JOIN users u ON al.user_id = u.id
        {where_clause}
        ORDER BY al.created_at DESC
        LIMIT ${len(params) + 1} OFFSET ${len(params) + 2}
        """,
        *params,
        limit,
        offset,
    )
    logs = [_decode_payloads(row) for row in records_to_list(results)]

    return logs, total_count or 0


async def get_audit_log_by_id(
    conn: asyncpg.Connection, log_id: UUID
) -> dict[str, Any] | None:
    """Get a specific audit log entry by ID."""
    result = await conn.fetchrow(
        """
        SELECT
            al.id, al.user_id, al.action, al.table_name, al.record_id,
            al.old_data, al.new_data, host(al.ip_address) AS ip_address,
            al.user_agent, al.created_at, u.name AS user_name, u.email AS user_email
        FROM audit_logs al
        LEFT JOIN users u ON al.user_id = u.id
        WHERE al.id = $1
        """,
        log_id,
    )
    log = record_to_dict(result)
    return _decode_payloads(log) if log else None


async def get_audit_statistics(conn: asyncpg.Connection) -> dict[str, Any]:
    """Audit overview: top actions, tables and operators, plus hourly activity.

    Returns:
        Dictionary with ``top_actions``, ``top_tables``, ``top_users`` (10 each,
        most frequent first) and ``activity_24h``, one bucket per hour of day
        counting entries from the last 24 hours.
    """
    top_actions = await conn.fetch(
        """
        SELECT action, COUNT(*) AS count
        FROM audit_logs
        GROUP BY action
        ORDER BY count DESC
        LIMIT 10
        """
    )

    top_tables = await conn.fetch(
        """
        SELECT table_name, COUNT(*) AS count
        FROM audit_logs
        WHERE table_name IS NOT NULL
        GROUP BY table_name
        ORDER BY count DESC
        LIMIT 10
        """
    )

    top_users = await conn.fetch(
        """
        SELECT u.id AS user_id, u.name, u.email, COUNT(*) AS count
        FROM audit_logs al
        JOIN users u ON al.user_id = u.id
        GROUP BY u.id, u.name, u.email
        ORDER BY count DESC
        LIMIT 10
        """
    )

    activity = await conn.fetch(
        """
        SELECT h.hour, COUNT(al.id) AS count
        FROM generate_series(0, 23) AS h(hour)
        LEFT JOIN audit_logs al
            ON EXTRACT(HOUR FROM al.created_at) = h.hour
            AND al.created_at >= CURRENT_TIMESTAMP - INTERVAL '24 hours'
        GROUP BY h.hour
        ORDER BY h.hour
        """
    )

    return {
        "top_actions": records_to_list(top_actions),
        "top_tables": records_to_list(top_tables),
        "top_users": records_to_list(top_users),
        "activity_24h": records_to_list(activity),
    }
