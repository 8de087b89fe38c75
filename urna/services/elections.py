"""Elections service functions."""

from datetime import datetime
from typing import Any
from uuid import UUID

import asyncpg

from urna.core.database import affected_rows, record_to_dict, records_to_list

ELECTION_STATUSES = ("created", "active", "finished", "cancelled")

# Administrative status transitions; finished and cancelled are terminal
STATUS_TRANSITIONS: dict[str, set[str]] = {
    "created": {"active", "cancelled"},
    "active": {"finished", "cancelled"},
    "finished": set(),
    "cancelled": set(),
}


class InvalidStatusTransition(ValueError):
    """Raised when an administrative status change is not allowed."""


def validate_status_transition(current: str, new: str) -> None:
    if new not in ELECTION_STATUSES:
        raise InvalidStatusTransition(f"Unknown election status: {new}")
    if current == new:
        return
    if new not in STATUS_TRANSITIONS[current]:
        raise InvalidStatusTransition(f"Cannot change election status from {current} to {new}")


# ============================================
# ELECTION CRUD OPERATIONS
# ============================================


async def create_election(
    conn: asyncpg.Connection,
    title: str,
    start_date: datetime,
    end_date: datetime,
    description: str | None = None,
    created_by: UUID | None = None,
) -> dict | None:
    """Create a new election in ``created`` status."""
    result = await conn.fetchrow(
        """
        INSERT INTO elections (title, description, start_date, end_date, created_by)
        VALUES ($1, $2, $3, $4, $5)
        RETURNING *
        """,
        title,
        description,
        start_date,
        end_date,
        created_by,
    )
    return record_to_dict(result)


async def get_election_by_id(
    conn: asyncpg.Connection, election_id: UUID, include_candidates: bool = False
) -> dict | None:
    """Get election by ID, with vote and voter totals."""
    result = await conn.fetchrow(
        """
        SELECT e.*,
               (SELECT COUNT(*) FROM votes v WHERE v.election_id = e.id) AS total_votes,
               (SELECT COUNT(*) FROM voters vr WHERE vr.election_id = e.id) AS total_voters
        FROM elections e
        WHERE e.id = $1
        """,
        election_id,
    )
    election = record_to_dict(result)
    if election and include_candidates:
        candidates = await conn.fetch(
            """
            SELECT id, number, name, party, photo_url
            FROM candidates
            WHERE election_id = $1
            ORDER BY number
            """,
            election_id,
        )
        election["candidates"] = records_to_list(candidates)
    return election


async def list_elections(
    conn: asyncpg.Connection,
    search: str | None = None,
    status: str | None = None,
    limit: int = 10,
    offset: int = 0,
) -> tuple[list[dict], int]:
    """List elections with optional filters. Returns (items, total)."""
    conditions: list[str] = []
    params: list[Any] = []

    if search:
        params.append(f"%{search}%")
        conditions.append(f"e.title ILIKE ${len(params)}")

    if status:
        params.append(status)
        conditions.append(f"e.status = ${len(params)}")

    where_clause = "WHERE " + " AND ".join(conditions) if conditions else ""

    total = await conn.fetchval(f"SELECT COUNT(*) FROM elections e {where_clause}", *params)

    query = f"""
        SELECT e.*,
               (SELECT COUNT(*) FROM votes v WHERE v.election_id = e.id) AS total_votes,
               (SELECT COUNT(*) FROM voters vr WHERE vr.election_id = e.id) AS total_voters
        FROM elections e
        {where_clause}
        ORDER BY e.created_at DESC
        LIMIT ${len(params) + 1} OFFSET ${len(params) + 2}
    """
    results = await conn.fetch(query, *params, limit, offset)
    return records_to_list(results), total or 0


async def update_election(
    conn: asyncpg.Connection,
    election_id: UUID,
    **kwargs: Any,
) -> dict | None:
    """
    Update election details.

    A ``status`` change is checked against STATUS_TRANSITIONS and the dates
    are validated against each other after merging with the stored values.
    """
    current = await conn.fetchrow(
        "SELECT status, start_date, end_date FROM elections WHERE id = $1 FOR UPDATE",
        election_id,
    )
    if not current:
        return None

    new_status = kwargs.get("status")
    if new_status is not None:
        validate_status_transition(current["status"], new_status)

    start_date = kwargs.get("start_date") or current["start_date"]
    end_date = kwargs.get("end_date") or current["end_date"]
    if end_date <= start_date:
        raise ValueError("end_date must be after start_date")

    allowed_fields = {"title", "description", "start_date", "end_date", "status"}
    updates: list[str] = []
    params: list[Any] = []

    for field, value in kwargs.items():
        if field in allowed_fields and value is not None:
            params.append(value)
            updates.append(f"{field} = ${len(params)}")

    if not updates:
        return await get_election_by_id(conn, election_id)

    updates.append("updated_at = CURRENT_TIMESTAMP")
    params.append(election_id)

    result = await conn.fetchrow(
        f"""
        UPDATE elections
        SET {", ".join(updates)}
        WHERE id = ${len(params)}
        RETURNING *
        """,
        *params,
    )
    return record_to_dict(result)


async def delete_election(conn: asyncpg.Connection, election_id: UUID) -> bool:
    """Delete an election with no recorded votes. Candidates and voters cascade."""
    result = await conn.execute(
        """
        DELETE FROM elections e
        WHERE e.id = $1
          AND NOT EXISTS (SELECT 1 FROM votes v WHERE v.election_id = e.id)
        """,
        election_id,
    )
    return affected_rows(result) > 0


async def get_active_election(conn: asyncpg.Connection) -> dict | None:
    """The election currently accepting votes, if exactly one is active."""
    results = await conn.fetch(
        """
        SELECT id, title, status, start_date, end_date
        FROM elections
        WHERE status = 'active'
        ORDER BY start_date DESC
        LIMIT 2
        """
    )
    if len(results) != 1:
        return None
    return record_to_dict(results[0])
