"""Voting booth registry and connectivity tracking."""

from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

import asyncpg

from urna.core.database import affected_rows, record_to_dict, records_to_list

BOOTH_STATUSES = ("active", "inactive", "maintenance")

_BOOTH_COLUMNS = """
    b.id, b.number, b.location, b.status, host(b.ip_address) AS ip_address,
    b.election_id, b.last_ping, b.created_at, b.updated_at
"""


class DuplicateBoothNumber(ValueError):
    """Another booth already uses this number."""


def connection_status(
    booth: dict[str, Any],
    now: datetime,
    online_minutes: int = 5,
    warning_minutes: int = 15,
) -> str:
    """
    Classify a booth by the age of its last ping.

    Only ``active`` booths can be online; a booth that never pinged is offline.
    """
    last_ping = booth.get("last_ping")
    if last_ping is None:
        return "offline"
    age = now - last_ping
    if booth.get("status") == "active" and age <= timedelta(minutes=online_minutes):
        return "online"
    if age <= timedelta(minutes=warning_minutes):
        return "warning"
    return "offline"


async def create_booth(
    conn: asyncpg.Connection,
    number: str,
    location: str,
    status: str = "active",
    ip_address: str | None = None,
    election_id: UUID | None = None,
) -> dict | None:
    """Register a booth."""
    if status not in BOOTH_STATUSES:
        raise ValueError(f"Invalid booth status: {status}")
    try:
        result = await conn.fetchrow(
            f"""
            WITH b AS (
                INSERT INTO booths (number, location, status, ip_address, election_id)
                VALUES ($1, $2, $3, $4::text::inet, $5)
                RETURNING *
            )
            SELECT {_BOOTH_COLUMNS} FROM b
            """,
            number,
            location,
            status,
            ip_address,
            election_id,
        )
    except asyncpg.UniqueViolationError:
        raise DuplicateBoothNumber(f"Booth number {number} already exists") from None
    return record_to_dict(result)


async def get_booth_by_id(conn: asyncpg.Connection, booth_id: UUID) -> dict | None:
    """Get booth by ID, with the number of votes it registered."""
    result = await conn.fetchrow(
        f"""
        SELECT {_BOOTH_COLUMNS}, e.title AS election_title,
               (SELECT COUNT(*) FROM votes v WHERE v.booth_id = b.id) AS total_votes
        FROM booths b
        LEFT JOIN elections e ON e.id = b.election_id
        WHERE b.id = $1
        """,
        booth_id,
    )
    return record_to_dict(result)


async def list_booths(
    conn: asyncpg.Connection,
    election_id: UUID | None = None,
    status: str | None = None,
    search: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[dict], int]:
    """List booths with optional filters. Returns (items, total)."""
    conditions: list[str] = []
    params: list[Any] = []

    if election_id:
        params.append(election_id)
        conditions.append(f"b.election_id = ${len(params)}")

    if status:
        params.append(status)
        conditions.append(f"b.status = ${len(params)}")

    if search:
        params.append(f"%{search}%")
        conditions.append(f"(b.number ILIKE ${len(params)} OR b.location ILIKE ${len(params)})")

    where_clause = "WHERE " + " AND ".join(conditions) if conditions else ""

    total = await conn.fetchval(f"SELECT COUNT(*) FROM booths b {where_clause}", *params)
    results = await conn.fetch(
        f"""
        SELECT {_BOOTH_COLUMNS}, e.title AS election_title
        FROM booths b
        LEFT JOIN elections e ON e.id = b.election_id
        {where_clause}
        ORDER BY b.number
        LIMIT ${len(params) + 1} OFFSET ${len(params) + 2}
        """,
        *params,
        limit,
        offset,
    )
    return records_to_list(results), total or 0


async def update_booth(conn: asyncpg.Connection, booth_id: UUID, **kwargs: Any) -> dict | None:
    """Update booth details."""
    new_status = kwargs.get("status")
    if new_status is not None and new_status not in BOOTH_STATUSES:
        raise ValueError(f"Invalid booth status: {new_status}")

    allowed_fields = {"number", "location", "status", "ip_address", "election_id"}
    updates: list[str] = []
    params: list[Any] = []

    for field, value in kwargs.items():
        if field in allowed_fields and value is not None:
            params.append(value)
            cast = "::text::inet" if field == "ip_address" else ""
            updates.append(f"{field} = ${len(params)}{cast}")

    if not updates:
        return await get_booth_by_id(conn, booth_id)

    updates.append("updated_at = CURRENT_TIMESTAMP")
    params.append(booth_id)

    try:
        result = await conn.fetchrow(
            f"""
            WITH b AS (
                UPDATE booths
                SET {", ".join(updates)}
                WHERE id = ${len(params)}
                RETURNING *
            )
            SELECT {_BOOTH_COLUMNS} FROM b
            """,
            *params,
        )
    except asyncpg.UniqueViolationError:
        raise DuplicateBoothNumber(f"Booth number {kwargs.get('number')} already exists") from None
    return record_to_dict(result)


async def delete_booth(conn: asyncpg.Connection, booth_id: UUID) -> bool:
    """Delete a booth. Votes it registered keep their ballot with ``booth_id`` cleared."""
    result = await conn.execute("DELETE FROM booths WHERE id = $1", booth_id)
    return affected_rows(result) > 0


async def record_ping(
    conn: asyncpg.Connection, number: str, ip_address: str | None = None
) -> dict | None:
    """Store a heartbeat from the booth. Returns None for unknown booth numbers."""
    result = await conn.fetchrow(
        f"""
        WITH b AS (
            UPDATE booths
            SET last_ping = CURRENT_TIMESTAMP,
                ip_address = COALESCE($2::text::inet, ip_address),
                updated_at = CURRENT_TIMESTAMP
            WHERE number = $1
            RETURNING *
        )
        SELECT {_BOOTH_COLUMNS} FROM b
        """,
        number,
        ip_address,
    )
    return record_to_dict(result)
