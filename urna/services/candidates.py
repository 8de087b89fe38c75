"""Candidate registry service functions."""

from typing import Any
from uuid import UUID

import asyncpg

from urna.core.database import affected_rows, record_to_dict, records_to_list
from urna.services.voting import BLANK_VOTE_TOKEN, NULL_VOTE_TOKEN

RESERVED_NUMBERS = {NULL_VOTE_TOKEN, BLANK_VOTE_TOKEN}


class DuplicateCandidateNumber(ValueError):
    """Another candidate of the same election already uses this number."""


async def create_candidate(
    conn: asyncpg.Connection,
    election_id: UUID,
    number: str,
    name: str,
    party: str,
    photo_url: str | None = None,
) -> dict | None:
    """Add a candidate to an election."""
    if number.upper() in RESERVED_NUMBERS:
        raise ValueError(f"Candidate number {number} is reserved")

    try:
        result = await conn.fetchrow(
            """
            INSERT INTO candidates (election_id, number, name, party, photo_url)
            VALUES ($1, $2, $3, $4, $5)
            RETURNING *
            """,
            election_id,
            number,
            name,
            party,
            photo_url,
        )
    except asyncpg.UniqueViolationError:
        raise DuplicateCandidateNumber(
            f"Candidate number {number} already exists in this election"
        ) from None
    return record_to_dict(result)


async def get_candidate_by_id(conn: asyncpg.Connection, candidate_id: UUID) -> dict | None:
    """Get candidate by ID, with its vote total."""
    result = await conn.fetchrow(
        """
        SELECT c.*, e.title AS election_title,
               (SELECT COUNT(*) FROM votes v WHERE v.candidate_id = c.id) AS total_votes
        FROM candidates c
        JOIN elections e ON e.id = c.election_id
        WHERE c.id = $1
        """,
        candidate_id,
    )
    return record_to_dict(result)


async def list_candidates(
    conn: asyncpg.Connection,
    election_id: UUID | None = None,
    search: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[dict], int]:
    """List candidates with optional filters. Returns (items, total)."""
    conditions: list[str] = []
    params: list[Any] = []

    if election_id:
        params.append(election_id)
        conditions.append(f"c.election_id = ${len(params)}")

    if search:
        params.append(f"%{search}%")
        conditions.append(
            f"(c.name ILIKE ${len(params)} OR c.party ILIKE ${len(params)} OR c.number ILIKE ${len(params)})"
        )

    where_clause = "WHERE " + " AND ".join(conditions) if conditions else ""

    total = await conn.fetchval(f"SELECT COUNT(*) FROM candidates c {where_clause}", *params)
    results = await conn.fetch(
        f"""
        SELECT c.*, e.title AS election_title
        FROM candidates c
        JOIN elections e ON e.id = c.election_id
        {where_clause}
        ORDER BY c.number
        LIMIT ${len(params) + 1} OFFSET ${len(params) + 2}
        """,
        *params,
        limit,
        offset,
    )
    return records_to_list(results), total or 0


async def list_ballot_candidates(conn: asyncpg.Connection, election_id: UUID) -> list[dict]:
    """Candidates shown on the booth ballot, ordered by number."""
    results = await conn.fetch(
        """
        SELECT id, number, name, party, photo_url
        FROM candidates
        WHERE election_id = $1
        ORDER BY number
        """,
        election_id,
    )
    return records_to_list(results)


async def update_candidate(
    conn: asyncpg.Connection, candidate_id: UUID, **kwargs: Any
) -> dict | None:
    """Update candidate details. The election cannot be changed."""
    number = kwargs.get("number")
    if number is not None and number.upper() in RESERVED_NUMBERS:
        raise ValueError(f"Candidate number {number} is reserved")

    allowed_fields = {"number", "name", "party", "photo_url"}
    updates: list[str] = []
    params: list[Any] = []

    for field, value in kwargs.items():
        if field in allowed_fields and value is not None:
            params.append(value)
            updates.append(f"{field} = ${len(params)}")

    if not updates:
        return await get_candidate_by_id(conn, candidate_id)

    updates.append("updated_at = CURRENT_TIMESTAMP")
    params.append(candidate_id)

    try:
        result = await conn.fetchrow(
            f"""
            UPDATE candidates
            SET {", ".join(updates)}
            WHERE id = ${len(params)}
            RETURNING *
            """,
            *params,
        )
    except asyncpg.UniqueViolationError:
        raise DuplicateCandidateNumber(
            f"Candidate number {number} already exists in this election"
        ) from None
    return record_to_dict(result)


async def delete_candidate(conn: asyncpg.Connection, candidate_id: UUID) -> bool:
    """Delete a candidate that has received no votes."""
    result = await conn.execute(
        """
        DELETE FROM candidates c
        WHERE c.id = $1
          AND NOT EXISTS (SELECT 1 FROM votes v WHERE v.candidate_id = c.id)
        """,
        candidate_id,
    )
    return affected_rows(result) > 0
