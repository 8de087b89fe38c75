"""Voter registry service functions."""

import csv
import io
from typing import Any
from uuid import UUID

import asyncpg

from urna.core.database import affected_rows, record_to_dict, records_to_list
from urna.core.logging_config import get_logger
from urna.core.validation import (
    is_valid_cpf,
    is_valid_registration_number,
    normalize_cpf,
    sanitize_string,
)

logger = get_logger(__name__)

IMPORT_COLUMNS = ("registration_number", "name", "cpf", "email", "phone")

_VOTER_COLUMNS = """
    id, election_id, registration_number, name, cpf, email, phone,
    has_voted, voted_at, booth_id, created_at, updated_at
"""


class DuplicateVoter(ValueError):
    """Registration number or CPF already used in the election."""


class VoterLocked(ValueError):
    """The voter has already voted, so registry fields are frozen."""


def _constraint_message(exc: asyncpg.UniqueViolationError) -> str:
    if exc.constraint_name == "uq_voters_cpf":
        return "A voter with this CPF already exists in this election"
    return "A voter with this registration number already exists in this election"


def validate_voter_fields(registration_number: str, cpf: str) -> str:
    """Validate registry fields and return the normalized CPF."""
    if not is_valid_registration_number(registration_number):
        raise ValueError("Invalid registration number")
    if not is_valid_cpf(cpf):
        raise ValueError("Invalid CPF")
    return normalize_cpf(cpf)


async def create_voter(
    conn: asyncpg.Connection,
    election_id: UUID,
    registration_number: str,
    name: str,
    cpf: str,
    email: str | None = None,
    phone: str | None = None,
) -> dict | None:
    """Register a voter in an election."""
    normalized_cpf = validate_voter_fields(registration_number, cpf)

    try:
        result = await conn.fetchrow(
            f"""
            INSERT INTO voters (election_id, registration_number, name, cpf, email, phone)
            VALUES ($1, $2, $3, $4, $5, $6)
            RETURNING {_VOTER_COLUMNS}
            """,
            election_id,
            registration_number,
            name,
            normalized_cpf,
            email,
            phone,
        )
    except asyncpg.UniqueViolationError as exc:
        raise DuplicateVoter(_constraint_message(exc)) from None
    return record_to_dict(result)


async def get_voter_by_id(conn: asyncpg.Connection, voter_id: UUID) -> dict | None:
    result = await conn.fetchrow(
        """
        SELECT v.id, v.election_id, v.registration_number, v.name, v.cpf, v.email,
               v.phone, v.has_voted, v.voted_at, v.booth_id, v.created_at, v.updated_at,
               e.title AS election_title, e.status AS election_status
        FROM voters v
        JOIN elections e ON e.id = v.election_id
        WHERE v.id = $1
        """,
        voter_id,
    )
    return record_to_dict(result)


async def list_voters(
    conn: asyncpg.Connection,
    election_id: UUID | None = None,
    has_voted: bool | None = None,
    search: str | None = None,
    limit: int = 10,
    offset: int = 0,
) -> tuple[list[dict], int]:
    """List voters with optional filters. Returns (items, total)."""
    conditions: list[str] = []
    params: list[Any] = []

    if election_id:
        params.append(election_id)
        conditions.append(f"election_id = ${len(params)}")

    if has_voted is not None:
        params.append(has_voted)
        conditions.append(f"has_voted = ${len(params)}")

    if search:
        params.append(f"%{search}%")
        conditions.append(
            f"(name ILIKE ${len(params)} OR registration_number ILIKE ${len(params)}"
            f" OR cpf ILIKE ${len(params)})"
        )

    where_clause = "WHERE " + " AND ".join(conditions) if conditions else ""

    total = await conn.fetchval(f"SELECT COUNT(*) FROM voters {where_clause}", *params)
    results = await conn.fetch(
        f"""
        SELECT {_VOTER_COLUMNS}
        FROM voters
        {where_clause}
        ORDER BY name
        LIMIT ${len(params) + 1} OFFSET ${len(params) + 2}
        """,
        *params,
        limit,
        offset,
    )
    return records_to_list(results), total or 0


async def update_voter(conn: asyncpg.Connection, voter_id: UUID, **kwargs: Any) -> dict | None:
    """
    Update registry fields of a voter who has not voted yet.

    ``has_voted`` and ``voted_at`` are owned by the vote caster and are not
    accepted here.
    """
    current = await conn.fetchrow(
        "SELECT registration_number, cpf, has_voted FROM voters WHERE id = $1 FOR UPDATE",
        voter_id,
    )
    if not current:
        return None
    if current["has_voted"]:
        raise VoterLocked("Voters who have already voted cannot be modified")

    if kwargs.get("registration_number") is not None or kwargs.get("cpf") is not None:
        kwargs["cpf"] = validate_voter_fields(
            kwargs.get("registration_number") or current["registration_number"],
            kwargs.get("cpf") or current["cpf"],
        )

    allowed_fields = {"registration_number", "name", "cpf", "email", "phone"}
    updates: list[str] = []
    params: list[Any] = []

    for field, value in kwargs.items():
        if field in allowed_fields and value is not None:
            params.append(value)
            updates.append(f"{field} = ${len(params)}")

    if not updates:
        return await get_voter_by_id(conn, voter_id)

    updates.append("updated_at = CURRENT_TIMESTAMP")
    params.append(voter_id)

    try:
        result = await conn.fetchrow(
            f"""
            UPDATE voters
            SET {", ".join(updates)}
            WHERE id = ${len(params)} AND has_voted = FALSE
            RETURNING {_VOTER_COLUMNS}
            """,
            *params,
        )
    except asyncpg.UniqueViolationError as exc:
        raise DuplicateVoter(_constraint_message(exc)) from None
    return record_to_dict(result)


async def delete_voter(conn: asyncpg.Connection, voter_id: UUID) -> bool:
    """Delete a voter who has not voted."""
    result = await conn.execute(
        "DELETE FROM voters WHERE id = $1 AND has_voted = FALSE", voter_id
    )
    return affected_rows(result) > 0


def parse_voter_csv(content: str) -> list[dict[str, str]]:
    """
    Parse an import file with a header row.

    Required columns: registration_number, name, cpf. Optional: email, phone.
    """
    reader = csv.DictReader(io.StringIO(content.lstrip("\ufeff")))
    if reader.fieldnames is None:
        raise ValueError("Import file is empty")

    fieldnames = [name.strip().lower() for name in reader.fieldnames]
    missing = [col for col in IMPORT_COLUMNS[:3] if col not in fieldnames]
    if missing:
        raise ValueError(f"Missing required columns: {', '.join(missing)}")

    reader.fieldnames = fieldnames
    rows = []
    for row in reader:
        rows.append(
            {
                col: sanitize_string(row.get(col) or "")
                for col in IMPORT_COLUMNS
            }
        )
    return rows


async def import_voters(
    conn: asyncpg.Connection, election_id: UUID, content: str
) -> dict[str, Any]:
    """
    Bulk-register voters from CSV text.

    Each row is inserted in its own savepoint so one bad row does not discard
    the rest. Returns counts and per-line errors (line 1 is the header).
    """
    rows = parse_voter_csv(content)
    imported = 0
    errors: list[dict[str, Any]] = []

    async with conn.transaction():
        for line, row in enumerate(rows, start=2):
            if not row["registration_number"] or not row["name"] or not row["cpf"]:
                errors.append({"line": line, "error": "registration_number, name and cpf are required"})
                continue
            try:
                async with conn.transaction():
                    await create_voter(
                        conn,
                        election_id=election_id,
                        registration_number=row["registration_number"],
                        name=row["name"],
                        cpf=row["cpf"],
                        email=row["email"] or None,
                        phone=row["phone"] or None,
                    )
                imported += 1
            except ValueError as e:
                errors.append({"line": line, "error": str(e)})

    logger.info(
        f"Voter import for election {election_id}: {imported} imported, {len(errors)} rejected"
    )
    return {"imported": imported, "rejected": len(errors), "errors": errors}
