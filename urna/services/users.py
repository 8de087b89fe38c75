"""Operator account service functions."""

from typing import Any
from uuid import UUID

import asyncpg

from urna.core.database import record_to_dict

USER_ROLES = ("admin", "operator")


async def create_user(
    conn: asyncpg.Connection,
    name: str,
    email: str,
    password_hash: str,
    role: str = "operator",
) -> dict[str, Any] | None:
    """Create a new operator account."""
    result = await conn.fetchrow(
        """
        INSERT INTO users (name, email, password_hash, role)
        VALUES ($1, $2, $3, $4)
        RETURNING id, name, email, role, active, created_at
        """,
        name,
        email.lower(),
        password_hash,
        role,
    )
    return record_to_dict(result)


async def get_user_by_id(
    conn: asyncpg.Connection, user_id: UUID | str
) -> dict[str, Any] | None:
    """Get user by ID."""
    result = await conn.fetchrow(
        """
        SELECT id, name, email, role, active, last_login, created_at
        FROM users
        WHERE id = $1
        """,
        str(user_id),
    )
    return record_to_dict(result)


async def get_user_by_email(
    conn: asyncpg.Connection, email: str
) -> dict[str, Any] | None:
    """Get user by email, including the password hash for login."""
    result = await conn.fetchrow(
        """
        SELECT id, name, email, password_hash, role, active, last_login, created_at
        FROM users
        WHERE email = $1
        """,
        email.lower(),
    )
    return record_to_dict(result)


async def count_admins(conn: asyncpg.Connection) -> int:
    result = await conn.fetchval("SELECT COUNT(*) FROM users WHERE role = 'admin'")
    return int(result or 0)


async def update_user_last_login(conn: asyncpg.Connection, user_id: UUID | str) -> None:
    """Update user's last login timestamp."""
    await conn.execute(
        """
        UPDATE users
        SET last_login = CURRENT_TIMESTAMP
        WHERE id = $1
        """,
        str(user_id),
    )
