#!/usr/bin/env python3
"""
Admin User Bootstrap Script

Creates the first admin operator. Run this once after the database migrations;
further operators are created through POST /auth/register.

Usage:
    python bootstrap_admin.py --email admin@example.com --name "Admin"
    (the password is read from URNA_ADMIN_PASSWORD or prompted for)
"""

import argparse
import asyncio
import getpass
import os
import sys

import asyncpg

from urna.core.config import settings
from urna.core.security import hash_password
from urna.core.validation import PasswordValidator, is_valid_email
from urna.services.users import count_admins, create_user, get_user_by_email


async def bootstrap_admin_user(email: str, name: str, password: str) -> bool:
    """Create the admin operator unless an admin already exists."""
    conn = await asyncpg.connect(settings.DATABASE_URL)

    try:
        print("🔍 Checking admin user setup...")

        if await count_admins(conn) > 0:
            print("ℹ️  An admin user already exists, nothing to do")
            return True

        if await get_user_by_email(conn, email):
            print(f"❌ {email} is already registered as an operator")
            return False

        user = await create_user(
            conn,
            name=name,
            email=email,
            password_hash=hash_password(password),
            role="admin",
        )
        print(f"✅ Created admin user: {user['email']} (ID: {user['id']})")
        return True

    except asyncpg.PostgresError as e:
        print(f"❌ Error during bootstrap: {e}")
        return False

    finally:
        await conn.close()


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create the first urna admin operator")
    parser.add_argument("--email", required=True)
    parser.add_argument("--name", default="Administrator")
    return parser.parse_args(argv)


async def main() -> bool:
    """Main bootstrap function."""
    args = parse_args()
    print("🚀 Urna Admin User Bootstrap")
    print("=" * 50)

    email = args.email.strip().lower()
    if not is_valid_email(email):
        print("❌ Invalid email address")
        return False

    password = os.environ.get("URNA_ADMIN_PASSWORD") or getpass.getpass("Admin password: ")
    is_valid, error = PasswordValidator.validate(password)
    if not is_valid:
        print(f"❌ {error}")
        return False

    success = await bootstrap_admin_user(email, args.name, password)

    if success:
        print("\n✅ Bootstrap completed successfully!")
    else:
        print("\n❌ Bootstrap failed!")
        print("Please check the error messages above and try again.")

    return success


if __name__ == "__main__":
    success = asyncio.run(main())
    sys.exit(0 if success else 1)
