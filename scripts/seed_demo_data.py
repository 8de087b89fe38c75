"""Seed a demo election with candidates, voters and booths for local development."""

import asyncio
from datetime import UTC, datetime, timedelta
import random

import asyncpg

from urna.core.config import settings
from urna.services.booths import create_booth
from urna.services.candidates import create_candidate
from urna.services.elections import create_election, update_election
from urna.services.voters import create_voter

DEMO_CANDIDATES = [
    ("10", "Ana Souza", "Partido Azul"),
    ("20", "Bruno Lima", "Partido Verde"),
    ("30", "Carla Mendes", "Partido Amarelo"),
]

DEMO_BOOTHS = [
    ("URNA-001", "Bloco A - Sala 101"),
    ("URNA-002", "Bloco B - Sala 204"),
]

VOTER_COUNT = 20


def make_cpf(rng: random.Random) -> str:
    """Random CPF with valid check digits."""
    digits = [rng.randint(0, 9) for _ in range(9)]
    for position in (9, 10):
        total = sum(d * (position + 1 - i) for i, d in enumerate(digits))
        check = (total * 10) % 11
        digits.append(0 if check == 10 else check)
    return "".join(str(d) for d in digits)


async def seed_demo_data() -> None:
    conn = await asyncpg.connect(settings.DATABASE_URL)
    rng = random.Random(42)

    try:
        async with conn.transaction():
            now = datetime.now(UTC)
            election = await create_election(
                conn,
                title="Eleição de Demonstração",
                description="Dados gerados por scripts/seed_demo_data.py",
                start_date=now - timedelta(minutes=5),
                end_date=now + timedelta(hours=8),
            )
            election = await update_election(conn, election["id"], status="active")
            print(f"✅ Election: {election['title']} ({election['id']})")

            for number, name, party in DEMO_CANDIDATES:
                await create_candidate(conn, election["id"], number, name, party)
            print(f"✅ Candidates: {len(DEMO_CANDIDATES)}")

            for i in range(1, VOTER_COUNT + 1):
                await create_voter(
                    conn,
                    election_id=election["id"],
                    registration_number=f"{i:06d}",
                    name=f"Eleitor {i:02d}",
                    cpf=make_cpf(rng),
                    email=f"eleitor{i:02d}@example.com",
                )
            print(f"✅ Voters: {VOTER_COUNT} (registration numbers 000001-{VOTER_COUNT:06d})")

            for number, location in DEMO_BOOTHS:
                await create_booth(conn, number, location, election_id=election["id"])
            print(f"✅ Booths: {len(DEMO_BOOTHS)}")
    finally:
        await conn.close()


if __name__ == "__main__":
    print("\n" + "=" * 70)
    print(" " * 22 + "URNA - DEMO DATA SEED")
    print("=" * 70)
    asyncio.run(seed_demo_data())
    print("\nDemo data ready. Start the API and open http://localhost:8000/docs\n")
