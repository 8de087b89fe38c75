"""
Vote casting against a real PostgreSQL database.

Run with TEST_DATABASE_URL pointing at a disposable database; the tables are
dropped and recreated for each test.
"""

import asyncio
from datetime import UTC, datetime, timedelta
import os
from uuid import UUID

import asyncpg
import pytest

from urna.services.audit import AuditAction, create_audit_log
from urna.services.booths import create_booth, record_ping
from urna.services.candidates import create_candidate
from urna.services.elections import create_election, update_election
from urna.services.results import get_election_results
from urna.services.voters import VoterLocked, create_voter, get_voter_by_id, update_voter
from urna.services.voting import (
    AlreadyVoted,
    ElectionNotOpen,
    Selection,
    VoteCaster,
    VoteKind,
    verify_receipt,
)

pytestmark = pytest.mark.integration


async def open_election(pool, voters: int = 1):
    now = datetime.now(UTC)
    async with pool.acquire() as conn:
        election = await create_election(
            conn,
            "Integração",
            start_date=now - timedelta(hours=1),
            end_date=now + timedelta(hours=1),
        )
        election_id = UUID(election["id"])
        await update_election(conn, election_id, status="active")
        candidate = await create_candidate(conn, election_id, "10", "Ana", "PA")
        for i in range(voters):
            cpf = "52998224725" if i == 0 else "11144477735"
            await create_voter(conn, election_id, f"{i:06d}", f"Eleitor {i}", cpf)
    return election_id, UUID(candidate["id"])


async def cast(pool, caster: VoteCaster, *args):
    async with pool.acquire() as conn:
        return await caster.cast_vote(conn, *args)


@pytest.mark.asyncio
async def test_concurrent_casts_commit_one_ballot(db_pool):
    election_id, candidate_id = await open_election(db_pool)
    caster = VoteCaster()

    results = await asyncio.gather(
        *[
            cast(
                db_pool, caster, "000000", election_id, Selection(VoteKind.CANDIDATE, candidate_id)
            )
            for _ in range(8)
        ],
        return_exceptions=True,
    )

    accepted = [r for r in results if not isinstance(r, Exception)]
    assert len(accepted) == 1
    assert all(isinstance(r, AlreadyVoted) for r in results if isinstance(r, Exception))

    async with db_pool.acquire() as conn:
        ballots = await conn.fetchval(
            "SELECT COUNT(*) FROM votes WHERE election_id = $1", election_id
        )
        has_voted = await conn.fetchval(
            "SELECT has_voted FROM voters WHERE election_id = $1", election_id
        )
        receipt = await verify_receipt(conn, election_id, accepted[0].verification_hash)
    assert ballots == 1
    assert has_voted is True
    assert receipt["election_id"] == str(election_id)


@pytest.mark.asyncio
async def test_results_and_voter_lock(db_pool):
    election_id, candidate_id = await open_election(db_pool, voters=2)
    caster = VoteCaster()

    await cast(db_pool, caster, "000000", election_id, Selection(VoteKind.CANDIDATE, candidate_id))
    await cast(db_pool, caster, "000001", election_id, Selection(VoteKind.BLANK))

    async with db_pool.acquire() as conn:
        results = await get_election_results(conn, election_id)
        voter_id = await conn.fetchval(
            "SELECT id FROM voters WHERE registration_number = '000000'"
        )
        with pytest.raises(VoterLocked):
            await update_voter(conn, voter_id, name="Outro Nome")
        voter = await get_voter_by_id(conn, voter_id)

    assert results["candidates"][0]["votes"] == 1
    assert results["candidates"][0]["percentage"] == 100.0
    assert results["blank_votes"] == {"votes": 1, "percentage": 50.0}
    assert results["turnout"]["participation"] == 100.0
    assert voter["name"] == "Eleitor 0"


@pytest.mark.asyncio
async def test_finished_election_rejects_votes(db_pool):
    election_id, _ = await open_election(db_pool)
    async with db_pool.acquire() as conn:
        await update_election(conn, election_id, status="finished")

    with pytest.raises(ElectionNotOpen):
        await cast(db_pool, VoteCaster(), "000000", election_id, Selection(VoteKind.NULL_VOTE))


@pytest.mark.asyncio
async def test_cast_and_audit_share_one_connection(db_pool):
    election_id, _ = await open_election(db_pool)
    small_pool = await asyncpg.create_pool(
        dsn=os.environ["TEST_DATABASE_URL"], min_size=1, max_size=1
    )
    try:
        async with small_pool.acquire() as conn:
            receipt = await VoteCaster(timeout=0.5).cast_vote(
                conn, "000000", election_id, Selection(VoteKind.BLANK)
            )
            await create_audit_log(
                conn, AuditAction.VOTE_REGISTERED, table_name="votes", record_id=election_id
            )
    finally:
        await small_pool.close()

    async with db_pool.acquire() as conn:
        audited = await conn.fetchval(
            "SELECT COUNT(*) FROM audit_logs WHERE action = 'vote_registered'"
        )
    assert receipt.vote_kind is VoteKind.BLANK
    assert audited == 1


@pytest.mark.asyncio
async def test_booth_ping_stores_address(db_pool):
    async with db_pool.acquire() as conn:
        await create_booth(conn, "URNA-001", "Sala 101", ip_address="10.0.0.5")
        booth = await record_ping(conn, "URNA-001", "10.0.0.7")
        missing = await record_ping(conn, "URNA-404", None)

    assert booth["ip_address"] == "10.0.0.7"
    assert booth["last_ping"] is not None
    assert missing is None
