"""
Unit tests for the vote casting transaction.

The ledger queries are replaced by an in-memory ledger whose transactions
serialize on a lock and roll back on error, which is how the row lock and the
transaction behave in PostgreSQL for a single voter.
"""

import asyncio
import copy
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock
from uuid import UUID, uuid4

import asyncpg
import pytest

from urna.services import voting as voting_service
from urna.services.voting import (
    AlreadyVoted,
    CandidateNotFound,
    ElectionNotFound,
    ElectionNotOpen,
    PersistenceUnavailable,
    Selection,
    VoteCaster,
    VoteKind,
    VoterNotFound,
    can_vote,
)

START = datetime(2026, 10, 4, 8, 0, tzinfo=UTC)
END = datetime(2026, 10, 4, 17, 0, tzinfo=UTC)
NOON = datetime(2026, 10, 4, 12, 0, tzinfo=UTC)


class InMemoryLedger:
    """Elections, voters and votes with all-or-nothing transactions."""

    def __init__(self) -> None:
        self.elections: dict[UUID, dict] = {}
        self.voters: dict[tuple[UUID, str], dict] = {}
        self.candidates: set[tuple[UUID, UUID]] = set()
        self.votes: list[dict] = []
        self.lock = asyncio.Lock()
        self.fail_mark_voted = False
        self.fail_insert_with: Exception | None = None
        self.begin_delay: float = 0

    @property
    def conn(self) -> "FakeConnection":
        return FakeConnection(self)

    def add_election(self, status: str = "active", start=START, end=END) -> UUID:
        election_id = uuid4()
        self.elections[election_id] = {
            "id": election_id,
            "status": status,
            "start_date": start,
            "end_date": end,
        }
        return election_id

    def add_voter(self, election_id: UUID, registration_number: str) -> UUID:
        voter_id = uuid4()
        self.voters[(election_id, registration_number)] = {
            "id": voter_id,
            "registration_number": registration_number,
            "has_voted": False,
            "voted_at": None,
        }
        return voter_id

    def add_candidate(self, election_id: UUID) -> UUID:
        candidate_id = uuid4()
        self.candidates.add((candidate_id, election_id))
        return candidate_id

    def voter(self, election_id: UUID, registration_number: str) -> dict:
        return self.voters[(election_id, registration_number)]

    def _snapshot(self):
        return copy.deepcopy((self.voters, self.votes))

    def _restore(self, snapshot) -> None:
        self.voters, self.votes = snapshot


class FakeConnection:
    def __init__(self, ledger: InMemoryLedger) -> None:
        self.ledger = ledger

    @asynccontextmanager
    async def transaction(self):
        if self.ledger.begin_delay:
            await asyncio.sleep(self.ledger.begin_delay)
        async with self.ledger.lock:
            snapshot = self.ledger._snapshot()
            try:
                yield
            except BaseException:
                self.ledger._restore(snapshot)
                raise


async def fake_fetch_election(conn, election_id):
    await asyncio.sleep(0)
    election = conn.ledger.elections.get(election_id)
    return dict(election) if election else None


async def fake_lock_voter(conn, election_id, registration_number):
    await asyncio.sleep(0)
    voter = conn.ledger.voters.get((election_id, registration_number))
    return dict(voter) if voter else None


async def fake_candidate_in_election(conn, candidate_id, election_id):
    return (candidate_id, election_id) in conn.ledger.candidates


async def fake_insert_vote(
    conn,
    election_id,
    voter_id,
    registration_number,
    selection,
    verification_hash,
    created_at,
    booth_id=None,
):
    ledger = conn.ledger
    if ledger.fail_insert_with is not None:
        raise ledger.fail_insert_with
    await asyncio.sleep(0)
    if any(v["voter_id"] == voter_id and v["election_id"] == election_id for v in ledger.votes):
        return None
    vote = {
        "election_id": election_id,
        "voter_id": voter_id,
        "vote_kind": selection.kind.value,
        "candidate_id": selection.candidate_id,
        "verification_hash": verification_hash,
        "booth_id": booth_id,
        "created_at": created_at,
    }
    ledger.votes.append(vote)
    return {"id": uuid4(), "verification_hash": verification_hash, "created_at": created_at}


async def fake_mark_voted(conn, voter_id, voted_at, booth_id=None):
    ledger = conn.ledger
    if ledger.fail_mark_voted:
        return False
    for voter in ledger.voters.values():
        if voter["id"] == voter_id and not voter["has_voted"]:
            voter["has_voted"] = True
            voter["voted_at"] = voted_at
            return True
    return False


class SingleConnectionPool:
    """Pool capped at one connection, like DB_POOL_MAX_SIZE=1."""

    def __init__(self, ledger: InMemoryLedger) -> None:
        self.ledger = ledger
        self.slot = asyncio.Semaphore(1)

    @asynccontextmanager
    async def acquire(self):
        async with self.slot:
            yield self.ledger.conn


@pytest.fixture
def ledger(monkeypatch) -> InMemoryLedger:
    monkeypatch.setattr(voting_service, "fetch_election_for_vote", fake_fetch_election)
    monkeypatch.setattr(voting_service, "lock_voter", fake_lock_voter)
    monkeypatch.setattr(voting_service, "candidate_in_election", fake_candidate_in_election)
    monkeypatch.setattr(voting_service, "insert_vote", fake_insert_vote)
    monkeypatch.setattr(voting_service, "mark_voted", fake_mark_voted)
    return InMemoryLedger()


def make_caster(ledger: InMemoryLedger, now: datetime = NOON, **kwargs) -> VoteCaster:
    return VoteCaster(clock=lambda: now, **kwargs)


# ============================================
# ACCEPTED VOTES
# ============================================


@pytest.mark.asyncio
async def test_cast_vote_for_candidate(ledger):
    """A valid vote is recorded and the voter is marked as voted."""
    election_id = ledger.add_election()
    ledger.add_voter(election_id, "000123")
    candidate_id = ledger.add_candidate(election_id)
    booth_id = uuid4()

    receipt = await make_caster(ledger).cast_vote(
        ledger.conn, "000123", election_id, Selection(VoteKind.CANDIDATE, candidate_id), booth_id
    )

    assert len(ledger.votes) == 1
    assert ledger.votes[0]["candidate_id"] == candidate_id
    assert ledger.votes[0]["booth_id"] == booth_id
    assert ledger.voter(election_id, "000123")["has_voted"] is True
    assert ledger.voter(election_id, "000123")["voted_at"] == NOON
    assert receipt.timestamp == NOON
    assert receipt.vote_kind is VoteKind.CANDIDATE
    assert len(receipt.verification_hash) == 32
    int(receipt.verification_hash, 16)


@pytest.mark.asyncio
@pytest.mark.parametrize("kind", [VoteKind.NULL_VOTE, VoteKind.BLANK])
async def test_null_and_blank_votes_have_no_candidate(ledger, kind):
    election_id = ledger.add_election()
    ledger.add_voter(election_id, "000200")

    receipt = await make_caster(ledger).cast_vote(
        ledger.conn, "000200", election_id, Selection(kind)
    )

    assert ledger.votes[0]["candidate_id"] is None
    assert ledger.votes[0]["vote_kind"] == kind.value
    assert receipt.vote_kind is kind


@pytest.mark.asyncio
async def test_receipt_dict_has_only_hash_and_timestamp(ledger):
    election_id = ledger.add_election()
    ledger.add_voter(election_id, "000300")

    receipt = await make_caster(ledger).cast_vote(
        ledger.conn, "000300", election_id, Selection(VoteKind.BLANK)
    )

    assert receipt.to_dict() == {
        "verification_hash": receipt.verification_hash,
        "timestamp": NOON.isoformat(),
    }


@pytest.mark.asyncio
async def test_receipts_are_unique(ledger):
    election_id = ledger.add_election()
    caster = make_caster(ledger)
    hashes = set()
    for i in range(20):
        ledger.add_voter(election_id, f"R{i}")
        receipt = await caster.cast_vote(
            ledger.conn, f"R{i}", election_id, Selection(VoteKind.BLANK)
        )
        hashes.add(receipt.verification_hash)

    assert len(hashes) == 20


# ============================================
# REJECTIONS
# ============================================


@pytest.mark.asyncio
async def test_second_vote_is_rejected(ledger):
    election_id = ledger.add_election()
    ledger.add_voter(election_id, "000123")
    caster = make_caster(ledger)

    await caster.cast_vote(ledger.conn, "000123", election_id, Selection(VoteKind.BLANK))
    with pytest.raises(AlreadyVoted) as exc_info:
        await caster.cast_vote(ledger.conn, "000123", election_id, Selection(VoteKind.NULL_VOTE))

    assert exc_info.value.code == "already_voted"
    assert exc_info.value.status_code == 409
    assert len(ledger.votes) == 1
    assert ledger.votes[0]["vote_kind"] == "blank"


@pytest.mark.asyncio
async def test_concurrent_casts_for_same_voter_accept_exactly_one(ledger):
    """Booths racing on one voter end with a single committed ballot."""
    election_id = ledger.add_election()
    ledger.add_voter(election_id, "000123")
    candidate_id = ledger.add_candidate(election_id)
    caster = make_caster(ledger)

    results = await asyncio.gather(
        *[
            caster.cast_vote(
                ledger.conn,
                "000123",
                election_id,
                Selection(VoteKind.CANDIDATE, candidate_id),
                uuid4(),
            )
            for _ in range(10)
        ],
        return_exceptions=True,
    )

    accepted = [r for r in results if not isinstance(r, Exception)]
    rejected = [r for r in results if isinstance(r, Exception)]
    assert len(accepted) == 1
    assert len(rejected) == 9
    assert all(isinstance(r, AlreadyVoted) for r in rejected)
    assert len(ledger.votes) == 1


@pytest.mark.asyncio
async def test_concurrent_casts_for_different_voters_all_succeed(ledger):
    election_id = ledger.add_election()
    for i in range(5):
        ledger.add_voter(election_id, f"V{i}")
    caster = make_caster(ledger)

    await asyncio.gather(
        *[
            caster.cast_vote(ledger.conn, f"V{i}", election_id, Selection(VoteKind.BLANK))
            for i in range(5)
        ]
    )

    assert len(ledger.votes) == 5
    assert all(v["has_voted"] for v in ledger.voters.values())


@pytest.mark.asyncio
async def test_unknown_election(ledger):
    with pytest.raises(ElectionNotFound):
        await make_caster(ledger).cast_vote(
            ledger.conn, "000123", uuid4(), Selection(VoteKind.BLANK)
        )


@pytest.mark.asyncio
async def test_unknown_voter(ledger):
    election_id = ledger.add_election()

    with pytest.raises(VoterNotFound) as exc_info:
        await make_caster(ledger).cast_vote(
            ledger.conn, "999999", election_id, Selection(VoteKind.BLANK)
        )

    assert exc_info.value.status_code == 404
    assert ledger.votes == []


@pytest.mark.asyncio
async def test_candidate_from_another_election(ledger):
    election_id = ledger.add_election()
    other_election = ledger.add_election()
    foreign_candidate = ledger.add_candidate(other_election)
    ledger.add_voter(election_id, "000123")

    with pytest.raises(CandidateNotFound):
        await make_caster(ledger).cast_vote(
            ledger.conn, "000123", election_id, Selection(VoteKind.CANDIDATE, foreign_candidate)
        )

    assert ledger.votes == []
    assert ledger.voter(election_id, "000123")["has_voted"] is False


@pytest.mark.asyncio
@pytest.mark.parametrize("status", ["created", "finished", "cancelled"])
async def test_election_not_active(ledger, status):
    election_id = ledger.add_election(status=status)
    ledger.add_voter(election_id, "000123")

    with pytest.raises(ElectionNotOpen):
        await make_caster(ledger).cast_vote(
            ledger.conn, "000123", election_id, Selection(VoteKind.BLANK)
        )

    assert ledger.votes == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "now, accepted",
    [
        (START, True),
        (END, True),
        (START - timedelta(microseconds=1), False),
        (END + timedelta(microseconds=1), False),
    ],
)
async def test_election_window_bounds_are_inclusive(ledger, now, accepted):
    election_id = ledger.add_election()
    ledger.add_voter(election_id, "000123")
    caster = make_caster(ledger, now=now)

    if accepted:
        await caster.cast_vote(ledger.conn, "000123", election_id, Selection(VoteKind.BLANK))
        assert len(ledger.votes) == 1
    else:
        with pytest.raises(ElectionNotOpen):
            await caster.cast_vote(ledger.conn, "000123", election_id, Selection(VoteKind.BLANK))
        assert ledger.votes == []


# ============================================
# FAILURES AND ROLLBACK
# ============================================


@pytest.mark.asyncio
async def test_failed_status_flip_rolls_back_ballot(ledger):
    election_id = ledger.add_election()
    ledger.add_voter(election_id, "000123")
    ledger.fail_mark_voted = True

    with pytest.raises(AlreadyVoted):
        await make_caster(ledger).cast_vote(
            ledger.conn, "000123", election_id, Selection(VoteKind.BLANK)
        )

    assert ledger.votes == []
    assert ledger.voter(election_id, "000123")["has_voted"] is False


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [
        OSError("connection reset by peer"),
        asyncpg.InterfaceError("connection is closed"),
    ],
)
async def test_storage_errors_become_retryable(ledger, error):
    election_id = ledger.add_election()
    ledger.add_voter(election_id, "000123")
    ledger.fail_insert_with = error

    with pytest.raises(PersistenceUnavailable) as exc_info:
        await make_caster(ledger).cast_vote(
            ledger.conn, "000123", election_id, Selection(VoteKind.BLANK)
        )

    assert exc_info.value.retryable is True
    assert exc_info.value.status_code == 503
    assert ledger.voter(election_id, "000123")["has_voted"] is False


@pytest.mark.asyncio
async def test_timeout_becomes_retryable(ledger):
    election_id = ledger.add_election()
    ledger.add_voter(election_id, "000123")
    ledger.begin_delay = 1
    caster = VoteCaster(timeout=0.01, clock=lambda: NOON)

    with pytest.raises(PersistenceUnavailable):
        await caster.cast_vote(ledger.conn, "000123", election_id, Selection(VoteKind.BLANK))

    assert ledger.votes == []


@pytest.mark.asyncio
async def test_cast_runs_on_the_request_connection_of_an_exhausted_pool(ledger):
    """The request holds the only pooled connection; casting needs no second one."""
    election_id = ledger.add_election()
    ledger.add_voter(election_id, "000123")
    pool = SingleConnectionPool(ledger)
    caster = VoteCaster(timeout=0.5, clock=lambda: NOON)

    async with pool.acquire() as conn:
        receipt = await caster.cast_vote(conn, "000123", election_id, Selection(VoteKind.BLANK))

    assert receipt.vote_kind is VoteKind.BLANK
    assert len(ledger.votes) == 1


@pytest.mark.asyncio
async def test_voter_can_retry_after_storage_failure(ledger):
    election_id = ledger.add_election()
    ledger.add_voter(election_id, "000123")
    caster = make_caster(ledger)

    ledger.fail_insert_with = OSError("network down")
    with pytest.raises(PersistenceUnavailable):
        await caster.cast_vote(ledger.conn, "000123", election_id, Selection(VoteKind.BLANK))

    ledger.fail_insert_with = None
    await caster.cast_vote(ledger.conn, "000123", election_id, Selection(VoteKind.BLANK))
    assert len(ledger.votes) == 1


# ============================================
# NOTIFICATIONS
# ============================================


@pytest.mark.asyncio
async def test_notifier_receives_event_without_voter_identity(ledger):
    election_id = ledger.add_election()
    ledger.add_voter(election_id, "000123")
    notifier = MagicMock()

    await make_caster(ledger, notifier=notifier).cast_vote(
        ledger.conn, "000123", election_id, Selection(VoteKind.NULL_VOTE)
    )

    notifier.publish.assert_called_once()
    message = notifier.publish.call_args[0][0].to_message()
    assert message["type"] == "vote-update"
    assert message["election_id"] == str(election_id)
    assert message["vote_kind"] == "null_vote"
    assert "000123" not in str(message)


@pytest.mark.asyncio
async def test_notifier_failure_does_not_fail_vote(ledger):
    election_id = ledger.add_election()
    ledger.add_voter(election_id, "000123")
    notifier = MagicMock()
    notifier.publish.side_effect = RuntimeError("socket gone")

    receipt = await make_caster(ledger, notifier=notifier).cast_vote(
        ledger.conn, "000123", election_id, Selection(VoteKind.BLANK)
    )

    assert receipt.verification_hash
    assert len(ledger.votes) == 1


@pytest.mark.asyncio
async def test_rejected_vote_publishes_nothing(ledger):
    election_id = ledger.add_election(status="finished")
    ledger.add_voter(election_id, "000123")
    notifier = MagicMock()

    with pytest.raises(ElectionNotOpen):
        await make_caster(ledger, notifier=notifier).cast_vote(
            ledger.conn, "000123", election_id, Selection(VoteKind.BLANK)
        )

    notifier.publish.assert_not_called()


# ============================================
# PURE HELPERS
# ============================================


@pytest.mark.parametrize(
    "status, has_voted, now, expected",
    [
        ("active", False, NOON, True),
        ("active", True, NOON, False),
        ("created", False, NOON, False),
        ("finished", False, NOON, False),
        ("active", False, START, True),
        ("active", False, END, True),
        ("active", False, END + timedelta(seconds=1), False),
    ],
)
def test_can_vote(status, has_voted, now, expected):
    election = {"status": status, "start_date": START, "end_date": END}
    assert can_vote({"has_voted": has_voted}, election, now) is expected


class TestSelectionParse:
    def test_candidate_uuid(self):
        candidate_id = uuid4()
        assert Selection.parse(str(candidate_id)) == Selection(VoteKind.CANDIDATE, candidate_id)

    def test_uuid_instance(self):
        candidate_id = uuid4()
        assert Selection.parse(candidate_id).candidate_id == candidate_id

    @pytest.mark.parametrize(
        "raw, kind", [("NULL_VOTE", VoteKind.NULL_VOTE), (" BLANK_VOTE ", VoteKind.BLANK)]
    )
    def test_pseudo_selections(self, raw, kind):
        selection = Selection.parse(raw)
        assert selection.kind is kind
        assert selection.candidate_id is None

    @pytest.mark.parametrize("raw", ["", "null_vote", "candidate-10", "BLANK"])
    def test_invalid(self, raw):
        with pytest.raises(ValueError):
            Selection.parse(raw)
