"""
Vote casting.

A vote is accepted by a single database transaction that locks the voter row,
re-validates every precondition, appends the ballot to the ``votes`` ledger and
flips ``voters.has_voted`` with a conditional update. The ledger's
``UNIQUE (voter_id, election_id)`` constraint and the ``has_voted = FALSE``
guard each reject a second ballot on their own, so two booths racing on the
same voter end with exactly one committed vote.
"""

import asyncio
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Protocol
from uuid import UUID

import asyncpg
from fastapi import status

from urna.core.database import affected_rows
from urna.core.logging_config import get_logger, vote_logger
from urna.core.security import generate_verification_hash

logger = get_logger(__name__)

NULL_VOTE_TOKEN = "NULL_VOTE"
BLANK_VOTE_TOKEN = "BLANK_VOTE"


class VoteKind(str, Enum):
    """Closed set of ballot kinds stored in ``votes.vote_kind``."""

    CANDIDATE = "candidate"
    NULL_VOTE = "null_vote"
    BLANK = "blank"


# ============================================
# ERRORS
# ============================================


class VoteCastingError(Exception):
    """Base class for every rejected or failed vote attempt."""

    code = "vote_error"
    status_code = status.HTTP_400_BAD_REQUEST
    retryable = False
    default_message = "Vote could not be registered"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFound(VoteCastingError):
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Record not found"


class ElectionNotFound(NotFound):
    code = "election_not_found"
    default_message = "Election not found"


class VoterNotFound(NotFound):
    code = "voter_not_found"
    default_message = "Registration number not found in this election"


class CandidateNotFound(NotFound):
    code = "candidate_not_found"
    default_message = "Candidate not found or not part of this election"


class ElectionNotOpen(VoteCastingError):
    code = "election_not_open"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Election is not open for voting"


class AlreadyVoted(VoteCastingError):
    code = "already_voted"
    status_code = status.HTTP_409_CONFLICT
    default_message = "This voter has already voted"


class PersistenceUnavailable(VoteCastingError):
    """Storage failed or timed out; the caller may retry the whole cast."""

    code = "persistence_unavailable"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    retryable = True
    default_message = "Vote storage is unavailable, please retry"


# ============================================
# VALUE TYPES
# ============================================


@dataclass(frozen=True)
class Selection:
    """What the voter chose: a candidate, or one of the two pseudo-selections."""

    kind: VoteKind
    candidate_id: UUID | None = None

    @classmethod
    def parse(cls, raw: str | UUID) -> "Selection":
        """
        Build a selection from a request value.

        Raises:
            ValueError: if the value is neither a pseudo-token nor a UUID
        """
        if isinstance(raw, UUID):
            return cls(VoteKind.CANDIDATE, raw)
        token = raw.strip()
        if token == NULL_VOTE_TOKEN:
            return cls(VoteKind.NULL_VOTE)
        if token == BLANK_VOTE_TOKEN:
            return cls(VoteKind.BLANK)
        try:
            return cls(VoteKind.CANDIDATE, UUID(token))
        except ValueError:
            raise ValueError(
                f"Selection must be a candidate id, {NULL_VOTE_TOKEN} or {BLANK_VOTE_TOKEN}"
            ) from None


@dataclass(frozen=True)
class VoteReceipt:
    verification_hash: str
    timestamp: datetime
    election_id: UUID
    vote_kind: VoteKind

    def to_dict(self) -> dict[str, Any]:
        return {
            "verification_hash": self.verification_hash,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class VoteEvent:
    """Outbound notification for a committed vote. Carries no voter identity."""

    election_id: UUID
    vote_kind: VoteKind
    timestamp: datetime

    def to_message(self) -> dict[str, Any]:
        return {
            "type": "vote-update",
            "election_id": str(self.election_id),
            "vote_kind": self.vote_kind.value,
            "timestamp": self.timestamp.isoformat(),
        }


class VoteNotifier(Protocol):
    def publish(self, event: VoteEvent) -> None:
        """Hand the event off without blocking the caller."""
        ...


# ============================================
# ELIGIBILITY
# ============================================


def election_window_open(election: Mapping[str, Any], now: datetime) -> bool:
    """True when the election is active and ``now`` lies within [start, end]."""
    return (
        election["status"] == "active"
        and election["start_date"] <= now <= election["end_date"]
    )


def can_vote(voter: Mapping[str, Any], election: Mapping[str, Any], now: datetime) -> bool:
    """Pure eligibility check: open election window and no previous vote."""
    return election_window_open(election, now) and not voter["has_voted"]


# ============================================
# LEDGER QUERIES (run inside the cast transaction)
# ============================================


async def fetch_election_for_vote(
    conn: asyncpg.Connection, election_id: UUID
) -> dict | None:
    """Read the election window, holding a share lock until commit."""
    result = await conn.fetchrow(
        """
        SELECT id, status, start_date, end_date
        FROM elections
        WHERE id = $1
        FOR SHARE
        """,
        election_id,
    )
    return dict(result) if result else None


async def lock_voter(
    conn: asyncpg.Connection, election_id: UUID, registration_number: str
) -> dict | None:
    """Fetch the voter and lock the row against concurrent casts."""
    result = await conn.fetchrow(
        """
        SELECT id, registration_number, has_voted, voted_at
        FROM voters
        WHERE election_id = $1 AND registration_number = $2
        FOR UPDATE
        """,
        election_id,
        registration_number,
    )
    return dict(result) if result else None


async def candidate_in_election(
    conn: asyncpg.Connection, candidate_id: UUID, election_id: UUID
) -> bool:
    """Check the candidate belongs to the election, key-share locking it."""
    result = await conn.fetchval(
        """
        SELECT 1 FROM candidates
        WHERE id = $1 AND election_id = $2
        FOR KEY SHARE
        """,
        candidate_id,
        election_id,
    )
    return result is not None


async def insert_vote(
    conn: asyncpg.Connection,
    election_id: UUID,
    voter_id: UUID,
    registration_number: str,
    selection: Selection,
    verification_hash: str,
    created_at: datetime,
    booth_id: UUID | None = None,
) -> dict | None:
    """Append a ballot. Returns None when the voter already has one."""
    result = await conn.fetchrow(
        """
        INSERT INTO votes (
            election_id, voter_id, voter_registration_number, candidate_id,
            vote_kind, verification_hash, booth_id, created_at
        )
        VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
        ON CONFLICT (voter_id, election_id) DO NOTHING
        RETURNING id, verification_hash, created_at
        """,
        election_id,
        voter_id,
        registration_number,
        selection.candidate_id,
        selection.kind.value,
        verification_hash,
        booth_id,
        created_at,
    )
    return dict(result) if result else None


async def mark_voted(
    conn: asyncpg.Connection,
    voter_id: UUID,
    voted_at: datetime,
    booth_id: UUID | None = None,
) -> bool:
    """Flip ``has_voted`` once. False means another cast got there first."""
    result = await conn.execute(
        """
        UPDATE voters
        SET has_voted = TRUE, voted_at = $2, booth_id = COALESCE($3, booth_id),
            updated_at = CURRENT_TIMESTAMP
        WHERE id = $1 AND has_voted = FALSE
        """,
        voter_id,
        voted_at,
        booth_id,
    )
    return affected_rows(result) == 1


# ============================================
# VOTE CASTING TRANSACTION
# ============================================


def utc_now() -> datetime:
    return datetime.now(UTC)


class VoteCaster:
    """
    Accepts or rejects single vote attempts.

    Each cast runs in a transaction on the connection passed in by the caller;
    the caster never acquires connections of its own.

    Args:
        notifier: receives a VoteEvent after each committed vote
        timeout: seconds allowed for the transaction and its commit
        clock: returns the current aware datetime, used for the window check
    """

    def __init__(
        self,
        notifier: VoteNotifier | None = None,
        timeout: float = 5.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.notifier = notifier
        self.timeout = timeout
        self.clock = clock

    async def cast_vote(
        self,
        conn: asyncpg.Connection,
        voter_registration_number: str,
        election_id: UUID,
        selection: Selection,
        booth_id: UUID | None = None,
    ) -> VoteReceipt:
        """
        Register one ballot.

        Raises:
            NotFound: election, voter or candidate missing
            ElectionNotOpen: status not active or outside [start, end]
            AlreadyVoted: the voter already has a ballot in this election
            PersistenceUnavailable: storage error, timeout or lost connection
        """
        try:
            async with asyncio.timeout(self.timeout):
                receipt = await self._cast_in_transaction(
                    conn, voter_registration_number, election_id, selection, booth_id
                )
        except VoteCastingError as exc:
            vote_logger.log_vote_rejected(
                str(election_id), voter_registration_number, exc.code
            )
            raise
        except TimeoutError as exc:
            logger.error(f"Vote transaction timed out for election {election_id}")
            raise PersistenceUnavailable("Vote storage timed out, please retry") from exc
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as exc:
            logger.error(f"Vote transaction failed for election {election_id}: {exc}")
            raise PersistenceUnavailable() from exc

        vote_logger.log_vote_accepted(
            str(election_id), voter_registration_number, str(booth_id) if booth_id else None
        )
        self._notify(VoteEvent(election_id, receipt.vote_kind, receipt.timestamp))
        return receipt

    async def _cast_in_transaction(
        self,
        conn: asyncpg.Connection,
        registration_number: str,
        election_id: UUID,
        selection: Selection,
        booth_id: UUID | None,
    ) -> VoteReceipt:
        async with conn.transaction():
            election = await fetch_election_for_vote(conn, election_id)
            if election is None:
                raise ElectionNotFound()

            voter = await lock_voter(conn, election_id, registration_number)
            if voter is None:
                raise VoterNotFound()

            now = self.clock()
            if not election_window_open(election, now):
                raise ElectionNotOpen()

            if voter["has_voted"]:
                raise AlreadyVoted()

            if selection.kind is VoteKind.CANDIDATE and not await candidate_in_election(
                conn, selection.candidate_id, election_id
            ):
                raise CandidateNotFound()

            vote = await insert_vote(
                conn,
                election_id=election_id,
                voter_id=voter["id"],
                registration_number=registration_number,
                selection=selection,
                verification_hash=generate_verification_hash(),
                created_at=now,
                booth_id=booth_id,
            )
            if vote is None:
                raise AlreadyVoted()

            # Raising here rolls back the ledger insert above
            if not await mark_voted(conn, voter["id"], now, booth_id):
                raise AlreadyVoted()

        return VoteReceipt(
            verification_hash=vote["verification_hash"],
            timestamp=vote["created_at"],
            election_id=election_id,
            vote_kind=selection.kind,
        )

    def _notify(self, event: VoteEvent) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.publish(event)
        except Exception as exc:
            logger.warning(f"Vote notification failed for election {event.election_id}: {exc}")


# ============================================
# VOTER STATE QUERIES
# ============================================


async def get_voter_vote_status(
    conn: asyncpg.Connection, election_id: UUID, registration_number: str
) -> dict | None:
    """Current voting state of a voter, for callers that lost a cast response."""
    result = await conn.fetchrow(
        """
        SELECT v.registration_number, v.name, v.has_voted, v.voted_at,
               (SELECT COUNT(*) FROM votes vt
                WHERE vt.voter_id = v.id AND vt.election_id = v.election_id) AS ballots
        FROM voters v
        WHERE v.election_id = $1 AND v.registration_number = $2
        """,
        election_id,
        registration_number,
    )
    return dict(result) if result else None


async def verify_receipt(
    conn: asyncpg.Connection, election_id: UUID, verification_hash: str
) -> dict | None:
    """Confirm a receipt token was recorded, without revealing the selection."""
    result = await conn.fetchrow(
        """
        SELECT election_id, created_at
        FROM votes
        WHERE election_id = $1 AND verification_hash = $2
        """,
        election_id,
        verification_hash,
    )
    if not result:
        return None
    return {"election_id": str(result["election_id"]), "recorded_at": result["created_at"]}


async def check_voter_eligibility(
    conn: asyncpg.Connection,
    election: Mapping[str, Any],
    registration_number: str,
    now: datetime | None = None,
) -> dict:
    """
    Booth pre-check before showing the ballot. Performs no writes.

    Raises:
        VoterNotFound, ElectionNotOpen, AlreadyVoted
    """
    result = await conn.fetchrow(
        """
        SELECT id, registration_number, name, has_voted, voted_at
        FROM voters
        WHERE election_id = $1 AND registration_number = $2
        """,
        UUID(str(election["id"])),
        registration_number,
    )
    if not result:
        raise VoterNotFound()

    voter = dict(result)
    now = now or utc_now()
    if not election_window_open(election, now):
        raise ElectionNotOpen()
    if voter["has_voted"]:
        raise AlreadyVoted()
    return voter
