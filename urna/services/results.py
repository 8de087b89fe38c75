"""Election results aggregation over the vote ledger."""

from typing import Any
from uuid import UUID

import asyncpg

from urna.core.database import record_to_dict, records_to_list
from urna.services.booths import connection_status


def _percentage(part: int, whole: int) -> float:
    if not whole:
        return 0.0
    return round(part * 100 / whole, 2)


def summarize_results(
    election: dict[str, Any],
    candidate_rows: list[dict[str, Any]],
    kind_totals: dict[str, int],
    eligible: int,
    booth_rows: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    """
    Build the results document from raw counts.

    Candidate percentages are over valid votes (candidate ballots only);
    null and blank percentages are over all ballots.
    """
    null_votes = kind_totals.get("null_vote", 0)
    blank_votes = kind_totals.get("blank", 0)
    valid_votes = sum(int(row["votes"]) for row in candidate_rows)
    total_votes = valid_votes + null_votes + blank_votes

    candidates = []
    for row in sorted(candidate_rows, key=lambda r: (-int(r["votes"]), r["number"])):
        candidates.append(
            {
                "id": str(row["id"]),
                "number": row["number"],
                "name": row["name"],
                "party": row["party"],
                "votes": int(row["votes"]),
                "percentage": _percentage(int(row["votes"]), valid_votes),
            }
        )

    return {
        "election": {
            "id": str(election["id"]),
            "title": election["title"],
            "status": election["status"],
            "start_date": election["start_date"],
            "end_date": election["end_date"],
        },
        "candidates": candidates,
        "null_votes": {"votes": null_votes, "percentage": _percentage(null_votes, total_votes)},
        "blank_votes": {"votes": blank_votes, "percentage": _percentage(blank_votes, total_votes)},
        "totals": {
            "valid_votes": valid_votes,
            "total_votes": total_votes,
        },
        "turnout": {
            "eligible": eligible,
            "voted": total_votes,
            "abstentions": max(eligible - total_votes, 0),
            "participation": _percentage(total_votes, eligible),
        },
        "booths": [
            {
                "id": str(row["id"]) if row["id"] else None,
                "number": row["number"],
                "location": row["location"],
                "votes": int(row["votes"]),
            }
            for row in booth_rows or []
        ],
    }


async def get_election_results(conn: asyncpg.Connection, election_id: UUID) -> dict | None:
    """Results for one election, or None when it does not exist."""
    election = await conn.fetchrow(
        "SELECT id, title, status, start_date, end_date FROM elections WHERE id = $1",
        election_id,
    )
    if not election:
        return None

    candidate_rows = await conn.fetch(
        """
        SELECT c.id, c.number, c.name, c.party, COUNT(v.id) AS votes
        FROM candidates c
        LEFT JOIN votes v ON v.candidate_id = c.id AND v.election_id = c.election_id
        WHERE c.election_id = $1
        GROUP BY c.id, c.number, c.name, c.party
        """,
        election_id,
    )
    kind_rows = await conn.fetch(
        """
        SELECT vote_kind, COUNT(*) AS votes
        FROM votes
        WHERE election_id = $1
        GROUP BY vote_kind
        """,
        election_id,
    )
    eligible = await conn.fetchval(
        "SELECT COUNT(*) FROM voters WHERE election_id = $1", election_id
    )
    booth_rows = await conn.fetch(
        """
        SELECT b.id, b.number, b.location, COUNT(v.id) AS votes
        FROM votes v
        LEFT JOIN booths b ON b.id = v.booth_id
        WHERE v.election_id = $1
        GROUP BY b.id, b.number, b.location
        ORDER BY b.number NULLS LAST
        """,
        election_id,
    )

    return summarize_results(
        dict(election),
        [dict(row) for row in candidate_rows],
        {row["vote_kind"]: int(row["votes"]) for row in kind_rows},
        int(eligible or 0),
        [dict(row) for row in booth_rows],
    )


async def get_dashboard_summary(
    conn: asyncpg.Connection,
    now: Any,
    online_minutes: int = 5,
    warning_minutes: int = 15,
) -> dict[str, Any]:
    """Counts across every election for the admin dashboard."""
    status_rows = await conn.fetch(
        "SELECT status, COUNT(*) AS total FROM elections GROUP BY status"
    )
    totals = await conn.fetchrow(
        """
        SELECT
            (SELECT COUNT(*) FROM voters) AS voters,
            (SELECT COUNT(*) FROM voters WHERE has_voted) AS voters_voted,
            (SELECT COUNT(*) FROM votes) AS votes,
            (SELECT COUNT(*) FROM candidates) AS candidates
        """
    )
    booths = await conn.fetch("SELECT id, status, last_ping FROM booths")
    recent_votes = await conn.fetch(
        """
        SELECT v.election_id, e.title AS election_title, v.vote_kind, v.created_at
        FROM votes v
        JOIN elections e ON e.id = v.election_id
        ORDER BY v.created_at DESC
        LIMIT 10
        """
    )

    booth_states = {"online": 0, "warning": 0, "offline": 0}
    for booth in booths:
        booth_states[connection_status(dict(booth), now, online_minutes, warning_minutes)] += 1

    elections_by_status = {status: 0 for status in ("created", "active", "finished", "cancelled")}
    elections_by_status.update({row["status"]: int(row["total"]) for row in status_rows})

    counts = record_to_dict(totals) or {}
    return {
        "elections": elections_by_status,
        "voters": int(counts.get("voters") or 0),
        "voters_voted": int(counts.get("voters_voted") or 0),
        "votes": int(counts.get("votes") or 0),
        "candidates": int(counts.get("candidates") or 0),
        "booths": {"total": len(booths), **booth_states},
        "recent_votes": records_to_list(recent_votes),
    }
