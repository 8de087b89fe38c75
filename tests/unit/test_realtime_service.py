"""Unit tests for the realtime election broadcaster."""

import asyncio
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from urna.services.realtime import ElectionBroadcaster
from urna.services.voting import VoteEvent, VoteKind


def fake_websocket() -> MagicMock:
    websocket = MagicMock()
    websocket.accept = AsyncMock()
    websocket.send_json = AsyncMock()
    return websocket


async def drain(broadcaster: ElectionBroadcaster) -> None:
    await asyncio.gather(*list(broadcaster._tasks))


class TestElectionBroadcaster:
    @pytest.fixture
    def broadcaster(self):
        return ElectionBroadcaster()

    @pytest.mark.asyncio
    async def test_vote_update_reaches_only_the_election_room(self, broadcaster):
        election_id = uuid4()
        member, outsider = fake_websocket(), fake_websocket()
        await broadcaster.connect(member)
        await broadcaster.connect(outsider)
        broadcaster.join(member, str(election_id))

        broadcaster.publish(VoteEvent(election_id, VoteKind.BLANK, datetime.now(UTC)))
        await drain(broadcaster)

        member.send_json.assert_awaited_once()
        message = member.send_json.call_args[0][0]
        assert message["type"] == "vote-update"
        assert message["vote_kind"] == "blank"
        outsider.send_json.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_booth_status_reaches_every_client(self, broadcaster):
        clients = [fake_websocket() for _ in range(3)]
        for websocket in clients:
            await broadcaster.connect(websocket)

        broadcaster.publish_booth_status("booth-1", "offline")
        await drain(broadcaster)

        for websocket in clients:
            message = websocket.send_json.call_args[0][0]
            assert message["type"] == "booth-status"
            assert message["status"] == "offline"

    @pytest.mark.asyncio
    async def test_leave_stops_updates(self, broadcaster):
        election_id = uuid4()
        websocket = fake_websocket()
        await broadcaster.connect(websocket)
        broadcaster.join(websocket, str(election_id))
        broadcaster.leave(websocket, str(election_id))

        await broadcaster.broadcast_to_election(election_id, {"type": "vote-update"})

        websocket.send_json.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_send_drops_client(self, broadcaster):
        election_id = uuid4()
        dead, alive = fake_websocket(), fake_websocket()
        dead.send_json.side_effect = RuntimeError("socket closed")
        for websocket in (dead, alive):
            await broadcaster.connect(websocket)
            broadcaster.join(websocket, str(election_id))

        await broadcaster.broadcast_to_election(election_id, {"type": "vote-update"})

        alive.send_json.assert_awaited_once()
        assert broadcaster.stats()["total_clients"] == 1
        assert broadcaster.stats()["clients_per_election"] == {f"election-{election_id}": 1}

    def test_publish_without_running_loop_is_dropped(self, broadcaster):
        broadcaster.publish(VoteEvent(uuid4(), VoteKind.NULL_VOTE, datetime.now(UTC)))

        assert broadcaster._tasks == set()
