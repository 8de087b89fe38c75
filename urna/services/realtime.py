"""Real-time fan-out of vote and booth events to WebSocket subscribers."""

import asyncio
from collections import defaultdict
from datetime import UTC, datetime
from typing import Any

from fastapi import WebSocket

from urna.core.logging_config import get_logger
from urna.services.voting import VoteEvent

logger = get_logger(__name__)


def _room(election_id: Any) -> str:
    return f"election-{election_id}"


class ElectionBroadcaster:
    """
    Tracks WebSocket clients per election room and pushes JSON events.

    ``publish`` only schedules delivery on the running loop, so the vote
    caster never waits on slow or dead sockets.
    """

    def __init__(self) -> None:
        self._rooms: dict[str, set[WebSocket]] = defaultdict(set)
        self._clients: set[WebSocket] = set()
        self._tasks: set[asyncio.Task] = set()

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self._clients.add(websocket)
        logger.info(f"Realtime client connected ({len(self._clients)} total)")

    def disconnect(self, websocket: WebSocket) -> None:
        self._clients.discard(websocket)
        for members in self._rooms.values():
            members.discard(websocket)
        logger.info(f"Realtime client disconnected ({len(self._clients)} total)")

    def join(self, websocket: WebSocket, election_id: str) -> None:
        self._rooms[_room(election_id)].add(websocket)

    def leave(self, websocket: WebSocket, election_id: str) -> None:
        self._rooms[_room(election_id)].discard(websocket)

    def stats(self) -> dict[str, Any]:
        return {
            "total_clients": len(self._clients),
            "clients_per_election": {
                room: len(members) for room, members in self._rooms.items() if members
            },
            "timestamp": datetime.now(UTC).isoformat(),
        }

    # -- notifier interface --------------------------------------------------

    def publish(self, event: VoteEvent) -> None:
        """Schedule a ``vote-update`` to the election room."""
        self._schedule(self.broadcast_to_election(event.election_id, event.to_message()))

    def publish_booth_status(self, booth_id: str, booth_status: str) -> None:
        """Schedule a ``booth-status`` event to every client."""
        message = {
            "type": "booth-status",
            "booth_id": booth_id,
            "status": booth_status,
            "timestamp": datetime.now(UTC).isoformat(),
        }
        self._schedule(self.broadcast_all(message))

    # -- delivery ------------------------------------------------------------

    async def broadcast_to_election(self, election_id: Any, message: dict) -> None:
        await self._send_many(list(self._rooms.get(_room(election_id), ())), message)

    async def broadcast_all(self, message: dict) -> None:
        await self._send_many(list(self._clients), message)

    async def _send_many(self, targets: list[WebSocket], message: dict) -> None:
        for websocket in targets:
            try:
                await websocket.send_json(message)
            except Exception as exc:
                logger.info(f"Dropping realtime client after send failure: {exc}")
                self.disconnect(websocket)

    def _schedule(self, coro) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.warning("No running event loop, realtime event dropped")
            return
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)


broadcaster = ElectionBroadcaster()


def get_broadcaster() -> ElectionBroadcaster:
    return broadcaster
