"""WebSocket channel for live election monitoring."""

from datetime import UTC, datetime
import json
from uuid import UUID

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from urna.core.database import get_db_connection
from urna.core.logging_config import get_logger
from urna.services.elections import get_election_by_id
from urna.services.realtime import get_broadcaster

router = APIRouter(tags=["Realtime"])
logger = get_logger(__name__)


async def _election_status(election_id: str) -> dict:
    try:
        election_uuid = UUID(election_id)
    except ValueError:
        return {"type": "error", "message": "Invalid election_id"}

    async with get_db_connection() as conn:
        election = await get_election_by_id(conn, election_uuid)
    if not election:
        return {"type": "error", "message": "Election not found"}
    return {
        "type": "election-status",
        "election_id": election["id"],
        "status": election["status"],
        "total_votes": election["total_votes"],
        "total_voters": election["total_voters"],
        "timestamp": datetime.now(UTC).isoformat(),
    }


@router.websocket("/ws/elections")
async def election_updates(websocket: WebSocket):
    """
    Clients send ``{"action": "join" | "leave" | "status" | "ping", "election_id": ...}``.

    Joined clients receive ``vote-update`` events for that election; every
    client receives ``booth-status`` events.
    """
    broadcaster = get_broadcaster()
    await broadcaster.connect(websocket)
    try:
        while True:
            try:
                message = json.loads(await websocket.receive_text())
            except ValueError:
                await websocket.send_json({"type": "error", "message": "Invalid JSON"})
                continue
            if not isinstance(message, dict):
                await websocket.send_json({"type": "error", "message": "Expected a JSON object"})
                continue

            action = message.get("action")
            election_id = message.get("election_id")

            if action == "ping":
                await websocket.send_json(
                    {"type": "pong", "timestamp": datetime.now(UTC).isoformat()}
                )
            elif action in ("join", "leave", "status") and not election_id:
                await websocket.send_json({"type": "error", "message": "election_id is required"})
            elif action == "join":
                broadcaster.join(websocket, str(election_id))
                await websocket.send_json({"type": "joined", "election_id": str(election_id)})
            elif action == "leave":
                broadcaster.leave(websocket, str(election_id))
                await websocket.send_json({"type": "left", "election_id": str(election_id)})
            elif action == "status":
                await websocket.send_json(await _election_status(str(election_id)))
            else:
                await websocket.send_json({"type": "error", "message": f"Unknown action: {action}"})
    except WebSocketDisconnect:
        pass
    finally:
        broadcaster.disconnect(websocket)
