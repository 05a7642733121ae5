import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from database.connection import engine, ensure_tables
from services.call_service import find_by_call_id
from services.websocket_manager import BroadcastManager

logger = logging.getLogger(__name__)

router = APIRouter()


def _load_transcript(call_id: str) -> list:
    # Late joiners get whatever is already persisted
    try:
        ensure_tables()
        with Session(engine) as session:
            conversation = find_by_call_id(session, call_id)
            return list(conversation.transcript or []) if conversation else []
    except SQLAlchemyError as e:
        logger.warning(f"[WS] Could not load transcript for {call_id}: {e}")
        return []


@router.websocket("/ws/calls")
async def ws_calls(ws: WebSocket):
    """
    Live call updates.

    Client messages:
      {"type": "join-call", "callId": "..."}
      {"type": "leave-call", "callId": "..."}

    The join ack is {"type": "joined-call", "callId", "data": {"transcript": [...]}}
    carrying every entry persisted so far; anything later arrives as a
    transcript-update. Other server messages are {"type", "callId", "data"} for
    transcript-update, call-started, call-ended, speech-started and speech-ended.
    """
    manager: BroadcastManager = ws.app.state.broadcaster
    await manager.connect(ws)
    logger.info("Call WS client connected")

    await ws.send_json({"type": "hello", "message": "Call WebSocket connected"})

    try:
        while True:
            data = await ws.receive_json()
            msg_type = data.get("type") if isinstance(data, dict) else None
            call_id = data.get("callId") if isinstance(data, dict) else None

            if msg_type == "join-call" and call_id:
                # No await between the read and the join, so no update can fall in the gap
                transcript = _load_transcript(call_id)
                await manager.join(ws, call_id)
                logger.info(f"[WS] Client joined call {call_id}")
                await ws.send_json({
                    "type": "joined-call",
                    "callId": call_id,
                    "data": {"transcript": transcript},
                })

            elif msg_type == "leave-call" and call_id:
                await manager.leave(ws, call_id)
                logger.info(f"[WS] Client left call {call_id}")

            else:
                await ws.send_json({"type": "error", "callId": call_id, "data": "unsupported message"})

    except WebSocketDisconnect:
        logger.info("Call WS client disconnected")
    except Exception as e:
        logger.warning(f"[WS] Error in call loop: {e}")
    finally:
        await manager.disconnect(ws)
