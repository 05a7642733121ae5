import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse
from sqlmodel import Session

from database.connection import get_session
from dependencies.services import get_active_calls, get_broadcaster
from services.active_calls import ActiveCallDirectory
from services.call_service import CallService
from services.websocket_manager import BroadcastManager

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/api/vapi/webhook", response_class=PlainTextResponse)
async def vapi_webhook(
    request: Request,
    session: Session = Depends(get_session),
    directory: ActiveCallDirectory = Depends(get_active_calls),
    broadcaster: BroadcastManager = Depends(get_broadcaster),
):
    """
    Vapi server URL handler.

    Always answers 200 "OK" so Vapi does not redeliver, except when the body
    cannot be interpreted at all (500).

    1. transcript                    -> append to conversation, push to room
    2. call-started                  -> push to room
    3. call-ended / end-of-call-*    -> complete conversation, drop active call
    4. speech-started / speech-ended -> push speaker activity to room
    """
    try:
        payload = await request.json()
        await CallService.handle_webhook(payload, session, directory, broadcaster)
    except Exception:
        logger.exception("Webhook error")
        return PlainTextResponse("Error", status_code=500)

    return PlainTextResponse("OK", status_code=200)
