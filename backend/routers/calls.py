import logging
from typing import List, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from database.connection import get_session
from dependencies.services import get_active_calls, get_broadcaster, get_vapi_client
from services.active_calls import ActiveCallDirectory
from services.call_service import CallService
from services.vapi_client import VapiClient, VapiError
from services.websocket_manager import BroadcastManager

logger = logging.getLogger(__name__)

router = APIRouter()


class StartCallRequest(BaseModel):
    candidateName: str
    candidatePhone: str
    position: str


class StartCallResponse(BaseModel):
    success: bool
    callId: str
    conversationId: str


class TranscriptEntryResponse(BaseModel):
    speaker: str
    text: str
    timestamp: Optional[str] = None


class CallStatusResponse(BaseModel):
    status: str
    duration: int
    transcript: List[TranscriptEntryResponse]


@router.post("/api/calls/start", response_model=StartCallResponse)
async def start_call(
    body: StartCallRequest,
    session: Session = Depends(get_session),
    directory: ActiveCallDirectory = Depends(get_active_calls),
    vapi: VapiClient = Depends(get_vapi_client),
):
    """
    Create a conversation record and ask Vapi to dial the candidate.
    On provider failure the record stays in 'starting'.
    """
    try:
        call_id, conversation = await CallService.start_call(
            session,
            directory,
            vapi,
            candidate_name=body.candidateName,
            candidate_phone=body.candidatePhone,
            position=body.position,
        )
    except VapiError as e:
        logger.error(f"Error starting call for {body.candidateName}: {e.details}")
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Failed to start call", "details": e.details},
        )
    except IntegrityError:
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": "Failed to start call",
                "details": "Provider call id is already in use",
            },
        )

    return StartCallResponse(success=True, callId=call_id, conversationId=conversation.id)


@router.post("/api/calls/{call_id}/end")
async def end_call(
    call_id: str,
    session: Session = Depends(get_session),
    directory: ActiveCallDirectory = Depends(get_active_calls),
    broadcaster: BroadcastManager = Depends(get_broadcaster),
    vapi: VapiClient = Depends(get_vapi_client),
):
    try:
        await CallService.end_call(session, directory, broadcaster, vapi, call_id)
    except VapiError as e:
        logger.error(f"Error ending call {call_id}: {e.details}")
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Failed to end call", "details": e.details},
        )
    return {"success": True}


@router.get("/api/calls/{call_id}/status", response_model=CallStatusResponse)
def call_status(call_id: str, session: Session = Depends(get_session)):
    return CallService.get_call_status(session, call_id)
