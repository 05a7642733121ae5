from uuid import uuid4

from fastapi import APIRouter, Body, Depends
from sqlmodel import Session

from database.connection import get_session
from database.models import Conversation, STATUS_ACTIVE
from dependencies.services import get_active_calls
from services.active_calls import ActiveCallDirectory

router = APIRouter()


@router.get("/api/debug/active-calls")
def debug_active_calls(directory: ActiveCallDirectory = Depends(get_active_calls)):
    """
    Calls the webhook relay is currently tracking.
    """
    return [
        {"callId": e.call_id, "conversationId": e.record_id, "room": e.room}
        for e in directory.entries()
    ]


@router.post("/api/debug/create-test-call")
def create_test_call(
    data: dict = Body(default={}),
    session: Session = Depends(get_session),
    directory: ActiveCallDirectory = Depends(get_active_calls),
):
    """
    Debug helper: create an active conversation with a fake call id and
    register it, so webhook events can be replayed without dialing anyone.
    """
    raw_id = (data.get("call_id") or "").strip()
    call_id = raw_id if raw_id else f"debug-{uuid4().hex[:8]}"

    conversation = Conversation(
        call_id=call_id,
        candidate_name=data.get("candidate_name", "Test Candidate"),
        candidate_phone=data.get("candidate_phone", "+15555550123"),
        position=data.get("position", "Software Engineer"),
        status=STATUS_ACTIVE,
    )
    session.add(conversation)
    session.commit()
    session.refresh(conversation)

    directory.register(call_id, conversation.id)

    return {
        "ok": True,
        "callId": call_id,
        "conversationId": conversation.id,
    }
