from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlmodel import Session, select

from database.connection import get_session
from database.models import Conversation
from routers.calls import TranscriptEntryResponse
from services.call_service import to_iso_utc

router = APIRouter()


class ConversationListResponse(BaseModel):
    """List view - transcript left out"""
    id: str
    callId: Optional[str] = None
    candidateName: str
    candidatePhone: str
    position: str
    startTime: Optional[str] = None
    endTime: Optional[str] = None
    duration: Optional[int] = None
    status: str
    summary: Optional[str] = None
    score: Optional[float] = None
    tags: List[str] = []


class ConversationDetailResponse(ConversationListResponse):
    """Single conversation - includes the full transcript"""
    transcript: List[TranscriptEntryResponse] = []


def _list_fields(c: Conversation) -> dict:
    return dict(
        id=c.id,
        callId=c.call_id,
        candidateName=c.candidate_name,
        candidatePhone=c.candidate_phone,
        position=c.position,
        startTime=to_iso_utc(c.start_time),
        endTime=to_iso_utc(c.end_time),
        duration=c.duration,
        status=c.status,
        summary=c.summary,
        score=c.score,
        tags=list(c.tags or []),
    )


@router.get("/api/conversations", response_model=List[ConversationListResponse])
def list_conversations(session: Session = Depends(get_session)):
    """
    All conversations, newest first.
    """
    stmt = select(Conversation).order_by(Conversation.start_time.desc())
    conversations = session.exec(stmt).all()
    return [ConversationListResponse(**_list_fields(c)) for c in conversations]


@router.get("/api/conversations/{conversation_id}", response_model=ConversationDetailResponse)
def get_conversation(conversation_id: str, session: Session = Depends(get_session)):
    conversation = session.get(Conversation, conversation_id)
    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found")

    return ConversationDetailResponse(
        **_list_fields(conversation),
        transcript=list(conversation.transcript or []),
    )
