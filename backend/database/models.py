# models.py
from datetime import datetime, timezone
from typing import List, Optional
from uuid import uuid4

from sqlmodel import SQLModel, Field, Column
from sqlalchemy import JSON, DateTime
from sqlalchemy.types import TypeDecorator


STATUS_STARTING = "starting"
STATUS_ACTIVE = "active"
STATUS_COMPLETED = "completed"

SPEAKER_AI = "ai"
SPEAKER_USER = "user"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Aware UTC datetime; naive values are taken to be UTC already."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware UTC in and out.
    sqlite keeps no offset, so values read back naive get UTC attached.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return as_utc(value)

    def process_result_value(self, value, dialect):
        return as_utc(value)


class Conversation(SQLModel, table=True):
    id: str = Field(default_factory=lambda: uuid4().hex, primary_key=True)

    # Provider call id, assigned once the provider accepts the call
    call_id: Optional[str] = Field(default=None, index=True, unique=True)

    candidate_name: str
    candidate_phone: str
    position: str

    start_time: datetime = Field(default_factory=utcnow, sa_column=Column(UTCDateTime, nullable=False))
    end_time: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime))
    duration: Optional[int] = None
    status: str = STATUS_STARTING

    # Append-only list of {speaker, text, timestamp}
    transcript: List[dict] = Field(default_factory=list, sa_column=Column(JSON))

    summary: Optional[str] = None
    score: Optional[float] = None
    tags: List[str] = Field(default_factory=list, sa_column=Column(JSON))

    def mark_completed(self, ended_at: datetime, summary: Optional[str] = None) -> None:
        """
        Move the record to 'completed'.
        Duration is whole seconds between start and end, rounded down.
        """
        ended_at = as_utc(ended_at)
        self.status = STATUS_COMPLETED
        self.end_time = ended_at
        delta = ended_at - as_utc(self.start_time)
        self.duration = max(0, int(delta.total_seconds()))
        if summary is not None:
            self.summary = summary
