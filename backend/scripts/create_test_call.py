# Insert a completed sample conversation into the database

import sys
import os
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from datetime import timedelta

from database.connection import engine, init_db
from sqlmodel import Session
from database.models import Conversation, utcnow

init_db()

with Session(engine) as session:
    started = utcnow() - timedelta(minutes=5)
    conversation = Conversation(
        call_id="test-call-1",
        candidate_name="Test Candidate",
        candidate_phone="+15555550123",
        position="Backend Developer",
        start_time=started,
        transcript=[
            {"speaker": "ai", "text": "Hello! Could you tell me about yourself?", "timestamp": started.isoformat()},
            {"speaker": "user", "text": "Sure, I build backend services.", "timestamp": (started + timedelta(seconds=8)).isoformat()},
        ],
        tags=["sample"],
    )
    conversation.mark_completed(utcnow(), summary="Sample interview")
    session.add(conversation)
    session.commit()
    print("Inserted conversation:", conversation.id)
