import os
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from database.models import (
    Conversation,
    STATUS_ACTIVE,
    STATUS_COMPLETED,
    SPEAKER_AI,
    SPEAKER_USER,
    as_utc,
    utcnow,
)
from services.active_calls import ActiveCallDirectory, ActiveCallEntry
from services.vapi_client import VapiClient
from services.websocket_manager import BroadcastManager

logger = logging.getLogger(__name__)

COMPLETED_SUMMARY = "Interview completed successfully"

END_EVENTS = {"call-ended", "end-of-call-report"}
SPEECH_EVENTS = {"speech-started", "speech-ended"}
SPEECH_UPDATE_STATUS = {"started": "speech-started", "stopped": "speech-ended"}


class WebhookPayloadError(ValueError):
    """The provider sent something the relay cannot interpret."""


def to_iso_utc(dt: Optional[datetime]) -> Optional[str]:
    """Helper to convert a datetime to a UTC ISO string (naive values are assumed UTC)."""
    if not dt:
        return None
    return as_utc(dt).isoformat()


def map_speaker(role: Any) -> str:
    return SPEAKER_AI if role == "assistant" else SPEAKER_USER


def _str_field(data: dict, key: str) -> Optional[str]:
    value = data.get(key)
    return value if isinstance(value, str) else None


def _provider_timestamp(raw: Any) -> Optional[datetime]:
    # Vapi sends epoch milliseconds; accept ISO strings too
    if raw is None or isinstance(raw, bool):
        return None
    try:
        if isinstance(raw, (int, float)):
            return datetime.fromtimestamp(raw / 1000, tz=timezone.utc)
        if isinstance(raw, str):
            return as_utc(datetime.fromisoformat(raw.replace("Z", "+00:00")))
    except (ValueError, OverflowError, OSError) as e:
        logger.warning(f"Unparseable provider timestamp {raw!r}: {e}")
    return None


def entry_timestamp(message: dict, received_at: datetime) -> datetime:
    source = os.getenv("TRANSCRIPT_TIMESTAMP_SOURCE", "receipt").lower()
    if source == "provider":
        return _provider_timestamp(message.get("timestamp")) or received_at
    return received_at


def build_transcript_entry(message: dict, received_at: datetime) -> dict:
    """
    Turn a transcript event into {speaker, text, timestamp}.
    Accepts {transcript: {role, text}} as well as Vapi's {role, transcript: "..."}.
    """
    raw = message.get("transcript")
    if isinstance(raw, dict):
        role = raw.get("role")
        text = raw.get("text")
    else:
        role = message.get("role")
        text = raw

    if not isinstance(text, str):
        raise WebhookPayloadError("transcript event without text")

    return {
        "speaker": map_speaker(role),
        "text": text,
        "timestamp": to_iso_utc(entry_timestamp(message, received_at)),
    }


def find_by_call_id(session: Session, call_id: str) -> Optional[Conversation]:
    stmt = select(Conversation).where(Conversation.call_id == call_id)
    return session.exec(stmt).first()


class CallService:
    """
    Business logic for interview calls.
    Wraps the provider client, the record store, the active-call directory
    and the WebSocket rooms.
    """

    # --- Call control --- #

    @staticmethod
    async def start_call(
        session: Session,
        directory: ActiveCallDirectory,
        vapi: VapiClient,
        candidate_name: str,
        candidate_phone: str,
        position: str,
    ) -> tuple[str, Conversation]:
        """
        Create the conversation, place the call, and start tracking it.

        Raises VapiError when the provider refuses, and IntegrityError when the
        provider hands back a call id another conversation already holds. The
        conversation is left in 'starting' in both cases.
        """
        conversation = Conversation(
            candidate_name=candidate_name,
            candidate_phone=candidate_phone,
            position=position,
        )
        session.add(conversation)
        session.commit()
        session.refresh(conversation)
        logger.info(f"Created conversation {conversation.id} for {candidate_name}")

        result = await vapi.create_call(candidate_name, candidate_phone, position)
        call_id = result["id"]

        conversation.call_id = call_id
        conversation.status = STATUS_ACTIVE
        session.add(conversation)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            logger.error(f"Provider call id {call_id} is already attached to another conversation")
            raise
        session.refresh(conversation)

        directory.register(call_id, conversation.id)
        return call_id, conversation

    @staticmethod
    async def end_call(
        session: Session,
        directory: ActiveCallDirectory,
        broadcaster: BroadcastManager,
        vapi: VapiClient,
        call_id: str,
    ) -> Optional[Conversation]:
        """
        Hang up through the provider, then complete the record if we have one.
        Works whether or not the call is still in the directory.
        """
        await vapi.end_call(call_id)

        conversation = find_by_call_id(session, call_id)
        if conversation and conversation.status != STATUS_COMPLETED:
            conversation.mark_completed(utcnow())
            session.add(conversation)
            session.commit()
            session.refresh(conversation)
        elif not conversation:
            logger.info(f"No conversation stored for call {call_id}")

        directory.remove(call_id)
        await broadcaster.broadcast(call_id, "call-ended", {"callId": call_id})
        return conversation

    @staticmethod
    def get_call_status(session: Session, call_id: str) -> dict:
        conversation = find_by_call_id(session, call_id)
        if not conversation:
            return {"status": "unknown", "duration": 0, "transcript": []}
        return {
            "status": conversation.status or "unknown",
            "duration": conversation.duration or 0,
            "transcript": list(conversation.transcript or []),
        }

    # --- Webhook relay --- #

    @staticmethod
    async def handle_webhook(
        payload: Any,
        session: Session,
        directory: ActiveCallDirectory,
        broadcaster: BroadcastManager,
    ) -> dict:
        """
        Vapi server URL handler.

        Events for calls we are not tracking are acknowledged and dropped.
        Store failures are logged and the broadcast for that event is skipped;
        the provider is never asked to retry.
        """
        if not isinstance(payload, dict):
            raise WebhookPayloadError("webhook body must be a JSON object")

        message = payload.get("message", payload)
        if not isinstance(message, dict):
            raise WebhookPayloadError("webhook message must be a JSON object")

        msg_type = (_str_field(message, "type") or "").lower()
        call_data = message.get("call") or {}
        call_id = _str_field(call_data, "id") if isinstance(call_data, dict) else None
        logger.info(f"Vapi webhook event: {msg_type} for call {call_id}")

        if not call_id:
            return {"ok": True, "handled": False, "reason": "missing call.id"}

        active = directory.lookup(call_id)
        if not active:
            logger.info(f"[webhook] Call {call_id} is not active, ignoring {msg_type}")
            return {"ok": True, "handled": False, "reason": "unknown call"}

        received_at = utcnow()

        if msg_type == "transcript":
            handled = await CallService.handle_transcript(message, active, session, broadcaster, received_at)
        elif msg_type == "call-started":
            await broadcaster.broadcast(active.room, "call-started", {"callId": call_id})
            handled = True
        elif msg_type in END_EVENTS:
            handled = await CallService.handle_call_ended(message, active, session, directory, broadcaster, received_at)
        elif msg_type in SPEECH_EVENTS:
            await broadcaster.broadcast(active.room, msg_type, {"speaker": map_speaker(message.get("role"))})
            handled = True
        elif msg_type == "speech-update" and _str_field(message, "status") in SPEECH_UPDATE_STATUS:
            event = SPEECH_UPDATE_STATUS[message["status"]]
            await broadcaster.broadcast(active.room, event, {"speaker": map_speaker(message.get("role"))})
            handled = True
        else:
            handled = False

        return {"ok": True, "handled": handled, "type": msg_type, "call_id": call_id}

    @staticmethod
    async def handle_transcript(
        message: dict,
        active: ActiveCallEntry,
        session: Session,
        broadcaster: BroadcastManager,
        received_at: datetime,
    ) -> bool:
        entry = build_transcript_entry(message, received_at)

        try:
            conversation = session.get(Conversation, active.record_id)
            if not conversation:
                logger.warning(f"[transcript] Conversation {active.record_id} for call {active.call_id} is gone")
                return False
            # Reassign so the JSON column is flagged dirty
            conversation.transcript = [*(conversation.transcript or []), entry]
            session.add(conversation)
            session.commit()
        except SQLAlchemyError:
            logger.exception(f"[transcript] Failed to store transcript for call {active.call_id}")
            session.rollback()
            return False

        await broadcaster.broadcast(active.room, "transcript-update", entry)
        return True

    @staticmethod
    async def handle_call_ended(
        message: dict,
        active: ActiveCallEntry,
        session: Session,
        directory: ActiveCallDirectory,
        broadcaster: BroadcastManager,
        received_at: datetime,
    ) -> bool:
        summary = COMPLETED_SUMMARY
        if message.get("type") == "end-of-call-report":
            analysis = message.get("analysis")
            analysis_summary = _str_field(analysis, "summary") if isinstance(analysis, dict) else None
            summary = _str_field(message, "summary") or analysis_summary or COMPLETED_SUMMARY

        try:
            conversation = session.get(Conversation, active.record_id)
            if conversation:
                conversation.mark_completed(received_at, summary=summary)
                session.add(conversation)
                session.commit()
            else:
                logger.warning(f"[call-ended] Conversation {active.record_id} for call {active.call_id} is gone")
        except SQLAlchemyError:
            logger.exception(f"[call-ended] Failed to complete conversation for call {active.call_id}")
            session.rollback()
            directory.remove(active.call_id)
            return False

        directory.remove(active.call_id)
        await broadcaster.broadcast(active.room, "call-ended", {"callId": active.call_id})
        return True
