# active_calls.py
import logging
from dataclasses import dataclass
from threading import Lock
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActiveCallEntry:
    call_id: str
    record_id: str
    room: str


class ActiveCallDirectory:
    """
    Process-local map of provider call id -> owning conversation and room.

    Entries live only as long as the process. Nothing expires them: a call the
    provider never reports as ended stays here until shutdown.
    """

    def __init__(self):
        self._entries: Dict[str, ActiveCallEntry] = {}
        self._lock = Lock()

    def register(self, call_id: str, record_id: str) -> ActiveCallEntry:
        entry = ActiveCallEntry(call_id=call_id, record_id=record_id, room=call_id)
        with self._lock:
            self._entries[call_id] = entry
        logger.info(f"Registered active call {call_id} -> conversation {record_id}")
        return entry

    def lookup(self, call_id: Optional[str]) -> Optional[ActiveCallEntry]:
        if not call_id:
            return None
        with self._lock:
            return self._entries.get(call_id)

    def remove(self, call_id: str) -> Optional[ActiveCallEntry]:
        with self._lock:
            entry = self._entries.pop(call_id, None)
        if entry:
            logger.info(f"Removed active call {call_id}")
        return entry

    def entries(self) -> List[ActiveCallEntry]:
        with self._lock:
            return list(self._entries.values())

    def clear(self) -> None:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        if count:
            logger.info(f"Dropped {count} active call(s) on shutdown")

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, call_id: str) -> bool:
        return self.lookup(call_id) is not None
