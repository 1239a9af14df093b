"""
Clipboard history

Keeps the most recent clipboard entries in memory, newest first.
Entries with the same content and type are never stored twice: adding a
duplicate moves it to the front.
"""
import json
import time
import uuid
import logging
import threading
from dataclasses import dataclass, asdict, replace
from typing import List, Optional

logger = logging.getLogger(__name__)

TEXT = 'text'
IMAGE = 'image'


@dataclass(frozen=True)
class ClipboardEntry:
    """One clipboard item, immutable once created"""
    content: str
    type: str = TEXT
    source: str = 'local'
    timestamp: float = 0.0
    id: str = ''
    file_path: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> 'ClipboardEntry':
        return cls(
            content=data['content'],
            type=data.get('type', TEXT),
            source=data.get('source', 'local'),
            timestamp=float(data.get('timestamp', 0.0)),
            id=str(data.get('id', '')),
            file_path=data.get('file_path')
        )


class HistoryStore:
    """Bounded, deduplicated clipboard history"""

    def __init__(self, max_size: int = 10):
        if max_size < 1:
            raise ValueError("History size must be at least 1")
        self.max_size = max_size
        self._entries: List[ClipboardEntry] = []
        self._lock = threading.Lock()

    def add(self, entry: ClipboardEntry) -> ClipboardEntry:
        """
        Add an entry at the front of the history

        Any entry with the same (content, type) is removed first and the
        oldest entries are dropped past capacity.

        Returns:
            The stored entry, with its id assigned
        """
        stored = replace(
            entry,
            id=uuid.uuid4().hex,
            timestamp=entry.timestamp or time.time()
        )

        with self._lock:
            self._entries = [
                e for e in self._entries
                if not (e.content == stored.content and e.type == stored.type)
            ]
            self._entries.insert(0, stored)
            del self._entries[self.max_size:]

        logger.debug(f"History: added {stored.type} entry from {stored.source}")
        return stored

    def get_all(self) -> List[ClipboardEntry]:
        """Snapshot of all entries, newest first"""
        with self._lock:
            return list(self._entries)

    def get_by_id(self, entry_id: str) -> Optional[ClipboardEntry]:
        with self._lock:
            for entry in self._entries:
                if entry.id == entry_id:
                    return entry
        return None

    def get_latest(self) -> Optional[ClipboardEntry]:
        with self._lock:
            return self._entries[0] if self._entries else None

    def remove(self, entry_id: str) -> bool:
        """Remove an entry by id. Returns True if it existed."""
        with self._lock:
            for index, entry in enumerate(self._entries):
                if entry.id == entry_id:
                    del self._entries[index]
                    return True
        return False

    def clear(self):
        with self._lock:
            self._entries = []

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def __len__(self) -> int:
        return self.size()

    def export_json(self) -> str:
        """Serialize the history as a JSON array"""
        with self._lock:
            return json.dumps([e.to_dict() for e in self._entries], indent=2)

    def import_json(self, text: str):
        """
        Replace the history with entries from export_json()

        Raises:
            ValueError: If the text is not a JSON array of entries
        """
        try:
            data = json.loads(text)
            if not isinstance(data, list):
                raise ValueError("History must be a JSON array")
            entries = [ClipboardEntry.from_dict(item) for item in data]
        except (json.JSONDecodeError, KeyError, TypeError, AttributeError) as e:
            raise ValueError(f"Failed to import history: {e}")

        # Same rules as add(): one entry per (content, type), unique ids
        kept: List[ClipboardEntry] = []
        seen_content = set()
        seen_ids = set()
        for entry in entries:
            key = (entry.content, entry.type)
            if key in seen_content:
                continue
            seen_content.add(key)
            if not entry.id or entry.id in seen_ids:
                entry = replace(entry, id=uuid.uuid4().hex)
            seen_ids.add(entry.id)
            kept.append(entry)
            if len(kept) == self.max_size:
                break

        with self._lock:
            self._entries = kept
        logger.info(f"Imported {len(kept)} history entries")
