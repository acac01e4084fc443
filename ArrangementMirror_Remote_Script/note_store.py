"""Named in-memory stores for the notes of the last rebuild."""

from __future__ import annotations

import threading
from typing import Any, Dict, List, Optional

_STORES: Dict[str, "NoteStore"] = {}
_STORES_LOCK = threading.Lock()


class NoteStore(object):
    """Clip id -> list of note dicts, shared by name within the process."""

    def __init__(self, name: str):
        self.name = name
        self._entries: Dict[str, List[Dict[str, Any]]] = {}
        self._lock = threading.Lock()

    def clear(self):
        with self._lock:
            self._entries = {}

    def replace_all(self, entries: Dict[Any, List[Dict[str, Any]]]):
        fresh = {str(key): list(value) for key, value in entries.items()}
        with self._lock:
            self._entries = fresh

    def get(self, clip_id: Any) -> Optional[List[Dict[str, Any]]]:
        with self._lock:
            notes = self._entries.get(str(clip_id))
        return list(notes) if notes is not None else None

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    def __len__(self):
        with self._lock:
            return len(self._entries)


def get_note_store(name: str) -> NoteStore:
    """Return the store registered under ``name``, creating it on first use."""
    with _STORES_LOCK:
        store = _STORES.get(name)
        if store is None:
            store = NoteStore(name)
            _STORES[name] = store
        return store


def drop_note_store(name: str):
    with _STORES_LOCK:
        _STORES.pop(name, None)
