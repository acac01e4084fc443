"""Socket command handlers, kept free of Live imports so they can be tested."""

from __future__ import annotations

import logging
import traceback
from typing import Any, Callable, Dict, List

from .notes import MalformedNotePayload, NoteRecord
from .session import MirrorSession

logger = logging.getLogger("ArrangementMirror.commands")

# Commands that touch Live's state and must run on the main thread.
MAIN_THREAD_COMMANDS = [
    "get_arrangement_projection",
    "rebuild_arrangement",
    "rebind_track",
    "replace_clip_notes",
]


def _parse_notes(raw_notes: Any) -> List[NoteRecord]:
    if not isinstance(raw_notes, list):
        raise ValueError("notes must be a list of note objects")
    notes = []
    for index, raw in enumerate(raw_notes):
        try:
            notes.append(NoteRecord.from_host(raw))
        except MalformedNotePayload as e:
            raise ValueError("note %d is invalid: %s" % (index, e))
    return notes


class CommandDispatcher(object):
    """Maps command types to session operations and wraps the results."""

    def __init__(self, session: MirrorSession):
        self._session = session
        self._handlers: Dict[str, Callable[[Dict[str, Any]], Any]] = {
            "get_binding": self._get_binding,
            "get_arrangement_projection": self._get_arrangement_projection,
            "get_clip_notes": self._get_clip_notes,
            "rebuild_arrangement": self._rebuild_arrangement,
            "rebind_track": self._rebind_track,
            "replace_clip_notes": self._replace_clip_notes,
        }

    @property
    def command_types(self) -> List[str]:
        return sorted(self._handlers)

    def needs_main_thread(self, command_type: str) -> bool:
        return command_type in MAIN_THREAD_COMMANDS

    def process(self, command: Dict[str, Any]) -> Dict[str, Any]:
        """Process a command from the client and return a response"""
        command_type = command.get("type", "") if isinstance(command, dict) else ""
        params = command.get("params", {}) if isinstance(command, dict) else {}
        if not isinstance(params, dict):
            params = {}

        handler = self._handlers.get(command_type)
        if handler is None:
            return {"status": "error", "message": "Unknown command: " + str(command_type)}

        try:
            return {"status": "success", "result": handler(params)}
        except Exception as e:
            logger.error("Error processing command %s: %s", command_type, e)
            logger.debug(traceback.format_exc())
            return {"status": "error", "message": str(e)}

    def _get_binding(self, params):
        return self._session.binding_info()

    def _get_arrangement_projection(self, params):
        snapshot = self._session.cache.snapshot()
        if not params.get("include_notes", True):
            for clip in snapshot["clips"]:
                clip.pop("notes", None)
        return snapshot

    def _get_clip_notes(self, params):
        clip_id = params.get("clip_id")
        if clip_id is None:
            raise ValueError("clip_id is required")
        notes = self._session.clip_notes(clip_id)
        return {
            "clip_id": clip_id,
            "found": notes is not None,
            "notes": notes or [],
            "note_store": self._session.note_store.name,
        }

    def _rebuild_arrangement(self, params):
        ok = self._session.rebuild()
        return {
            "rebuilt": bool(ok),
            "clip_count": len(self._session.cache.projections),
            "skipped_clip_ids": list(self._session.cache.skipped_clip_ids),
        }

    def _rebind_track(self, params):
        target = params.get("target")
        if isinstance(target, str) and not target.strip():
            target = None
        bound = self._session.rebind(target)
        info = self._session.binding_info()
        info["bound"] = bool(bound)
        return info

    def _replace_clip_notes(self, params):
        clip_id = params.get("clip_id")
        if clip_id is None:
            raise ValueError("clip_id is required")
        notes = _parse_notes(params.get("notes", []))
        return self._session.replace_clip_notes(int(clip_id), notes, replace=bool(params.get("replace", True)))
