"""The explicit context object tying the engine together."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .bridge import ChangeNotificationBridge
from .cache import ArrangementCache
from .config import MirrorConfig
from .entity import EntityHandle, Target
from .events import EventChannel
from .note_store import NoteStore, get_note_store
from .notes import NoteRecord
from .projection import ClipUnavailable, read_clip_notes, write_clip_notes

logger = logging.getLogger("ArrangementMirror.session")


class MirrorSession(object):
    """Everything one bound control surface needs, with no module globals."""

    def __init__(self, accessor, config: Optional[MirrorConfig] = None, channel: Optional[EventChannel] = None,
                 note_store: Optional[NoteStore] = None):
        self.accessor = accessor
        self.config = config or MirrorConfig()
        self.channel = channel or EventChannel()
        self.note_store = note_store or get_note_store(self.config.note_store)
        self.cache = ArrangementCache(accessor, self.channel, self.note_store)
        self.bridge = ChangeNotificationBridge(accessor, self.cache)
        self.binding: Target = self.config.binding

    @property
    def running(self) -> bool:
        return self.bridge.initialized

    def start(self) -> bool:
        logger.info("Starting arrangement mirror on %r", self.binding)
        return self.bridge.start(self.binding)

    def stop(self):
        self.bridge.stop()
        logger.info("Arrangement mirror stopped")

    def rebuild(self) -> bool:
        return self.cache.rebuild()

    def rebind(self, target: Optional[Target] = None) -> bool:
        """Rebind to ``target``, or re-resolve the configured binding."""
        if target is not None:
            self.binding = target
        return self.bridge.rebind(self.binding)

    def binding_info(self) -> Dict[str, Any]:
        track = self.cache.track
        return {
            "binding": self.binding,
            "follows_selection": self.config.follows_selection and self.binding == self.config.binding,
            "note_store": self.note_store.name,
            "state": self.cache.state,
            "initialized": self.bridge.initialized,
            "subscribed": self.bridge.subscribed,
            "track_id": track.id if track is not None else None,
            "track_path": track.path if track is not None else None,
            "track_name": track.name() if track is not None else None,
        }

    def clip_notes(self, clip_id: Any) -> Optional[List[Dict[str, Any]]]:
        return self.note_store.get(clip_id)

    def replace_clip_notes(self, clip_id: int, notes: List[NoteRecord], replace: bool = True) -> Dict[str, Any]:
        """Write notes into an arrangement clip of the bound track."""
        if int(clip_id) not in self.cache.clip_ids:
            raise ClipUnavailable("clip %s is not on the bound track" % clip_id)

        clip = EntityHandle(self.accessor)
        written = None
        try:
            if not clip.bind(int(clip_id)):
                raise ClipUnavailable("clip %s does not resolve" % clip_id)
            written = write_clip_notes(clip, notes, replace=replace)
            note_count = len(read_clip_notes(clip))
        finally:
            clip.release()
            if written is not None:
                # Note edits leave arrangement_clips membership unchanged, so no notification arrives.
                self.cache.rebuild()
        return {"clip_id": int(clip_id), "written": written, "note_count": note_count, "replaced": replace}
