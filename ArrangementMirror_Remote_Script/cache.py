"""Arrangement cache: the projections of every arrangement clip on one track."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from .entity import EntityHandle
from .events import EventChannel, refresh_sequence
from .note_store import NoteStore
from .projection import ClipProjection, ClipUnavailable, build_projection
from .notes import MalformedNotePayload

logger = logging.getLogger("ArrangementMirror.cache")

ARRANGEMENT_CLIPS = "arrangement_clips"

UNBOUND = "unbound"
BOUND = "bound"


class ArrangementCache(object):
    """Full-replace cache of clip projections for the bound track.

    ``rebuild`` never patches the previous list: it builds a complete new one
    and swaps it in, so readers only ever see a consistent state.
    """

    def __init__(self, accessor, channel: EventChannel, note_store: Optional[NoteStore] = None):
        self._accessor = accessor
        self._channel = channel
        self._note_store = note_store
        self._track: Optional[EntityHandle] = None
        self._clip_ids: Tuple[int, ...] = ()
        self._projections: Tuple[ClipProjection, ...] = ()
        self._rebuilding = False
        self._rebuild_pending = False
        self.state = UNBOUND
        self.rebuild_count = 0
        self.skipped_clip_ids: Tuple[int, ...] = ()

    @property
    def track(self) -> Optional[EntityHandle]:
        return self._track

    @property
    def clip_ids(self) -> Tuple[int, ...]:
        return self._clip_ids

    @property
    def projections(self) -> Tuple[ClipProjection, ...]:
        return self._projections

    def find(self, clip_id: Any) -> Optional[ClipProjection]:
        for projection in self._projections:
            if str(projection.clip_id) == str(clip_id):
                return projection
        return None

    def bind(self, track: EntityHandle) -> bool:
        """Attach to a track handle and rebuild right away."""
        if track is None or not track.is_bound:
            logger.warning("Refusing to bind an unresolved track handle")
            return False
        self._track = track
        self.state = BOUND
        logger.info("Arrangement cache bound to %s (id %s)", track.path, track.id)
        return self.rebuild()

    def release(self):
        self._track = None
        self._clip_ids = ()
        self._projections = ()
        self._rebuild_pending = False
        self.state = UNBOUND
        if self._note_store is not None:
            self._note_store.clear()

    def rebuild(self) -> bool:
        """Rebuild every projection and publish the refreshed list.

        A call that arrives while a rebuild is running is folded into one
        follow-up rebuild once the current one has finished.
        """
        if self._rebuilding:
            self._rebuild_pending = True
            return True

        self._rebuilding = True
        ok = False
        try:
            while True:
                self._rebuild_pending = False
                ok = self._rebuild_once()
                if not self._rebuild_pending:
                    break
        finally:
            self._rebuilding = False
        return ok

    def _rebuild_once(self) -> bool:
        if self.state != BOUND or self._track is None:
            logger.debug("Rebuild requested while unbound; ignoring")
            return False

        try:
            clip_ids = tuple(self._track.child_ids(ARRANGEMENT_CLIPS))
        except Exception as e:
            logger.error("Could not read arrangement clips for %s: %s", self._track.path, e)
            return False

        projections = []
        skipped = []
        for clip_id in clip_ids:
            try:
                projections.append(build_projection(self._accessor, clip_id))
            except (MalformedNotePayload, ClipUnavailable) as e:
                logger.warning("Skipping clip %s: %s", clip_id, e)
                skipped.append(clip_id)
            except Exception as e:
                logger.error("Unexpected error projecting clip %s: %s", clip_id, e)
                skipped.append(clip_id)

        self._clip_ids = clip_ids
        self._projections = tuple(projections)
        self.skipped_clip_ids = tuple(skipped)
        self.rebuild_count += 1
        self._refresh_note_store()

        self._channel.publish(refresh_sequence(self._projections))
        logger.info(
            "Rebuilt %d arrangement clips (%d skipped) for %s",
            len(self._projections), len(skipped), self._track.path,
        )
        return True

    def _refresh_note_store(self):
        if self._note_store is None:
            return
        self._note_store.replace_all({
            projection.clip_id: [note.to_dict() for note in projection.notes]
            for projection in self._projections
        })

    def snapshot(self) -> Dict[str, Any]:
        track = self._track
        return {
            "state": self.state,
            "track_id": track.id if track is not None else None,
            "track_path": track.path if track is not None else None,
            "track_name": track.name() if track is not None else None,
            "clip_ids": list(self._clip_ids),
            "skipped_clip_ids": list(self.skipped_clip_ids),
            "rebuild_count": self.rebuild_count,
            "clips": [projection.to_dict() for projection in self._projections],
        }
