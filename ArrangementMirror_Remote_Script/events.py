"""Outbound events published after each arrangement rebuild."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Sequence, Union

from .projection import ClipProjection

logger = logging.getLogger("ArrangementMirror.events")

CLEAR_CLIPS = "clear_clips"
ADD_CLIP = "add_clip"


@dataclass(frozen=True)
class ClearClips:
    kind = CLEAR_CLIPS

    def to_message(self) -> List[Any]:
        return [CLEAR_CLIPS]

    def to_dict(self) -> Dict[str, Any]:
        return {"event": CLEAR_CLIPS}


@dataclass(frozen=True)
class AddClip:
    projection: ClipProjection
    kind = ADD_CLIP

    def to_message(self) -> List[Any]:
        """Flat channel-0 message: clip fields, then one quadruple per note."""
        clip = self.projection
        timing = clip.timing
        message = [
            ADD_CLIP,
            clip.clip_id,
            clip.name,
            int(clip.muted),
            timing.start_time,
            timing.end_time,
            timing.start_marker,
            timing.end_marker,
            int(timing.looping),
            timing.loop_start,
            timing.loop_end,
        ]
        for note in clip.notes:
            message.extend(note.quadruple)
        return message

    def to_dict(self) -> Dict[str, Any]:
        payload = self.projection.to_dict()
        payload["event"] = ADD_CLIP
        return payload


ProjectionEvent = Union[ClearClips, AddClip]
Listener = Callable[[Sequence[ProjectionEvent]], None]


def refresh_sequence(projections: Sequence[ClipProjection]) -> List[ProjectionEvent]:
    events: List[ProjectionEvent] = [ClearClips()]
    events.extend(AddClip(projection) for projection in projections)
    return events


class EventChannel(object):
    """Single outbound channel. Listeners receive each sequence as a whole."""

    def __init__(self, name: str = "channel_0"):
        self.name = name
        self._listeners: List[Listener] = []
        self.published = 0

    def connect(self, listener: Listener):
        if listener not in self._listeners:
            self._listeners.append(listener)

    def disconnect(self, listener: Listener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def publish(self, events: Sequence[ProjectionEvent]):
        batch = tuple(events)
        self.published += 1
        for listener in list(self._listeners):
            try:
                listener(batch)
            except Exception as e:
                logger.error("Listener on %s failed: %s", self.name, e)
