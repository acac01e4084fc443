"""Clip projections: normalized snapshots of one arrangement clip and its notes."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .entity import EntityHandle
from .notes import (
    MAX_PITCH,
    MIN_PITCH,
    MalformedNotePayload,
    NoteRecord,
    parse_note_payload,
    sort_by_start,
)

logger = logging.getLogger("ArrangementMirror.projection")

PITCH_SPAN = MAX_PITCH - MIN_PITCH + 1


class ClipUnavailable(LookupError):
    """Raised when a clip id no longer resolves in the host."""


@dataclass(frozen=True)
class ProjectedNote:
    """A normalized note plus its position on the arrangement timeline."""

    note: NoteRecord
    start_abs: float

    @property
    def quadruple(self) -> Tuple[int, float, float, float]:
        return (self.note.pitch, self.note.start, self.note.duration, self.note.velocity)

    def to_dict(self) -> Dict[str, Any]:
        payload = self.note.to_dict()
        payload.pop("mute", None)
        payload["start_abs"] = self.start_abs
        return payload


@dataclass(frozen=True)
class ClipTiming:
    start_time: float = 0.0
    end_time: float = 0.0
    start_marker: float = 0.0
    end_marker: float = 0.0
    looping: bool = False
    loop_start: float = 0.0
    loop_end: float = 0.0


@dataclass(frozen=True)
class ClipProjection:
    clip_id: int
    name: str
    muted: bool
    timing: ClipTiming
    notes: Tuple[ProjectedNote, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "clip_id": self.clip_id,
            "name": self.name,
            "muted": self.muted,
            "start_time": self.timing.start_time,
            "end_time": self.timing.end_time,
            "start_marker": self.timing.start_marker,
            "end_marker": self.timing.end_marker,
            "looping": self.timing.looping,
            "loop_start": self.timing.loop_start,
            "loop_end": self.timing.loop_end,
            "note_count": len(self.notes),
            "notes": [note.to_dict() for note in self.notes],
        }


def _as_float(value: Any, default: float = 0.0) -> float:
    if isinstance(value, bool):
        return float(value)
    try:
        out = float(value)
    except (TypeError, ValueError):
        return default
    if out != out or out in (float("inf"), float("-inf")):
        return default
    return out


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    try:
        return bool(int(value))
    except (TypeError, ValueError):
        return bool(value)


def absolute_start(local_start: float, timing: ClipTiming) -> float:
    """Map a clip-local note start onto the arrangement timeline.

    With looping on, starts at or past ``loop_end`` wrap back into the loop
    window. Notes outside the marker window are not filtered.
    """
    local = local_start
    loop_length = timing.loop_end - timing.loop_start
    if timing.looping and loop_length > 0 and local >= timing.loop_end:
        local = timing.loop_start + (local - timing.loop_start) % loop_length
    position = timing.start_time - timing.start_marker + local
    return max(0.0, position)


def project_notes(raw_notes: Iterable[NoteRecord], timing: ClipTiming) -> Tuple[ProjectedNote, ...]:
    """Drop muted notes, sort by local start and attach absolute positions."""
    audible = [note for note in raw_notes if not note.mute]
    projected = []
    for note in sort_by_start(audible):
        normalized = note.normalized()
        projected.append(ProjectedNote(normalized, absolute_start(normalized.start, timing)))
    return tuple(projected)


def read_timing(clip: EntityHandle) -> ClipTiming:
    return ClipTiming(
        start_time=_as_float(clip.value("start_time")),
        end_time=_as_float(clip.value("end_time")),
        start_marker=_as_float(clip.value("start_marker")),
        end_marker=_as_float(clip.value("end_marker")),
        looping=_as_bool(clip.value("looping", 0)),
        loop_start=_as_float(clip.value("loop_start")),
        loop_end=_as_float(clip.value("loop_end")),
    )


def note_query(time_span: float, from_time: float = 0.0) -> Dict[str, float]:
    return {
        "from_pitch": MIN_PITCH,
        "pitch_span": PITCH_SPAN,
        "from_time": from_time,
        "time_span": time_span,
    }


def read_clip_notes(clip: EntityHandle, selected: bool = False) -> List[NoteRecord]:
    """Fetch a clip's raw notes (muted ones included), sorted by start."""
    if selected:
        payload = clip.call("get_selected_notes_extended")
    else:
        payload = clip.call("get_notes_extended", note_query(_as_float(clip.value("length"))))
    if payload is None:
        raise MalformedNotePayload("note extraction returned nothing for clip %s" % clip.id)
    return sort_by_start(parse_note_payload(payload))


def write_clip_notes(clip: EntityHandle, notes: Iterable[NoteRecord], replace: bool = True) -> int:
    """Send notes back to the host, clamped into host-safe ranges.

    With ``replace`` every existing note is selected and replaced, otherwise
    the notes are added alongside the existing ones.
    """
    if not clip.is_bound:
        raise ClipUnavailable("clip handle is not bound")
    host_notes = tuple(note.to_host_tuple() for note in notes)
    if replace:
        clip.call("select_all_notes")
        clip.call("replace_selected_notes", host_notes)
    else:
        clip.call("set_notes", host_notes)
    return len(host_notes)


def build_projection(accessor, clip_id: int, handle: Optional[EntityHandle] = None) -> ClipProjection:
    """Snapshot one clip. Raises ClipUnavailable or MalformedNotePayload."""
    clip = handle or EntityHandle(accessor)
    try:
        if not clip.bind(clip_id):
            raise ClipUnavailable("clip %s does not resolve" % clip_id)

        name = clip.name()
        muted = _as_bool(clip.value("muted", 0))
        timing = read_timing(clip)
        raw_notes = read_clip_notes(clip)
    finally:
        if handle is None:
            clip.release()

    projection = ClipProjection(
        clip_id=int(clip_id),
        name=name,
        muted=muted,
        timing=timing,
        notes=project_notes(raw_notes, timing),
    )
    logger.debug("Projected clip %s (%s) with %d notes", clip_id, name, len(projection.notes))
    return projection
