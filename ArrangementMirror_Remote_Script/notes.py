"""Note records and host note payload parsing."""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Sequence, Tuple

MIN_PITCH = 0
MAX_PITCH = 127
MIN_VELOCITY = 0
MAX_VELOCITY = 127
MIN_DURATION = 1.0 / 128
START_DECIMALS = 4


class MalformedNotePayload(ValueError):
    """Raised when a note extraction result cannot be parsed."""


def _clamp(value, lower, upper):
    if value < lower:
        return lower
    if value > upper:
        return upper
    return value


@dataclass(frozen=True)
class NoteRecord:
    """One musical note in clip-local time (beats)."""

    pitch: int
    start: float
    duration: float
    velocity: float = 100
    mute: bool = False

    @property
    def host_pitch(self) -> int:
        return int(_clamp(int(round(self.pitch)), MIN_PITCH, MAX_PITCH))

    @property
    def host_start(self) -> float:
        if self.start <= 0:
            return 0.0
        return round(float(self.start), START_DECIMALS)

    @property
    def host_duration(self) -> float:
        if self.duration <= MIN_DURATION:
            return MIN_DURATION
        return round(float(self.duration), START_DECIMALS)

    @property
    def host_velocity(self) -> float:
        return _clamp(self.velocity, MIN_VELOCITY, MAX_VELOCITY)

    @property
    def host_mute(self) -> bool:
        return bool(self.mute)

    def normalized(self) -> "NoteRecord":
        """Return a copy with every field in its host-safe range."""
        return NoteRecord(
            pitch=self.host_pitch,
            start=self.host_start,
            duration=self.host_duration,
            velocity=self.host_velocity,
            mute=self.host_mute,
        )

    def to_host_tuple(self) -> Tuple[int, float, float, float, bool]:
        """(pitch, start, duration, velocity, mute) as accepted by Clip.set_notes."""
        return (self.host_pitch, self.host_start, self.host_duration, self.host_velocity, self.host_mute)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pitch": self.pitch,
            "start_time": self.start,
            "duration": self.duration,
            "velocity": self.velocity,
            "mute": bool(self.mute),
        }

    @classmethod
    def from_host(cls, raw: Any) -> "NoteRecord":
        """Build a record from a host note dict, MidiNote-like object or 5-tuple."""
        if isinstance(raw, dict):
            fields = (
                raw.get("pitch"),
                raw.get("start_time", raw.get("start")),
                raw.get("duration"),
                raw.get("velocity", 100),
                raw.get("mute", raw.get("muted", False)),
            )
        elif isinstance(raw, (list, tuple)):
            if len(raw) < 4:
                raise MalformedNotePayload("note tuple too short: %r" % (raw,))
            fields = tuple(raw[:5]) if len(raw) >= 5 else tuple(raw) + (False,)
        elif hasattr(raw, "pitch") and hasattr(raw, "start_time"):
            fields = (
                raw.pitch,
                raw.start_time,
                getattr(raw, "duration", None),
                getattr(raw, "velocity", 100),
                getattr(raw, "mute", False),
            )
        else:
            raise MalformedNotePayload("unsupported note entry: %r" % (raw,))

        pitch, start, duration, velocity, mute = fields
        try:
            record = cls(
                pitch=int(pitch),
                start=float(start),
                duration=float(duration),
                velocity=float(velocity) if velocity is not None else 100.0,
                mute=bool(float(mute)) if isinstance(mute, str) else bool(mute),
            )
        except (TypeError, ValueError, OverflowError) as e:
            raise MalformedNotePayload("bad note fields %r: %s" % (fields, e))

        if not all(math.isfinite(value) for value in (record.start, record.duration, record.velocity)):
            raise MalformedNotePayload("non-finite note fields %r" % (fields,))
        return record


def _parse_legacy_list(data: Sequence[Any]) -> List[NoteRecord]:
    """Parse ``notes <count> note p s d v m ... done``."""
    if len(data) < 2 or data[0] != "notes":
        raise MalformedNotePayload("legacy payload must start with 'notes <count>'")
    try:
        count = int(data[1])
    except (TypeError, ValueError):
        raise MalformedNotePayload("legacy payload has a bad note count: %r" % (data[1],))

    body = list(data[2:])
    if body and body[-1] == "done":
        body = body[:-1]
    if len(body) != count * 6:
        raise MalformedNotePayload(
            "legacy payload announces %d notes but carries %d values" % (count, len(body))
        )

    notes = []
    for offset in range(0, len(body), 6):
        chunk = body[offset:offset + 6]
        if chunk[0] != "note":
            raise MalformedNotePayload("expected 'note' token, got %r" % (chunk[0],))
        notes.append(NoteRecord.from_host(chunk[1:]))
    return notes


def parse_note_payload(payload: Any) -> List[NoteRecord]:
    """Turn any supported extraction result into note records, in host order."""
    if isinstance(payload, bytes):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedNotePayload("note payload is not utf-8: %s" % e)

    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except ValueError as e:
            raise MalformedNotePayload("note payload is not JSON: %s" % e)

    if isinstance(payload, dict):
        notes = payload.get("notes")
        if not isinstance(notes, (list, tuple)):
            raise MalformedNotePayload("note payload has no 'notes' list")
        return [NoteRecord.from_host(entry) for entry in notes]

    if isinstance(payload, (list, tuple)):
        if payload and payload[0] == "notes":
            return _parse_legacy_list(payload)
        return [NoteRecord.from_host(entry) for entry in payload]

    raise MalformedNotePayload("unsupported note payload type: %s" % type(payload).__name__)


def sort_by_start(notes: Sequence[NoteRecord]) -> List[NoteRecord]:
    """Stable ascending sort on clip-local start."""
    return sorted(notes, key=lambda note: note.start)
