"""Host accessor over Live's Python object model.

Resolves Max-style paths (``live_set tracks 0 arrangement_clips 2``) and
numeric ids against the ``Song`` object, so the engine can address Live
objects the same way in both directions.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from .entity import NONE_ID, parse_target

logger = logging.getLogger("ArrangementMirror.live")

ROOT_PATH = "live_set"


def _to_list(value):
    """Convert Live vectors/iterables into a Python list."""
    if value is None or isinstance(value, (str, bytes)):
        return None
    if isinstance(value, list):
        return value
    if isinstance(value, tuple):
        return list(value)
    try:
        return list(value)
    except Exception:
        pass
    try:
        length = len(value)
        return [value[index] for index in range(length)]
    except Exception:
        return None


def _is_scalar(value) -> bool:
    return value is None or isinstance(value, (bool, int, float, str))


def _note_to_dict(note) -> Dict[str, Any]:
    return {
        "note_id": getattr(note, "note_id", None),
        "pitch": getattr(note, "pitch", None),
        "start_time": getattr(note, "start_time", None),
        "duration": getattr(note, "duration", None),
        "velocity": getattr(note, "velocity", None),
        "mute": bool(getattr(note, "mute", False)),
    }


class LiveObjectAccessor(object):
    """Id registry and path walker over the objects reachable from a Song."""

    def __init__(self, song_provider: Callable[[], Any]):
        self._song_provider = song_provider
        self._next_id = 1
        self._objects: Dict[int, Any] = {}
        self._paths: Dict[int, str] = {}
        self._children: Dict[Tuple[int, str], List[int]] = {}

    def _song(self):
        return self._song_provider()

    def _find_registered(self, obj) -> Optional[int]:
        # Live hands out fresh wrappers for the same object, so compare with ==.
        for object_id, candidate in self._objects.items():
            try:
                if candidate is obj or candidate == obj:
                    return object_id
            except Exception:
                continue
        return None

    def _register(self, obj, path: Optional[str] = None) -> int:
        object_id = self._find_registered(obj)
        if object_id is None:
            object_id = self._next_id
            self._next_id += 1
            self._objects[object_id] = obj
        if path:
            self._paths[object_id] = path
        return object_id

    @property
    def registered_count(self) -> int:
        return len(self._objects)

    def _forget(self, object_id: int):
        self._objects.pop(object_id, None)
        self._paths.pop(object_id, None)
        for key in [key for key in self._children if key[0] == object_id]:
            for child_id in self._children.pop(key):
                self._forget(child_id)

    def _track_children(self, parent_id: int, prop: str, child_ids: List[int]):
        """Drop ids that have left a collection since it was last read."""
        previous = self._children.get((parent_id, prop), [])
        self._children[(parent_id, prop)] = child_ids
        for child_id in previous:
            if child_id not in child_ids:
                self._forget(child_id)

    def _lookup(self, object_id) -> Any:
        try:
            return self._objects.get(int(object_id))
        except (TypeError, ValueError):
            return None

    def _walk(self, path: str):
        tokens = path.split()
        if not tokens or tokens[0] != ROOT_PATH:
            return None
        current = self._song()
        for token in tokens[1:]:
            if current is None:
                return None
            if token.isdigit():
                items = _to_list(current)
                index = int(token)
                if items is None or index >= len(items):
                    return None
                current = items[index]
                continue
            try:
                current = getattr(current, token)
            except Exception:
                return None
        return current

    def _canonical_path(self, obj, fallback: str) -> str:
        """Prefer a ``live_set tracks N`` path for tracks reached through the view."""
        song = self._song()
        tracks = _to_list(getattr(song, "tracks", None)) or []
        for index, track in enumerate(tracks):
            if track is obj or track == obj:
                return "%s tracks %d" % (ROOT_PATH, index)
        return fallback

    def resolve(self, target) -> Tuple[int, str]:
        object_id, path = parse_target(target)
        if object_id is not None:
            obj = self._lookup(object_id)
            if obj is None:
                return NONE_ID, ""
            return object_id, self._paths.get(object_id, "id %d" % object_id)
        if path is None:
            return NONE_ID, ""

        obj = self._walk(path)
        if obj is None or _is_scalar(obj):
            return NONE_ID, ""
        canonical = self._canonical_path(obj, path)
        return self._register(obj, canonical), canonical

    def _encode(self, value, parent_id: int, prop: str):
        parent_path = self._paths.get(parent_id, "")
        if _is_scalar(value):
            return value
        items = _to_list(value)
        if items is not None and all(not _is_scalar(item) for item in items):
            child_ids = []
            for index, item in enumerate(items):
                child_path = "%s %s %d" % (parent_path, prop, index) if parent_path else None
                child_ids.append(self._register(item, child_path))
            self._track_children(parent_id, prop, child_ids)
            encoded: List[Any] = []
            for child_id in child_ids:
                encoded.extend(["id", child_id])
            return encoded
        if items is not None:
            return items
        child_path = "%s %s" % (parent_path, prop) if parent_path else None
        return ["id", self._register(value, child_path)]

    def get(self, object_id, prop: str):
        obj = self._lookup(object_id)
        if obj is None:
            return None
        try:
            value = getattr(obj, prop)
        except Exception:
            return None
        return self._encode(value, int(object_id), prop)

    def set(self, object_id, prop: str, value):
        obj = self._lookup(object_id)
        if obj is None or not hasattr(obj, prop):
            return
        setattr(obj, prop, value)

    def getcount(self, object_id, collection: str) -> int:
        items = _to_list(getattr(self._lookup(object_id), collection, None))
        if items is None:
            return 0
        if not items and (int(object_id), collection) in self._children:
            self._track_children(int(object_id), collection, [])
        return len(items)

    def call(self, object_id, method: str, *args):
        obj = self._lookup(object_id)
        if obj is None:
            return None
        if method in ("get_notes_extended", "get_selected_notes_extended"):
            return self._get_notes(obj, method, args)
        function = getattr(obj, method, None)
        if function is None:
            return None
        return function(*args)

    def _get_notes(self, clip, method: str, args):
        if method == "get_selected_notes_extended":
            notes = clip.get_selected_notes_extended()
        else:
            query = args[0] if args and isinstance(args[0], dict) else {}
            notes = clip.get_notes_extended(
                int(query.get("from_pitch", 0)),
                int(query.get("pitch_span", 128)),
                float(query.get("from_time", 0.0)),
                float(query.get("time_span", getattr(clip, "length", 0.0))),
            )
        return {"notes": [_note_to_dict(note) for note in (_to_list(notes) or [])]}

    def add_listener(self, object_id, prop: str, callback: Callable):
        obj = self._lookup(object_id)
        adder = getattr(obj, "add_%s_listener" % prop, None) if obj is not None else None
        if adder is None:
            logger.warning("Object %s has no %s listener", object_id, prop)
            return None
        adder(callback)
        return (obj, prop, callback)

    def remove_listener(self, token):
        if token is None:
            return
        obj, prop, callback = token
        has_listener = getattr(obj, "%s_has_listener" % prop, None)
        remover = getattr(obj, "remove_%s_listener" % prop, None)
        if remover is None:
            return
        if has_listener is not None and not has_listener(callback):
            return
        remover(callback)
