"""In-memory stand-in for the host accessor used across the engine tests."""

from ArrangementMirror_Remote_Script.entity import NONE_ID, parse_target


class _FakeNode:
    def __init__(self, node_id, path, props=None):
        self.id = node_id
        self.path = path
        self.props = dict(props or {})
        self.children = {}
        self.notes = []
        self.notes_payload = None


class FakeHost:
    def __init__(self):
        self._next_id = 1
        self.nodes = {}
        self.paths = {}
        self.listeners = {}
        self.calls = []
        self.removed_listeners = []
        self.get_notes_hook = None
        # Node ids whose properties cannot be observed, like master or return tracks.
        self.unobservable = set()

    # Graph construction helpers

    def add_node(self, path, **props):
        node_id = self._next_id
        self._next_id += 1
        node = _FakeNode(node_id, path, props)
        self.nodes[node_id] = node
        if path:
            self.paths[path] = node_id
        return node_id

    def add_track(self, index=0, name="Track", alias=None):
        track_id = self.add_node("live_set tracks %d" % index, name=name)
        self.nodes[track_id].children["arrangement_clips"] = []
        if alias:
            self.paths[alias] = track_id
        return track_id

    def add_clip(self, track_id, notes=(), name="Clip", muted=0, start_time=0.0, end_time=4.0,
                 start_marker=0.0, end_marker=4.0, looping=0, loop_start=0.0, loop_end=4.0, length=None):
        track = self.nodes[track_id]
        index = len(track.children["arrangement_clips"])
        clip_id = self.add_node(
            "%s arrangement_clips %d" % (track.path, index),
            name=name,
            muted=muted,
            start_time=start_time,
            end_time=end_time,
            start_marker=start_marker,
            end_marker=end_marker,
            looping=looping,
            loop_start=loop_start,
            loop_end=loop_end,
            length=length if length is not None else end_marker - start_marker,
        )
        self.nodes[clip_id].notes = [dict(note) for note in notes]
        track.children["arrangement_clips"].append(clip_id)
        return clip_id

    def remove_clip(self, track_id, clip_id):
        self.nodes[track_id].children["arrangement_clips"].remove(clip_id)
        del self.nodes[clip_id]

    def notify(self, node_id, prop, *args):
        for callback in list(self.listeners.get((node_id, prop), [])):
            callback(*args)

    def listener_count(self, node_id, prop):
        return len(self.listeners.get((node_id, prop), []))

    # Accessor contract

    def resolve(self, target):
        node_id, path = parse_target(target)
        if node_id is None and path is not None:
            node_id = self.paths.get(path)
        node = self.nodes.get(node_id)
        if node is None:
            return NONE_ID, ""
        return node.id, node.path

    def get(self, node_id, prop):
        node = self.nodes.get(node_id)
        if node is None:
            return None
        if prop in node.children:
            encoded = []
            for child_id in node.children[prop]:
                encoded.extend(["id", child_id])
            return encoded
        value = node.props.get(prop)
        return None if value is None else [value]

    def set(self, node_id, prop, value):
        node = self.nodes.get(node_id)
        if node is not None:
            node.props[prop] = value

    def getcount(self, node_id, collection):
        node = self.nodes.get(node_id)
        if node is None:
            return 0
        return len(node.children.get(collection, []))

    def call(self, node_id, method, *args):
        self.calls.append((node_id, method, args))
        node = self.nodes.get(node_id)
        if node is None:
            return None
        if method == "get_notes_extended":
            if self.get_notes_hook is not None:
                self.get_notes_hook(node_id)
            if node.notes_payload is not None:
                return node.notes_payload
            return {"notes": [dict(note) for note in node.notes]}
        if method == "get_selected_notes_extended":
            return {"notes": [dict(note) for note in node.notes if note.get("selected")]}
        if method == "select_all_notes":
            for note in node.notes:
                note["selected"] = True
            return None
        if method == "replace_selected_notes":
            kept = [note for note in node.notes if not note.get("selected")]
            node.notes = kept + [self._note_from_tuple(row) for row in args[0]]
            return None
        if method == "set_notes":
            node.notes.extend(self._note_from_tuple(row) for row in args[0])
            return None
        return None

    def add_listener(self, node_id, prop, callback):
        if node_id in self.unobservable:
            return None
        self.listeners.setdefault((node_id, prop), []).append(callback)
        return (node_id, prop, callback)

    def remove_listener(self, token):
        node_id, prop, callback = token
        self.removed_listeners.append(token)
        self.listeners[(node_id, prop)].remove(callback)

    @staticmethod
    def _note_from_tuple(row):
        pitch, start, duration, velocity, mute = row
        return {"pitch": pitch, "start_time": start, "duration": duration, "velocity": velocity, "mute": mute}


def note(pitch, start, duration=1.0, velocity=100, mute=0):
    return {"pitch": pitch, "start_time": start, "duration": duration, "velocity": velocity, "mute": mute}
