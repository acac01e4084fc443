import json
import unittest

from ArrangementMirror_Remote_Script.commands import CommandDispatcher
from ArrangementMirror_Remote_Script.config import MirrorConfig
from ArrangementMirror_Remote_Script.note_store import drop_note_store, get_note_store
from ArrangementMirror_Remote_Script.notes import NoteRecord
from ArrangementMirror_Remote_Script.session import MirrorSession

from host_fakes import FakeHost, note


class MirrorSessionCommandTests(unittest.TestCase):
    def setUp(self):
        self.host = FakeHost()
        self.track_id = self.host.add_track(0, name="Lead", alias="live_set view selected_track")
        self.other_track = self.host.add_track(1, name="Pad")
        self.clip_id = self.host.add_clip(
            self.track_id,
            notes=[note(60, 0.0), note(64, 1.0, mute=1)],
            name="Hook",
            start_time=4.0,
            start_marker=1.0,
        )
        self.config = MirrorConfig(note_store="session_command_tests")
        self.session = MirrorSession(self.host, self.config)
        self.dispatcher = CommandDispatcher(self.session)
        self.session.start()

    def tearDown(self):
        self.session.stop()
        drop_note_store("session_command_tests")

    def _ok(self, command_type, **params):
        response = self.dispatcher.process({"type": command_type, "params": params})
        self.assertEqual(response["status"], "success", response.get("message"))
        # Responses cross a JSON socket.
        json.dumps(response)
        return response["result"]

    def test_session_uses_the_named_note_store(self):
        self.assertIs(self.session.note_store, get_note_store("session_command_tests"))
        self.assertTrue(self.session.running)

    def test_get_binding(self):
        result = self._ok("get_binding")
        self.assertEqual(result["track_id"], self.track_id)
        self.assertEqual(result["track_name"], "Lead")
        self.assertTrue(result["follows_selection"])
        self.assertTrue(result["subscribed"])
        self.assertEqual(result["note_store"], "session_command_tests")

    def test_get_arrangement_projection(self):
        result = self._ok("get_arrangement_projection")
        self.assertEqual(result["clip_ids"], [self.clip_id])
        clip = result["clips"][0]
        self.assertEqual(clip["name"], "Hook")
        self.assertEqual([n["pitch"] for n in clip["notes"]], [60])
        self.assertEqual(clip["notes"][0]["start_abs"], 3.0)

    def test_get_arrangement_projection_without_notes(self):
        result = self._ok("get_arrangement_projection", include_notes=False)
        self.assertNotIn("notes", result["clips"][0])
        self.assertEqual(result["clips"][0]["note_count"], 1)

    def test_get_clip_notes_reads_the_store(self):
        result = self._ok("get_clip_notes", clip_id=self.clip_id)
        self.assertTrue(result["found"])
        self.assertEqual(result["notes"][0]["pitch"], 60)

        missing = self._ok("get_clip_notes", clip_id=777)
        self.assertFalse(missing["found"])
        self.assertEqual(missing["notes"], [])

    def test_rebuild_arrangement_picks_up_new_clips(self):
        self.host.add_clip(self.track_id, name="Outro")
        result = self._ok("rebuild_arrangement")
        self.assertTrue(result["rebuilt"])
        self.assertEqual(result["clip_count"], 2)

    def test_rebind_track(self):
        pad_clip = self.host.add_clip(self.other_track, name="Swell")
        result = self._ok("rebind_track", target="live_set tracks 1")
        self.assertTrue(result["bound"])
        self.assertEqual(result["track_name"], "Pad")
        self.assertFalse(result["follows_selection"])
        self.assertEqual(self.session.cache.clip_ids, (pad_clip,))

    def test_rebind_without_target_reuses_current_binding(self):
        result = self._ok("rebind_track", target="")
        self.assertTrue(result["bound"])
        self.assertEqual(result["track_id"], self.track_id)

    def test_replace_clip_notes_writes_and_refreshes(self):
        result = self._ok(
            "replace_clip_notes",
            clip_id=self.clip_id,
            notes=[{"pitch": 72, "start_time": 0.5, "duration": 0.25, "velocity": 150, "mute": False}],
        )
        self.assertEqual(result["written"], 1)
        self.assertEqual(result["note_count"], 1)

        projection = self.session.cache.find(self.clip_id)
        self.assertEqual([p.note.pitch for p in projection.notes], [72])
        self.assertEqual(projection.notes[0].note.velocity, 127)

    def test_replace_clip_notes_refreshes_even_when_the_readback_fails(self):
        failures = []

        def fail_once(node_id):
            if node_id == self.clip_id and not failures:
                failures.append(node_id)
                raise RuntimeError("host busy")

        self.host.get_notes_hook = fail_once
        with self.assertRaises(RuntimeError):
            self.session.replace_clip_notes(self.clip_id, [NoteRecord(67, 0.0, 1.0, 90)])

        projection = self.session.cache.find(self.clip_id)
        self.assertEqual([p.note.pitch for p in projection.notes], [67])
        self.assertEqual(self.session.clip_notes(self.clip_id)[0]["pitch"], 67)

    def test_replace_clip_notes_rejects_foreign_clips(self):
        foreign = self.host.add_clip(self.other_track)
        response = self.dispatcher.process({
            "type": "replace_clip_notes",
            "params": {"clip_id": foreign, "notes": []},
        })
        self.assertEqual(response["status"], "error")
        self.assertIn("not on the bound track", response["message"])

    def test_replace_clip_notes_rejects_bad_rows(self):
        response = self.dispatcher.process({
            "type": "replace_clip_notes",
            "params": {"clip_id": self.clip_id, "notes": [{"pitch": 60}]},
        })
        self.assertEqual(response["status"], "error")
        self.assertIn("note 0", response["message"])

    def test_unknown_command(self):
        response = self.dispatcher.process({"type": "explode"})
        self.assertEqual(response, {"status": "error", "message": "Unknown command: explode"})

    def test_main_thread_routing(self):
        self.assertTrue(self.dispatcher.needs_main_thread("replace_clip_notes"))
        self.assertFalse(self.dispatcher.needs_main_thread("get_clip_notes"))
        self.assertIn("get_binding", self.dispatcher.command_types)


if __name__ == "__main__":
    unittest.main()
