import unittest

from ArrangementMirror_Remote_Script.bridge import ChangeNotificationBridge
from ArrangementMirror_Remote_Script.cache import BOUND, UNBOUND, ArrangementCache
from ArrangementMirror_Remote_Script.events import EventChannel

from host_fakes import FakeHost, note


class ChangeNotificationBridgeTests(unittest.TestCase):
    def setUp(self):
        self.host = FakeHost()
        self.first_track = self.host.add_track(0, name="Drums")
        self.second_track = self.host.add_track(1, name="Bass")
        self.channel = EventChannel()
        self.published = []
        self.channel.connect(self.published.append)
        self.cache = ArrangementCache(self.host, self.channel)
        self.bridge = ChangeNotificationBridge(self.host, self.cache)

    def test_start_binds_subscribes_and_rebuilds(self):
        self.host.add_clip(self.first_track, notes=[note(36, 0.0)])

        self.assertTrue(self.bridge.start("live_set tracks 0"))

        self.assertTrue(self.bridge.initialized)
        self.assertTrue(self.bridge.subscribed)
        self.assertEqual(self.host.listener_count(self.first_track, "arrangement_clips"), 1)
        self.assertEqual(len(self.cache.projections), 1)
        self.assertEqual(len(self.published), 1)

    def test_notification_triggers_a_rebuild(self):
        self.bridge.start("live_set tracks 0")
        self.host.add_clip(self.first_track, name="New")

        self.host.notify(self.first_track, "arrangement_clips")

        self.assertEqual(self.bridge.notifications, 1)
        self.assertEqual([p.name for p in self.cache.projections], ["New"])
        self.assertEqual(len(self.published), 2)

    def test_notifications_before_init_are_ignored(self):
        self.bridge.on_arrangement_changed("early")
        self.assertEqual(self.bridge.ignored_notifications, 1)
        self.assertEqual(self.published, [])

    def test_notification_during_initial_rebuild_is_ignored(self):
        clip_id = self.host.add_clip(self.first_track)

        def early_callback(node_id):
            self.host.notify(self.first_track, "arrangement_clips")

        self.host.get_notes_hook = early_callback
        self.bridge.start("live_set tracks 0")

        self.assertEqual(self.bridge.ignored_notifications, 1)
        self.assertEqual(self.bridge.notifications, 0)
        self.assertEqual(self.cache.clip_ids, (clip_id,))

    def test_rebind_moves_the_single_subscription(self):
        self.bridge.start("live_set tracks 0")
        bass_clip = self.host.add_clip(self.second_track, name="Bassline")

        self.assertTrue(self.bridge.rebind("live_set tracks 1"))

        self.assertEqual(self.host.listener_count(self.first_track, "arrangement_clips"), 0)
        self.assertEqual(self.host.listener_count(self.second_track, "arrangement_clips"), 1)
        self.assertEqual(self.cache.clip_ids, (bass_clip,))
        self.assertTrue(self.bridge.initialized)

    def test_old_track_notifications_are_dropped_after_rebind(self):
        self.bridge.start("live_set tracks 0")
        self.bridge.rebind("live_set tracks 1")
        rebuilds = self.cache.rebuild_count

        self.host.notify(self.first_track, "arrangement_clips")

        self.assertEqual(self.cache.rebuild_count, rebuilds)

    def test_rebind_to_missing_track_leaves_cache_unbound(self):
        self.bridge.start("live_set tracks 0")
        self.assertFalse(self.bridge.rebind("live_set tracks 7"))
        self.assertEqual(self.cache.state, UNBOUND)
        self.assertFalse(self.bridge.subscribed)
        self.assertEqual(self.host.listener_count(self.first_track, "arrangement_clips"), 0)

    def test_start_on_missing_track_still_initialises(self):
        self.assertFalse(self.bridge.start("live_set tracks 5"))
        self.assertTrue(self.bridge.initialized)
        self.assertEqual(self.cache.state, UNBOUND)

    def test_stop_tears_everything_down(self):
        self.bridge.start("live_set tracks 0")
        self.assertEqual(self.cache.state, BOUND)

        self.bridge.stop()
        self.bridge.stop()

        self.assertFalse(self.bridge.initialized)
        self.assertEqual(self.cache.state, UNBOUND)
        self.assertEqual(self.host.listener_count(self.first_track, "arrangement_clips"), 0)
        self.bridge.on_arrangement_changed()
        self.assertEqual(self.bridge.ignored_notifications, 1)

    def test_second_start_replaces_the_subscription(self):
        self.bridge.start("live_set tracks 0")
        self.bridge.start("live_set tracks 0")
        self.assertEqual(self.host.listener_count(self.first_track, "arrangement_clips"), 1)

        self.bridge.stop()

        self.assertEqual(self.host.listener_count(self.first_track, "arrangement_clips"), 0)

    def test_restart_does_not_duplicate_rebuilds(self):
        self.bridge.start("live_set tracks 0")
        self.bridge.start("live_set tracks 0")
        rebuilds = self.cache.rebuild_count

        self.host.notify(self.first_track, "arrangement_clips")

        self.assertEqual(self.cache.rebuild_count, rebuilds + 1)

    def test_notification_during_rebind_rebuild_is_not_lost(self):
        first_clip = self.host.add_clip(self.second_track, name="A")
        self.bridge.start("live_set tracks 0")
        added = []

        def add_clip_mid_rebuild(node_id):
            if node_id == first_clip and not added:
                added.append(self.host.add_clip(self.second_track, name="B"))
                self.host.notify(self.second_track, "arrangement_clips")

        self.host.get_notes_hook = add_clip_mid_rebuild
        self.bridge.rebind("live_set tracks 1")

        self.assertEqual([p.name for p in self.cache.projections], ["A", "B"])
        self.assertEqual(self.bridge.ignored_notifications, 0)
        self.assertEqual(self.bridge.notifications, 1)

    def test_track_without_clip_listener_is_not_subscribed(self):
        self.host.unobservable.add(self.second_track)
        self.host.add_clip(self.second_track, name="Return clip")

        self.assertTrue(self.bridge.start("live_set tracks 1"))

        self.assertFalse(self.bridge.subscribed)
        self.assertEqual(self.cache.state, BOUND)
        self.assertEqual(len(self.cache.projections), 1)


if __name__ == "__main__":
    unittest.main()
