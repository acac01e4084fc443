"""Routes host change notifications into arrangement cache rebuilds."""

from __future__ import annotations

import logging
from typing import Optional

from .cache import ARRANGEMENT_CLIPS, ArrangementCache
from .entity import EntityHandle, Target

logger = logging.getLogger("ArrangementMirror.bridge")


class ChangeNotificationBridge(object):
    """Owns the single arrangement_clips subscription of the bound track."""

    def __init__(self, accessor, cache: ArrangementCache):
        self._accessor = accessor
        self._cache = cache
        self._track: Optional[EntityHandle] = None
        self.initialized = False
        self.notifications = 0
        self.ignored_notifications = 0

    @property
    def track(self) -> Optional[EntityHandle]:
        return self._track

    @property
    def subscribed(self) -> bool:
        return self._track is not None and ARRANGEMENT_CLIPS in self._track.subscriptions

    def start(self, target: Target) -> bool:
        """Bind to ``target``, subscribe and run the initial rebuild."""
        self.initialized = False
        self._detach()
        bound = self._attach(target)
        self.initialized = True
        logger.info("Change bridge initialised on %s", self._track.path if bound else target)
        return bound

    def rebind(self, target: Target) -> bool:
        """Move to another track. The old subscription goes before the new one exists.

        Notifications from the new track during its first rebuild are folded
        into a follow-up rebuild by the cache.
        """
        self._detach()
        return self._attach(target)

    def stop(self):
        self.initialized = False
        self._detach()

    def on_arrangement_changed(self, *args):
        if not self.initialized:
            self.ignored_notifications += 1
            logger.debug("Ignoring arrangement_clips notification before init: %r", args)
            return
        self.notifications += 1
        try:
            self._cache.rebuild()
        except Exception as e:
            logger.error("Rebuild after arrangement change failed: %s", e)

    def _attach(self, target: Target) -> bool:
        track = EntityHandle(self._accessor)
        if not track.bind(target):
            logger.warning("Binding target %r did not resolve to a track", target)
            return False

        self._track = track
        track.subscribe(ARRANGEMENT_CLIPS, True, self.on_arrangement_changed)
        return self._cache.bind(track)

    def _detach(self):
        track = self._track
        self._track = None
        if track is not None:
            track.release()
        self._cache.release()
