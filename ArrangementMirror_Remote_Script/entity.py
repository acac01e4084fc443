"""Entity handles over the host object graph.

A handle wraps one node of Live's document graph and talks to it only through
a host accessor, so the engine never touches Live objects directly. The
accessor contract is deliberately small:

    resolve(target)                  -> (id, path), (0, "") when missing
    get(id, prop) / set(id, prop, v) -> value or None
    call(id, method, *args)          -> value or None
    getcount(id, collection)         -> int
    add_listener(id, prop, callback) -> token
    remove_listener(token)

Missing targets are never an error at this level: reads return ``None`` and
writes are dropped, mirroring the host's own no-op semantics.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

logger = logging.getLogger("ArrangementMirror.entity")

NONE_ID = 0

Target = Union[int, str]


def parse_target(target: Any) -> Tuple[Optional[int], Optional[str]]:
    """Split a bind target into ``(id, None)`` or ``(None, path)``."""
    if target is None or isinstance(target, bool):
        return None, None
    if isinstance(target, int):
        return target, None
    if not isinstance(target, str):
        return None, None

    text = target.strip()
    if not text:
        return None, None
    if text.isdigit():
        return int(text), None
    parts = text.split()
    if len(parts) == 2 and parts[0] == "id" and parts[1].isdigit():
        return int(parts[1]), None
    return None, text


def coerce_id(value: Any) -> Optional[int]:
    """Return an integer id for numeric host tokens, else None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if value != value or not value.is_integer():
            return None
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


class Subscription(object):
    """One live notification registration on a (target, property) pair."""

    def __init__(self, accessor, target_id: int, prop: str, callback: Callable):
        self._accessor = accessor
        self.id = target_id
        self.property = prop
        self._callback = callback
        self._token = accessor.add_listener(target_id, prop, self._deliver)

    @property
    def active(self) -> bool:
        return self.id != NONE_ID and self._token is not None

    def _deliver(self, *args):
        # Late deliveries after detach() are dropped here.
        if self.id == NONE_ID:
            return
        self._callback(*args)

    def detach(self):
        """Unregister from the host and point the subscription at the null id."""
        token = self._token
        self._token = None
        self.id = NONE_ID
        if token is None:
            return
        try:
            self._accessor.remove_listener(token)
        except Exception as e:
            logger.warning("Failed to remove %s listener: %s", self.property, e)


class EntityHandle(object):
    """Local proxy for one host graph node: identity, path and property access."""

    def __init__(self, accessor, target: Optional[Target] = None):
        self._accessor = accessor
        self.id = NONE_ID
        self.path = ""
        self._subscriptions: Dict[str, Subscription] = {}
        if target is not None:
            self.bind(target)

    def __repr__(self):
        return "EntityHandle(id=%r, path=%r)" % (self.id, self.path)

    @property
    def is_bound(self) -> bool:
        return self.id != NONE_ID

    @property
    def subscriptions(self) -> List[str]:
        return list(self._subscriptions)

    def bind(self, target: Target) -> bool:
        """Point the handle at a path or id. Returns False if nothing resolved."""
        resolved_id, resolved_path = NONE_ID, ""
        try:
            resolved = self._accessor.resolve(target)
        except Exception as e:
            logger.warning("Could not resolve %r: %s", target, e)
            resolved = None

        if resolved:
            candidate_id = coerce_id(resolved[0])
            if candidate_id:
                resolved_id = candidate_id
                resolved_path = resolved[1] or ""

        # Identity and path always move together.
        self.id, self.path = resolved_id, resolved_path
        if not self.is_bound:
            logger.debug("Target %r did not resolve", target)
        return self.is_bound

    def get(self, prop: str) -> Any:
        if not self.is_bound:
            return None
        try:
            return self._accessor.get(self.id, prop)
        except Exception as e:
            logger.warning("get %s on id %s failed: %s", prop, self.id, e)
            return None

    def value(self, prop: str, default: Any = None) -> Any:
        """Like get(), but unwraps single-element list results."""
        raw = self.get(prop)
        if isinstance(raw, (list, tuple)):
            if not raw:
                return default
            raw = raw[0] if len(raw) == 1 else list(raw)
        return default if raw is None else raw

    def set(self, prop: str, value: Any) -> bool:
        if not self.is_bound:
            return False
        try:
            self._accessor.set(self.id, prop, value)
            return True
        except Exception as e:
            logger.warning("set %s on id %s failed: %s", prop, self.id, e)
            return False

    def call(self, method: str, *args) -> Any:
        """Invoke a host function. Exceptions from the host propagate."""
        if not self.is_bound:
            return None
        return self._accessor.call(self.id, method, *args)

    def name(self) -> str:
        value = self.value("name", "")
        return value if isinstance(value, str) else str(value)

    def child_ids(self, collection: str) -> List[int]:
        """Ordered integer ids of a child collection, skipping marker tokens."""
        if not self.is_bound:
            return []
        try:
            count = self._accessor.getcount(self.id, collection)
        except Exception as e:
            logger.warning("getcount %s on id %s failed: %s", collection, self.id, e)
            return []
        if not count:
            return []

        raw = self.get(collection)
        if raw is None:
            return []
        if not isinstance(raw, (list, tuple)):
            raw = [raw]

        ids = []
        for item in raw:
            child_id = coerce_id(item)
            if child_id is not None:
                ids.append(child_id)
        return ids

    def _log_notification(self, *args):
        logger.info("%s: notification %r", self.path or self.id, args)

    def subscribe(self, prop: str, active: bool = True, callback: Optional[Callable] = None) -> bool:
        """Toggle the notification registration for ``prop``.

        Enabling an existing subscription or disabling an absent one is a no-op.
        Returns whether a subscription for ``prop`` is active afterwards.
        """
        prop = str(prop)
        existing = self._subscriptions.get(prop)

        if active and existing is None:
            if not self.is_bound:
                logger.debug("Cannot observe %s on an unbound handle", prop)
                return False
            subscription = Subscription(self._accessor, self.id, prop, callback or self._log_notification)
            if not subscription.active:
                logger.warning("%s cannot be observed on %s", prop, self.path or self.id)
                return False
            self._subscriptions[prop] = subscription
            logger.debug("%s observer created on %s", prop, self.path or self.id)
        elif not active and existing is not None:
            del self._subscriptions[prop]
            existing.detach()
            logger.debug("%s observer removed from %s", prop, self.path or self.id)

        return prop in self._subscriptions

    def release(self):
        """Unsubscribe everything, then invalidate the handle. Idempotent."""
        while self._subscriptions:
            _, subscription = self._subscriptions.popitem()
            subscription.detach()
        self.id = NONE_ID
        self.path = ""
