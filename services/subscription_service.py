"""
Subscription hub — push notifications for entity changes.

Stores publish every write of an entity under its key; subscribers receive
the written value. Callbacks for the same key are delivered in publish
order and never interleave.
"""

import itertools
import threading
from typing import Any, Callable, Optional

import structlog

logger = structlog.get_logger(__name__)

Callback = Callable[[Any], None]


class Subscription:
    """Handle returned by subscribe(); cancel() stops further deliveries."""

    def __init__(self, hub: "SubscriptionHub", key: str, token: int):
        self._hub = hub
        self._key = key
        self._token = token
        self._active = True

    @property
    def key(self) -> str:
        return self._key

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        """Stop deliveries. Safe to call more than once."""
        if self._active:
            self._active = False
            self._hub._remove(self._key, self._token)

    def __repr__(self) -> str:
        return f"Subscription(key={self._key!r}, active={self._active})"


class SubscriptionHub:
    """Thread-safe registry of per-key callbacks."""

    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: dict[str, dict[int, Callback]] = {}
        self._key_locks: dict[str, threading.Lock] = {}
        self._tokens = itertools.count(1)

    def subscribe(self, key: str, callback: Callback) -> Subscription:
        """
        Register a callback for one entity.

        Args:
            key: Entity key (e.g. an order id)
            callback: Called with each published value

        Returns:
            Subscription handle
        """
        with self._lock:
            token = next(self._tokens)
            self._subscribers.setdefault(key, {})[token] = callback
            self._key_locks.setdefault(key, threading.Lock())

        logger.debug("subscription_added", key=key)
        return Subscription(self, key, token)

    def publish(self, key: str, value: Any) -> int:
        """
        Deliver a value to every subscriber of `key`.

        A failing callback is logged and does not stop delivery to the others.

        Returns:
            Number of callbacks invoked
        """
        with self._lock:
            key_lock = self._key_locks.get(key)
        if key_lock is None:
            return 0

        delivered = 0
        with key_lock:
            with self._lock:
                callbacks = list(self._subscribers.get(key, {}).values())
            for callback in callbacks:
                try:
                    callback(value)
                    delivered += 1
                except Exception as e:
                    logger.error(
                        "subscription_callback_failed",
                        key=key,
                        error=str(e),
                        error_type=type(e).__name__
                    )
        return delivered

    def subscriber_count(self, key: Optional[str] = None) -> int:
        with self._lock:
            if key is not None:
                return len(self._subscribers.get(key, {}))
            return sum(len(callbacks) for callbacks in self._subscribers.values())

    def _remove(self, key: str, token: int) -> None:
        with self._lock:
            callbacks = self._subscribers.get(key)
            if callbacks is None:
                return
            callbacks.pop(token, None)
            if not callbacks:
                del self._subscribers[key]
                self._key_locks.pop(key, None)
        logger.debug("subscription_cancelled", key=key)
