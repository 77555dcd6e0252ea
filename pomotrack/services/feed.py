import logging
import threading
from typing import Any, Callable

logger = logging.getLogger(__name__)

Listener = Callable[[list[Any]], None]
Loader = Callable[[str], list[Any]]


class Subscription:
    """Handle returned by ChangeFeed.subscribe. Unsubscribing twice is harmless."""

    def __init__(self, feed: "ChangeFeed", owner_id: str, listener: Listener):
        self._feed = feed
        self.owner_id = owner_id
        self.listener = listener
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self.active = False
            self._feed._remove(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc) -> None:
        self.unsubscribe()


class ChangeFeed:
    """
    Per-owner change channel for one collection.

    Every publish delivers the owner's full current list (a snapshot),
    so the latest delivery always supersedes earlier ones.
    """

    def __init__(self, name: str, loader: Loader):
        self.name = name
        self._loader = loader
        self._lock = threading.Lock()
        self._subscriptions: dict[str, list[Subscription]] = {}

    def subscribe(self, owner_id: str, listener: Listener) -> Subscription:
        subscription = Subscription(self, owner_id, listener)
        with self._lock:
            self._subscriptions.setdefault(owner_id, []).append(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            subs = self._subscriptions.get(subscription.owner_id, [])
            if subscription in subs:
                subs.remove(subscription)
            if not subs:
                self._subscriptions.pop(subscription.owner_id, None)

    def subscriber_count(self, owner_id: str) -> int:
        with self._lock:
            return len(self._subscriptions.get(owner_id, []))

    def load(self, owner_id: str) -> list[Any]:
        """Current list for an owner, without notifying anyone"""
        return self._loader(owner_id)

    def publish(self, owner_id: str) -> None:
        with self._lock:
            subs = list(self._subscriptions.get(owner_id, []))
        if not subs:
            return

        snapshot = self.load(owner_id)
        for subscription in subs:
            if not subscription.active:
                continue
            try:
                subscription.listener(snapshot)
            except Exception:
                # One broken listener must not starve the others
                logger.exception("%s listener failed for owner %s", self.name, owner_id)
