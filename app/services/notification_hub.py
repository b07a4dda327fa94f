"""
Notification Hub — per-recipient change versions for push/poll clients.

The hub carries no payload. Every time notifications change for a recipient
their version goes up; clients either poll ``/notifications/version`` or
subscribe a callback, and re-fetch the list when the version moves. The
unread count itself is always derived from the notifications table.

The hub is created by the app factory, stored in
``app.extensions["notification_hub"]`` and has an explicit lifecycle::

    hub = NotificationHub()
    hub.start()
    unsubscribe = hub.subscribe(42, lambda recipient_id, version: ...)
    hub.bump(42)
    unsubscribe()
    hub.stop()
"""

import logging
import threading

from flask import current_app

logger = logging.getLogger(__name__)

EXTENSION_KEY = "notification_hub"


class NotificationHub:
    """Thread-safe change-version registry with subscriber callbacks."""

    def __init__(self):
        self._lock = threading.Lock()
        self._versions: dict[int, int] = {}
        self._subscribers: dict[int, list] = {}
        self._running = False

    # ── Lifecycle ─────────────────────────────────────────────────────────

    def start(self):
        with self._lock:
            self._running = True
        logger.debug("Notification hub started")

    def stop(self):
        """Stop delivering callbacks and drop every subscription."""
        with self._lock:
            self._running = False
            self._subscribers.clear()
        logger.debug("Notification hub stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    # ── Versions ──────────────────────────────────────────────────────────

    def version(self, recipient_id: int) -> int:
        with self._lock:
            return self._versions.get(recipient_id, 0)

    def bump(self, recipient_id: int) -> int:
        """Advance the recipient's version and notify subscribers."""
        with self._lock:
            new_version = self._versions.get(recipient_id, 0) + 1
            self._versions[recipient_id] = new_version
            callbacks = list(self._subscribers.get(recipient_id, ())) if self._running else []

        for callback in callbacks:
            try:
                callback(recipient_id, new_version)
            except Exception:
                logger.warning(
                    "Notification hub subscriber failed for recipient %s",
                    recipient_id, exc_info=True,
                )
        return new_version

    # ── Subscriptions ─────────────────────────────────────────────────────

    def subscribe(self, recipient_id: int, callback):
        """Register *callback(recipient_id, version)*; returns an unsubscribe function."""
        with self._lock:
            if not self._running:
                raise RuntimeError("NotificationHub is not running; call start() first")
            self._subscribers.setdefault(recipient_id, []).append(callback)

        def _unsubscribe():
            self.unsubscribe(recipient_id, callback)

        return _unsubscribe

    def unsubscribe(self, recipient_id: int, callback) -> bool:
        with self._lock:
            callbacks = self._subscribers.get(recipient_id)
            if not callbacks or callback not in callbacks:
                return False
            callbacks.remove(callback)
            if not callbacks:
                del self._subscribers[recipient_id]
            return True

    def subscriber_count(self, recipient_id: int) -> int:
        with self._lock:
            return len(self._subscribers.get(recipient_id, ()))


def get_hub() -> NotificationHub | None:
    """Return the hub bound to the current app, if any."""
    return current_app.extensions.get(EXTENSION_KEY)
