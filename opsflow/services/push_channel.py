"""
Real-time push channel.

The notification service talks to a ``PushChannel`` port; which transport sits
behind it is decided once at app start from ``PUSH_CHANNEL_URL``:

    redis://...  → RedisPushChannel  (PUBLISH on ``user_<id>``; a socket
                                      gateway subscribes and forwards)
    memory://    → InMemoryPushChannel (per-user event lists, dev/testing)

Every transport raises ``DeliveryError`` on failure; callers decide whether to
absorb it. "No live connection" is not a failure, the event is simply dropped.
"""

import json
import logging
import threading
from collections import defaultdict

from opsflow.core.exceptions import DeliveryError

logger = logging.getLogger(__name__)


def user_channel(user_id: int) -> str:
    return f"user_{user_id}"


class PushChannel:
    """Port: best-effort delivery of one event to one user's live sessions."""

    name = "abstract"

    def publish_to_user(self, user_id: int, event_name: str, payload: dict) -> None:
        raise NotImplementedError

    def ping(self) -> bool:
        return True


class InMemoryPushChannel(PushChannel):
    """Records events per user. Used in development and tests."""

    name = "memory"

    def __init__(self):
        self._events: dict[int, list[tuple[str, dict]]] = defaultdict(list)
        self._lock = threading.Lock()

    def publish_to_user(self, user_id, event_name, payload):
        with self._lock:
            self._events[user_id].append((event_name, payload))

    def events_for(self, user_id: int, event_name: str | None = None) -> list[tuple[str, dict]]:
        with self._lock:
            events = list(self._events.get(user_id, []))
        if event_name is not None:
            events = [e for e in events if e[0] == event_name]
        return events

    def clear(self):
        with self._lock:
            self._events.clear()


class RedisPushChannel(PushChannel):
    """Publishes ``{"event": ..., "data": ...}`` JSON on ``user_<id>``."""

    name = "redis"

    def __init__(self, client):
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisPushChannel":
        import redis as _redis

        return cls(_redis.from_url(url, decode_responses=True))

    def publish_to_user(self, user_id, event_name, payload):
        message = json.dumps({"event": event_name, "data": payload}, default=str)
        try:
            receivers = self._client.publish(user_channel(user_id), message)
        except Exception as exc:
            raise DeliveryError(user_id, event_name, exc) from exc
        if not receivers:
            logger.debug("No live session for user %s, dropped '%s'", user_id, event_name)

    def ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except Exception:
            logger.warning("Push channel redis ping failed", exc_info=True)
            return False


def build_push_channel(url: str | None) -> PushChannel:
    """Select the transport for ``url`` (``memory://`` when unset)."""
    if not url or url.startswith("memory://"):
        logger.info("Push channel: in-memory")
        return InMemoryPushChannel()
    logger.info("Push channel: redis at %s", url.split("@")[-1])
    return RedisPushChannel.from_url(url)
