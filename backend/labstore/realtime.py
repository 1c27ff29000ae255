# Overview: In-process change feed (publish/subscribe) for row-change notifications.

"""
Change feed semantics

- Topics are plain strings; kiosk session state uses kiosk_topic(kiosk_id).
- A subscription is a named Channel. Names are unique among live channels so
  a reconnect can never silently reuse a stale handle.
- on_status(status, error) reports SUBSCRIBED right after registration and
  CHANNEL_ERROR when the feed drops the channel (fail()). unsubscribe() is
  silent.
- publish() delivers synchronously on the publishing thread, outside the
  feed lock. A raising listener is logged and does not affect the others.
"""

from __future__ import annotations

import itertools
import logging
import queue
import threading
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

SUBSCRIBED = "SUBSCRIBED"
CHANNEL_ERROR = "CHANNEL_ERROR"
TIMED_OUT = "TIMED_OUT"
CLOSED = "CLOSED"

ChangeCallback = Callable[[dict], None]
StatusCallback = Callable[[str, Optional[Exception]], None]


def kiosk_topic(kiosk_id: int) -> str:
    return f"kiosk_status:{kiosk_id}"


class Channel:
    """Live subscription handle."""

    def __init__(self, feed: "ChangeFeed", name: str, topic: str,
                 callback: ChangeCallback, on_status: StatusCallback | None):
        self.feed = feed
        self.name = name
        self.topic = topic
        self.callback = callback
        self.on_status = on_status
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self.active = False
            self.feed._remove(self)

    def _status(self, status: str, error: Exception | None = None) -> None:
        if self.on_status is None:
            return
        try:
            self.on_status(status, error)
        except Exception:
            logger.exception("Status callback of channel %s failed", self.name)

    def __repr__(self) -> str:
        return f"<Channel name={self.name!r} topic={self.topic!r} active={self.active}>"


class ChangeFeed:
    def __init__(self):
        self._lock = threading.Lock()
        self._channels: dict[str, Channel] = {}
        self._anon = itertools.count(1)

    def subscribe(
        self,
        topic: str,
        callback: ChangeCallback,
        *,
        name: str | None = None,
        on_status: StatusCallback | None = None,
    ) -> Channel:
        with self._lock:
            if name is None:
                name = f"anon-{next(self._anon)}"
            if name in self._channels:
                raise ValueError(f"channel {name!r} already subscribed")
            channel = Channel(self, name, topic, callback, on_status)
            self._channels[name] = channel
        channel._status(SUBSCRIBED)
        return channel

    def subscriber(self, topic: str, callback: ChangeCallback):
        """Adapt this feed to the subscribe(name, on_status) -> handle shape used by reconnection."""
        def _subscribe(name: str, on_status: StatusCallback) -> Channel:
            return self.subscribe(topic, callback, name=name, on_status=on_status)
        return _subscribe

    def _remove(self, channel: Channel) -> None:
        with self._lock:
            if self._channels.get(channel.name) is channel:
                del self._channels[channel.name]

    def publish(self, topic: str, payload: dict[str, Any]) -> int:
        """Deliver payload to every live channel on topic. Returns deliveries attempted."""
        with self._lock:
            targets = [c for c in self._channels.values() if c.topic == topic]
        for channel in targets:
            if not channel.active:
                continue
            try:
                channel.callback(dict(payload))
            except Exception:
                logger.exception("Listener %s failed on %s", channel.name, topic)
        return len(targets)

    def fail(self, topic: str | None = None, error: Exception | None = None) -> int:
        """Drop channels (all, or one topic) as on a lost connection; they get CHANNEL_ERROR."""
        with self._lock:
            dropped = [c for c in self._channels.values() if topic is None or c.topic == topic]
            for channel in dropped:
                del self._channels[channel.name]
                channel.active = False
        for channel in dropped:
            channel._status(CHANNEL_ERROR, error)
        return len(dropped)

    def listen(self, topic: str, *, maxsize: int = 100) -> tuple[Channel, "queue.Queue[dict]"]:
        """Queue-backed subscription for streaming endpoints; oldest events are dropped when full."""
        q: "queue.Queue[dict]" = queue.Queue(maxsize=maxsize)

        def _put(payload: dict) -> None:
            while True:
                try:
                    q.put_nowait(payload)
                    return
                except queue.Full:
                    try:
                        q.get_nowait()
                    except queue.Empty:
                        pass

        return self.subscribe(topic, _put), q

    def channel_names(self, topic: str | None = None) -> list[str]:
        with self._lock:
            return sorted(n for n, c in self._channels.items() if topic is None or c.topic == topic)


change_feed = ChangeFeed()
