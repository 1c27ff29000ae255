"""
Reconnection manager shared by every realtime listener on the kiosk.

Given subscribe(name, on_status) -> handle (handle.unsubscribe()), it keeps
exactly one live subscription:

- every (re)subscribe uses a fresh, unique channel name
- CHANNEL_ERROR / TIMED_OUT / CLOSED on the current channel schedules exactly
  one retry after retry_delay, replacing any retry already pending
- resume() (page visible again) re-subscribes immediately
- teardown() cancels the live subscription and the pending retry
  synchronously; callbacks from older channels or a late-firing timer are
  ignored afterwards, so nothing can resurrect a torn-down listener
"""

from __future__ import annotations

import logging
import threading
import uuid
from typing import Callable, Optional

from ..realtime import CHANNEL_ERROR, CLOSED, SUBSCRIBED, TIMED_OUT
from .scheduler import Scheduler, TimerHandle, default_scheduler

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = {CHANNEL_ERROR, TIMED_OUT, CLOSED}


class ReconnectionManager:
    def __init__(
        self,
        subscribe: Callable[[str, Callable[[str, Optional[Exception]], None]], object],
        *,
        name: str = "realtime",
        retry_delay: float = 3.0,
        scheduler: Scheduler | None = None,
        max_retries: int | None = None,
        on_subscribed: Callable[[], None] | None = None,
        on_give_up: Callable[[], None] | None = None,
    ):
        self._subscribe = subscribe
        self.name = name
        self.retry_delay = retry_delay
        self.scheduler = scheduler or default_scheduler
        self.max_retries = max_retries
        self.on_subscribed = on_subscribed
        self.on_give_up = on_give_up

        self._lock = threading.Lock()
        self._handle = None
        self._channel_name: str | None = None
        self._generation = 0
        self._retry_timer: TimerHandle | None = None
        self._retry_token: object | None = None
        self._retries = 0
        self._started = False
        self._closed = False

    @property
    def channel_name(self) -> str | None:
        return self._channel_name

    @property
    def retries(self) -> int:
        return self._retries

    @property
    def retry_pending(self) -> bool:
        return self._retry_token is not None

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        with self._lock:
            if self._closed:
                raise RuntimeError("ReconnectionManager was torn down")
            if self._started:
                return
            self._started = True
        self._connect()

    def resume(self) -> None:
        """Force a fresh subscription (e.g. the page/tab became visible again)."""
        if not self._started or self._closed:
            return
        logger.info("%s: resuming subscription", self.name)
        self._connect()

    def teardown(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._generation += 1
            self._cancel_retry_locked()
            handle, self._handle = self._handle, None
            self._channel_name = None
        if handle is not None:
            handle.unsubscribe()

    def _cancel_retry_locked(self) -> None:
        if self._retry_timer is not None:
            self._retry_timer.cancel()
        self._retry_timer = None
        self._retry_token = None

    def _connect(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._cancel_retry_locked()
            old, self._handle = self._handle, None
            self._generation += 1
            generation = self._generation
            channel_name = f"{self.name}-{generation}-{uuid.uuid4().hex[:8]}"
            self._channel_name = channel_name

        if old is not None:
            old.unsubscribe()

        def _on_status(status: str, error: Exception | None = None) -> None:
            self._on_status(generation, status, error)

        try:
            handle = self._subscribe(channel_name, _on_status)
        except Exception as exc:
            logger.warning("%s: subscribe failed: %s", self.name, exc)
            self._on_status(generation, CHANNEL_ERROR, exc)
            return

        with self._lock:
            stale = self._closed or generation != self._generation
            if not stale:
                self._handle = handle
        if stale and handle is not None:
            handle.unsubscribe()

    def _on_status(self, generation: int, status: str, error: Exception | None) -> None:
        with self._lock:
            if self._closed or generation != self._generation:
                return
        if status == SUBSCRIBED:
            with self._lock:
                self._retries = 0
            logger.debug("%s: subscribed as %s", self.name, self._channel_name)
            if self.on_subscribed is not None:
                try:
                    self.on_subscribed()
                except Exception:
                    logger.exception("%s: on_subscribed callback failed", self.name)
        elif status in RETRYABLE_STATUSES:
            logger.warning("%s: channel %s (%s)", self.name, status, error)
            self._schedule_retry(generation)

    def _schedule_retry(self, generation: int) -> None:
        give_up = False
        with self._lock:
            if self._closed or generation != self._generation:
                return
            if self.max_retries is not None and self._retries >= self.max_retries:
                give_up = True
            else:
                self._cancel_retry_locked()
                self._retries += 1
                token = object()
                self._retry_token = token
                self._retry_timer = self.scheduler.call_later(
                    self.retry_delay, lambda: self._on_retry_timer(token)
                )
        if give_up:
            logger.error("%s: giving up after %d retries", self.name, self._retries)
            if self.on_give_up is not None:
                self.on_give_up()

    def _on_retry_timer(self, token: object) -> None:
        with self._lock:
            if self._closed or token is not self._retry_token:
                return
            self._retry_timer = None
            self._retry_token = None
        logger.info("%s: reconnecting (retry %d)", self.name, self._retries)
        self._connect()
