"""
Card-reader bridge client and relay.

The bridge is a local process owning the reader hardware. GET /scan returns
{"status": "found", "uid": "..."} while a card is on the reader and any
other status otherwise. The bridge is unreliable: every failure reads as
"no card present".

CardScanRelay polls the bridge and pushes each change of UID (including
removal) into the kiosk session state.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

import httpx

from ..validation import normalize_card_uid
from .scheduler import Scheduler, TimerHandle, default_scheduler

logger = logging.getLogger(__name__)


class CardReaderBridge:
    def __init__(self, base_url: str, *, client: httpx.Client | None = None, timeout: float = 1.0):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.Client(timeout=timeout)

    def read_last_uid(self) -> Optional[str]:
        try:
            response = self._client.get(f"{self.base_url}/scan")
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.debug("Card reader unavailable: %s", exc)
            return None
        if not isinstance(data, dict) or data.get("status") != "found":
            return None
        try:
            return normalize_card_uid(data.get("uid"))
        except Exception:
            return None

    def close(self) -> None:
        self._client.close()


class CardScanRelay:
    def __init__(
        self,
        bridge: CardReaderBridge,
        publish: Callable[[Optional[str]], object],
        *,
        interval: float = 1.0,
        scheduler: Scheduler | None = None,
    ):
        self.bridge = bridge
        self.publish = publish
        self.interval = interval
        self.scheduler = scheduler or default_scheduler

        self._lock = threading.Lock()
        self._timer: TimerHandle | None = None
        self._running = False
        # Sentinel so the first poll always publishes
        self._last: object = object()

    def start(self) -> None:
        with self._lock:
            if self._running:
                return
            self._running = True
        self.poll()

    def stop(self) -> None:
        with self._lock:
            self._running = False
            if self._timer is not None:
                self._timer.cancel()
            self._timer = None

    def poll(self) -> None:
        uid = self.bridge.read_last_uid()
        if uid != self._last:
            try:
                self.publish(uid)
                self._last = uid
            except Exception:
                # Leave _last unchanged so the next poll retries the write
                logger.warning("Could not publish card change", exc_info=True)
        with self._lock:
            if self._running:
                self._timer = self.scheduler.call_later(self.interval, self.poll)
