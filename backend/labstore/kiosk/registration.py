"""
Card registration handshake (admin).

begin(member_id) waits for exactly one next presented card UID and binds it
to that member. A UID already bound to someone else ends in CONFLICT with
the DuplicateCardBinding error kept on the handshake; nothing is
overwritten. cancel() tears the listener down with no other effect.

There is no automatic timeout: an abandoned handshake keeps waiting until
the admin cancels it.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from ..errors import DuplicateCardBinding, StoreError
from ..validation import normalize_card_uid
from .reconnect import ReconnectionManager
from .scheduler import Scheduler

logger = logging.getLogger(__name__)

IDLE = "IDLE"
AWAITING = "AWAITING"
BINDING = "BINDING"
BOUND = "BOUND"
CONFLICT = "CONFLICT"
FAILED = "FAILED"
CANCELLED = "CANCELLED"


class CardRegistration:
    def __init__(
        self,
        *,
        subscriber: Callable[[Callable[[dict], None]], Callable],
        bind_card: Callable[[int, str], object],
        on_result: Callable[["CardRegistration"], None] | None = None,
        scheduler: Scheduler | None = None,
        retry_delay: float = 3.0,
    ):
        self._subscriber = subscriber
        self._bind_card = bind_card
        self.on_result = on_result
        self.scheduler = scheduler
        self.retry_delay = retry_delay

        self._lock = threading.Lock()
        self._manager: ReconnectionManager | None = None
        self.state = IDLE
        self.member_id: Optional[int] = None
        self.uid: Optional[str] = None
        self.error: Optional[StoreError] = None

    @property
    def awaiting(self) -> bool:
        return self.state == AWAITING

    def begin(self, member_id: int) -> None:
        self.cancel()
        manager = ReconnectionManager(
            self._subscriber(self._on_change),
            name=f"card-registration-{member_id}",
            retry_delay=self.retry_delay,
            scheduler=self.scheduler,
        )
        with self._lock:
            self.state = AWAITING
            self.member_id = member_id
            self.uid = None
            self.error = None
            self._manager = manager
        logger.info("Awaiting card scan for member %s", member_id)
        manager.start()

    def cancel(self) -> None:
        with self._lock:
            manager, self._manager = self._manager, None
            if self.state == AWAITING:
                self.state = CANCELLED
        if manager is not None:
            manager.teardown()

    def _on_change(self, payload: dict) -> None:
        try:
            uid = normalize_card_uid(payload.get("current_uid"))
        except StoreError:
            return
        if uid is None:
            return

        with self._lock:
            if self.state != AWAITING:
                return
            self.state = BINDING
            self.uid = uid
            member_id = self.member_id
            manager, self._manager = self._manager, None
        if manager is not None:
            manager.teardown()

        try:
            self._bind_card(member_id, uid)
        except DuplicateCardBinding as exc:
            logger.warning("Card already bound to member %s", exc.bound_member_id)
            self._finish(CONFLICT, exc)
        except StoreError as exc:
            logger.warning("Card binding failed: %s", exc)
            self._finish(FAILED, exc)
        else:
            logger.info("Card bound to member %s", member_id)
            self._finish(BOUND, None)

    def _finish(self, state: str, error: StoreError | None) -> None:
        with self._lock:
            self.state = state
            self.error = error
        if self.on_result is not None:
            self.on_result(self)
