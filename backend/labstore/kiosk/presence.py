"""
Presence protocol: keeps the kiosk's checkout session bound to the card on the reader.

States: Idle, or ActiveSession(member). Transitions:

    Idle --card resolves to an active member--> ActiveSession(member)
    ActiveSession --card removed--> Idle
    ActiveSession --different card--> Idle (then ActiveSession(new member)
                                       if that card resolves)

Removal always ends the session, whoever it belongs to, so the next person
can never continue a stranger's cart. Unknown or inactive cards start
nothing and are only logged.

After every (re)subscribe the protocol re-reads the live session row, so a
removal that happened while disconnected or backgrounded is not lost.
Teardown cancels the subscription and fires no callbacks.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from ..errors import UnknownOrInactiveCard
from ..validation import normalize_card_uid
from .reconnect import ReconnectionManager
from .scheduler import Scheduler

logger = logging.getLogger(__name__)


class MemberRef(Protocol):
    id: int
    name: str
    is_active: bool


@dataclass(frozen=True)
class PresenceState:
    member_id: Optional[int] = None
    member_name: Optional[str] = None
    # Card that opened the session; None for sessions opened by tapping a name
    uid: Optional[str] = None

    @property
    def active(self) -> bool:
        return self.member_id is not None


IDLE = PresenceState()


class PresenceProtocol:
    def __init__(
        self,
        *,
        subscriber: Callable[[Callable[[dict], None]], Callable],
        resolve_member: Callable[[str], Optional[MemberRef]],
        on_session_start: Callable[[PresenceState], None],
        on_session_end: Callable[[PresenceState], None],
        fetch_current_uid: Callable[[], Optional[str]] | None = None,
        scheduler: Scheduler | None = None,
        retry_delay: float = 3.0,
        name: str = "presence",
    ):
        self.resolve_member = resolve_member
        self.on_session_start = on_session_start
        self.on_session_end = on_session_end
        self.fetch_current_uid = fetch_current_uid

        self._lock = threading.RLock()
        self._state = IDLE
        self._closed = False
        self._reconnect = ReconnectionManager(
            subscriber(self.handle_change),
            name=name,
            retry_delay=retry_delay,
            scheduler=scheduler,
            on_subscribed=self.resync if fetch_current_uid else None,
        )

    @property
    def state(self) -> PresenceState:
        return self._state

    @property
    def reconnection(self) -> ReconnectionManager:
        return self._reconnect

    def start(self) -> None:
        self._reconnect.start()

    def on_visibility_change(self, visible: bool) -> None:
        if visible:
            self._reconnect.resume()

    def teardown(self) -> None:
        with self._lock:
            self._closed = True
        self._reconnect.teardown()

    # -- change handling -------------------------------------------------

    def handle_change(self, payload: dict) -> None:
        """Realtime callback for a session-state row change."""
        try:
            uid = normalize_card_uid(payload.get("current_uid"))
        except Exception:
            logger.warning("Ignoring malformed session change: %r", payload)
            return
        if uid is None:
            self.on_card_removed()
        else:
            self.on_card_presented(uid)

    def resync(self) -> None:
        """Reconcile with the live session row after (re)subscribing."""
        try:
            uid = normalize_card_uid(self.fetch_current_uid())
        except Exception:
            logger.warning("Presence resync failed; waiting for next change", exc_info=True)
            return
        with self._lock:
            if self._closed:
                return
            if uid is None:
                # Name-tap sessions have no card to lose
                if self._state.uid is not None:
                    self._end_locked()
            elif uid != self._state.uid:
                self.on_card_presented(uid)

    def on_card_presented(self, uid: str) -> None:
        with self._lock:
            if self._closed:
                return
            if self._state.active and self._state.uid == uid:
                return

            member = self._lookup(uid)
            if self._state.active:
                self._end_locked()
            if member is not None:
                self._start_locked(PresenceState(member_id=member.id, member_name=member.name, uid=uid))

    def on_card_removed(self) -> None:
        with self._lock:
            if self._closed:
                return
            if self._state.active:
                self._end_locked()

    def enter_session(self, member: MemberRef) -> None:
        """Session opened by tapping a name on the select screen (no card)."""
        with self._lock:
            if self._closed or not member.is_active:
                return
            if self._state.active:
                if self._state.member_id == member.id:
                    return
                self._end_locked()
            self._start_locked(PresenceState(member_id=member.id, member_name=member.name, uid=None))

    def leave_session(self) -> None:
        """Member pressed "back to top"."""
        self.on_card_removed()

    # -- internals -------------------------------------------------------

    def _lookup(self, uid: str) -> Optional[MemberRef]:
        try:
            member = self.resolve_member(uid)
        except UnknownOrInactiveCard:
            member = None
        except Exception:
            logger.warning("Card lookup failed for presented card", exc_info=True)
            return None
        if member is None or not member.is_active:
            logger.info("Ignoring unknown or inactive card %s", uid)
            return None
        return member

    def _start_locked(self, state: PresenceState) -> None:
        self._state = state
        logger.info("Session started for member %s", state.member_id)
        self.on_session_start(state)

    def _end_locked(self) -> None:
        previous = self._state
        self._state = IDLE
        logger.info("Session ended for member %s", previous.member_id)
        self.on_session_end(previous)
