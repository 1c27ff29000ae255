"""
Wires one kiosk: card-reader relay -> session state -> presence protocol.

The navigation hooks are the only UI contact points: on_session_start opens
the member's checkout screen, on_session_end returns to the select screen.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from .card_reader import CardReaderBridge, CardScanRelay
from .client import HttpChangeSource, MemberView, StoreClient
from .presence import PresenceProtocol, PresenceState
from .scheduler import Scheduler

logger = logging.getLogger(__name__)


class KioskRuntime:
    def __init__(
        self,
        *,
        store: StoreClient,
        changes: HttpChangeSource,
        bridge: CardReaderBridge,
        kiosk_id: int,
        on_session_start: Callable[[PresenceState], None],
        on_session_end: Callable[[PresenceState], None],
        retry_delay: float = 3.0,
        poll_interval: float = 1.0,
        scheduler: Scheduler | None = None,
    ):
        self.store = store
        self.changes = changes
        self.bridge = bridge
        self.kiosk_id = kiosk_id
        self.relay = CardScanRelay(
            bridge,
            lambda uid: store.set_kiosk_uid(kiosk_id, uid),
            interval=poll_interval,
            scheduler=scheduler,
        )
        self.presence = PresenceProtocol(
            subscriber=changes.subscriber,
            resolve_member=self._resolve_member,
            on_session_start=on_session_start,
            on_session_end=on_session_end,
            fetch_current_uid=lambda: store.get_kiosk_uid(kiosk_id),
            scheduler=scheduler,
            retry_delay=retry_delay,
            name=f"kiosk-{kiosk_id}-presence",
        )

    def _resolve_member(self, uid: str) -> Optional[MemberView]:
        data = self.store.member_for_card(uid)
        return MemberView(data) if data else None

    def start(self) -> None:
        self.presence.start()
        self.relay.start()
        logger.info("Kiosk %s runtime started", self.kiosk_id)

    def stop(self) -> None:
        self.relay.stop()
        self.presence.teardown()
        logger.info("Kiosk %s runtime stopped", self.kiosk_id)

    def close(self) -> None:
        """Stop, then close the HTTP clients this runtime was given; it owns them from here on."""
        self.stop()
        self.bridge.close()
        self.changes.close()
        self.store.close()
