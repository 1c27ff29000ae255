from labstore.kiosk.runtime import KioskRuntime
from labstore.realtime import ChangeFeed, kiosk_topic


class FakeStore:
    """Session row + card lookups, publishing like the server does."""

    def __init__(self, feed, members):
        self.feed = feed
        self.members = members
        self.current = {}

    def set_kiosk_uid(self, kiosk_id, uid):
        previous = self.current.get(kiosk_id)
        self.current[kiosk_id] = uid
        if previous != uid:
            self.feed.publish(kiosk_topic(kiosk_id), {"id": kiosk_id, "current_uid": uid})
        return {"id": kiosk_id, "current_uid": uid}

    def get_kiosk_uid(self, kiosk_id):
        return self.current.get(kiosk_id)

    def member_for_card(self, uid):
        return self.members.get(uid)


class FakeChanges:
    def __init__(self, feed, kiosk_id):
        self.feed = feed
        self.kiosk_id = kiosk_id

    def subscriber(self, callback):
        return self.feed.subscriber(kiosk_topic(self.kiosk_id), callback)


class ScriptedBridge:
    def __init__(self):
        self.uid = None

    def read_last_uid(self):
        return self.uid


def test_card_scan_to_session_and_back(scheduler):
    feed = ChangeFeed()
    store = FakeStore(feed, {"card-123": {"id": 4, "name": "Sato", "is_active": True}})
    bridge = ScriptedBridge()
    events = []

    runtime = KioskRuntime(
        store=store,
        changes=FakeChanges(feed, 1),
        bridge=bridge,
        kiosk_id=1,
        on_session_start=lambda s: events.append(("start", s.member_name)),
        on_session_end=lambda s: events.append(("end", s.member_name)),
        poll_interval=1.0,
        scheduler=scheduler,
    )
    runtime.start()

    bridge.uid = "card-123"
    scheduler.advance(1.0)
    assert runtime.presence.state.member_id == 4

    bridge.uid = None
    scheduler.advance(1.0)

    runtime.stop()
    assert events == [("start", "Sato"), ("end", "Sato")]
    assert scheduler.pending == []
    assert feed.channel_names() == []


def test_close_stops_and_closes_every_client(scheduler):
    feed = ChangeFeed()
    closed = []

    class ClosingStore(FakeStore):
        def close(self):
            closed.append("store")

    class ClosingChanges(FakeChanges):
        def close(self):
            closed.append("changes")

    class ClosingBridge(ScriptedBridge):
        def close(self):
            closed.append("bridge")

    runtime = KioskRuntime(
        store=ClosingStore(feed, {}),
        changes=ClosingChanges(feed, 1),
        bridge=ClosingBridge(),
        kiosk_id=1,
        on_session_start=lambda s: None,
        on_session_end=lambda s: None,
        scheduler=scheduler,
    )
    runtime.start()
    runtime.close()

    assert sorted(closed) == ["bridge", "changes", "store"]
    assert scheduler.pending == []
    assert feed.channel_names() == []
