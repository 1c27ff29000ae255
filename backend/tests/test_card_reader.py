import httpx
import pytest

from labstore.kiosk.card_reader import CardReaderBridge, CardScanRelay


def bridge_returning(handler):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return CardReaderBridge("http://reader.local", client=client)


def test_found_card_returns_uid():
    bridge = bridge_returning(lambda request: httpx.Response(200, json={"status": "found", "uid": " card-123 "}))
    assert bridge.read_last_uid() == "card-123"


@pytest.mark.parametrize("response", [
    httpx.Response(200, json={"status": "not_found"}),
    httpx.Response(200, json={"status": "found", "uid": ""}),
    httpx.Response(200, text="not json"),
    httpx.Response(500, json={"status": "error"}),
    httpx.Response(200, json=["unexpected"]),
])
def test_anything_else_reads_as_no_card(response):
    bridge = bridge_returning(lambda request: response)
    assert bridge.read_last_uid() is None


def test_unreachable_bridge_reads_as_no_card():
    def _handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    bridge = bridge_returning(_handler)
    assert bridge.read_last_uid() is None


class FakeBridge:
    def __init__(self, uids):
        self.uids = list(uids)

    def read_last_uid(self):
        return self.uids.pop(0) if len(self.uids) > 1 else self.uids[0]


def test_relay_publishes_changes_only(scheduler):
    published = []
    bridge = FakeBridge([None, None, "card-1", "card-1", None])
    relay = CardScanRelay(bridge, published.append, interval=1.0, scheduler=scheduler)

    relay.start()
    scheduler.advance(4.0)

    assert published == [None, "card-1", None]
    relay.stop()
    assert scheduler.pending == []


def test_relay_retries_failed_publish(scheduler):
    attempts = []

    def _publish(uid):
        attempts.append(uid)
        if len(attempts) == 1:
            raise ConnectionError("store down")

    relay = CardScanRelay(FakeBridge(["card-1"]), _publish, interval=1.0, scheduler=scheduler)
    relay.start()
    scheduler.advance(1.0)
    scheduler.advance(1.0)
    relay.stop()

    assert attempts == ["card-1", "card-1"]


def test_dead_bridge_clears_the_session(scheduler):
    reader_up = [True]

    def _handler(request):
        if reader_up[0]:
            return httpx.Response(200, json={"status": "found", "uid": "card-1"})
        raise httpx.ConnectError("reader unplugged", request=request)

    published = []
    relay = CardScanRelay(bridge_returning(_handler), published.append, interval=1.0, scheduler=scheduler)
    relay.start()
    reader_up[0] = False
    scheduler.advance(1.0)
    relay.stop()

    assert published == ["card-1", None]
