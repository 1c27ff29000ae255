import pytest

from labstore.errors import DuplicateCardBinding, StorageUnavailable
from labstore.kiosk.registration import (
    AWAITING,
    BOUND,
    CANCELLED,
    CONFLICT,
    FAILED,
    CardRegistration,
)
from labstore.realtime import ChangeFeed, kiosk_topic

TOPIC = kiosk_topic(1)


class FakeBindings:
    def __init__(self, existing=None):
        self.owners = dict(existing or {})
        self.calls = []
        self.error = None

    def bind(self, member_id, uid):
        self.calls.append((member_id, uid))
        if self.error is not None:
            raise self.error
        owner = self.owners.get(uid)
        if owner is not None and owner != member_id:
            raise DuplicateCardBinding(uid, owner)
        self.owners[uid] = member_id
        return {"id": member_id}


@pytest.fixture
def feed():
    return ChangeFeed()


@pytest.fixture
def bindings():
    return FakeBindings(existing={"X": 1})


@pytest.fixture
def results():
    return []


@pytest.fixture
def registration(feed, bindings, results, scheduler):
    return CardRegistration(
        subscriber=lambda callback: feed.subscriber(TOPIC, callback),
        bind_card=bindings.bind,
        on_result=lambda reg: results.append(reg.state),
        scheduler=scheduler,
    )


def test_binds_exactly_one_next_card(registration, feed, bindings, results):
    registration.begin(2)
    assert registration.state == AWAITING
    assert len(feed.channel_names(TOPIC)) == 1

    feed.publish(TOPIC, {"current_uid": None})
    feed.publish(TOPIC, {"current_uid": "card-9"})
    feed.publish(TOPIC, {"current_uid": "card-10"})

    assert registration.state == BOUND
    assert registration.uid == "card-9"
    assert bindings.calls == [(2, "card-9")]
    assert bindings.owners["card-9"] == 2
    assert results == [BOUND]
    assert feed.channel_names(TOPIC) == []


def test_card_owned_by_someone_else_is_a_conflict(registration, feed, bindings, results):
    registration.begin(2)

    feed.publish(TOPIC, {"current_uid": "X"})

    assert registration.state == CONFLICT
    assert isinstance(registration.error, DuplicateCardBinding)
    assert registration.error.bound_member_id == 1
    assert bindings.owners["X"] == 1
    assert results == [CONFLICT]


def test_storage_failure_is_reported(registration, feed, bindings):
    bindings.error = StorageUnavailable()
    registration.begin(2)

    feed.publish(TOPIC, {"current_uid": "card-1"})

    assert registration.state == FAILED
    assert isinstance(registration.error, StorageUnavailable)


def test_cancel_has_no_side_effects(registration, feed, bindings, results):
    registration.begin(2)

    registration.cancel()
    feed.publish(TOPIC, {"current_uid": "card-9"})

    assert registration.state == CANCELLED
    assert bindings.calls == []
    assert results == []
    assert feed.channel_names(TOPIC) == []


def test_begin_again_replaces_previous_handshake(registration, feed, bindings):
    registration.begin(2)
    registration.begin(3)

    assert len(feed.channel_names(TOPIC)) == 1
    feed.publish(TOPIC, {"current_uid": "card-7"})

    assert bindings.calls == [(3, "card-7")]


def test_waits_across_reconnects(registration, feed, bindings, scheduler):
    registration.begin(2)
    feed.fail(TOPIC)

    scheduler.advance(3.0)
    feed.publish(TOPIC, {"current_uid": "card-2"})

    assert registration.state == BOUND
    assert bindings.calls == [(2, "card-2")]
