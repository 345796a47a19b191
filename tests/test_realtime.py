from fitmatch.models import Message
from fitmatch.realtime import MessageFeed, SubscriptionRegistry

from conftest import NOW


def _message(message_id="m1"):
    return Message(id=message_id, sender_id="a", text="hi", timestamp=NOW)


def test_feed_delivers_only_to_matching_activity():
    feed = MessageFeed()
    seen = []
    feed.subscribe("act-1", lambda aid, m: seen.append((aid, m.id)))
    feed.publish("act-2", _message("other"))
    feed.publish("act-1", _message("m1"))
    assert seen == [("act-1", "m1")]


def test_closed_subscription_receives_nothing():
    feed = MessageFeed()
    seen = []
    sub = feed.subscribe("act-1", lambda aid, m: seen.append(m.id))
    sub.close()
    sub.close()
    feed.publish("act-1", _message())
    sub.deliver(_message("late"))
    assert seen == []
    assert feed.subscriber_count("act-1") == 0


def test_failing_callback_does_not_block_others(caplog):
    feed = MessageFeed()
    seen = []

    def broken(aid, m):
        raise RuntimeError("boom")

    feed.subscribe("act-1", broken)
    feed.subscribe("act-1", lambda aid, m: seen.append(m.id))
    feed.publish("act-1", _message())
    assert seen == ["m1"]
    assert "Subscriber callback failed" in caplog.text


def test_registry_reference_counts_upstream():
    feed = MessageFeed()
    seen = []
    registry = SubscriptionRegistry(feed.subscribe, lambda aid, m: seen.append(m.id))

    first = registry.acquire("act-1")
    second = registry.acquire("act-1")
    assert feed.subscriber_count("act-1") == 1

    first.close()
    feed.publish("act-1", _message("m1"))
    assert seen == ["m1"]

    second.close()
    feed.publish("act-1", _message("m2"))
    assert seen == ["m1"]
    assert registry.active() == []
    assert feed.subscriber_count("act-1") == 0


def test_close_all_releases_everything():
    feed = MessageFeed()
    registry = SubscriptionRegistry(feed.subscribe, lambda aid, m: None)
    registry.acquire("act-1")
    registry.acquire("act-2")
    registry.close_all()
    assert registry.active() == []
    assert feed.subscriber_count("act-1") == feed.subscriber_count("act-2") == 0
