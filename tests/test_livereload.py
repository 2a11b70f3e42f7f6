from sitetasks.livereload import LiveReloadBus, default_bus


def test_publish_reaches_subscribers():
    bus = LiveReloadBus()
    received = []
    bus.subscribe(received.append)
    bus.subscribe(received.append)  # duplicate subscription is ignored
    assert bus.subscriber_count == 1

    bus.publish({"type": "reload"})
    assert received == [{"type": "reload"}]

    bus.unsubscribe(received.append)
    bus.publish({"type": "css"})
    assert received == [{"type": "reload"}]
    assert bus.subscriber_count == 0


def test_publish_without_subscribers_is_noop():
    LiveReloadBus().publish({"type": "css", "paths": []})


def test_failing_subscriber_does_not_block_others(caplog):
    bus = LiveReloadBus()
    received = []

    def broken(event):
        raise RuntimeError("socket closed")

    bus.subscribe(broken)
    bus.subscribe(received.append)
    bus.publish({"type": "reload"})
    assert received == [{"type": "reload"}]
    assert "Live reload subscriber failed" in caplog.text


def test_unsubscribe_unknown_callback_is_ignored():
    bus = LiveReloadBus()
    bus.unsubscribe(print)
    assert isinstance(default_bus, LiveReloadBus)
