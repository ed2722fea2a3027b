from dbpulse.refresh import LatestRequestTracker


def test_only_newest_request_is_delivered():
    tracker = LatestRequestTracker()
    first = tracker.begin("client")
    second = tracker.begin("client")

    assert not tracker.is_current("client", first)
    assert tracker.finish("client", second)
    assert not tracker.finish("client", first)
    assert len(tracker) == 0


def test_keys_are_independent():
    tracker = LatestRequestTracker()
    a = tracker.begin("a")
    b = tracker.begin("b")
    assert a != b
    assert tracker.finish("a", a)
    assert tracker.is_current("b", b)


def test_forget_discards_outstanding_request():
    tracker = LatestRequestTracker()
    token = tracker.begin("client")
    tracker.forget("client")
    assert not tracker.finish("client", token)
