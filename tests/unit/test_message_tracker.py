"""
Unit tests for the outbound message tracker.
"""

import threading

from notifier.services.message_tracker import MessageTracker


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_set_and_get():
    tracker = MessageTracker()
    
    tracker.set("a")
    tracker.set("b", {"sent": 1})
    
    assert tracker.get("a") is True
    assert tracker.get("b") == {"sent": 1}
    assert tracker.get("missing") is None


def test_keys_expire_after_ttl():
    clock = FakeClock()
    tracker = MessageTracker(ttl_seconds=180, clock=clock)
    tracker.set("a")
    
    clock.now = 179
    assert tracker.get("a") is True
    
    clock.now = 180
    assert tracker.get("a") is None
    assert len(tracker) == 0


def test_least_recently_used_key_is_evicted():
    tracker = MessageTracker(max_size=2)
    tracker.set("a")
    tracker.set("b")
    
    # touching 'a' makes 'b' the eviction candidate
    tracker.get("a")
    tracker.set("c")
    
    assert sorted(tracker.keys()) == ["a", "c"]
    assert tracker.get("b") is None


def test_delete():
    tracker = MessageTracker()
    tracker.set("a")
    
    tracker.delete("a")
    tracker.delete("never-set")
    
    assert tracker.get("a") is None


def test_len_sweeps_expired_keys():
    clock = FakeClock()
    tracker = MessageTracker(ttl_seconds=10, clock=clock)
    tracker.set("old")
    clock.now = 5
    tracker.set("new")
    
    clock.now = 12
    
    assert len(tracker) == 1
    assert tracker.keys() == ["new"]


def test_concurrent_writers_stay_bounded():
    tracker = MessageTracker(max_size=100)
    
    def write(prefix):
        for n in range(500):
            tracker.set(f"{prefix}-{n}")
    
    threads = [threading.Thread(target=write, args=(i,)) for i in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    
    assert len(tracker) == 100


def test_from_settings():
    class SettingsDouble:
        message_tracker_max_size = 10
        message_tracker_ttl_seconds = 30
    
    tracker = MessageTracker.from_settings(SettingsDouble())
    
    assert tracker.max_size == 10
    assert tracker.ttl_seconds == 30
