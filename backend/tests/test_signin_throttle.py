from woodpecker.utils import signin_throttle
from woodpecker.utils.signin_throttle import SignInThrottle


def test_blocks_after_max_failures_and_resets():
    t = SignInThrottle(max_failures=3, window_seconds=60)
    for _ in range(2):
        t.record_failure("a@example.com")
    assert t.retry_after("a@example.com") == 0
    t.record_failure("a@example.com")
    assert 1 <= t.retry_after("a@example.com") <= 60
    assert t.retry_after("b@example.com") == 0
    t.reset("a@example.com")
    assert t.retry_after("a@example.com") == 0


def test_failures_expire_with_window(monkeypatch):
    now = [1000.0]
    monkeypatch.setattr(signin_throttle.time, "monotonic", lambda: now[0])
    t = SignInThrottle(max_failures=2, window_seconds=10)
    t.record_failure("k")
    t.record_failure("k")
    assert t.retry_after("k") == 10
    now[0] += 4
    assert t.retry_after("k") == 6
    now[0] += 7
    assert t.retry_after("k") == 0
