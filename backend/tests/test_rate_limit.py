from quizbuilder.utils.rate_limit import InMemoryRateLimiter


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_blocks_after_limit_and_reports_retry_after():
    clock = FakeClock()
    limiter = InMemoryRateLimiter(clock=clock)
    assert limiter.allow('1.2.3.4:attempts', 2, 60) == (True, 0)
    clock.now += 10
    assert limiter.allow('1.2.3.4:attempts', 2, 60) == (True, 0)
    allowed, retry_after = limiter.allow('1.2.3.4:attempts', 2, 60)
    assert not allowed
    assert retry_after == 50


def test_window_slides():
    clock = FakeClock()
    limiter = InMemoryRateLimiter(clock=clock)
    assert limiter.allow('k', 1, 60)[0]
    assert not limiter.allow('k', 1, 60)[0]
    clock.now += 61
    assert limiter.allow('k', 1, 60)[0]


def test_idle_keys_are_dropped():
    clock = FakeClock()
    limiter = InMemoryRateLimiter(clock=clock)
    for i in range(20):
        limiter.allow(f'10.0.0.{i}:attempts', 5, 60)
    assert len(limiter) == 20
    clock.now += 61
    limiter.allow('10.0.0.99:attempts', 5, 60)
    assert len(limiter) == 1


def test_reset_clears_everything():
    limiter = InMemoryRateLimiter()
    limiter.allow('k', 1, 60)
    limiter.reset()
    assert len(limiter) == 0
    assert limiter.allow('k', 1, 60)[0]
