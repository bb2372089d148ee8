import unittest

from amlchain_api.rate_limit import RateLimiter


class FakeTime:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestRateLimiter(unittest.TestCase):

    def setUp(self):
        self.time = FakeTime()
        self.limiter = RateLimiter(2, window_seconds=60, clock=self.time)

    def test_limit_and_retry_after(self):
        self.assertTrue(self.limiter.allow("a"))
        self.time.now += 10
        self.assertTrue(self.limiter.allow("a"))
        result = self.limiter.check("a")
        self.assertFalse(result.allowed)
        self.assertEqual(result.remaining, 0)
        self.assertAlmostEqual(result.retry_after, 50.0)

    def test_window_slides(self):
        self.limiter.allow("a")
        self.limiter.allow("a")
        self.time.now += 61
        self.assertTrue(self.limiter.allow("a"))

    def test_keys_are_independent(self):
        self.limiter.allow("a")
        self.limiter.allow("a")
        self.assertTrue(self.limiter.allow("b"))

    def test_reset(self):
        self.limiter.allow("a")
        self.limiter.allow("a")
        self.limiter.reset("a")
        self.assertTrue(self.limiter.allow("a"))
        self.limiter.allow("b")
        self.limiter.allow("b")
        self.limiter.reset()
        self.assertTrue(self.limiter.allow("b"))

    def test_idle_keys_are_forgotten(self):
        for i in range(5000):
            self.limiter.allow(f"client-{i}")
        self.time.now += 61
        self.assertTrue(self.limiter.allow("late"))
        self.assertEqual(len(self.limiter._hits), 1)

    def test_cleanup_expired(self):
        self.limiter.allow("a")
        self.time.now += 30
        self.limiter.allow("b")
        self.time.now += 31
        self.assertEqual(self.limiter.cleanup_expired(), 1)
        self.assertEqual(list(self.limiter._hits), ["b"])


if __name__ == "__main__":
    unittest.main()
