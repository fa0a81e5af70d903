import unittest

from quotefeed.errors import (
    MalformedResponseError,
    PermanentEndpointError,
    RateLimitedError,
    TransientNetworkError,
)
from quotefeed.services.retry_policy import RetryPolicy, call_with_retry


class TestRetryPolicy(unittest.TestCase):
    def test_backoff_is_exponential_with_bounded_jitter(self):
        policy = RetryPolicy(max_attempts=4, base_delay_sec=0.5, multiplier=2.0, jitter_sec=0.2)

        self.assertEqual(policy.delay_for(1, rand_fn=lambda: 0.0), 0.5)
        self.assertEqual(policy.delay_for(2, rand_fn=lambda: 0.0), 1.0)
        self.assertEqual(policy.delay_for(3, rand_fn=lambda: 0.0), 2.0)
        self.assertAlmostEqual(policy.delay_for(1, rand_fn=lambda: 1.0), 0.7)

    def test_retries_until_success_and_sleeps_between_attempts(self):
        policy = RetryPolicy(max_attempts=4, base_delay_sec=0.5, multiplier=2.0, jitter_sec=0.2)
        sleeps = []
        outcomes = [RateLimitedError("429", status_code=429), TransientNetworkError("500"), "ok"]

        def fn():
            outcome = outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        result = call_with_retry(fn, policy=policy, sleep_fn=sleeps.append, rand_fn=lambda: 0.5)

        self.assertEqual(result, "ok")
        self.assertEqual(len(sleeps), 2)
        self.assertAlmostEqual(sleeps[0], 0.6)
        self.assertAlmostEqual(sleeps[1], 1.1)

    def test_no_sleep_after_final_failed_attempt(self):
        policy = RetryPolicy(max_attempts=3, base_delay_sec=1.0, multiplier=2.0, jitter_sec=0.0)
        sleeps = []
        calls = {"count": 0}

        def fn():
            calls["count"] += 1
            raise MalformedResponseError("bad body")

        with self.assertRaises(MalformedResponseError):
            call_with_retry(fn, policy=policy, sleep_fn=sleeps.append)

        self.assertEqual(calls["count"], 3)
        self.assertEqual(sleeps, [1.0, 2.0])

    def test_non_retryable_error_propagates_immediately(self):
        policy = RetryPolicy(max_attempts=4)
        sleeps = []
        calls = {"count": 0}

        def fn():
            calls["count"] += 1
            raise PermanentEndpointError("404", status_code=404)

        with self.assertRaises(PermanentEndpointError):
            call_with_retry(fn, policy=policy, sleep_fn=sleeps.append)

        self.assertEqual(calls["count"], 1)
        self.assertEqual(sleeps, [])

    def test_on_retry_hook_receives_attempt_and_delay(self):
        policy = RetryPolicy(max_attempts=2, base_delay_sec=0.25, jitter_sec=0.0)
        seen = []
        outcomes = [TransientNetworkError("timeout"), 42]

        def fn():
            outcome = outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        result = call_with_retry(
            fn,
            policy=policy,
            sleep_fn=lambda _sec: None,
            on_retry=lambda attempt, exc, delay: seen.append((attempt, str(exc), delay)),
        )

        self.assertEqual(result, 42)
        self.assertEqual(seen, [(1, "timeout", 0.25)])


if __name__ == "__main__":
    unittest.main()
