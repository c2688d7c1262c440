import pytest

from playgram.queue.jobs import BackoffPolicy
from playgram.services.retry_policy import ExponentialBackoff, FixedDelay


def test_fixed_delay_is_constant():
    policy = FixedDelay(1.5)
    assert [policy.next_delay(n) for n in (1, 2, 5)] == [1.5, 1.5, 1.5]


def test_exponential_backoff_doubles():
    policy = ExponentialBackoff(2.0)
    assert [policy.next_delay(n) for n in (1, 2, 3, 4)] == [2.0, 4.0, 8.0, 16.0]


def test_exponential_backoff_is_capped():
    policy = ExponentialBackoff(1.0, max_seconds=5)
    delays = [policy.next_delay(n) for n in range(1, 10)]
    assert delays == sorted(delays)
    assert max(delays) == 5


@pytest.mark.parametrize("kind,expected", [("fixed", FixedDelay(2.0)), ("exponential", ExponentialBackoff(2.0))])
def test_backoff_options_map_to_policies(kind, expected):
    assert BackoffPolicy(type=kind, delay_ms=2000).to_retry_policy() == expected
