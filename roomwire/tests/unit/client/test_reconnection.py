"""Tests for reconnection backoff bookkeeping."""

import itertools

import pytest
from pydantic import ValidationError

from roomwire.client.reconnection import ReconnectionManager, backoff_schedule
from roomwire.config.models import ReconnectionPolicy


@pytest.fixture
def doubling_policy():
    return ReconnectionPolicy(max_attempts=5, initial_delay=1.0, max_delay=5.0, backoff_multiplier=2.0)


def test_backoff_schedule_caps_at_max_delay(doubling_policy):
    """initial=1, x2, max=5 gives 1, 2, 4, 5, 5, ..."""
    assert list(itertools.islice(backoff_schedule(doubling_policy), 6)) == [1.0, 2.0, 4.0, 5.0, 5.0, 5.0]


def test_backoff_schedule_is_non_decreasing():
    policy = ReconnectionPolicy(initial_delay=0.3, max_delay=7.0, backoff_multiplier=1.7)
    delays = list(itertools.islice(backoff_schedule(policy), 20))
    assert all(a <= b for a, b in itertools.pairwise(delays))
    assert max(delays) == 7.0


def test_next_attempt_follows_schedule(doubling_policy):
    manager = ReconnectionManager(doubling_policy)
    assert [manager.next_attempt() for _ in range(5)] == [1.0, 2.0, 4.0, 5.0, 5.0]
    assert manager.attempts == 5


def test_exhausted_after_max_attempts(doubling_policy):
    manager = ReconnectionManager(doubling_policy)
    for _ in range(5):
        manager.next_attempt()
    assert manager.exhausted
    assert not manager.should_retry()
    with pytest.raises(RuntimeError):
        manager.next_attempt()


def test_reset_restores_initial_delay(doubling_policy):
    """A successful connection resets the next delay to initial_delay."""
    manager = ReconnectionManager(doubling_policy)
    manager.next_attempt()
    manager.next_attempt()
    manager.reset()
    assert manager.attempts == 0
    assert manager.next_attempt() == 1.0


def test_unlimited_attempts():
    manager = ReconnectionManager(ReconnectionPolicy(max_attempts=0, initial_delay=1.0, max_delay=1.0))
    for _ in range(100):
        manager.next_attempt()
    assert manager.should_retry()
    assert not manager.exhausted


def test_disabled_policy_never_retries():
    manager = ReconnectionManager(ReconnectionPolicy(enabled=False))
    assert not manager.should_retry()


def test_get_stats(doubling_policy):
    manager = ReconnectionManager(doubling_policy)
    manager.next_attempt()
    assert manager.get_stats() == {"attempts": 1, "max_attempts": 5, "next_delay": 2.0, "exhausted": False}


@pytest.mark.parametrize(
    "kwargs",
    [
        {"max_attempts": -1},
        {"initial_delay": 0},
        {"backoff_multiplier": 0.5},
        {"initial_delay": 10.0, "max_delay": 5.0},
    ],
)
def test_policy_rejects_invalid_values(kwargs):
    with pytest.raises(ValidationError):
        ReconnectionPolicy(**kwargs)
