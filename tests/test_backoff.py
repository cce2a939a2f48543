# -*- coding: utf-8 -*-

"""

Tests for guildwire.backoff

"""

import pytest

from guildwire.backoff import ExponentialBackoff


def test_ceiling_doubles_until_max_exp():
    backoff = ExponentialBackoff(2, max_exp=3, seed=1)

    ceilings = []
    for _ in range(5):
        value = backoff.delay()
        assert 0 <= value <= backoff.ceiling()
        ceilings.append(backoff.ceiling())

    assert ceilings == [4, 8, 16, 16, 16]


def test_integral_delays_are_whole():
    backoff = ExponentialBackoff(integral=True, seed=5)
    for _ in range(8):
        assert isinstance(backoff.delay(), int)


def test_reset_starts_over():
    backoff = ExponentialBackoff(seed=3)
    backoff.delay()
    backoff.delay()
    assert backoff.attempts == 2

    backoff.reset()
    assert backoff.attempts == 0
    assert backoff.ceiling() == 1


def test_quiet_period_starts_over(monkeypatch: pytest.MonkeyPatch):
    clock = [100.0]
    monkeypatch.setattr('guildwire.backoff.time.monotonic', lambda: clock[0])

    backoff = ExponentialBackoff(1, max_exp=2, seed=0)
    backoff.delay()
    backoff.delay()
    assert backoff.attempts == 2

    # longer than base * 2**(max_exp + 1)
    clock[0] += 9
    backoff.delay()
    assert backoff.attempts == 1
