"""Tests for backoff policies."""

import random

import pytest

from kubestep.config import KubestepConfig
from kubestep.runner import ExponentialBackoff, FixedBackoff, NoBackoff, backoff_from_config


def test_fixed_backoff_is_constant():
    policy = FixedBackoff(5)
    assert [policy.delay(n) for n in (1, 2, 10)] == [5, 5, 5]
    assert policy.describe() == "fixed 5s"


def test_fixed_backoff_rejects_negative():
    with pytest.raises(ValueError):
        FixedBackoff(-1)


def test_no_backoff():
    assert NoBackoff().delay(3) == 0.0


class TestExponentialBackoff:
    def test_growth_without_jitter(self):
        policy = ExponentialBackoff(initial_s=1, multiplier=2, max_s=100, jitter=0)
        assert [policy.delay(n) for n in (1, 2, 3, 4)] == [1, 2, 4, 8]

    def test_capped_at_max(self):
        policy = ExponentialBackoff(initial_s=10, multiplier=3, max_s=60, jitter=0)
        assert policy.delay(5) == 60

    def test_large_retry_numbers_stay_at_cap(self):
        policy = ExponentialBackoff(initial_s=1, multiplier=2.0, max_s=60, jitter=0)
        assert policy.delay(1100) == 60
        assert policy.delay(10**6) == 60

    def test_initial_above_cap(self):
        policy = ExponentialBackoff(initial_s=90, multiplier=2.0, max_s=60, jitter=0)
        assert policy.delay(1) == 60
        assert policy.delay(2000) == 60

    def test_jitter_stays_within_range(self):
        policy = ExponentialBackoff(initial_s=10, multiplier=2, max_s=1000, jitter=0.5,
                                    rng=random.Random(42))
        for retry in range(1, 6):
            base = policy.base_delay(retry)
            for _ in range(20):
                assert base * 0.5 <= policy.delay(retry) <= base

    def test_seeded_rng_is_reproducible(self):
        a = ExponentialBackoff(jitter=1.0, rng=random.Random(7))
        b = ExponentialBackoff(jitter=1.0, rng=random.Random(7))
        assert [a.delay(n) for n in range(1, 5)] == [b.delay(n) for n in range(1, 5)]

    @pytest.mark.parametrize("kwargs", [
        {"multiplier": 0.5},
        {"jitter": 1.5},
        {"initial_s": -1},
    ])
    def test_invalid_parameters(self, kwargs):
        with pytest.raises(ValueError):
            ExponentialBackoff(**kwargs)


def test_backoff_from_config_fixed():
    policy = backoff_from_config(KubestepConfig(default_retry_delay_s=3))
    assert policy == FixedBackoff(3)


def test_backoff_from_config_exponential():
    policy = backoff_from_config(KubestepConfig(
        backoff_strategy="exponential",
        default_retry_delay_s=2,
        backoff_multiplier=3,
        backoff_max_s=30,
        backoff_jitter=0,
    ))
    assert isinstance(policy, ExponentialBackoff)
    assert [policy.delay(n) for n in (1, 2, 3, 4)] == [2, 6, 18, 30]
