import random

import pytest

from services.backend.app.core.simulator import RandomWorkSimulator


def test_failure_rate_is_respected():
    simulator = RandomWorkSimulator(failure_rate=0.05, rng=random.Random(7))

    failures = sum(simulator.should_fail("process") for _ in range(20_000))

    assert 850 <= failures <= 1150


def test_zero_and_full_failure_rates():
    never = RandomWorkSimulator(failure_rate=0.0, rng=random.Random(1))
    always = RandomWorkSimulator(failure_rate=1.0, rng=random.Random(1))

    assert not any(never.should_fail("process") for _ in range(100))
    assert all(always.should_fail("process") for _ in range(100))


def test_latency_is_bounded_and_injected():
    slept = []
    simulator = RandomWorkSimulator(rng=random.Random(3), sleep=slept.append)

    for _ in range(200):
        simulator.simulate_latency("fetch_users", 50)
    simulator.simulate_latency("noop", 0)

    assert len(slept) == 200
    assert all(0.0 <= s < 0.05 for s in slept)


def test_invalid_failure_rate():
    with pytest.raises(ValueError):
        RandomWorkSimulator(failure_rate=1.5)
