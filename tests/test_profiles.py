"""Tests for complexity-to-profile mapping and cost estimation."""

import pytest

from models import Complexity
from orchestration.profiles import PROFILES, estimate_cost, select_profile


@pytest.mark.parametrize("complexity,model,temperature,max_tokens", [
    (Complexity.SIMPLE, "grok-code-fast-1", 0.3, 1000),
    (Complexity.MEDIUM, "grok-3-fast", 0.5, 2000),
    (Complexity.COMPLEX, "grok-4", 0.7, 4000),
])
def test_profile_per_complexity(complexity, model, temperature, max_tokens):
    profile = select_profile(complexity)
    assert profile.model == model
    assert profile.temperature == temperature
    assert profile.max_tokens == max_tokens


def test_unknown_complexity_uses_medium():
    assert select_profile("enormous") == PROFILES[Complexity.MEDIUM]
    assert select_profile(None) == PROFILES[Complexity.MEDIUM]
    assert select_profile(" Complex ") == PROFILES[Complexity.COMPLEX]


def test_cost_rates_increase_with_complexity():
    rates = [PROFILES[c].cost_per_1k for c in (Complexity.SIMPLE, Complexity.MEDIUM, Complexity.COMPLEX)]
    assert rates == sorted(rates)


def test_estimate_cost():
    assert estimate_cost(1000, 0.008) == pytest.approx(0.008)
    assert estimate_cost(500) == pytest.approx(0.005)
    assert estimate_cost(0, 0.015) == 0.0
    assert estimate_cost(-10, 0.015) == 0.0
