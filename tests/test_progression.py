"""Tests for leveling, reward and damage arithmetic."""

from __future__ import annotations

import pytest

from healthquest.progression import (
    apply_leveling,
    clamp_energy,
    formula_damage,
    next_threshold,
    round_half_up,
    scaled_reward,
    sell_price,
)


class TestLeveling:
    def test_below_threshold_keeps_level(self) -> None:
        assert apply_leveling(1, 99, 100) == (1, 99, 100, 0)

    def test_exact_threshold_levels_once(self) -> None:
        assert apply_leveling(1, 100, 100) == (2, 0, 150, 1)

    def test_multi_level_rollover(self) -> None:
        # 90 xp held, 250 gained: 340 crosses 100 then 150
        assert apply_leveling(1, 340, 100) == (3, 90, 225, 2)

    def test_threshold_growth_floors(self) -> None:
        assert next_threshold(225) == 337
        assert next_threshold(337) == 505


class TestRewards:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [(0.5, 1), (1.49, 1), (2.5, 3), (79.5, 80)],
    )
    def test_round_half_up(self, value: float, expected: int) -> None:
        assert round_half_up(value) == expected

    def test_scaled_reward_is_proportional(self) -> None:
        assert scaled_reward(200, 40, 100) == 80
        assert scaled_reward(100, 1, 200) == 1

    def test_scaled_reward_zero_cases(self) -> None:
        assert scaled_reward(0, 50, 100) == 0
        assert scaled_reward(100, 0, 100) == 0

    def test_sell_price_floors(self) -> None:
        assert sell_price(600) == 480
        assert sell_price(250) == 200
        assert sell_price(199) == 159
        assert sell_price(None) == 0


class TestDamage:
    def test_formula(self) -> None:
        assert formula_damage(1, 10, 10, critical=False) == 45
        assert formula_damage(1, 10, 10, critical=True) == 90

    def test_formula_floors_fractional_agility(self) -> None:
        assert formula_damage(2, 11, 11, critical=False) == 58

    def test_clamp_energy(self) -> None:
        assert clamp_energy(-5) == 0
        assert clamp_energy(130) == 100
        assert clamp_energy(42) == 42
