from __future__ import annotations

import math

from healthquest import game_config as config


def next_threshold(threshold: int) -> int:
    return int(math.floor(threshold * config.XP_THRESHOLD_GROWTH))


def apply_leveling(level: int, xp: int, threshold: int) -> tuple[int, int, int, int]:
    """Roll xp over as many level thresholds as it crosses.

    Returns ``(level, xp, threshold, levels_gained)``.
    """
    new_level = max(1, level)
    new_xp = max(0, xp)
    new_threshold = max(1, threshold)
    levels_gained = 0
    while new_xp >= new_threshold:
        new_xp -= new_threshold
        new_level += 1
        new_threshold = next_threshold(new_threshold)
        levels_gained += 1
    return new_level, new_xp, new_threshold, levels_gained


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def scaled_reward(pool: int, damage: int, max_health: int) -> int:
    """Share of a boss reward pool proportional to damage dealt."""
    if max_health <= 0 or damage <= 0 or pool <= 0:
        return 0
    return round_half_up(pool * damage / max_health)


def base_damage_for_level(level: int) -> int:
    return 10 * max(1, level)


def formula_damage(level: int, strength: int, agility: int, critical: bool) -> int:
    multiplier = config.BOSS_CRITICAL_MULTIPLIER if critical else 1
    raw = (base_damage_for_level(level) + strength * 2 + agility * 1.5) * multiplier
    return max(1, int(math.floor(raw)))


def clamp_energy(value: int) -> int:
    return max(0, min(config.ENERGY_MAX, value))


def sell_price(price: int | None) -> int:
    if not price:
        return 0
    return int(math.floor(price * config.SELL_PRICE_RATIO))
