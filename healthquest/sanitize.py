"""Normalisation of untrusted payloads from the content-generation service.

Quest definitions, battle narratives and boss definitions all pass through
``sanitize_payload`` with a field table describing the allowed range or
allow-list of every field. Invalid or missing values fall back to the field
default; a field without a default is required and its absence raises
``ValidationError``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

from healthquest.errors import ValidationError
from healthquest.models import COMPLETION_CRITERIA, QUEST_CATEGORIES, QUEST_DIFFICULTIES

_REQUIRED = object()


@dataclass(frozen=True)
class IntField:
    lo: int
    hi: int
    default: Any = _REQUIRED

    def clean(self, value: object) -> int:
        if isinstance(value, bool):
            raise TypeError("bool is not an integer")
        if isinstance(value, int):
            return max(self.lo, min(self.hi, value))
        if isinstance(value, str):
            value = float(value.strip())
        if not isinstance(value, (int, float)) or not math.isfinite(value):
            raise TypeError("not a number")
        return max(self.lo, min(self.hi, int(value)))


@dataclass(frozen=True)
class EnumField:
    choices: tuple[str, ...]
    default: Any = _REQUIRED

    def clean(self, value: object) -> str:
        text = str(value).strip().lower() if value is not None else ""
        if text not in self.choices:
            raise ValueError(f"{text!r} not allowed")
        return text


@dataclass(frozen=True)
class TextField:
    max_len: int
    default: Any = _REQUIRED

    def clean(self, value: object) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValueError("empty text")
        return value.strip()[: self.max_len]


@dataclass(frozen=True)
class BoolField:
    default: Any = _REQUIRED

    def clean(self, value: object) -> bool:
        if not isinstance(value, bool):
            raise TypeError("not a bool")
        return value


@dataclass(frozen=True)
class TextListField:
    max_items: int
    max_len: int = 120
    default: Any = _REQUIRED

    def clean(self, value: object) -> list[str]:
        if not isinstance(value, list):
            raise TypeError("not a list")
        out = [str(v).strip()[: self.max_len] for v in value if isinstance(v, (str, int, float)) and str(v).strip()]
        return out[: self.max_items]


Field = IntField | EnumField | TextField | BoolField | TextListField


def sanitize_payload(raw: object, fields: dict[str, Field]) -> dict[str, Any]:
    """Validate ``raw`` against ``fields``, substituting defaults for bad values."""
    if not isinstance(raw, dict):
        raise ValidationError("payload must be a JSON object")
    clean: dict[str, Any] = {}
    for name, rule in fields.items():
        value = raw.get(name)
        try:
            if value is None:
                raise ValueError("missing")
            clean[name] = rule.clean(value)
        except (TypeError, ValueError, OverflowError):
            if rule.default is _REQUIRED:
                raise ValidationError(f"{name} is missing or invalid", field=name) from None
            clean[name] = list(rule.default) if isinstance(rule.default, list) else rule.default
    return clean


# ---------------------------------------------------------------------------
# Quests
# ---------------------------------------------------------------------------

REWARD_RANGES = {"easy": (50, 100), "medium": (100, 150), "hard": (150, 250)}
ESTIMATED_TIME_BY_DIFFICULTY = {"easy": 15, "medium": 30, "hard": 45}
ESTIMATED_TIME_RANGE = (10, 60)

QUEST_FIELDS: dict[str, Field] = {
    "title": TextField(120, "Daily Movement Challenge"),
    "description": TextField(2000, "Get your body moving with a short activity challenge."),
    "category": EnumField(QUEST_CATEGORIES, "daily"),
    "difficulty": EnumField(QUEST_DIFFICULTIES, "easy"),
    "objective": TextField(300, "Complete minutes of physical activity"),
    "target": IntField(1, 100_000, 30),
    "unit": TextField(40, "minutes"),
    "estimatedTime": IntField(0, 10_000, 0),
    "completionCriteria": EnumField(COMPLETION_CRITERIA, "manual"),
    "completionInstructions": TextField(1000, "Mark this quest complete when you are done."),
}

SERVER_QUEST_FIELDS: dict[str, Field] = {
    **QUEST_FIELDS,
    "energyCost": IntField(0, 10, 5),
    "requiredLevel": IntField(0, 100, 0),
}


def sanitize_quest_payload(raw: object, server: bool = False) -> dict[str, Any]:
    """Normalise an AI quest definition into stored field names."""
    clean = sanitize_payload(raw, SERVER_QUEST_FIELDS if server else QUEST_FIELDS)
    difficulty = clean["difficulty"]
    lo, hi = REWARD_RANGES[difficulty]
    rewards_raw = raw.get("rewards") if isinstance(raw, dict) else None
    rewards = sanitize_payload(
        rewards_raw if isinstance(rewards_raw, dict) else {},
        {"xp": IntField(lo, hi, lo), "gold": IntField(lo, hi, lo), "items": TextListField(5, default=[])},
    )
    estimated = clean["estimatedTime"]
    t_lo, t_hi = ESTIMATED_TIME_RANGE
    if estimated < t_lo or estimated > t_hi:
        estimated = ESTIMATED_TIME_BY_DIFFICULTY[difficulty]
    out: dict[str, Any] = {
        "title": clean["title"],
        "description": clean["description"],
        "category": clean["category"],
        "difficulty": difficulty,
        "objective": clean["objective"],
        "target": clean["target"],
        "unit": clean["unit"],
        "estimated_time": estimated,
        "completion_criteria": clean["completionCriteria"],
        "completion_instructions": clean["completionInstructions"],
        "rewards": rewards,
    }
    if server:
        out["energy_cost"] = clean["energyCost"]
        out["required_level"] = clean["requiredLevel"]
    return out


# ---------------------------------------------------------------------------
# Battles and bosses
# ---------------------------------------------------------------------------


def sanitize_battle_payload(raw: object, max_damage: int) -> dict[str, Any]:
    """Normalise an AI battle result; damage is required and capped at ``max_damage``."""
    clean = sanitize_payload(
        raw,
        {
            "damage": IntField(1, max(1, max_damage)),
            "critical": BoolField(False),
            "narrative": TextField(2000, "Your champion strikes the boss."),
            "specialEffects": TextListField(5, default=[]),
        },
    )
    return {
        "damage": clean["damage"],
        "is_critical": clean["critical"],
        "narrative": clean["narrative"],
        "special_effects": clean["specialEffects"],
    }


BOSS_FIELDS: dict[str, Field] = {
    "name": TextField(120),
    "description": TextField(2000, ""),
    "imageUrl": TextField(500, ""),
    "level": IntField(1, 100, 1),
    "maxHealth": IntField(1, 10_000_000),
    "damage": IntField(0, 100_000, 20),
    "defense": IntField(0, 100_000, 10),
    "STR": IntField(1, 20, 10),
    "AGI": IntField(1, 20, 10),
    "VIT": IntField(1, 20, 10),
    "DEX": IntField(1, 20, 10),
    "INT": IntField(1, 20, 10),
    "rewardsXp": IntField(0, 1_000_000, 100),
    "rewardsGold": IntField(0, 1_000_000, 50),
    "abilities": TextListField(4, default=[]),
    "weaknesses": TextListField(3, default=[]),
    "immunities": TextListField(2, default=[]),
    "minLevelRequired": IntField(1, 100, 1),
}


def sanitize_boss_payload(raw: object) -> dict[str, Any]:
    clean = sanitize_payload(raw, BOSS_FIELDS)
    return {
        "name": clean["name"],
        "description": clean["description"],
        "image_url": clean["imageUrl"],
        "level": clean["level"],
        "health": clean["maxHealth"],
        "max_health": clean["maxHealth"],
        "damage": clean["damage"],
        "defense": clean["defense"],
        "STR": clean["STR"],
        "AGI": clean["AGI"],
        "VIT": clean["VIT"],
        "DEX": clean["DEX"],
        "INT": clean["INT"],
        "rewards_xp": clean["rewardsXp"],
        "rewards_gold": clean["rewardsGold"],
        "abilities": clean["abilities"],
        "weaknesses": clean["weaknesses"],
        "immunities": clean["immunities"],
        "min_level_required": clean["minLevelRequired"],
    }
