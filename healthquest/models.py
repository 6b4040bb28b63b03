"""Stored document dataclass definitions."""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field, fields
from datetime import UTC, datetime
from typing import Any, TypeVar

from healthquest import game_config as config

T = TypeVar("T")

QUEST_CATEGORIES = ("strength", "cardio", "flexibility", "nutrition", "mental", "daily")
QUEST_DIFFICULTIES = ("easy", "medium", "hard")
COMPLETION_CRITERIA = ("manual", "automatic", "verification")
ITEM_SLOTS = ("helmet", "armor", "weapon", "gloves", "boots", "accessory")
ITEM_RARITIES = ("common", "uncommon", "rare", "epic", "legendary")


def to_iso(moment: datetime) -> str:
    """Fixed-width UTC ISO timestamp, so stored values compare lexically."""
    return moment.astimezone(UTC).isoformat(timespec="microseconds")


def from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def now_iso() -> str:
    return to_iso(datetime.now(UTC))


def from_doc(cls: type[T], doc: dict[str, Any]) -> T:
    """Build a record from a Mongo document, ignoring ``_id`` and unknown keys."""
    names = {f.name for f in fields(cls)}  # type: ignore[arg-type]
    return cls(**{k: v for k, v in doc.items() if k in names})


def to_doc(record: object) -> dict[str, Any]:
    return asdict(record)  # type: ignore[call-overload]


@dataclass
class User:
    wallet_address: str
    username: str
    gold: int = config.STARTER_GOLD
    profile: dict[str, Any] = field(default_factory=dict)
    session_id: str | None = None
    active_quest_id: str | None = None
    nft_token_id: str | None = None
    score: int = 0
    rank: int = 0
    total_workouts: int = 0
    total_minutes: int = 0
    created_at: str = field(default_factory=now_iso)


@dataclass
class CharacterStats:
    wallet: str
    token_id: str
    STR: int = config.BASE_STAT_VALUE
    AGI: int = config.BASE_STAT_VALUE
    VIT: int = config.BASE_STAT_VALUE
    DEX: int = config.BASE_STAT_VALUE
    INT: int = config.BASE_STAT_VALUE
    WIS: int = config.BASE_STAT_VALUE
    LUK: int = config.BASE_STAT_VALUE
    energy: int = config.ENERGY_MAX
    energy_reset_day: str = ""
    level: int = 1
    xp: int = 0
    xp_to_next_level: int = config.BASE_XP_TO_NEXT_LEVEL
    stat_points: int = config.STARTING_STAT_POINTS
    last_updated: str = field(default_factory=now_iso)

    def stat_block(self) -> dict[str, int]:
        return {name: int(getattr(self, name)) for name in config.STAT_NAMES}


@dataclass
class InventoryItem:
    wallet: str
    item_id: str
    type: str
    name: str
    rarity: str
    bonuses: dict[str, int] = field(default_factory=dict)
    is_equipped: bool = False
    price: int = 0
    image_url: str = ""
    acquired_at: str = field(default_factory=now_iso)


@dataclass
class QuestRewards:
    xp: int = 0
    gold: int = 0
    items: list[str] = field(default_factory=list)


@dataclass
class Quest:
    wallet: str
    type: str
    title: str
    description: str
    category: str
    difficulty: str
    objective: str
    target: int
    unit: str
    expires_at: str
    rewards: dict[str, Any] = field(default_factory=lambda: asdict(QuestRewards()))
    quest_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    progress: int = 0
    energy_cost: int = 0
    required_level: int = 0
    completion_criteria: str = "manual"
    completion_instructions: str = ""
    estimated_time: int = 30
    active: bool = False
    started_at: str | None = None
    completed: bool = False
    completed_at: str | None = None
    created_at: str = field(default_factory=now_iso)

    @property
    def reward_xp(self) -> int:
        return int(self.rewards.get("xp", 0) or 0)

    @property
    def reward_gold(self) -> int:
        return int(self.rewards.get("gold", 0) or 0)

    @property
    def reward_items(self) -> list[str]:
        items = self.rewards.get("items") or []
        return [str(item) for item in items]


@dataclass
class QuestHistoryEntry:
    wallet: str
    quest_id: str
    quest_type: str
    quest_title: str
    category: str
    difficulty: str
    energy_cost: int
    rewards_xp: int
    rewards_gold: int
    rewards_items: list[str] = field(default_factory=list)
    bonus_points: int = 0
    completed_at: str = field(default_factory=now_iso)


@dataclass
class Boss:
    name: str
    description: str
    health: int
    max_health: int
    damage: int
    defense: int
    rewards_xp: int
    rewards_gold: int
    boss_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    image_url: str = ""
    level: int = 1
    STR: int = 10
    AGI: int = 10
    VIT: int = 10
    DEX: int = 10
    INT: int = 10
    is_active: bool = True
    is_defeated: bool = False
    created_at: str = field(default_factory=now_iso)
    defeat_date: str | None = None
    abilities: list[str] = field(default_factory=list)
    weaknesses: list[str] = field(default_factory=list)
    immunities: list[str] = field(default_factory=list)
    min_level_required: int = 1


@dataclass
class BossDamageRecord:
    wallet: str
    boss_id: str
    damage: int
    rewards_xp: int
    rewards_gold: int
    battle_description: str
    is_critical: bool = False
    special_effects: list[str] = field(default_factory=list)
    source: str = "formula"
    record_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: str = field(default_factory=now_iso)


@dataclass
class Workout:
    wallet: str
    type: str
    description: str
    duration: int
    workout_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    ai_generated: bool = False
    completed: bool = False
    completed_at: str | None = None
    created_at: str = field(default_factory=now_iso)


@dataclass
class Achievement:
    wallet: str
    type: str
    name: str
    description: str
    icon_name: str
    unlocked_at: str = field(default_factory=now_iso)
