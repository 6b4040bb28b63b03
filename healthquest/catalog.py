"""Fixed marketplace catalog."""

from __future__ import annotations

from typing import Any

MARKETPLACE_ITEMS: tuple[dict[str, Any], ...] = (
    {
        "item_id": "weapon-001",
        "type": "weapon",
        "name": "Training Sword",
        "rarity": "uncommon",
        "price": 300,
        "bonuses": {"STR": 3, "AGI": 1},
    },
    {
        "item_id": "helmet-001",
        "type": "helmet",
        "name": "Leather Cap",
        "rarity": "common",
        "price": 200,
        "bonuses": {"STR": 2, "VIT": 3, "DEX": 1},
    },
    {
        "item_id": "armor-001",
        "type": "armor",
        "name": "Leather Armor",
        "rarity": "common",
        "price": 400,
        "bonuses": {"VIT": 5, "DEX": 2},
    },
    {
        "item_id": "armor-002",
        "type": "armor",
        "name": "Knight's Plate",
        "rarity": "rare",
        "price": 600,
        "bonuses": {"VIT": 4, "STR": 1, "DEX": 1},
    },
    {
        "item_id": "accessory-001",
        "type": "accessory",
        "name": "Runner's Amulet",
        "rarity": "uncommon",
        "price": 250,
        "bonuses": {"AGI": 3, "DEX": 1},
    },
)


def find_item(item_id: str) -> dict[str, Any] | None:
    for item in MARKETPLACE_ITEMS:
        if item["item_id"] == item_id:
            return {**item, "bonuses": dict(item["bonuses"])}
    return None
