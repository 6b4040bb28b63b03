"""Shared fixtures: an in-memory Mongo, a controllable clock and a fake content generator."""

from __future__ import annotations

import random
from datetime import UTC, datetime, timedelta

import mongomock
import pytest
from starlette.testclient import TestClient

from healthquest import game_config as config
from healthquest.app import create_app
from healthquest.auth import issue_token
from healthquest.errors import UpstreamError
from healthquest.game_store import GameStore

PERSONAL_QUEST = {
    "title": "Morning Run",
    "description": "Run at an easy pace before breakfast.",
    "category": "cardio",
    "difficulty": "medium",
    "objective": "Run 5 kilometres",
    "target": 5,
    "unit": "km",
    "estimatedTime": 30,
    "rewards": {"xp": 120, "gold": 110, "items": []},
    "completionCriteria": "manual",
    "completionInstructions": "Mark complete after your run.",
}

SERVER_QUESTS = [
    {
        "title": "Community Stretch",
        "description": "Ten minutes of full-body stretching.",
        "category": "flexibility",
        "difficulty": "easy",
        "objective": "Stretch for 10 minutes",
        "target": 10,
        "unit": "minutes",
        "energyCost": 5,
        "requiredLevel": 0,
        "rewards": {"xp": 60, "gold": 70, "items": []},
    },
    {
        "title": "Hill Sprints",
        "description": "Sprint up a hill ten times.",
        "category": "cardio",
        "difficulty": "hard",
        "objective": "Complete 10 hill sprints",
        "target": 10,
        "unit": "sprints",
        "energyCost": 9,
        "requiredLevel": 5,
        "rewards": {"xp": 200, "gold": 180, "items": []},
    },
]


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 2, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakeContent:
    """Stands in for ContentGenerator; ``battle_result=None`` simulates an outage."""

    def __init__(self) -> None:
        self.quest: dict[str, object] = dict(PERSONAL_QUEST)
        self.server: list[dict[str, object]] = [dict(q) for q in SERVER_QUESTS]
        self.battle_result: dict[str, object] | None = None
        self.fail = False
        self.calls: list[tuple[str, object]] = []

    def personal_quest(self, user, recent_titles):
        self.calls.append(("personal_quest", list(recent_titles)))
        if self.fail:
            raise UpstreamError("completion service unavailable")
        return dict(self.quest)

    def server_quests(self):
        self.calls.append(("server_quests", None))
        if self.fail:
            raise UpstreamError("completion service unavailable")
        return [dict(q) for q in self.server]

    def battle(self, stats, boss, proposed_damage, max_damage):
        self.calls.append(("battle", max_damage))
        if self.battle_result is None:
            raise UpstreamError("completion service unavailable")
        return dict(self.battle_result)


class StubRandom(random.Random):
    """Random source whose ``random()`` always returns ``value``."""

    def __init__(self, value: float) -> None:
        super().__init__(0)
        self.value = value

    def random(self) -> float:
        return self.value


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def content() -> FakeContent:
    return FakeContent()


@pytest.fixture()
def rng() -> random.Random:
    return StubRandom(0.5)


@pytest.fixture()
def store(clock: FakeClock, content: FakeContent, rng: random.Random) -> GameStore:
    database = mongomock.MongoClient()["healthquest_test"]
    return GameStore(database, content=content, clock=clock, rng=rng, use_transactions=False)


@pytest.fixture()
def client(store: GameStore, monkeypatch: pytest.MonkeyPatch) -> TestClient:
    monkeypatch.setattr(config, "JWT_SECRET", "healthquest-test-secret-with-enough-bytes")
    monkeypatch.setattr(config, "ADMIN_API_KEY", "admin-key")
    app = create_app(store=store)
    return TestClient(app, raise_server_exceptions=False)


def make_champion(store: GameStore, wallet: str, gold: int | None = None) -> None:
    store.ensure_user(wallet)
    store.create_character(wallet, f"token-{wallet}")
    if gold is not None:
        store.users.update_one({"wallet_address": wallet}, {"$set": {"gold": gold}})


def set_stats(store: GameStore, wallet: str, **values: object) -> None:
    store.character_stats.update_one({"wallet": wallet}, {"$set": values})


def auth_headers(store: GameStore, wallet: str) -> dict[str, str]:
    user = store.connect(wallet)
    return {"Authorization": f"Bearer {issue_token(wallet, user.session_id or '')}"}
