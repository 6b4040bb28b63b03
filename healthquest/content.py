"""AI content generation: quest definitions and battle narration.

All calls to the completion API live here. Responses are parsed into plain
JSON and returned untouched; callers are responsible for sanitizing them.
Any transport, API or parse failure is raised as ``UpstreamError``.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import openai

from healthquest import game_config as config
from healthquest.errors import UpstreamError
from healthquest.models import Boss, CharacterStats, User

log = logging.getLogger(__name__)


def _safe_json_object(text: str) -> dict[str, object] | None:
    """Attempt to parse a JSON object from LLM text, tolerating markdown fences."""
    if not text:
        return None
    candidate = text.strip()
    try:
        obj = json.loads(candidate)
        if isinstance(obj, dict):
            return obj
    except json.JSONDecodeError:
        pass
    start = candidate.find("{")
    end = candidate.rfind("}")
    if start >= 0 and end > start:
        try:
            obj = json.loads(candidate[start : end + 1])
            if isinstance(obj, dict):
                return obj
        except json.JSONDecodeError:
            return None
    return None


def _join(values: object, fallback: str) -> str:
    if isinstance(values, list) and values:
        return ", ".join(str(v) for v in values)
    return fallback


def build_personal_quest_prompt(user: User, recent_titles: list[str]) -> str:
    profile = user.profile or {}
    frequency = profile.get("workoutFrequency") or {}
    return f"""
Create a personalized fitness quest based on this user's profile:
- Age: {profile.get("age") or "unknown"}
- Gender: {profile.get("gender") or "unknown"}
- Height: {profile.get("height") or "unknown"}cm
- Weight: {profile.get("weight") or "unknown"}kg
- Fitness Goal: {profile.get("fitnessGoal") or "general fitness"}
- Experience Level: {profile.get("experience") or "beginner"}
- Medical Conditions: {profile.get("medicalConditions") or "none"}
- Injuries: {_join(profile.get("injuries"), "none")}
- Preferred Activities: {_join(profile.get("preferredActivities"), "variety")}
- Activity Level: {profile.get("activityLevel") or "moderate"}
- Workout Frequency: {frequency.get("sessionsPerWeek", 3)} sessions per week, {frequency.get("minutesPerSession", 30)} minutes per session
- Available Equipment: {_join(profile.get("equipment"), "minimal equipment")}
- Recent Completed Quests: {", ".join(recent_titles) or "none"}

Return one quest as a JSON object with these fields:
{{"title": "", "description": "", "category": "", "difficulty": "", "objective": "",
  "target": 0, "unit": "", "estimatedTime": 0,
  "rewards": {{"xp": 0, "gold": 0, "items": []}},
  "completionCriteria": "", "completionInstructions": ""}}

category is one of strength, cardio, flexibility, nutrition, mental, daily.
difficulty is one of easy, medium, hard, matched to the experience level.
Rewards scale with difficulty: easy 50-100 XP and gold, medium 100-150, hard 150-250.
estimatedTime is in minutes between 10 and 60 (easy 10-20, medium 20-40, hard 30-60).
"""


SERVER_QUESTS_PROMPT = """
Create 5 diverse fitness quests for a community fitness app, mixing the
categories strength, cardio, flexibility, nutrition, mental, daily and the
difficulties easy, medium, hard.

Return {"quests": [...]} where each quest has the fields:
{"title": "", "description": "", "category": "", "difficulty": "", "objective": "",
 "target": 0, "unit": "", "energyCost": 0, "requiredLevel": 0,
 "rewards": {"xp": 0, "gold": 0, "items": []},
 "completionCriteria": "", "completionInstructions": ""}

Energy costs by difficulty: easy 3-5, medium 5-8, hard 8-10.
Rewards by difficulty: easy 50-100 XP and gold, medium 100-150, hard 150-250.
Required levels: easy 0, medium 3, hard 5.
"""


def build_battle_prompt(stats: CharacterStats, boss: Boss, proposed_damage: int, max_damage: int) -> str:
    return f"""
Narrate one attack by a fitness champion against a raid boss and decide its damage.

Champion: level {stats.level}, STR {stats.STR}, AGI {stats.AGI}, VIT {stats.VIT},
DEX {stats.DEX}, INT {stats.INT}, WIS {stats.WIS}, LUK {stats.LUK}.
Boss: {boss.name} (level {boss.level}), defense {boss.defense},
health {boss.health}/{boss.max_health}. Weaknesses: {_join(boss.weaknesses, "none")}.
Immunities: {_join(boss.immunities, "none")}.
The client estimated {proposed_damage} damage. Damage must be between 1 and {max_damage}.

Return a JSON object: {{"damage": 0, "critical": false, "narrative": "", "specialEffects": []}}
The narrative is two or three vivid sentences.
"""


class ContentGenerator:
    """Thin wrapper over the OpenAI chat completion API returning parsed JSON."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self._api_key = config.OPENAI_API_KEY if api_key is None else api_key
        self._model = model or config.OPENAI_MODEL
        self._timeout = timeout_seconds or config.OPENAI_TIMEOUT_SECONDS
        self._client: openai.OpenAI | None = None

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key)

    def _get_client(self) -> openai.OpenAI:
        if not self._api_key:
            raise UpstreamError("OPENAI_API_KEY is not configured")
        if self._client is None:
            self._client = openai.OpenAI(api_key=self._api_key, timeout=self._timeout, max_retries=1)
        return self._client

    def _complete_json(self, prompt: str) -> dict[str, object]:
        client = self._get_client()
        try:
            response = client.chat.completions.create(
                model=self._model,
                messages=[{"role": "user", "content": prompt}],
                response_format={"type": "json_object"},
            )
        except openai.OpenAIError as exc:
            log.warning("content generation request failed: %s", exc)
            raise UpstreamError(str(exc)) from exc
        content = response.choices[0].message.content if response.choices else None
        parsed = _safe_json_object(content or "")
        if parsed is None:
            log.warning("content generation returned non-JSON output")
            raise UpstreamError("completion was not a JSON object")
        return parsed

    def personal_quest(self, user: User, recent_titles: list[str]) -> dict[str, object]:
        return self._complete_json(build_personal_quest_prompt(user, recent_titles))

    def server_quests(self) -> list[dict[str, Any]]:
        payload = self._complete_json(SERVER_QUESTS_PROMPT)
        quests = payload.get("quests")
        if not isinstance(quests, list):
            raise UpstreamError("completion did not contain a quests array")
        return [q for q in quests if isinstance(q, dict)]

    def battle(
        self,
        stats: CharacterStats,
        boss: Boss,
        proposed_damage: int,
        max_damage: int,
    ) -> dict[str, object]:
        return self._complete_json(build_battle_prompt(stats, boss, proposed_damage, max_damage))
