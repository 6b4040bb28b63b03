"""Request body models validated with pydantic."""

from __future__ import annotations

from typing import Any, Literal

import pydantic
from pydantic import BaseModel, ConfigDict, Field

from healthquest.errors import ValidationError

Rating = Literal["poor", "fair", "good", "excellent"]


class WorkoutFrequency(BaseModel):
    sessionsPerWeek: int = Field(ge=1, le=14)
    minutesPerSession: int = Field(ge=15, le=180)


class ProfileUpdate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    username: str | None = Field(default=None, min_length=3, max_length=30)
    age: int = Field(ge=13, le=100)
    gender: Literal["male", "female", "other"]
    height: float = Field(gt=0)
    weight: float = Field(gt=0)
    fitnessGoal: Literal[
        "weight_loss",
        "weight_gain",
        "muscle_gain",
        "endurance",
        "flexibility",
        "mental_health",
        "injury_recovery",
    ]
    experience: Literal["beginner", "intermediate", "advanced"]
    preferredActivities: list[str]
    workoutFrequency: WorkoutFrequency
    medicalConditions: str | None = None
    injuries: list[str] | None = None
    sleepQuality: Rating | None = None
    mentalHealth: Rating | None = None
    activityLevel: Literal["sedentary", "lightly_active", "moderately_active", "very_active"] | None = None
    dietaryRestrictions: str | None = None
    dietaryHabits: str | None = None
    dietType: Literal["vegetarian", "vegan", "keto", "paleo", "other"] | None = None
    foodAllergies: list[str] | None = None
    trackNutrition: bool | None = None
    targetWeight: float | None = Field(default=None, gt=0)
    targetDuration: Literal["short_term", "mid_term", "long_term"] | None = None
    goalDescription: str | None = None
    secondaryGoals: list[str] | None = None
    equipment: list[str] | None = None
    fitnessTrackers: list[str] | None = None
    fitnessTracker: str | None = None


class WorkoutCreate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str = Field(min_length=1, max_length=60)
    description: str = Field(min_length=1, max_length=2000)
    duration: int = Field(ge=1, le=24 * 60)
    aiGenerated: bool = False


def _error_details(exc: pydantic.ValidationError) -> list[dict[str, str]]:
    return [{"path": ".".join(str(part) for part in err["loc"]), "message": err["msg"]} for err in exc.errors()]


def parse_profile(body: dict[str, Any]) -> tuple[dict[str, Any], str | None]:
    """Validate a profile body; returns ``(profile_fields, username)``."""
    try:
        parsed = ProfileUpdate.model_validate(body)
    except pydantic.ValidationError as exc:
        raise ValidationError("invalid profile data", details=_error_details(exc)) from None
    profile = parsed.model_dump(exclude_none=True)
    username = profile.pop("username", None)
    return profile, username


def parse_workout(body: dict[str, Any]) -> WorkoutCreate:
    try:
        return WorkoutCreate.model_validate(body)
    except pydantic.ValidationError as exc:
        raise ValidationError("invalid workout data", details=_error_details(exc)) from None
