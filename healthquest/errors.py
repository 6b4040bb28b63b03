"""Game error taxonomy.

Every failure a game operation can report is a ``GameError`` carrying an HTTP
status, a machine-readable ``reason`` and optional details (for example the
player's current energy) that are returned to the client unchanged.
"""

from __future__ import annotations

from typing import Any


class GameError(Exception):
    status_code = 400
    reason = "game_error"
    default_message = "request failed"

    def __init__(self, message: str | None = None, **details: Any) -> None:
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_payload(self) -> dict[str, Any]:
        return {"error": self.reason, "message": self.message, **self.details}


# ---------------------------------------------------------------------------
# NotFound
# ---------------------------------------------------------------------------


class NotFound(GameError):
    status_code = 404
    reason = "not_found"
    default_message = "resource not found"


class UserNotFound(NotFound):
    reason = "user_not_found"
    default_message = "user not found"


class CharacterNotFound(NotFound):
    reason = "character_not_found"
    default_message = "character not found; mint a champion first"


class QuestNotFound(NotFound):
    reason = "quest_not_found"
    default_message = "quest not found"


class BossNotFound(NotFound):
    reason = "boss_not_found"
    default_message = "no active boss with this id"


class ItemNotFound(NotFound):
    reason = "item_not_found"
    default_message = "item not found"


class WorkoutNotFound(NotFound):
    reason = "workout_not_found"
    default_message = "workout not found"


# ---------------------------------------------------------------------------
# PreconditionFailed
# ---------------------------------------------------------------------------


class PreconditionFailed(GameError):
    status_code = 400
    reason = "precondition_failed"


class InsufficientEnergy(PreconditionFailed):
    reason = "insufficient_energy"
    default_message = "not enough energy"


class InsufficientGold(PreconditionFailed):
    reason = "insufficient_gold"
    default_message = "not enough gold"


class InsufficientPoints(PreconditionFailed):
    reason = "insufficient_points"
    default_message = "not enough stat points"


class LevelTooLow(PreconditionFailed):
    reason = "level_too_low"
    default_message = "character level is too low"


class QuestLimitReached(PreconditionFailed):
    reason = "quest_limit_reached"
    default_message = "personal quest limit reached"


class QuestAlreadyActive(PreconditionFailed):
    reason = "quest_already_active"
    default_message = "another quest is already active; complete it first"


class AlreadyActive(PreconditionFailed):
    reason = "already_active"
    default_message = "this quest is already active"


class TooEarly(PreconditionFailed):
    reason = "too_early"
    default_message = "quest cannot be completed yet"


class QuestExpired(PreconditionFailed):
    reason = "quest_expired"
    default_message = "quest has expired"


# ---------------------------------------------------------------------------
# Conflict
# ---------------------------------------------------------------------------


class Conflict(GameError):
    status_code = 409
    reason = "conflict"


class AlreadyCompleted(Conflict):
    reason = "already_completed"
    default_message = "quest already completed"


class ItemEquipped(Conflict):
    reason = "item_equipped"
    default_message = "cannot sell an equipped item; unequip it first"


class ItemAlreadyOwned(Conflict):
    reason = "item_already_owned"
    default_message = "item already in inventory"


class WorkoutAlreadyCompleted(Conflict):
    reason = "workout_already_completed"
    default_message = "workout already completed"


class CharacterExists(Conflict):
    reason = "character_exists"
    default_message = "user already has a champion"


class ConcurrentUpdate(Conflict):
    reason = "concurrent_update"
    default_message = "record changed concurrently; retry"


# ---------------------------------------------------------------------------
# Validation / upstream / auth
# ---------------------------------------------------------------------------


class ValidationError(GameError):
    status_code = 400
    reason = "validation_error"
    default_message = "invalid input"


class InvalidStat(ValidationError):
    reason = "invalid_stat"
    default_message = "unknown stat name"


class UpstreamError(GameError):
    status_code = 500
    reason = "upstream_error"
    default_message = "content generation failed"

    def to_payload(self) -> dict[str, Any]:
        return {"error": self.reason, "message": self.default_message}


class AuthError(GameError):
    status_code = 401
    reason = "authentication_required"
    default_message = "authentication required"
