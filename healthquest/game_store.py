"""MongoDB game store and business rules.

Every state change is a single-document conditional update whose filter
carries the precondition (``energy >= cost``, ``active_quest_id is null``,
``health == <value read>``), so two concurrent requests from the same wallet
cannot both pass a check and both apply their effect.
"""

from __future__ import annotations

import logging
import math
import random
import uuid
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from typing import Any, Callable, Iterator

from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from healthquest import catalog
from healthquest import game_config as config
from healthquest.content import ContentGenerator
from healthquest.errors import (
    AlreadyActive,
    AlreadyCompleted,
    BossNotFound,
    CharacterExists,
    CharacterNotFound,
    ConcurrentUpdate,
    InsufficientEnergy,
    InsufficientGold,
    InsufficientPoints,
    InvalidStat,
    ItemAlreadyOwned,
    ItemEquipped,
    ItemNotFound,
    LevelTooLow,
    QuestAlreadyActive,
    QuestExpired,
    QuestLimitReached,
    QuestNotFound,
    TooEarly,
    UpstreamError,
    UserNotFound,
    ValidationError,
    WorkoutAlreadyCompleted,
    WorkoutNotFound,
)
from healthquest.models import (
    Achievement,
    Boss,
    BossDamageRecord,
    CharacterStats,
    InventoryItem,
    Quest,
    QuestHistoryEntry,
    User,
    Workout,
    from_doc,
    from_iso,
    to_doc,
    to_iso,
)
from healthquest.progression import apply_leveling, clamp_energy, formula_damage, scaled_reward, sell_price
from healthquest.sanitize import sanitize_battle_payload, sanitize_boss_payload, sanitize_quest_payload

log = logging.getLogger(__name__)

AFTER = ReturnDocument.AFTER


def _utc_now() -> datetime:
    return datetime.now(UTC)


class GameStore:
    """MongoDB-backed game store and business rules."""

    def __init__(
        self,
        database: Database,
        content: ContentGenerator | None = None,
        clock: Callable[[], datetime] | None = None,
        rng: random.Random | None = None,
        use_transactions: bool | None = None,
    ) -> None:
        self._db = database
        self._content = content or ContentGenerator()
        self._clock = clock or _utc_now
        self._rng = rng or random.Random()
        self._use_transactions = config.USE_TRANSACTIONS if use_transactions is None else use_transactions
        self.users = database["users"]
        self.character_stats = database["character_stats"]
        self.inventory_items = database["inventory_items"]
        self.quests = database["quests"]
        self.quest_history = database["quest_history"]
        self.bosses = database["bosses"]
        self.boss_damage = database["boss_damage"]
        self.workouts = database["workouts"]
        self.achievements = database["achievements"]
        self._ensure_indexes()

    def _ensure_indexes(self) -> None:
        self.users.create_index("wallet_address", unique=True)
        self.character_stats.create_index("wallet", unique=True)
        self.character_stats.create_index([("level", DESCENDING), ("xp", DESCENDING)])
        self.inventory_items.create_index([("wallet", ASCENDING), ("item_id", ASCENDING)], unique=True)
        self.quests.create_index("quest_id", unique=True)
        self.quests.create_index([("wallet", ASCENDING), ("type", ASCENDING), ("expires_at", ASCENDING)])
        self.quest_history.create_index([("wallet", ASCENDING), ("quest_id", ASCENDING)], unique=True)
        self.bosses.create_index("boss_id", unique=True)
        self.boss_damage.create_index([("boss_id", ASCENDING), ("wallet", ASCENDING)])
        self.workouts.create_index("workout_id", unique=True)
        self.workouts.create_index([("wallet", ASCENDING), ("created_at", ASCENDING)])
        self.achievements.create_index([("wallet", ASCENDING), ("type", ASCENDING)], unique=True)

    @contextmanager
    def _txn(self) -> Iterator[dict[str, Any]]:
        """Yield extra kwargs for collection calls; a session when transactions are on."""
        if not self._use_transactions:
            yield {}
            return
        with self._db.client.start_session() as session:
            with session.start_transaction():
                yield {"session": session}

    def _now(self) -> datetime:
        return self._clock()

    def _now_iso(self) -> str:
        return to_iso(self._now())

    def _today(self) -> str:
        return self._now().astimezone(UTC).date().isoformat()

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    def _find_user(self, wallet: str, **kw: Any) -> User | None:
        doc = self.users.find_one({"wallet_address": wallet}, **kw)
        return from_doc(User, doc) if doc else None

    def get_user(self, wallet: str) -> User:
        user = self._find_user(wallet)
        if user is None:
            raise UserNotFound(wallet_address=wallet)
        return user

    def ensure_user(
        self,
        wallet: str,
        username: str | None = None,
        profile: dict[str, Any] | None = None,
    ) -> User:
        """Return the user for ``wallet``, creating it on first sight."""
        wallet = wallet.strip()
        if not wallet:
            raise ValidationError("wallet address is required")
        user = User(
            wallet_address=wallet,
            username=(username or "").strip() or f"user_{wallet[:6]}",
            gold=config.STARTER_GOLD,
            profile=dict(profile or {}),
            created_at=self._now_iso(),
        )
        doc = to_doc(user)
        doc.pop("wallet_address")
        try:
            result = self.users.update_one({"wallet_address": wallet}, {"$setOnInsert": doc}, upsert=True)
            if result.upserted_id is not None:
                log.info("created user %s", wallet)
        except DuplicateKeyError:
            pass
        return self.get_user(wallet)

    def connect(self, wallet: str) -> User:
        """Ensure the user exists and rotate its session id."""
        user = self.ensure_user(wallet)
        session_id = uuid.uuid4().hex
        self.users.update_one({"wallet_address": user.wallet_address}, {"$set": {"session_id": session_id}})
        user.session_id = session_id
        return user

    def disconnect(self, wallet: str) -> None:
        self.users.update_one({"wallet_address": wallet}, {"$set": {"session_id": None}})

    def session_matches(self, wallet: str, session_id: object) -> bool:
        if not isinstance(session_id, str) or not session_id:
            return False
        return self.users.count_documents({"wallet_address": wallet, "session_id": session_id}) > 0

    def update_profile(self, wallet: str, profile: dict[str, Any], username: str | None = None) -> User:
        updates: dict[str, Any] = {f"profile.{key}": value for key, value in profile.items()}
        if username:
            updates["username"] = username
        if not updates:
            return self.get_user(wallet)
        result = self.users.update_one({"wallet_address": wallet}, {"$set": updates})
        if result.matched_count == 0:
            raise UserNotFound(wallet_address=wallet)
        return self.get_user(wallet)

    # ------------------------------------------------------------------
    # Character record
    # ------------------------------------------------------------------

    def _refresh_energy(self, wallet: str, **kw: Any) -> None:
        """Refill energy once per UTC day, on the first touch of the new day."""
        today = self._today()
        self.character_stats.update_one(
            {"wallet": wallet, "energy_reset_day": {"$ne": today}},
            {"$set": {"energy": config.ENERGY_MAX, "energy_reset_day": today}},
            **kw,
        )

    def _find_stats(self, wallet: str, **kw: Any) -> CharacterStats | None:
        doc = self.character_stats.find_one({"wallet": wallet}, **kw)
        return from_doc(CharacterStats, doc) if doc else None

    def get_stats(self, wallet: str) -> CharacterStats:
        self._refresh_energy(wallet)
        stats = self._find_stats(wallet)
        if stats is None:
            raise CharacterNotFound(wallet_address=wallet)
        return stats

    def create_character(self, wallet: str, token_id: str) -> CharacterStats:
        self.get_user(wallet)
        stats = CharacterStats(
            wallet=wallet,
            token_id=token_id,
            energy_reset_day=self._today(),
            last_updated=self._now_iso(),
        )
        try:
            self.character_stats.insert_one(to_doc(stats))
        except DuplicateKeyError:
            raise CharacterExists(wallet_address=wallet) from None
        self.users.update_one({"wallet_address": wallet}, {"$set": {"nft_token_id": token_id}})
        log.info("minted champion %s for %s", token_id, wallet)
        return stats

    def allocate_stat_points(self, wallet: str, allocation: dict[str, Any]) -> CharacterStats:
        if not isinstance(allocation, dict) or not allocation:
            raise ValidationError("allocation must be a non-empty object")
        for stat, value in allocation.items():
            if stat not in config.STAT_NAMES:
                raise InvalidStat(f"unknown stat {stat!r}", stat=stat, valid_stats=list(config.STAT_NAMES))
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ValidationError(f"{stat} must be a non-negative integer", field=stat)
        total = sum(allocation.values())
        if total <= 0:
            raise ValidationError("allocation must spend at least one point")

        stats = self.get_stats(wallet)
        if stats.stat_points < total:
            raise InsufficientPoints(available=stats.stat_points, requested=total)
        increments: dict[str, int] = {"stat_points": -total}
        increments.update({stat: value for stat, value in allocation.items() if value > 0})
        doc = self.character_stats.find_one_and_update(
            {"wallet": wallet, "stat_points": {"$gte": total}},
            {"$inc": increments, "$set": {"last_updated": self._now_iso()}},
            return_document=AFTER,
        )
        if doc is None:
            current = self.get_stats(wallet)
            raise InsufficientPoints(available=current.stat_points, requested=total)
        return from_doc(CharacterStats, doc)

    def adjust_energy(self, wallet: str, delta: int) -> CharacterStats:
        """Add ``delta`` to energy, clamped to [0, ENERGY_MAX].

        Retries until the compare-and-swap lands.
        """
        while True:
            stats = self.get_stats(wallet)
            target = clamp_energy(stats.energy + delta)
            doc = self.character_stats.find_one_and_update(
                {"wallet": wallet, "energy": stats.energy, "energy_reset_day": stats.energy_reset_day},
                {"$set": {"energy": target}},
                return_document=AFTER,
            )
            if doc is not None:
                return from_doc(CharacterStats, doc)

    def spend_energy(self, wallet: str, cost: int, message: str | None = None) -> CharacterStats:
        if cost <= 0:
            return self.get_stats(wallet)
        self._refresh_energy(wallet)
        doc = self.character_stats.find_one_and_update(
            {"wallet": wallet, "energy": {"$gte": cost}},
            {"$inc": {"energy": -cost}},
            return_document=AFTER,
        )
        if doc is None:
            stats = self.get_stats(wallet)
            raise InsufficientEnergy(message, current_energy=stats.energy, required_energy=cost)
        return from_doc(CharacterStats, doc)

    def energy_status(self, wallet: str) -> dict[str, int]:
        stats = self.get_stats(wallet)
        now = self._now().astimezone(UTC)
        next_reset = (now + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
        return {
            "energy": stats.energy,
            "max_energy": config.ENERGY_MAX,
            "seconds_until_reset": int((next_reset - now).total_seconds()),
        }

    # ------------------------------------------------------------------
    # Gold
    # ------------------------------------------------------------------

    def spend_gold(self, wallet: str, amount: int) -> int:
        doc = self.users.find_one_and_update(
            {"wallet_address": wallet, "gold": {"$gte": amount}},
            {"$inc": {"gold": -amount}},
            return_document=AFTER,
        )
        if doc is None:
            user = self.get_user(wallet)
            raise InsufficientGold(current_gold=user.gold, required_gold=amount)
        return int(doc["gold"])

    def credit_gold(self, wallet: str, amount: int, **kw: Any) -> int:
        doc = self.users.find_one_and_update(
            {"wallet_address": wallet},
            {"$inc": {"gold": amount}},
            return_document=AFTER,
            **kw,
        )
        if doc is None:
            raise UserNotFound(wallet_address=wallet)
        return int(doc["gold"])

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    def settle(self, wallet: str, xp: int, gold: int, bonus_points: int = 0) -> dict[str, Any]:
        with self._txn() as kw:
            return self._settle(wallet, xp, gold, bonus_points, kw)

    def _settle(
        self,
        wallet: str,
        xp: int,
        gold: int,
        bonus_points: int,
        kw: dict[str, Any],
    ) -> dict[str, Any]:
        """Add xp, roll over every level threshold it crosses, then credit gold."""
        for _ in range(config.SETTLEMENT_MAX_ATTEMPTS):
            stats = self._find_stats(wallet, **kw)
            if stats is None:
                raise CharacterNotFound(wallet_address=wallet)
            level, new_xp, threshold, gained = apply_leveling(
                stats.level, stats.xp + max(0, xp), stats.xp_to_next_level
            )
            update: dict[str, Any] = {
                "$set": {
                    "level": level,
                    "xp": new_xp,
                    "xp_to_next_level": threshold,
                    "last_updated": self._now_iso(),
                }
            }
            points = gained * config.STAT_POINTS_PER_LEVEL + max(0, bonus_points)
            if points:
                update["$inc"] = {"stat_points": points}
            doc = self.character_stats.find_one_and_update(
                {
                    "wallet": wallet,
                    "level": stats.level,
                    "xp": stats.xp,
                    "xp_to_next_level": stats.xp_to_next_level,
                },
                update,
                return_document=AFTER,
                **kw,
            )
            if doc is not None:
                break
        else:
            raise ConcurrentUpdate("character progression changed concurrently")

        gold_balance = self.credit_gold(wallet, max(0, gold), **kw)
        settled = from_doc(CharacterStats, doc)
        if gained:
            log.info("%s reached level %d (+%d)", wallet, settled.level, gained)
        return {
            "level_up": gained > 0,
            "levels_gained": gained,
            "new_level": settled.level,
            "xp": settled.xp,
            "xp_to_next_level": settled.xp_to_next_level,
            "stat_points": settled.stat_points,
            "gold": gold_balance,
        }

    # ------------------------------------------------------------------
    # Inventory and equipment
    # ------------------------------------------------------------------

    def list_catalog(self) -> list[dict[str, Any]]:
        return [{**item, "bonuses": dict(item["bonuses"])} for item in catalog.MARKETPLACE_ITEMS]

    def list_inventory(self, wallet: str) -> list[InventoryItem]:
        cursor = self.inventory_items.find({"wallet": wallet}).sort("acquired_at", ASCENDING)
        return [from_doc(InventoryItem, doc) for doc in cursor]

    def _find_item(self, wallet: str, item_id: str) -> InventoryItem | None:
        doc = self.inventory_items.find_one({"wallet": wallet, "item_id": item_id})
        return from_doc(InventoryItem, doc) if doc else None

    def purchase(self, wallet: str, item_id: str) -> tuple[InventoryItem, int]:
        listing = catalog.find_item(item_id)
        if listing is None:
            raise ItemNotFound("item not found in marketplace", item_id=item_id)
        self.get_user(wallet)
        self.get_stats(wallet)
        if self._find_item(wallet, item_id) is not None:
            raise ItemAlreadyOwned(item_id=item_id)

        price = int(listing["price"])
        balance = self.spend_gold(wallet, price)
        item = InventoryItem(
            wallet=wallet,
            item_id=listing["item_id"],
            type=listing["type"],
            name=listing["name"],
            rarity=listing["rarity"],
            bonuses=listing["bonuses"],
            price=price,
            acquired_at=self._now_iso(),
        )
        try:
            self.inventory_items.insert_one(to_doc(item))
        except DuplicateKeyError:
            self.credit_gold(wallet, price)
            raise ItemAlreadyOwned(item_id=item_id) from None
        log.info("%s bought %s for %d gold", wallet, item_id, price)
        return item, balance

    @staticmethod
    def _bonus_delta(bonuses: dict[str, Any], sign: int) -> dict[str, int]:
        return {
            stat: sign * value
            for stat, value in bonuses.items()
            if stat in config.STAT_NAMES and isinstance(value, int) and not isinstance(value, bool)
        }

    def equip(self, wallet: str, item_id: str) -> dict[str, Any]:
        """Toggle ``item_id``; equipping swaps out any equipped item of the same slot."""
        item = self._find_item(wallet, item_id)
        if item is None:
            raise ItemNotFound("item not found in inventory", item_id=item_id)
        self.get_stats(wallet)

        delta: dict[str, int] = {}
        replaced: InventoryItem | None = None

        def merge(part: dict[str, int]) -> None:
            for stat, value in part.items():
                delta[stat] = delta.get(stat, 0) + value

        with self._txn() as kw:
            if item.is_equipped:
                result = self.inventory_items.update_one(
                    {"wallet": wallet, "item_id": item_id, "is_equipped": True},
                    {"$set": {"is_equipped": False}},
                    **kw,
                )
                if result.modified_count == 0:
                    raise ConcurrentUpdate("item was toggled concurrently", item_id=item_id)
                merge(self._bonus_delta(item.bonuses, -1))
                equipped = False
            else:
                result = self.inventory_items.update_one(
                    {"wallet": wallet, "item_id": item_id, "is_equipped": False},
                    {"$set": {"is_equipped": True}},
                    **kw,
                )
                if result.modified_count == 0:
                    raise ConcurrentUpdate("item was toggled concurrently", item_id=item_id)
                previous = self.inventory_items.find_one(
                    {"wallet": wallet, "type": item.type, "is_equipped": True, "item_id": {"$ne": item_id}},
                    **kw,
                )
                if previous is not None:
                    unequipped = self.inventory_items.update_one(
                        {"wallet": wallet, "item_id": previous["item_id"], "is_equipped": True},
                        {"$set": {"is_equipped": False}},
                        **kw,
                    )
                    if unequipped.modified_count:
                        replaced = from_doc(InventoryItem, previous)
                        merge(self._bonus_delta(replaced.bonuses, -1))
                merge(self._bonus_delta(item.bonuses, 1))
                equipped = True

            delta = {stat: value for stat, value in delta.items() if value}
            if delta:
                doc = self.character_stats.find_one_and_update(
                    {"wallet": wallet},
                    {"$inc": delta, "$set": {"last_updated": self._now_iso()}},
                    return_document=AFTER,
                    **kw,
                )
            else:
                doc = self.character_stats.find_one({"wallet": wallet}, **kw)

        item.is_equipped = equipped
        return {
            "equipped": equipped,
            "item": item,
            "replaced_item_id": replaced.item_id if replaced else None,
            "stats": from_doc(CharacterStats, doc) if doc else None,
            "stats_delta": delta,
        }

    def sell(self, wallet: str, item_id: str) -> dict[str, int]:
        item = self._find_item(wallet, item_id)
        if item is None:
            raise ItemNotFound("item not found in inventory", item_id=item_id)
        if item.is_equipped:
            raise ItemEquipped(item_id=item_id)
        result = self.inventory_items.delete_one({"wallet": wallet, "item_id": item_id, "is_equipped": False})
        if result.deleted_count == 0:
            if self._find_item(wallet, item_id) is not None:
                raise ItemEquipped(item_id=item_id)
            raise ItemNotFound("item not found in inventory", item_id=item_id)
        received = sell_price(item.price)
        balance = self.credit_gold(wallet, received)
        log.info("%s sold %s for %d gold", wallet, item_id, received)
        return {"gold_received": received, "new_balance": balance}

    # ------------------------------------------------------------------
    # Quests
    # ------------------------------------------------------------------

    def quest_view(self, quest: Quest, completed: bool | None = None) -> dict[str, Any]:
        view = to_doc(quest)
        view["id"] = quest.quest_id
        if completed is not None:
            view["completed"] = completed
        expires = from_iso(quest.expires_at)
        view["time_left"] = max(0, int((expires - self._now()).total_seconds())) if expires else 0
        return view

    def _count_open_personal(self, wallet: str) -> int:
        return self.quests.count_documents(
            {
                "wallet": wallet,
                "type": "personal",
                "completed": False,
                "expires_at": {"$gt": self._now_iso()},
            }
        )

    def list_personal(self, wallet: str) -> list[dict[str, Any]]:
        cursor = self.quests.find(
            {"wallet": wallet, "type": "personal", "expires_at": {"$gt": self._now_iso()}}
        ).sort("created_at", ASCENDING)
        return [self.quest_view(from_doc(Quest, doc)) for doc in cursor]

    def list_server(self, wallet: str) -> list[dict[str, Any]]:
        stats = self._find_stats(wallet)
        level = stats.level if stats else 0
        cursor = self.quests.find(
            {"type": "server", "expires_at": {"$gt": self._now_iso()}, "required_level": {"$lte": level}}
        ).sort("created_at", ASCENDING)
        completed_ids = set(self.quest_history.distinct("quest_id", {"wallet": wallet, "quest_type": "server"}))
        return [
            self.quest_view(quest, completed=quest.quest_id in completed_ids)
            for quest in (from_doc(Quest, doc) for doc in cursor)
        ]

    def generate_personal(self, wallet: str) -> tuple[Quest, int]:
        """Generate, sanitize and store a personal quest for 25 energy."""
        user = self.get_user(wallet)
        stats = self.get_stats(wallet)
        cost = config.PERSONAL_QUEST_ENERGY_COST
        if stats.energy < cost:
            raise InsufficientEnergy(
                "not enough energy to generate a personal quest",
                current_energy=stats.energy,
                required_energy=cost,
            )
        if self._count_open_personal(wallet) >= config.PERSONAL_QUEST_LIMIT:
            raise QuestLimitReached(
                f"you already have {config.PERSONAL_QUEST_LIMIT} personal quests",
                limit=config.PERSONAL_QUEST_LIMIT,
            )

        recent = [
            entry.quest_title
            for entry in self.quest_history_for(wallet, limit=config.QUEST_HISTORY_CONTEXT_LIMIT, quest_type="personal")
        ]
        definition = sanitize_quest_payload(self._content.personal_quest(user, recent))

        stats = self.spend_energy(wallet, cost, "not enough energy to generate a personal quest")
        now = self._now()
        quest = Quest(
            wallet=wallet,
            type="personal",
            energy_cost=cost,
            expires_at=to_iso(now + timedelta(seconds=config.PERSONAL_QUEST_TTL_SECONDS)),
            created_at=to_iso(now),
            **definition,
        )
        self.quests.insert_one(to_doc(quest))
        log.info("generated personal quest %s for %s", quest.quest_id, wallet)
        return quest, stats.energy

    def generate_server(self) -> list[Quest]:
        now = self._now()
        expires_at = to_iso(now + timedelta(days=config.SERVER_QUEST_TTL_DAYS))
        created: list[Quest] = []
        for raw in self._content.server_quests():
            try:
                definition = sanitize_quest_payload(raw, server=True)
            except ValidationError as exc:
                log.warning("skipping unusable server quest: %s", exc)
                continue
            quest = Quest(wallet="server", type="server", expires_at=expires_at, created_at=to_iso(now), **definition)
            self.quests.insert_one(to_doc(quest))
            created.append(quest)
        if not created:
            raise UpstreamError("completion contained no usable quests")
        log.info("generated %d server quests", len(created))
        return created

    def _find_quest(self, query: dict[str, Any]) -> Quest | None:
        doc = self.quests.find_one(query)
        return from_doc(Quest, doc) if doc else None

    def start(self, wallet: str, quest_id: str) -> Quest:
        user = self.get_user(wallet)
        quest = self._find_quest({"quest_id": quest_id, "wallet": wallet})
        if quest is None:
            raise QuestNotFound(quest_id=quest_id)
        if quest.completed:
            raise AlreadyCompleted("this quest is already completed", quest_id=quest_id)
        if quest.active:
            raise AlreadyActive(quest_id=quest_id)
        if quest.expires_at <= self._now_iso():
            raise QuestExpired(quest_id=quest_id)

        held = user.active_quest_id
        if held:
            if self.quests.count_documents({"quest_id": held, "wallet": wallet, "active": True}):
                raise QuestAlreadyActive(active_quest_id=held)
            # lock points at a quest that is no longer active
            self.users.update_one(
                {"wallet_address": wallet, "active_quest_id": held},
                {"$set": {"active_quest_id": None}},
            )

        lock = self.users.update_one(
            {"wallet_address": wallet, "active_quest_id": None},
            {"$set": {"active_quest_id": quest_id}},
        )
        if lock.modified_count == 0:
            current = self.get_user(wallet)
            raise QuestAlreadyActive(active_quest_id=current.active_quest_id)

        doc = self.quests.find_one_and_update(
            {"quest_id": quest_id, "wallet": wallet, "active": False, "completed": False},
            {"$set": {"active": True, "started_at": self._now_iso()}},
            return_document=AFTER,
        )
        if doc is None:
            self.users.update_one(
                {"wallet_address": wallet, "active_quest_id": quest_id},
                {"$set": {"active_quest_id": None}},
            )
            raise AlreadyActive(quest_id=quest_id)
        log.info("%s started quest %s", wallet, quest_id)
        return from_doc(Quest, doc)

    def complete_active(self, wallet: str, quest_id: str) -> dict[str, Any]:
        """Settle an active personal quest once 80% of its estimated time has passed."""
        active_filter = {"quest_id": quest_id, "wallet": wallet, "active": True, "completed": False}
        quest = self._find_quest(active_filter)
        if quest is None:
            raise QuestNotFound("active quest not found", quest_id=quest_id)
        self.get_stats(wallet)

        now = self._now()
        started = from_iso(quest.started_at) or now
        duration = quest.estimated_time * 60
        required = round(duration * config.COMPLETION_TIME_TOLERANCE, 6)
        elapsed = (now - started).total_seconds()
        if elapsed < required:
            raise TooEarly(
                remaining_time=max(0, math.ceil(duration - elapsed)),
                elapsed_seconds=int(elapsed),
                required_seconds=math.ceil(required),
            )

        bonus = self._rng.randint(*config.QUEST_BONUS_POINTS_RANGE)
        with self._txn() as kw:
            doc = self.quests.find_one_and_update(
                active_filter,
                {
                    "$set": {
                        "active": False,
                        "completed": True,
                        "completed_at": to_iso(now),
                        "progress": quest.target,
                    }
                },
                return_document=AFTER,
                **kw,
            )
            if doc is None:
                raise QuestNotFound("active quest not found", quest_id=quest_id)
            entry = QuestHistoryEntry(
                wallet=wallet,
                quest_id=quest.quest_id,
                quest_type=quest.type,
                quest_title=quest.title,
                category=quest.category,
                difficulty=quest.difficulty,
                energy_cost=quest.energy_cost,
                rewards_xp=quest.reward_xp,
                rewards_gold=quest.reward_gold,
                rewards_items=quest.reward_items,
                bonus_points=bonus,
                completed_at=to_iso(now),
            )
            self.quest_history.insert_one(to_doc(entry), **kw)
            self.quests.delete_one({"quest_id": quest_id, "wallet": wallet}, **kw)
            self.users.update_one(
                {"wallet_address": wallet, "active_quest_id": quest_id},
                {"$set": {"active_quest_id": None}},
                **kw,
            )
            settlement = self._settle(wallet, quest.reward_xp, quest.reward_gold, bonus, kw)

        log.info("%s completed quest %s", wallet, quest_id)
        return {
            "quest_id": quest_id,
            "rewards": {"xp": quest.reward_xp, "gold": quest.reward_gold, "items": quest.reward_items},
            "bonus_points": bonus,
            "current_energy": self.get_stats(wallet).energy,
            **settlement,
        }

    def complete_server(self, wallet: str, quest_id: str) -> dict[str, Any]:
        """Record one wallet's completion of a shared server quest."""
        quest = self._find_quest({"quest_id": quest_id, "type": "server"})
        if quest is None:
            raise QuestNotFound(quest_id=quest_id)
        now = self._now()
        if quest.expires_at <= to_iso(now):
            raise QuestExpired(quest_id=quest_id)
        stats = self.get_stats(wallet)
        if stats.level < quest.required_level:
            raise LevelTooLow(required_level=quest.required_level, current_level=stats.level)
        if self.quest_history.count_documents({"wallet": wallet, "quest_id": quest_id}):
            raise AlreadyCompleted(quest_id=quest_id)

        stats = self.spend_energy(wallet, quest.energy_cost)
        entry = QuestHistoryEntry(
            wallet=wallet,
            quest_id=quest.quest_id,
            quest_type=quest.type,
            quest_title=quest.title,
            category=quest.category,
            difficulty=quest.difficulty,
            energy_cost=quest.energy_cost,
            rewards_xp=quest.reward_xp,
            rewards_gold=quest.reward_gold,
            rewards_items=quest.reward_items,
            completed_at=to_iso(now),
        )
        try:
            with self._txn() as kw:
                self.quest_history.insert_one(to_doc(entry), **kw)
                settlement = self._settle(wallet, quest.reward_xp, quest.reward_gold, 0, kw)
        except DuplicateKeyError:
            if quest.energy_cost > 0:
                self.adjust_energy(wallet, quest.energy_cost)
            raise AlreadyCompleted(quest_id=quest_id) from None
        except ConcurrentUpdate:
            # nothing was credited; undo the history row and the energy debit
            if not self._use_transactions:
                self.quest_history.delete_one({"wallet": wallet, "quest_id": quest_id})
            if quest.energy_cost > 0:
                self.adjust_energy(wallet, quest.energy_cost)
            raise
        log.info("%s completed server quest %s", wallet, quest_id)
        return {
            "quest_id": quest_id,
            "rewards": {"xp": quest.reward_xp, "gold": quest.reward_gold, "items": quest.reward_items},
            "current_energy": stats.energy,
            **settlement,
        }

    def quest_history_for(
        self,
        wallet: str,
        limit: int = 10,
        quest_type: str | None = None,
    ) -> list[QuestHistoryEntry]:
        query: dict[str, Any] = {"wallet": wallet}
        if quest_type:
            query["quest_type"] = quest_type
        cursor = self.quest_history.find(query).sort("completed_at", DESCENDING).limit(limit)
        return [from_doc(QuestHistoryEntry, doc) for doc in cursor]

    # ------------------------------------------------------------------
    # Leaderboard
    # ------------------------------------------------------------------

    def _usernames(self, wallets: list[str]) -> dict[str, str]:
        cursor = self.users.find({"wallet_address": {"$in": wallets}})
        return {doc["wallet_address"]: doc.get("username", "") for doc in cursor}

    def leaderboard(self, limit: int = 100) -> list[dict[str, Any]]:
        cursor = self.character_stats.find().sort([("level", DESCENDING), ("xp", DESCENDING)]).limit(limit)
        rows = [from_doc(CharacterStats, doc) for doc in cursor]
        names = self._usernames([row.wallet for row in rows])
        return [
            {
                "rank": index + 1,
                "wallet_address": row.wallet,
                "username": names.get(row.wallet, ""),
                "level": row.level,
                "xp": row.xp,
            }
            for index, row in enumerate(rows)
        ]

    # ------------------------------------------------------------------
    # Workouts and achievements
    # ------------------------------------------------------------------

    def create_workout(
        self,
        wallet: str,
        type: str,
        description: str,
        duration: int,
        ai_generated: bool = False,
    ) -> Workout:
        self.get_user(wallet)
        workout = Workout(
            wallet=wallet,
            type=type,
            description=description,
            duration=duration,
            ai_generated=ai_generated,
            created_at=self._now_iso(),
        )
        self.workouts.insert_one(to_doc(workout))
        log.info("logged %d minute workout %s for %s", duration, workout.workout_id, wallet)
        return workout

    def list_workouts(self, wallet: str) -> list[Workout]:
        cursor = self.workouts.find({"wallet": wallet}).sort("created_at", ASCENDING)
        return [from_doc(Workout, doc) for doc in cursor]

    def list_achievements(self, wallet: str) -> list[Achievement]:
        cursor = self.achievements.find({"wallet": wallet}).sort("unlocked_at", ASCENDING)
        return [from_doc(Achievement, doc) for doc in cursor]

    def _refresh_workout_totals(self, wallet: str) -> User:
        """Recompute score and totals from completed workouts, then the score rank."""
        rows = list(
            self.workouts.aggregate(
                [
                    {"$match": {"wallet": wallet, "completed": True}},
                    {"$group": {"_id": None, "count": {"$sum": 1}, "minutes": {"$sum": "$duration"}}},
                ]
            )
        )
        count = int(rows[0]["count"]) if rows else 0
        minutes = int(rows[0]["minutes"]) if rows else 0
        score = count * config.WORKOUT_SCORE_PER_WORKOUT + minutes // config.WORKOUT_MINUTES_PER_SCORE_POINT
        rank = self.users.count_documents({"score": {"$gt": score}, "wallet_address": {"$ne": wallet}}) + 1
        doc = self.users.find_one_and_update(
            {"wallet_address": wallet},
            {"$set": {"score": score, "rank": rank, "total_workouts": count, "total_minutes": minutes}},
            return_document=AFTER,
        )
        if doc is None:
            raise UserNotFound(wallet_address=wallet)
        return from_doc(User, doc)

    def _milestones(self, user: User) -> list[tuple[str, str, str, str]]:
        earned: list[tuple[str, str, str, str]] = []
        if user.total_workouts >= 1:
            earned.append(("first_workout", "First Step", "Complete your first workout", "footprints"))
        for count in config.WORKOUT_COUNT_MILESTONES:
            if user.total_workouts >= count:
                earned.append((f"workouts_{count}", f"{count} Workouts", f"Complete {count} workouts", "dumbbell"))
        hours = user.total_minutes // 60
        for milestone in config.WORKOUT_HOUR_MILESTONES:
            if hours >= milestone:
                earned.append(
                    (f"hours_{milestone}", f"{milestone} Hours", f"Spend {milestone} hours working out", "clock")
                )
        for milestone in config.RANK_MILESTONES:
            if 0 < user.rank <= milestone:
                earned.append(
                    (f"rank_{milestone}", f"Top {milestone}", f"Reach top {milestone} on the leaderboard", "trophy")
                )
        return earned

    def unlock_achievements(self, wallet: str) -> list[Achievement]:
        """Unlock every milestone the user has reached; returns only the new ones."""
        user = self.get_user(wallet)
        unlocked: list[Achievement] = []
        for kind, name, description, icon in self._milestones(user):
            achievement = Achievement(
                wallet=wallet,
                type=kind,
                name=name,
                description=description,
                icon_name=icon,
                unlocked_at=self._now_iso(),
            )
            try:
                self.achievements.insert_one(to_doc(achievement))
            except DuplicateKeyError:
                continue
            unlocked.append(achievement)
        if unlocked:
            log.info("%s unlocked %s", wallet, ", ".join(a.type for a in unlocked))
        return unlocked

    def complete_workout(self, wallet: str, workout_id: str) -> dict[str, Any]:
        """Mark a workout done, refresh the score, pay gold and unlock milestones."""
        if self.workouts.count_documents({"workout_id": workout_id, "wallet": wallet}) == 0:
            raise WorkoutNotFound(workout_id=workout_id)
        doc = self.workouts.find_one_and_update(
            {"workout_id": workout_id, "wallet": wallet, "completed": False},
            {"$set": {"completed": True, "completed_at": self._now_iso()}},
            return_document=AFTER,
        )
        if doc is None:
            raise WorkoutAlreadyCompleted(workout_id=workout_id)

        user = self._refresh_workout_totals(wallet)
        new_achievements = self.unlock_achievements(wallet)
        gold_reward = self._rng.randint(*config.WORKOUT_GOLD_REWARD_RANGE)
        balance = self.credit_gold(wallet, gold_reward)
        log.info("%s completed workout %s (+%d gold)", wallet, workout_id, gold_reward)
        return {
            "workout": from_doc(Workout, doc),
            "new_achievements": new_achievements,
            "gold_reward": gold_reward,
            "gold": balance,
            "score": user.score,
            "rank": user.rank,
            "total_workouts": user.total_workouts,
            "total_minutes": user.total_minutes,
        }

    # ------------------------------------------------------------------
    # Boss encounters
    # ------------------------------------------------------------------

    def spawn_boss(self, payload: dict[str, Any]) -> Boss:
        """Replace the active boss: deactivate every active boss, then insert the new one."""
        boss = Boss(**sanitize_boss_payload(payload), created_at=self._now_iso())
        with self._txn() as kw:
            self.bosses.update_many({"is_active": True}, {"$set": {"is_active": False}}, **kw)
            self.bosses.insert_one(to_doc(boss), **kw)
        log.info("spawned boss %s (%s)", boss.boss_id, boss.name)
        return boss

    def current_boss(self) -> Boss:
        doc = self.bosses.find_one({"is_active": True, "is_defeated": False}, sort=[("created_at", DESCENDING)])
        if doc is None:
            raise BossNotFound("no active boss")
        return from_doc(Boss, doc)

    def _find_boss(self, boss_id: str, live_only: bool = True) -> Boss | None:
        query: dict[str, Any] = {"boss_id": boss_id}
        if live_only:
            query.update(is_active=True, is_defeated=False)
        doc = self.bosses.find_one(query)
        return from_doc(Boss, doc) if doc else None

    def _resolve_damage(self, stats: CharacterStats, boss: Boss, proposed_damage: int) -> dict[str, Any]:
        max_damage = formula_damage(stats.level, stats.STR, stats.AGI, critical=True)
        try:
            raw = self._content.battle(stats, boss, proposed_damage, max_damage)
            outcome = sanitize_battle_payload(raw, max_damage)
            outcome["source"] = "ai"
            return outcome
        except (UpstreamError, ValidationError) as exc:
            log.info("battle narration unavailable, using damage formula: %s", exc.message)
        except Exception:
            log.exception("battle narration failed, using damage formula")

        critical = self._rng.random() < config.BOSS_CRITICAL_CHANCE
        damage = formula_damage(stats.level, stats.STR, stats.AGI, critical)
        narrative = f"Your champion strikes {boss.name} for {damage} damage."
        if critical:
            narrative = f"A critical hit! Your champion strikes {boss.name} for {damage} damage."
        return {
            "damage": damage,
            "is_critical": critical,
            "narrative": narrative,
            "special_effects": [],
            "source": "formula",
        }

    def _apply_boss_damage(self, boss_id: str, damage: int) -> Boss | None:
        """Compare-and-swap the boss health; ``None`` when the boss is no longer alive."""
        for _ in range(config.SETTLEMENT_MAX_ATTEMPTS * 4):
            current = self._find_boss(boss_id)
            if current is None:
                return None
            health = max(0, current.health - damage)
            changes: dict[str, Any] = {"health": health}
            if health == 0:
                changes.update(is_defeated=True, defeat_date=self._now_iso())
            doc = self.bosses.find_one_and_update(
                {"boss_id": boss_id, "health": current.health, "is_defeated": False},
                {"$set": changes},
                return_document=AFTER,
            )
            if doc is not None:
                return from_doc(Boss, doc)
        raise ConcurrentUpdate("boss health changed concurrently")

    def _refund_attack(self, wallet: str) -> None:
        self.adjust_energy(wallet, config.BOSS_ATTACK_ENERGY_COST)
        self.credit_gold(wallet, config.BOSS_ATTACK_GOLD_COST)

    def attack(self, wallet: str, boss_id: str, proposed_damage: int = 0) -> dict[str, Any]:
        """Resolve one attack against the shared boss.

        Energy and gold are charged before damage is resolved and are kept even
        when narration falls back to the formula. They are refunded only when
        the boss dies to another player between the checks and the hit.
        """
        boss = self._find_boss(boss_id)
        if boss is None:
            raise BossNotFound(boss_id=boss_id)
        user = self.get_user(wallet)
        stats = self.get_stats(wallet)
        if stats.level < boss.min_level_required:
            raise LevelTooLow(required_level=boss.min_level_required, current_level=stats.level)
        energy_cost = config.BOSS_ATTACK_ENERGY_COST
        gold_cost = config.BOSS_ATTACK_GOLD_COST
        if stats.energy < energy_cost:
            raise InsufficientEnergy(current_energy=stats.energy, required_energy=energy_cost)
        if user.gold < gold_cost:
            raise InsufficientGold(
                f"you need {gold_cost} gold to attack", current_gold=user.gold, required_gold=gold_cost
            )

        self.spend_energy(wallet, energy_cost)
        try:
            self.spend_gold(wallet, gold_cost)
        except InsufficientGold:
            self.adjust_energy(wallet, energy_cost)
            raise

        outcome = self._resolve_damage(stats, boss, proposed_damage)
        damage = int(outcome["damage"])
        try:
            boss_after = self._apply_boss_damage(boss_id, damage)
        except ConcurrentUpdate:
            self._refund_attack(wallet)
            raise
        if boss_after is None:
            self._refund_attack(wallet)
            raise BossNotFound("boss was defeated before the attack landed", boss_id=boss_id)

        rewards_xp = scaled_reward(boss.rewards_xp, damage, boss.max_health)
        rewards_gold = scaled_reward(boss.rewards_gold, damage, boss.max_health)
        record = BossDamageRecord(
            wallet=wallet,
            boss_id=boss_id,
            damage=damage,
            rewards_xp=rewards_xp,
            rewards_gold=rewards_gold,
            battle_description=outcome["narrative"],
            is_critical=bool(outcome["is_critical"]),
            special_effects=list(outcome["special_effects"]),
            source=outcome["source"],
            timestamp=self._now_iso(),
        )
        with self._txn() as kw:
            self.boss_damage.insert_one(to_doc(record), **kw)
            settlement = self._settle(wallet, rewards_xp, rewards_gold, 0, kw)
        if boss_after.is_defeated:
            log.info("boss %s defeated by %s", boss_id, wallet)

        return {
            "damage": damage,
            "is_critical": record.is_critical,
            "narrative": record.battle_description,
            "special_effects": record.special_effects,
            "source": record.source,
            "boss_health": boss_after.health,
            "boss_max_health": boss_after.max_health,
            "boss_defeated": boss_after.is_defeated,
            "rewards_xp": rewards_xp,
            "rewards_gold": rewards_gold,
            "current_energy": self.get_stats(wallet).energy,
            **settlement,
        }

    def boss_leaderboard(self, boss_id: str, limit: int = 10) -> list[dict[str, Any]]:
        if self._find_boss(boss_id, live_only=False) is None:
            raise BossNotFound(boss_id=boss_id)
        rows = list(
            self.boss_damage.aggregate(
                [
                    {"$match": {"boss_id": boss_id}},
                    {"$group": {"_id": "$wallet", "total_damage": {"$sum": "$damage"}, "attacks": {"$sum": 1}}},
                    {"$sort": {"total_damage": -1}},
                    {"$limit": limit},
                ]
            )
        )
        names = self._usernames([row["_id"] for row in rows])
        return [
            {
                "rank": index + 1,
                "wallet_address": row["_id"],
                "username": names.get(row["_id"], ""),
                "total_damage": int(row["total_damage"]),
                "attacks": int(row["attacks"]),
            }
            for index, row in enumerate(rows)
        ]

    def boss_history(self, wallet: str, limit: int = 20) -> list[dict[str, Any]]:
        cursor = self.boss_damage.find({"wallet": wallet}).sort("timestamp", DESCENDING).limit(limit)
        records = [from_doc(BossDamageRecord, doc) for doc in cursor]
        boss_ids = sorted({record.boss_id for record in records})
        names = {doc["boss_id"]: doc.get("name", "") for doc in self.bosses.find({"boss_id": {"$in": boss_ids}})}
        history: list[dict[str, Any]] = []
        for record in records:
            entry = to_doc(record)
            entry["boss_name"] = names.get(record.boss_id, "")
            history.append(entry)
        return history
