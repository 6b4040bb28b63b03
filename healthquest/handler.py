"""FastAPI router for the HealthQuest API."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, Query, Request
from fastapi.responses import JSONResponse

from healthquest.auth import assert_wallet, issue_token, require_admin, require_wallet
from healthquest.game_store import GameStore
from healthquest.models import Boss, CharacterStats, InventoryItem, User, to_doc
from healthquest.schemas import parse_profile, parse_workout

router = APIRouter(prefix="/api")

# ---------------------------------------------------------------------------
# Dependency providers
# ---------------------------------------------------------------------------


def get_store(request: Request) -> GameStore:
    return request.app.state.store  # type: ignore[no-any-return]


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _required_string(data: dict[str, object], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{key} is required")
    return value.strip()


def _optional_int(data: dict[str, object], key: str, default: int = 0) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer")
    return value


def _caller_wallet(claimed: object, auth_wallet: str) -> str:
    """A wallet named in the body or query must be the token's wallet."""
    if claimed is not None and claimed != "":
        if not isinstance(claimed, str):
            raise ValueError("walletAddress must be a string")
        assert_wallet(auth_wallet, claimed.strip())
    return auth_wallet


# ---------------------------------------------------------------------------
# Views
# ---------------------------------------------------------------------------


def _user_view(user: User) -> dict[str, Any]:
    view = to_doc(user)
    view.pop("session_id", None)
    return view


def _stats_view(stats: CharacterStats) -> dict[str, Any]:
    return to_doc(stats)


def _item_view(item: InventoryItem) -> dict[str, Any]:
    return to_doc(item)


def _boss_view(boss: Boss) -> dict[str, Any]:
    return to_doc(boss)


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


@router.get("/healthz")
def route_healthz() -> JSONResponse:
    return JSONResponse({"status": "ok"})


@router.post("/auth/connect")
def route_connect(
    body: dict[str, object] = Body(default={}),
    store: GameStore = Depends(get_store),
) -> JSONResponse:
    wallet = _required_string(body, "walletAddress")
    user = store.connect(wallet)
    token = issue_token(user.wallet_address, user.session_id or "")
    return JSONResponse({"token": token, "user": _user_view(user)})


@router.post("/auth/disconnect")
def route_disconnect(
    auth_wallet: str = Depends(require_wallet),
    store: GameStore = Depends(get_store),
) -> JSONResponse:
    store.disconnect(auth_wallet)
    return JSONResponse({"success": True})


@router.post("/users")
def route_create_user(
    body: dict[str, object] = Body(default={}),
    store: GameStore = Depends(get_store),
) -> JSONResponse:
    wallet = _required_string(body, "walletAddress")
    username = body.get("username")
    user = store.ensure_user(wallet, username=username if isinstance(username, str) else None)
    return JSONResponse(_user_view(user))


@router.post("/users/mint-nft")
def route_mint_nft(
    body: dict[str, object] = Body(default={}),
    auth_wallet: str = Depends(require_wallet),
    store: GameStore = Depends(get_store),
) -> JSONResponse:
    wallet = _caller_wallet(body.get("walletAddress"), auth_wallet)
    token_id = _required_string(body, "tokenId")
    stats = store.create_character(wallet, token_id)
    return JSONResponse(_stats_view(stats))


@router.get("/users/{wallet}")
def route_get_user(
    wallet: str,
    auth_wallet: str = Depends(require_wallet),
    store: GameStore = Depends(get_store),
) -> JSONResponse:
    assert_wallet(auth_wallet, wallet)
    return JSONResponse(_user_view(store.get_user(wallet)))


@router.patch("/users/{wallet}/profile")
def route_update_profile(
    wallet: str,
    body: dict[str, Any] = Body(default={}),
    auth_wallet: str = Depends(require_wallet),
    store: GameStore = Depends(get_store),
) -> JSONResponse:
    assert_wallet(auth_wallet, wallet)
    profile, username = parse_profile(body)
    user = store.update_profile(wallet, profile, username=username)
    return JSONResponse(_user_view(user))


# ---------------------------------------------------------------------------
# Character
# ---------------------------------------------------------------------------


@router.get("/users/{wallet}/nft-stats")
def route_get_stats(wallet: str, store: GameStore = Depends(get_store)) -> JSONResponse:
    return JSONResponse(_stats_view(store.get_stats(wallet)))


@router.get("/users/{wallet}/energy")
def route_energy(wallet: str, store: GameStore = Depends(get_store)) -> JSONResponse:
    return JSONResponse(store.energy_status(wallet))


@router.post("/users/{wallet}/nft-stats/update")
def route_allocate_stats(
    wallet: str,
    body: dict[str, object] = Body(default={}),
    auth_wallet: str = Depends(require_wallet),
    store: GameStore = Depends(get_store),
) -> JSONResponse:
    assert_wallet(auth_wallet, wallet)
    allocation = body.get("statsToAdd")
    if not isinstance(allocation, dict):
        raise ValueError("statsToAdd must be an object")
    stats = store.allocate_stat_points(wallet, allocation)
    return JSONResponse(_stats_view(stats))


# ---------------------------------------------------------------------------
# Inventory and marketplace
# ---------------------------------------------------------------------------


@router.get("/users/{wallet}/nft-items")
def route_inventory(wallet: str, store: GameStore = Depends(get_store)) -> JSONResponse:
    return JSONResponse({"items": [_item_view(item) for item in store.list_inventory(wallet)]})


@router.post("/users/{wallet}/nft-items/equip")
def route_equip(
    wallet: str,
    body: dict[str, object] = Body(default={}),
    auth_wallet: str = Depends(require_wallet),
    store: GameStore = Depends(get_store),
) -> JSONResponse:
    assert_wallet(auth_wallet, wallet)
    result = store.equip(wallet, _required_string(body, "itemId"))
    stats = result["stats"]
    return JSONResponse(
        {
            "equipped": result["equipped"],
            "item": _item_view(result["item"]),
            "replaced_item_id": result["replaced_item_id"],
            "stats_delta": result["stats_delta"],
            "stats": _stats_view(stats) if stats else None,
        }
    )


@router.post("/users/{wallet}/nft-items/sell")
def route_sell(
    wallet: str,
    body: dict[str, object] = Body(default={}),
    auth_wallet: str = Depends(require_wallet),
    store: GameStore = Depends(get_store),
) -> JSONResponse:
    assert_wallet(auth_wallet, wallet)
    result = store.sell(wallet, _required_string(body, "itemId"))
    return JSONResponse({"success": True, **result})


@router.get("/marketplace")
def route_marketplace(store: GameStore = Depends(get_store)) -> JSONResponse:
    return JSONResponse({"items": store.list_catalog()})


@router.post("/marketplace/buy")
def route_buy(
    body: dict[str, object] = Body(default={}),
    auth_wallet: str = Depends(require_wallet),
    store: GameStore = Depends(get_store),
) -> JSONResponse:
    wallet = _caller_wallet(body.get("walletAddress"), auth_wallet)
    item, balance = store.purchase(wallet, _required_string(body, "itemId"))
    return JSONResponse({"success": True, "item": _item_view(item), "new_balance": balance})


# ---------------------------------------------------------------------------
# Quests
# ---------------------------------------------------------------------------


@router.get("/quests/personal")
def route_list_personal(
    wallet_address: str | None = Query(default=None, alias="walletAddress"),
    auth_wallet: str = Depends(require_wallet),
    store: GameStore = Depends(get_store),
) -> JSONResponse:
    wallet = _caller_wallet(wallet_address, auth_wallet)
    return JSONResponse({"quests": store.list_personal(wallet)})


@router.post("/quests/personal")
def route_generate_personal(
    body: dict[str, object] = Body(default={}),
    auth_wallet: str = Depends(require_wallet),
    store: GameStore = Depends(get_store),
) -> JSONResponse:
    wallet = _caller_wallet(body.get("walletAddress"), auth_wallet)
    quest, energy = store.generate_personal(wallet)
    return JSONResponse({"quest": store.quest_view(quest), "current_energy": energy})


@router.get("/quests/server")
def route_list_server(
    wallet_address: str | None = Query(default=None, alias="walletAddress"),
    auth_wallet: str = Depends(require_wallet),
    store: GameStore = Depends(get_store),
) -> JSONResponse:
    wallet = _caller_wallet(wallet_address, auth_wallet)
    return JSONResponse({"quests": store.list_server(wallet)})


@router.post("/quests/generate-server", dependencies=[Depends(require_admin)])
def route_generate_server(store: GameStore = Depends(get_store)) -> JSONResponse:
    quests = store.generate_server()
    return JSONResponse({"quests": [store.quest_view(quest) for quest in quests]})


@router.put("/quests/{quest_id}/start")
def route_start_quest(
    quest_id: str,
    body: dict[str, object] = Body(default={}),
    auth_wallet: str = Depends(require_wallet),
    store: GameStore = Depends(get_store),
) -> JSONResponse:
    wallet = _caller_wallet(body.get("walletAddress"), auth_wallet)
    quest = store.start(wallet, quest_id)
    return JSONResponse({"success": True, "quest": store.quest_view(quest)})


@router.put("/quests/{quest_id}/complete-active")
def route_complete_active(
    quest_id: str,
    body: dict[str, object] = Body(default={}),
    auth_wallet: str = Depends(require_wallet),
    store: GameStore = Depends(get_store),
) -> JSONResponse:
    wallet = _caller_wallet(body.get("walletAddress"), auth_wallet)
    return JSONResponse({"success": True, **store.complete_active(wallet, quest_id)})


@router.post("/quests/{quest_id}/complete")
def route_complete_server(
    quest_id: str,
    body: dict[str, object] = Body(default={}),
    auth_wallet: str = Depends(require_wallet),
    store: GameStore = Depends(get_store),
) -> JSONResponse:
    wallet = _caller_wallet(body.get("walletAddress"), auth_wallet)
    return JSONResponse({"success": True, **store.complete_server(wallet, quest_id)})


@router.get("/users/{wallet}/quest-history")
def route_quest_history(
    wallet: str,
    limit: int = Query(default=10, ge=1, le=100),
    store: GameStore = Depends(get_store),
) -> JSONResponse:
    entries = store.quest_history_for(wallet, limit=limit)
    return JSONResponse({"history": [to_doc(entry) for entry in entries]})


@router.get("/leaderboard")
def route_leaderboard(
    limit: int = Query(default=100, ge=1, le=500),
    store: GameStore = Depends(get_store),
) -> JSONResponse:
    return JSONResponse({"leaderboard": store.leaderboard(limit)})


# ---------------------------------------------------------------------------
# Workouts and achievements
# ---------------------------------------------------------------------------


@router.post("/workouts")
def route_create_workout(
    body: dict[str, Any] = Body(default={}),
    auth_wallet: str = Depends(require_wallet),
    store: GameStore = Depends(get_store),
) -> JSONResponse:
    wallet = _caller_wallet(body.get("walletAddress", body.get("userWallet")), auth_wallet)
    data = parse_workout(body)
    workout = store.create_workout(
        wallet,
        type=data.type,
        description=data.description,
        duration=data.duration,
        ai_generated=data.aiGenerated,
    )
    return JSONResponse(to_doc(workout))


@router.get("/users/{wallet}/workouts")
def route_list_workouts(wallet: str, store: GameStore = Depends(get_store)) -> JSONResponse:
    return JSONResponse({"workouts": [to_doc(workout) for workout in store.list_workouts(wallet)]})


@router.post("/workouts/{workout_id}/complete")
def route_complete_workout(
    workout_id: str,
    auth_wallet: str = Depends(require_wallet),
    store: GameStore = Depends(get_store),
) -> JSONResponse:
    result = store.complete_workout(auth_wallet, workout_id)
    result["workout"] = to_doc(result["workout"])
    result["new_achievements"] = [to_doc(a) for a in result["new_achievements"]]
    return JSONResponse({"success": True, **result})


@router.get("/users/{wallet}/achievements")
def route_achievements(wallet: str, store: GameStore = Depends(get_store)) -> JSONResponse:
    return JSONResponse({"achievements": [to_doc(a) for a in store.list_achievements(wallet)]})


# ---------------------------------------------------------------------------
# Boss encounters
# ---------------------------------------------------------------------------


@router.post("/boss", dependencies=[Depends(require_admin)])
def route_spawn_boss(
    body: dict[str, object] = Body(default={}),
    store: GameStore = Depends(get_store),
) -> JSONResponse:
    return JSONResponse(_boss_view(store.spawn_boss(body)))


@router.get("/boss/current")
def route_current_boss(store: GameStore = Depends(get_store)) -> JSONResponse:
    return JSONResponse(_boss_view(store.current_boss()))


@router.post("/boss/{boss_id}/attack")
def route_attack_boss(
    boss_id: str,
    body: dict[str, object] = Body(default={}),
    auth_wallet: str = Depends(require_wallet),
    store: GameStore = Depends(get_store),
) -> JSONResponse:
    wallet = _caller_wallet(body.get("walletAddress"), auth_wallet)
    proposed = _optional_int(body, "damage")
    if proposed < 0:
        raise ValueError("damage must not be negative")
    return JSONResponse({"success": True, **store.attack(wallet, boss_id, proposed)})


@router.get("/boss/{boss_id}/leaderboard")
def route_boss_leaderboard(
    boss_id: str,
    limit: int = Query(default=10, ge=1, le=100),
    store: GameStore = Depends(get_store),
) -> JSONResponse:
    return JSONResponse({"boss_id": boss_id, "leaderboard": store.boss_leaderboard(boss_id, limit)})


@router.get("/users/{wallet}/boss-history")
def route_boss_history(
    wallet: str,
    limit: int = Query(default=20, ge=1, le=100),
    store: GameStore = Depends(get_store),
) -> JSONResponse:
    return JSONResponse({"history": store.boss_history(wallet, limit)})
