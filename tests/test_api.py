"""API tests for the HealthQuest HTTP surface."""

from __future__ import annotations

import pytest
from conftest import auth_headers, make_champion, set_stats
from starlette.testclient import TestClient

WALLET = "0xA11CE"
OTHER = "0xB0B"
ADMIN = {"X-Admin-Key": "admin-key"}

PROFILE = {
    "age": 31,
    "gender": "female",
    "height": 170,
    "weight": 62.5,
    "fitnessGoal": "endurance",
    "experience": "intermediate",
    "preferredActivities": ["running", "yoga"],
    "workoutFrequency": {"sessionsPerWeek": 4, "minutesPerSession": 45},
}


def _post(
    client: TestClient,
    path: str,
    body: dict[str, object] | None = None,
    headers: dict[str, str] | None = None,
) -> tuple[int, dict[str, object]]:
    response = client.post(path, json=body or {}, headers=headers or {})
    return response.status_code, response.json()


def _put(client: TestClient, path: str, headers: dict[str, str]) -> tuple[int, dict[str, object]]:
    response = client.put(path, json={}, headers=headers)
    return response.status_code, response.json()


def _get(client: TestClient, path: str, headers: dict[str, str] | None = None) -> tuple[int, dict[str, object]]:
    response = client.get(path, headers=headers or {})
    return response.status_code, response.json()


class TestAuth:
    def test_healthz(self, client: TestClient) -> None:
        assert _get(client, "/api/healthz") == (200, {"status": "ok"})

    def test_connect_creates_user(self, client: TestClient) -> None:
        status, body = _post(client, "/api/auth/connect", {"walletAddress": WALLET})
        assert status == 200
        assert body["user"]["username"] == "user_0xA11C"
        assert "session_id" not in body["user"]

        headers = {"Authorization": f"Bearer {body['token']}"}
        status, user = _get(client, f"/api/users/{WALLET}", headers)
        assert status == 200
        assert user["gold"] == 10

    def test_connect_requires_wallet(self, client: TestClient) -> None:
        status, body = _post(client, "/api/auth/connect", {})
        assert status == 400
        assert body["message"] == "walletAddress is required"

    def test_missing_token(self, client: TestClient) -> None:
        status, body = _get(client, f"/api/users/{WALLET}")
        assert status == 401
        assert body["error"] == "authentication_required"

    def test_garbage_token(self, client: TestClient) -> None:
        status, _ = _get(client, f"/api/users/{WALLET}", {"Authorization": "Bearer not-a-jwt"})
        assert status == 401

    def test_other_wallet_forbidden(self, client: TestClient, store) -> None:
        store.ensure_user(OTHER)
        headers = auth_headers(store, WALLET)
        status, body = _get(client, f"/api/users/{OTHER}", headers)
        assert status == 403
        assert body["error"] == "forbidden"

    def test_body_wallet_must_match_token(self, client: TestClient, store) -> None:
        make_champion(store, OTHER)
        headers = auth_headers(store, WALLET)
        status, _ = _post(client, "/api/quests/personal", {"walletAddress": OTHER}, headers)
        assert status == 403

    def test_disconnect_revokes_token(self, client: TestClient, store) -> None:
        headers = auth_headers(store, WALLET)
        assert _post(client, "/api/auth/disconnect", {}, headers)[0] == 200
        status, _ = _get(client, f"/api/users/{WALLET}", headers)
        assert status == 401


class TestProfile:
    def test_update_profile(self, client: TestClient, store) -> None:
        headers = auth_headers(store, WALLET)
        response = client.patch(
            f"/api/users/{WALLET}/profile", json={**PROFILE, "username": "trailblazer"}, headers=headers
        )
        assert response.status_code == 200
        body = response.json()
        assert body["username"] == "trailblazer"
        assert body["profile"]["fitnessGoal"] == "endurance"
        assert body["profile"]["workoutFrequency"] == {"sessionsPerWeek": 4, "minutesPerSession": 45}

    def test_invalid_profile(self, client: TestClient, store) -> None:
        headers = auth_headers(store, WALLET)
        response = client.patch(f"/api/users/{WALLET}/profile", json={**PROFILE, "age": 5}, headers=headers)
        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "validation_error"
        assert [detail["path"] for detail in body["details"]] == ["age"]


class TestCharacterRoutes:
    def test_mint_and_read(self, client: TestClient, store) -> None:
        headers = auth_headers(store, WALLET)
        status, stats = _post(client, "/api/users/mint-nft", {"walletAddress": WALLET, "tokenId": "7"}, headers)
        assert status == 200
        assert stats["level"] == 1
        status, _ = _post(client, "/api/users/mint-nft", {"tokenId": "8"}, headers)
        assert status == 409
        assert _get(client, f"/api/users/{WALLET}/nft-stats")[1]["token_id"] == "7"

    def test_stats_missing_character(self, client: TestClient, store) -> None:
        store.ensure_user(WALLET)
        status, body = _get(client, f"/api/users/{WALLET}/nft-stats")
        assert status == 404
        assert body["error"] == "character_not_found"

    def test_allocate(self, client: TestClient, store) -> None:
        make_champion(store, WALLET)
        headers = auth_headers(store, WALLET)
        path = f"/api/users/{WALLET}/nft-stats/update"
        status, stats = _post(client, path, {"statsToAdd": {"VIT": 3}}, headers)
        assert (status, stats["VIT"], stats["stat_points"]) == (200, 13, 0)
        status, body = _post(client, path, {"statsToAdd": {"VIT": 1}}, headers)
        assert status == 400
        assert body == {"error": "insufficient_points", "message": "not enough stat points", "available": 0, "requested": 1}

    def test_energy(self, client: TestClient, store) -> None:
        make_champion(store, WALLET)
        status, body = _get(client, f"/api/users/{WALLET}/energy")
        assert status == 200
        assert body["energy"] == 100


class TestMarketplace:
    def test_catalog(self, client: TestClient) -> None:
        status, body = _get(client, "/api/marketplace")
        assert status == 200
        assert [item["item_id"] for item in body["items"]] == [
            "weapon-001",
            "helmet-001",
            "armor-001",
            "armor-002",
            "accessory-001",
        ]

    def test_buy_equip_sell(self, client: TestClient, store) -> None:
        make_champion(store, WALLET, gold=400)
        headers = auth_headers(store, WALLET)
        status, body = _post(client, "/api/marketplace/buy", {"itemId": "helmet-001"}, headers)
        assert (status, body["new_balance"]) == (200, 200)

        equip_path = f"/api/users/{WALLET}/nft-items/equip"
        sell_path = f"/api/users/{WALLET}/nft-items/sell"
        status, body = _post(client, equip_path, {"itemId": "helmet-001"}, headers)
        assert body["equipped"] is True
        assert body["stats_delta"] == {"STR": 2, "VIT": 3, "DEX": 1}

        status, body = _post(client, sell_path, {"itemId": "helmet-001"}, headers)
        assert (status, body["error"]) == (409, "item_equipped")

        _post(client, equip_path, {"itemId": "helmet-001"}, headers)
        status, body = _post(client, sell_path, {"itemId": "helmet-001"}, headers)
        assert (status, body["gold_received"], body["new_balance"]) == (200, 160, 360)
        assert _get(client, f"/api/users/{WALLET}/nft-items")[1] == {"items": []}

    def test_buy_without_gold(self, client: TestClient, store) -> None:
        make_champion(store, WALLET)
        headers = auth_headers(store, WALLET)
        status, body = _post(client, "/api/marketplace/buy", {"itemId": "weapon-001"}, headers)
        assert status == 400
        assert body["current_gold"] == 10


class TestQuestRoutes:
    def test_personal_quest_flow(self, client: TestClient, store, clock) -> None:
        make_champion(store, WALLET)
        headers = auth_headers(store, WALLET)

        status, body = _post(client, "/api/quests/personal", {}, headers)
        assert status == 200
        assert body["current_energy"] == 75
        quest = body["quest"]
        assert quest["time_left"] == 3600

        status, listed = _get(client, "/api/quests/personal", headers)
        assert [q["id"] for q in listed["quests"]] == [quest["id"]]

        assert _put(client, f"/api/quests/{quest['id']}/start", headers)[0] == 200
        status, body = _put(client, f"/api/quests/{quest['id']}/complete-active", headers)
        assert status == 400
        assert body["error"] == "too_early"
        assert body["remaining_time"] == 1800

        clock.advance(minutes=25)
        status, body = _put(client, f"/api/quests/{quest['id']}/complete-active", headers)
        assert status == 200
        assert body["level_up"] is True

        status, history = _get(client, f"/api/users/{WALLET}/quest-history")
        assert [entry["quest_title"] for entry in history["history"]] == ["Morning Run"]

    def test_generation_without_energy(self, client: TestClient, store) -> None:
        make_champion(store, WALLET)
        set_stats(store, WALLET, energy=24)
        status, body = _post(client, "/api/quests/personal", {}, auth_headers(store, WALLET))
        assert status == 400
        assert body["current_energy"] == 24
        assert body["required_energy"] == 25

    def test_generation_upstream_failure(self, client: TestClient, store, content) -> None:
        make_champion(store, WALLET)
        content.fail = True
        status, body = _post(client, "/api/quests/personal", {}, auth_headers(store, WALLET))
        assert status == 500
        assert body == {"error": "upstream_error", "message": "content generation failed"}
        assert store.get_stats(WALLET).energy == 100

    def test_second_active_quest_rejected(self, client: TestClient, store) -> None:
        make_champion(store, WALLET)
        headers = auth_headers(store, WALLET)
        first = _post(client, "/api/quests/personal", {}, headers)[1]["quest"]["id"]
        second = _post(client, "/api/quests/personal", {}, headers)[1]["quest"]["id"]
        assert _put(client, f"/api/quests/{first}/start", headers)[0] == 200
        status, body = _put(client, f"/api/quests/{second}/start", headers)
        assert (status, body["error"], body["active_quest_id"]) == (400, "quest_already_active", first)

    def test_server_quests_require_admin(self, client: TestClient) -> None:
        assert _post(client, "/api/quests/generate-server")[0] == 403
        assert _post(client, "/api/quests/generate-server", {}, {"X-Admin-Key": "wrong"})[0] == 403

    def test_server_quest_flow(self, client: TestClient, store) -> None:
        make_champion(store, WALLET)
        headers = auth_headers(store, WALLET)
        status, body = _post(client, "/api/quests/generate-server", {}, ADMIN)
        assert status == 200
        quest_id = body["quests"][0]["id"]

        status, listed = _get(client, f"/api/quests/server?walletAddress={WALLET}", headers)
        assert [(q["id"], q["completed"]) for q in listed["quests"]] == [(quest_id, False)]

        status, body = _post(client, f"/api/quests/{quest_id}/complete", {}, headers)
        assert (status, body["current_energy"]) == (200, 95)
        status, body = _post(client, f"/api/quests/{quest_id}/complete", {}, headers)
        assert (status, body["error"]) == (409, "already_completed")

    def test_leaderboard(self, client: TestClient, store) -> None:
        make_champion(store, WALLET)
        status, body = _get(client, "/api/leaderboard")
        assert status == 200
        assert body["leaderboard"][0]["wallet_address"] == WALLET


class TestBossRoutes:
    @pytest.fixture()
    def boss_id(self, client: TestClient) -> str:
        status, body = _post(
            client,
            "/api/boss",
            {"name": "Sloth Titan", "maxHealth": 100, "rewardsXp": 200, "rewardsGold": 100},
            ADMIN,
        )
        assert status == 200
        return body["boss_id"]

    def test_current_boss(self, client: TestClient, boss_id: str) -> None:
        status, body = _get(client, "/api/boss/current")
        assert (status, body["boss_id"], body["health"]) == (200, boss_id, 100)

    def test_no_current_boss(self, client: TestClient) -> None:
        assert _get(client, "/api/boss/current")[0] == 404

    def test_spawn_requires_admin(self, client: TestClient) -> None:
        assert _post(client, "/api/boss", {"name": "X", "maxHealth": 10})[0] == 403

    def test_attack_flow(self, client: TestClient, store, content, boss_id: str) -> None:
        make_champion(store, WALLET, gold=300)
        headers = auth_headers(store, WALLET)
        content.battle_result = {"damage": 30, "critical": True, "narrative": "Crushing blow.", "specialEffects": ["stun"]}

        status, body = _post(client, f"/api/boss/{boss_id}/attack", {"walletAddress": WALLET, "damage": 30}, headers)
        assert status == 200
        assert body["source"] == "ai"
        assert body["boss_health"] == 70
        assert body["special_effects"] == ["stun"]
        assert body["rewards_gold"] == 30

        status, board = _get(client, f"/api/boss/{boss_id}/leaderboard")
        assert board["leaderboard"][0]["total_damage"] == 30
        status, history = _get(client, f"/api/users/{WALLET}/boss-history")
        assert history["history"][0]["battle_description"] == "Crushing blow."

    def test_attack_without_gold(self, client: TestClient, store, boss_id: str) -> None:
        make_champion(store, WALLET, gold=99)
        status, body = _post(client, f"/api/boss/{boss_id}/attack", {}, auth_headers(store, WALLET))
        assert (status, body["error"]) == (400, "insufficient_gold")
        assert _get(client, "/api/boss/current")[1]["health"] == 100

    def test_attack_rejects_bad_damage(self, client: TestClient, store, boss_id: str) -> None:
        make_champion(store, WALLET, gold=300)
        status, _ = _post(client, f"/api/boss/{boss_id}/attack", {"damage": "lots"}, auth_headers(store, WALLET))
        assert status == 400


def test_unexpected_errors_hide_details(client: TestClient, store, monkeypatch: pytest.MonkeyPatch) -> None:
    def boom() -> list[dict[str, object]]:
        raise RuntimeError("database password is hunter2")

    monkeypatch.setattr(store, "list_catalog", boom)
    status, body = _get(client, "/api/marketplace")
    assert status == 500
    assert body == {"error": "internal server error"}


class TestWorkoutRoutes:
    def test_workout_flow(self, client: TestClient, store) -> None:
        headers = auth_headers(store, WALLET)
        status, workout = _post(
            client,
            "/api/workouts",
            {"walletAddress": WALLET, "type": "yoga", "description": "Sun salutations", "duration": 20},
            headers,
        )
        assert status == 200
        assert workout["completed"] is False

        status, listing = _get(client, f"/api/users/{WALLET}/workouts")
        assert [w["workout_id"] for w in listing["workouts"]] == [workout["workout_id"]]

        path = f"/api/workouts/{workout['workout_id']}/complete"
        status, body = _post(client, path, {}, headers)
        assert status == 200
        assert body["workout"]["completed"] is True
        assert body["score"] == 102
        assert "first_workout" in [a["type"] for a in body["new_achievements"]]

        status, again = _post(client, path, {}, headers)
        assert (status, again["error"]) == (409, "workout_already_completed")

        status, achievements = _get(client, f"/api/users/{WALLET}/achievements")
        assert len(achievements["achievements"]) == len(body["new_achievements"])

    def test_invalid_workout(self, client: TestClient, store) -> None:
        headers = auth_headers(store, WALLET)
        status, body = _post(client, "/api/workouts", {"type": "run", "description": "Sprints", "duration": 0}, headers)
        assert (status, body["error"]) == (400, "validation_error")
        assert [detail["path"] for detail in body["details"]] == ["duration"]

    def test_workout_for_another_wallet(self, client: TestClient, store) -> None:
        store.ensure_user(OTHER)
        headers = auth_headers(store, WALLET)
        body = {"userWallet": OTHER, "type": "run", "description": "Sprints", "duration": 15}
        assert _post(client, "/api/workouts", body, headers)[0] == 403

    def test_completion_requires_token(self, client: TestClient, store) -> None:
        store.ensure_user(WALLET)
        workout = store.create_workout(WALLET, "run", "Sprints", 15)
        assert _post(client, f"/api/workouts/{workout.workout_id}/complete")[0] == 401
        assert not store.list_workouts(WALLET)[0].completed
