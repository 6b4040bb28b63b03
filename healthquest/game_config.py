"""Game-local configuration constants and environment variables."""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

GAME_DIR = Path(__file__).parent
load_dotenv(GAME_DIR / ".env")

PORT = int(os.environ.get("PORT", "8000"))
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").strip().upper()

MONGO_URI = os.environ.get("MONGO_URI", "mongodb://localhost:27017").strip()
MONGO_DB_NAME = os.environ.get("MONGO_DB_NAME", "healthquest").strip()
USE_TRANSACTIONS = os.environ.get("USE_TRANSACTIONS", "false").strip().lower() in {"1", "true", "yes"}

JWT_SECRET = os.environ.get("JWT_SECRET", "healthquest_secret_key").strip()
JWT_ALGORITHM = "HS256"
TOKEN_EXPIRY_DAYS = int(os.environ.get("TOKEN_EXPIRY_DAYS", "7"))
ADMIN_API_KEY = os.environ.get("ADMIN_API_KEY", "").strip()

OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY", "").strip()
OPENAI_MODEL = os.environ.get("OPENAI_MODEL", "gpt-4o").strip()
OPENAI_TIMEOUT_SECONDS = float(os.environ.get("OPENAI_TIMEOUT_SECONDS", "30"))

STARTER_GOLD = int(os.environ.get("STARTER_GOLD", "10"))

# Character
STAT_NAMES = ("STR", "AGI", "VIT", "DEX", "INT", "WIS", "LUK")
BASE_STAT_VALUE = 10
STARTING_STAT_POINTS = 3
ENERGY_MAX = 100
BASE_XP_TO_NEXT_LEVEL = 100
XP_THRESHOLD_GROWTH = 1.5
STAT_POINTS_PER_LEVEL = 3

# Quests
PERSONAL_QUEST_ENERGY_COST = 25
PERSONAL_QUEST_LIMIT = 5
PERSONAL_QUEST_TTL_SECONDS = 60 * 60
SERVER_QUEST_TTL_DAYS = 14
COMPLETION_TIME_TOLERANCE = 0.8
QUEST_BONUS_POINTS_RANGE = (1, 5)
QUEST_HISTORY_CONTEXT_LIMIT = 10

# Boss
BOSS_ATTACK_ENERGY_COST = 10
BOSS_ATTACK_GOLD_COST = 100
BOSS_CRITICAL_CHANCE = 0.2
BOSS_CRITICAL_MULTIPLIER = 2

# Marketplace
SELL_PRICE_RATIO = 0.8

SETTLEMENT_MAX_ATTEMPTS = 5

# Workouts
WORKOUT_GOLD_REWARD_RANGE = (50, 149)
WORKOUT_SCORE_PER_WORKOUT = 100
WORKOUT_MINUTES_PER_SCORE_POINT = 10
WORKOUT_COUNT_MILESTONES = (10, 25, 50, 100)
WORKOUT_HOUR_MILESTONES = (1, 5, 10, 25, 50, 100)
RANK_MILESTONES = (100, 50, 25, 10, 1)
