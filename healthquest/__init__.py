"""HealthQuest: a gamified fitness backend."""
