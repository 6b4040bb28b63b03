#!/usr/bin/env python3
"""HealthQuest API server entrypoint."""

from __future__ import annotations

import logging

import uvicorn

from healthquest import game_config as config
from healthquest.app import create_app


def main() -> None:
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(create_app(), host="0.0.0.0", port=config.PORT)


if __name__ == "__main__":
    main()
