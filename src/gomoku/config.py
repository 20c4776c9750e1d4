"""Runtime settings read from the environment."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


@dataclass(frozen=True)
class Settings:
    host: str = "0.0.0.0"
    port: int = 3000
    # seconds a finished room stays addressable so clients can read the result
    close_grace_sec: float = 30.0
    # pause between match_found and game_started on the matchmaking path
    match_start_delay_sec: float = 2.0
    sweep_interval_sec: float = 600.0
    idle_timeout_sec: float = 3600.0
    log_level: str = "INFO"


def load_settings() -> Settings:
    env = os.environ
    return Settings(
        host=env.get("GOMOKU_HOST", "0.0.0.0"),
        port=int(env.get("GOMOKU_PORT", "3000")),
        close_grace_sec=float(env.get("GOMOKU_CLOSE_GRACE_SEC", "30")),
        match_start_delay_sec=float(env.get("GOMOKU_MATCH_START_DELAY_SEC", "2")),
        sweep_interval_sec=float(env.get("GOMOKU_SWEEP_INTERVAL_SEC", "600")),
        idle_timeout_sec=float(env.get("GOMOKU_IDLE_TIMEOUT_SEC", "3600")),
        log_level=env.get("GOMOKU_LOG_LEVEL", "INFO").upper(),
    )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format=LOG_FORMAT)
