"""Configuration helpers for the Line Trainer runtime."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


DEFAULT_SCHEME = "fsrs"
SCHEMES = {"ease", "fsrs"}
ADVANCEMENT_POLICIES = {"fixed", "probabilistic"}


def _int_from_env(name: str, default: Optional[int], minimum: int = 0) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer.") from exc
    if value < minimum:
        raise RuntimeError(f"{name} must be at least {minimum}.")
    return value


def _flag_from_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class AppSettings:
    """Strongly typed application settings loaded from environment variables."""

    app_name: str
    app_env: str
    log_level: str
    telegram_bot_token: str
    script_path: Path
    allowed_chat_id: Optional[int]
    scheme: str
    advancement: str
    extension_length: Optional[int]
    max_chunk: int
    learn_context: int
    learn_new_lines: int
    ingest_prefix: int
    ingest_max: int
    strict_reviewable: bool
    desired_retention: float
    fsrs_fuzzing: bool

    @classmethod
    def from_env(cls) -> AppSettings:
        """Construct settings directly from environment variables."""
        app_name = os.getenv("APP_NAME", "Line Trainer")
        app_env = os.getenv("APP_ENV", "development")
        log_level = os.getenv("LOG_LEVEL", "INFO")
        telegram_bot_token = os.getenv("TELEGRAM_BOT_TOKEN")
        script_path = os.getenv("SCRIPT_PATH")

        if not telegram_bot_token:
            raise RuntimeError(
                "TELEGRAM_BOT_TOKEN environment variable is required to start the Telegram bot."
            )

        if not script_path:
            raise RuntimeError("SCRIPT_PATH environment variable is required to load the lines to learn.")

        scheme = os.getenv("TRAINER_SCHEME", DEFAULT_SCHEME).strip().lower()
        if scheme not in SCHEMES:
            raise RuntimeError("TRAINER_SCHEME must be either 'ease' or 'fsrs'.")

        advancement = os.getenv("TRAINER_ADVANCEMENT", "fixed").strip().lower()
        if advancement not in ADVANCEMENT_POLICIES:
            raise RuntimeError("TRAINER_ADVANCEMENT must be either 'fixed' or 'probabilistic'.")

        try:
            desired_retention = float(os.getenv("TRAINER_DESIRED_RETENTION", "0.9"))
        except ValueError as exc:
            raise RuntimeError("TRAINER_DESIRED_RETENTION must be a number.") from exc
        if not 0 < desired_retention < 1:
            raise RuntimeError("TRAINER_DESIRED_RETENTION must be between 0 and 1.")

        return cls(
            app_name=app_name,
            app_env=app_env,
            log_level=log_level,
            telegram_bot_token=telegram_bot_token,
            script_path=Path(script_path),
            allowed_chat_id=_int_from_env("TRAINER_CHAT_ID", None, minimum=-(2**63)),
            scheme=scheme,
            advancement=advancement,
            extension_length=_int_from_env("TRAINER_EXTENSION_LENGTH", None, minimum=1),
            max_chunk=_int_from_env("TRAINER_MAX_CHUNK", 3, minimum=1),
            learn_context=_int_from_env("TRAINER_LEARN_CONTEXT", 2),
            learn_new_lines=_int_from_env("TRAINER_LEARN_NEW_LINES", 1, minimum=1),
            ingest_prefix=_int_from_env("TRAINER_INGEST_PREFIX", 3),
            ingest_max=_int_from_env("TRAINER_INGEST_MAX", 20, minimum=1),
            strict_reviewable=_flag_from_env("TRAINER_STRICT_REVIEWABLE", True),
            desired_retention=desired_retention,
            fsrs_fuzzing=_flag_from_env("TRAINER_FSRS_FUZZING", True),
        )
