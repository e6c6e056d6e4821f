"""Bootstrap logic for running the trainer bot."""

from __future__ import annotations

import asyncio
import logging

from src.app.settings import AppSettings
from src.db import get_session_factory, run_migrations_if_needed
from src.db.cards import CardStore
from src.trainer import Advancement, Scheme, ScriptLineSource, build_memory_model
from src.trainer.agent import TrainerAgent
from src.trainer.planner import DEFAULT_EXTENSION_LENGTH, PlannerSettings
from src.trainer.scheduler import Scheduler
from src.trainer.telegram import build_application


LOGGER = logging.getLogger(__name__)


def _configure_logging(log_level: str) -> None:
    """Set up project-wide logging configuration."""
    logging.basicConfig(
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        level=log_level,
    )
    # Polling logs every getUpdates request at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _ensure_event_loop() -> None:
    """Guarantee that an asyncio event loop exists for the current thread."""
    try:
        asyncio.get_event_loop()
    except RuntimeError:
        asyncio.set_event_loop(asyncio.new_event_loop())


def build_planner_settings(settings: AppSettings) -> PlannerSettings:
    scheme = Scheme(settings.scheme)
    extension_length = settings.extension_length or DEFAULT_EXTENSION_LENGTH[scheme]
    return PlannerSettings(
        extension_length=extension_length,
        max_chunk=settings.max_chunk,
        learn_context=settings.learn_context,
        learn_new_lines=settings.learn_new_lines,
        ingest_prefix=settings.ingest_prefix,
        ingest_max=settings.ingest_max,
    )


def build_agent(settings: AppSettings, store: CardStore, lines: ScriptLineSource) -> TrainerAgent:
    model = build_memory_model(
        Scheme(settings.scheme),
        advancement=Advancement(settings.advancement),
        desired_retention=settings.desired_retention,
        enable_fuzzing=settings.fsrs_fuzzing,
    )
    scheduler = Scheduler(store, lines, model, strict_reviewable=settings.strict_reviewable)
    return TrainerAgent(
        scheduler,
        lines,
        planner_settings=build_planner_settings(settings),
        allowed_chat_id=settings.allowed_chat_id,
    )


def run_trainer(settings: AppSettings) -> None:
    """Start the trainer bot using the provided settings."""
    _configure_logging(settings.log_level)
    print(f"{settings.app_name} is running in {settings.app_env} mode.")

    try:
        run_migrations_if_needed()
    except Exception:
        LOGGER.exception("Database migrations failed. Aborting startup.")
        raise

    lines = ScriptLineSource.from_path(settings.script_path)
    LOGGER.info("Loaded %s lines in %s scenes from %s.", len(lines), len(lines.scene_starts()), settings.script_path)

    store = CardStore(get_session_factory())
    agent = build_agent(settings, store, lines)
    application = build_application(settings.telegram_bot_token, agent)

    _ensure_event_loop()

    LOGGER.info(
        "Starting %s with the %s scheme in %s mode.",
        settings.app_name,
        settings.scheme,
        settings.app_env,
    )
    application.run_polling()
