"""Telegram application wiring for the Line Trainer."""

from telegram.ext import (
    Application,
    ApplicationBuilder,
    CallbackQueryHandler,
    CommandHandler,
)

from .agent import TrainerAgent


def build_application(bot_token: str, agent: TrainerAgent) -> Application:
    """Configure the Telegram application instance."""
    application = ApplicationBuilder().token(bot_token).post_init(agent.on_startup).build()
    application.add_handler(CommandHandler(["start", "help"], agent.handle_start))
    application.add_handler(CommandHandler("learn", agent.handle_learn))
    application.add_handler(CommandHandler("ingest", agent.handle_ingest))
    application.add_handler(CommandHandler("review", agent.handle_review))
    application.add_handler(CommandHandler("scene", agent.handle_scene))
    application.add_handler(CommandHandler("stats", agent.handle_stats))
    application.add_handler(CommandHandler("reset", agent.handle_reset))
    application.add_handler(CommandHandler("stop", agent.handle_stop))
    application.add_handler(CallbackQueryHandler(agent.handle_rating, pattern=r"^tr_"))
    return application
