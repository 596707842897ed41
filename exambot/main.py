import logging
logging.basicConfig(level=logging.INFO)

from telegram.ext import Application, ApplicationBuilder, CommandHandler

from exambot.config import get_settings
from exambot.handlers.calculator import calc_command, register_calculator_handlers
from exambot.handlers.results import register_results_handlers, results_command
from exambot.handlers.tests import dtm_command, mixed_command, register_handlers, start_command
from exambot.services.api_client import ApiClient


async def post_init(application: Application) -> None:
    application.bot_data["api_client"] = ApiClient()


async def post_shutdown(application: Application) -> None:
    api = application.bot_data.pop("api_client", None)
    if api is not None:
        await api.aclose()


def main() -> None:
    settings = get_settings()
    logging.info(
        f"Loaded bot settings: token_prefix={settings.bot_token[:10]}..., api_base_url={settings.api_base_url}"
    )
    if not settings.bot_token:
        raise RuntimeError("EXAMBOT_BOT_TOKEN is required to run the bot")

    application = (
        ApplicationBuilder()
        .token(settings.bot_token)
        .post_init(post_init)
        .post_shutdown(post_shutdown)
        .build()
    )
    application.add_handler(CommandHandler("start", start_command))
    application.add_handler(CommandHandler("dtm", dtm_command))
    application.add_handler(CommandHandler("mixed", mixed_command))
    application.add_handler(CommandHandler("results", results_command))
    application.add_handler(CommandHandler("calc", calc_command))
    register_handlers(application)
    register_calculator_handlers(application)
    register_results_handlers(application)

    application.run_polling()


if __name__ == "__main__":
    main()
