from __future__ import annotations

import logging

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.ext import CallbackQueryHandler, ContextTypes

from exambot.handlers.tests import get_api, safe_edit
from exambot.services.api_client import ResultPage
from exambot.services.errors import Unavailable
from exambot.services.formatting import format_score

logger = logging.getLogger(__name__)


def register_results_handlers(application) -> None:
    application.add_handler(CallbackQueryHandler(results_page_callback, pattern=r"^res:\d+$"))


def render_results(page: ResultPage) -> tuple[str, InlineKeyboardMarkup | None]:
    if not page.items:
        return "You have no finished tests yet.", None
    lines = [f"Your results ({page.total_count} total):", ""]
    for item in page.items:
        lines.append(
            f"• {item.correct_answers}/{item.total_questions} correct, "
            f"{item.wrong_answers} wrong, {format_score(item.score)}"
        )
    buttons = []
    if page.has_previous:
        buttons.append(InlineKeyboardButton("◀", callback_data=f"res:{page.page_number - 1}"))
    if page.has_next:
        buttons.append(InlineKeyboardButton("▶", callback_data=f"res:{page.page_number + 1}"))
    return "\n".join(lines), InlineKeyboardMarkup([buttons]) if buttons else None


async def results_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    message = update.effective_message
    if not message:
        return
    try:
        page = await get_api(context).fetch_results(page=1)
    except Unavailable as exc:
        logger.error("Could not load results: %s", exc)
        await message.reply_text("Could not load your results. Please try again later.")
        return
    text, markup = render_results(page)
    await message.reply_text(text, reply_markup=markup)


async def results_page_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    if not query:
        return
    number = int((query.data or "res:1").split(":", 1)[1])
    try:
        page = await get_api(context).fetch_results(page=max(1, number))
    except Unavailable as exc:
        logger.error("Could not load results page %s: %s", number, exc)
        await query.answer("Could not load results.", show_alert=True)
        return
    await query.answer()
    text, markup = render_results(page)
    await safe_edit(query, text, markup)
