from __future__ import annotations

import logging

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.error import BadRequest, TelegramError
from telegram.ext import CallbackQueryHandler, ContextTypes

from exambot.services.calculator import BACKSPACE_KEY, CLEAR_KEY, Calculator
from exambot.services.session_store import session_store

logger = logging.getLogger(__name__)

KEYPAD = (
    ("7", "8", "9", "÷"),
    ("4", "5", "6", "×"),
    ("1", "2", "3", "-"),
    ("0", ".", "=", "+"),
    (CLEAR_KEY, BACKSPACE_KEY),
)


def register_calculator_handlers(application) -> None:
    application.add_handler(CallbackQueryHandler(calculator_open_callback, pattern=r"^calc:open$"))
    application.add_handler(CallbackQueryHandler(calculator_hide_callback, pattern=r"^calc:hide$"))
    application.add_handler(CallbackQueryHandler(calculator_key_callback, pattern=r"^calc:k:"))


def calculator_keyboard() -> InlineKeyboardMarkup:
    rows = [[InlineKeyboardButton(key, callback_data=f"calc:k:{key}") for key in row] for row in KEYPAD]
    rows.append([InlineKeyboardButton("Hide", callback_data="calc:hide")])
    return InlineKeyboardMarkup(rows)


def render_calculator(calculator: Calculator) -> str:
    pending = ""
    if calculator.pending_operator is not None and calculator.previous_value is not None:
        pending = f"{calculator.previous_value:g} {calculator.pending_operator}\n"
    return f"🧮 Calculator\n\n{pending}{calculator.display}"


async def calc_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    message = update.effective_message
    user = update.effective_user
    if not message or not user:
        return
    calculator = session_store.calculator_for(user.id)
    await message.reply_text(render_calculator(calculator), reply_markup=calculator_keyboard())


async def calculator_open_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    if not query or not query.from_user or not query.message:
        return
    await query.answer()
    calculator = session_store.calculator_for(query.from_user.id)
    await query.message.reply_text(render_calculator(calculator), reply_markup=calculator_keyboard())


async def calculator_key_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    if not query or not query.from_user:
        return
    calculator = session_store.calculator_for(query.from_user.id)
    key = (query.data or "").split("calc:k:", 1)[-1]
    try:
        calculator.press(key)
    except ValueError as exc:
        logger.warning("Ignoring calculator key %r: %s", key, exc)
        await query.answer()
        return
    await query.answer()
    try:
        await query.edit_message_text(render_calculator(calculator), reply_markup=calculator_keyboard())
    except BadRequest as exc:
        if "not modified" not in str(exc).lower():
            raise


async def calculator_hide_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    if not query:
        return
    await query.answer()
    try:
        await query.delete_message()
    except TelegramError as exc:
        logger.warning("Could not hide calculator: %s", exc)
