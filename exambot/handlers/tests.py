from __future__ import annotations

import logging
import string

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.error import BadRequest, TelegramError
from telegram.ext import CallbackQueryHandler, ContextTypes

from exambot.services.api_client import ApiClient, ExamMode
from exambot.services.errors import (
    InvalidReference,
    InvalidSelection,
    InvalidTransition,
    SessionClosed,
    Unavailable,
)
from exambot.services.formatting import format_clock, format_progress, format_result, progress_badge
from exambot.services.selection_state import (
    SelectionState,
    clear_selection_state,
    get_selection_state,
    set_selection_state,
)
from exambot.services.session import SessionController, SessionStatus
from exambot.services.session_store import ChatSession, session_store

logger = logging.getLogger(__name__)

OPTION_LABELS = string.ascii_uppercase
MODE_TITLES = {
    ExamMode.GROUPED: "DTM test (2 subjects, 3 hours)",
    ExamMode.MIXED: "Mixed 30 (1 subject, 30 minutes)",
}


def parse_start_payload(raw: str | None) -> ExamMode | None:
    if not raw:
        return None
    payload = raw.removeprefix("run_").lower()
    for mode in ExamMode:
        if payload == mode.value:
            return mode
    return None


def register_handlers(application):
    application.add_handler(CallbackQueryHandler(mode_callback, pattern=r"^mode:"))
    application.add_handler(CallbackQueryHandler(subject_callback, pattern=r"^subj:"))
    application.add_handler(CallbackQueryHandler(topics_callback, pattern=r"^topics$"))
    application.add_handler(CallbackQueryHandler(topic_callback, pattern=r"^topic:"))
    application.add_handler(CallbackQueryHandler(begin_callback, pattern=r"^begin$"))
    application.add_handler(CallbackQueryHandler(cancel_selection_callback, pattern=r"^cancel_sel$"))
    application.add_handler(CallbackQueryHandler(handle_answer, pattern=r"^ans:"))
    application.add_handler(CallbackQueryHandler(nav_callback, pattern=r"^nav:"))
    application.add_handler(CallbackQueryHandler(goto_callback, pattern=r"^goto:"))
    application.add_handler(CallbackQueryHandler(progress_callback, pattern=r"^prog:"))
    application.add_handler(CallbackQueryHandler(finish_callback, pattern=r"^finish:"))
    application.add_handler(CallbackQueryHandler(retry_callback, pattern=r"^retry:"))
    application.add_handler(CallbackQueryHandler(abandon_callback, pattern=r"^abandon:"))
    application.add_handler(CallbackQueryHandler(close_callback, pattern=r"^close:"))


def get_api(context: ContextTypes.DEFAULT_TYPE) -> ApiClient:
    api = context.bot_data.get("api_client")
    if api is None:
        api = ApiClient()
        context.bot_data["api_client"] = api
    return api


def mode_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        [[InlineKeyboardButton(text=title, callback_data=f"mode:{mode.value}")] for mode, title in MODE_TITLES.items()]
    )


async def safe_edit(query, text: str, reply_markup: InlineKeyboardMarkup | None = None) -> None:
    try:
        await query.edit_message_text(text, reply_markup=reply_markup)
    except BadRequest as exc:
        if "not modified" in str(exc).lower():
            return
        raise


# -- selection --------------------------------------------------------------


async def start_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    message = update.effective_message
    user = update.effective_user
    if not message or not user:
        return

    mode = parse_start_payload(context.args[0]) if context.args else None
    if mode:
        await open_selection(message, user.id, mode, context)
        return

    live = session_store.get_for_user(user.id)
    if live and live.controller.status is SessionStatus.IN_PROGRESS:
        text, markup = render_question(live)
        await message.reply_text("You have a test in progress.\n\n" + text, reply_markup=markup)
        return

    await message.reply_text("Choose a test type:", reply_markup=mode_keyboard())


async def dtm_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    message = update.effective_message
    user = update.effective_user
    if message and user:
        await open_selection(message, user.id, ExamMode.GROUPED, context)


async def mixed_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    message = update.effective_message
    user = update.effective_user
    if message and user:
        await open_selection(message, user.id, ExamMode.MIXED, context)


async def load_selection(user_id: int, mode: ExamMode, context: ContextTypes.DEFAULT_TYPE) -> SelectionState:
    subjects = await get_api(context).fetch_subjects()
    state = SelectionState(user_id=user_id, mode=mode, subjects=subjects)
    set_selection_state(state)
    return state


async def open_selection(message, user_id: int, mode: ExamMode, context: ContextTypes.DEFAULT_TYPE) -> None:
    try:
        state = await load_selection(user_id, mode, context)
    except Unavailable as exc:
        logger.error("Could not load subjects: %s", exc)
        await message.reply_text("Could not load subjects. Please try again.", reply_markup=retry_mode_keyboard(mode))
        return
    text, markup = render_selection(state)
    await message.reply_text(text, reply_markup=markup)


def retry_mode_keyboard(mode: ExamMode) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([[InlineKeyboardButton("🔄 Try again", callback_data=f"mode:{mode.value}")]])


def render_selection(state: SelectionState) -> tuple[str, InlineKeyboardMarkup]:
    count = state.mode.subject_count
    lines = [MODE_TITLES[state.mode], ""]
    if not state.subjects:
        lines.append("No subjects are available yet.")
    elif state.mode is ExamMode.GROUPED:
        lines.append(f"Select {count} main subjects ({len(state.subject_ids)}/{count}).")
    else:
        lines.append("Select a subject.")
    if state.mode is ExamMode.MIXED and state.subject_ids:
        topic = next((t.name for t in state.topics if t.id == state.topic_id), None)
        lines.append(f"Topic: {topic or 'any'}")

    rows = []
    for idx, subject in enumerate(state.subjects):
        mark = "✅ " if subject.id in state.subject_ids else ""
        rows.append([InlineKeyboardButton(f"{mark}{subject.name}", callback_data=f"subj:{idx}")])
    if state.mode is ExamMode.MIXED and state.subject_ids:
        rows.append([InlineKeyboardButton("📚 Choose topic", callback_data="topics")])
    rows.append(
        [
            InlineKeyboardButton("▶ Start", callback_data="begin"),
            InlineKeyboardButton("✖ Cancel", callback_data="cancel_sel"),
        ]
    )
    return "\n".join(lines), InlineKeyboardMarkup(rows)


def render_topics(state: SelectionState) -> tuple[str, InlineKeyboardMarkup]:
    rows = [[InlineKeyboardButton("Any topic", callback_data="topic:-")]]
    for idx, topic in enumerate(state.topics):
        mark = "✅ " if topic.id == state.topic_id else ""
        rows.append([InlineKeyboardButton(f"{mark}{topic.name}", callback_data=f"topic:{idx}")])
    subject = state.subject_name(state.subject_ids[0]) if state.subject_ids else ""
    return f"Topics for {subject}:", InlineKeyboardMarkup(rows)


async def mode_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    if not query or not query.from_user:
        return
    await query.answer()
    mode = parse_start_payload((query.data or "").split("mode:", 1)[-1])
    if not mode:
        return
    try:
        state = await load_selection(query.from_user.id, mode, context)
    except Unavailable as exc:
        logger.error("Could not load subjects: %s", exc)
        await safe_edit(query, "Could not load subjects. Please try again.", retry_mode_keyboard(mode))
        return
    text, markup = render_selection(state)
    await safe_edit(query, text, markup)


async def subject_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    if not query or not query.from_user:
        return
    state = get_selection_state(query.from_user.id)
    if not state:
        await query.answer("Selection expired. Send /start again.")
        return
    try:
        subject = state.subjects[int((query.data or "").split(":", 1)[1])]
    except (ValueError, IndexError):
        await query.answer()
        return
    try:
        state.toggle_subject(subject.id)
    except InvalidSelection as exc:
        await query.answer(str(exc), show_alert=True)
        return
    await query.answer()
    text, markup = render_selection(state)
    await safe_edit(query, text, markup)


async def topics_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    if not query or not query.from_user:
        return
    state = get_selection_state(query.from_user.id)
    if not state or not state.subject_ids:
        await query.answer("Select a subject first.")
        return
    try:
        state.topics = await get_api(context).fetch_topics(state.subject_ids[0])
    except Unavailable as exc:
        logger.error("Could not load topics: %s", exc)
        await query.answer("Could not load topics.", show_alert=True)
        return
    await query.answer()
    text, markup = render_topics(state)
    await safe_edit(query, text, markup)


async def topic_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    if not query or not query.from_user:
        return
    state = get_selection_state(query.from_user.id)
    if not state:
        await query.answer("Selection expired. Send /start again.")
        return
    await query.answer()
    raw = (query.data or "").split(":", 1)[1]
    if raw == "-":
        state.topic_id = None
    else:
        try:
            state.topic_id = state.topics[int(raw)].id
        except (ValueError, IndexError):
            state.topic_id = None
    text, markup = render_selection(state)
    await safe_edit(query, text, markup)


async def cancel_selection_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    if not query or not query.from_user:
        return
    await query.answer()
    clear_selection_state(query.from_user.id)
    await safe_edit(query, "Choose a test type:", mode_keyboard())


async def begin_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    message = query.message if query else None
    if not query or not query.from_user or not message:
        return
    user = query.from_user
    state = get_selection_state(user.id)
    if not state:
        await query.answer("Selection expired. Send /start again.")
        return
    if state.starting:
        await query.answer("The test is starting, please wait…")
        return

    selection = state.to_selection()
    try:
        selection.validate(state.mode)
    except InvalidSelection as exc:
        await query.answer(str(exc), show_alert=True)
        return
    await query.answer()

    controller = SessionController(get_api(context), state.mode)
    state.starting = True
    await safe_edit(query, "Starting the test…")
    try:
        await controller.start(selection)
    except InvalidSelection as exc:
        text, markup = render_selection(state)
        await safe_edit(query, f"{exc}\n\n{text}", markup)
        return
    except Unavailable as exc:
        logger.error("Could not start %s test for user %s: %s", state.mode.value, user.id, exc)
        text, markup = render_selection(state)
        await safe_edit(query, f"Could not start the test: {exc}\nPress Start to try again.\n\n{text}", markup)
        return
    finally:
        state.starting = False

    clear_selection_state(user.id)
    chat_session = session_store.start_session(user_id=user.id, chat_id=message.chat_id, controller=controller)
    controller.on_expired = lambda ctrl: announce_expiry(context.bot, chat_session)
    text, markup = render_question(chat_session)
    await safe_edit(query, text, markup)


# -- session screens --------------------------------------------------------


def render_question(chat_session: ChatSession) -> tuple[str, InlineKeyboardMarkup]:
    controller = chat_session.controller
    key = chat_session.key
    clock = format_clock(controller.remaining_seconds, controller.mode)
    header = f"⏱ {clock}    ✍ {controller.answered_count}/{controller.total_questions}"

    question = controller.current_question
    if question is None:
        rows = [
            [
                InlineKeyboardButton("✅ Finish", callback_data=f"finish:{key}"),
                InlineKeyboardButton("✖ Quit", callback_data=f"abandon:{key}"),
            ]
        ]
        return f"{header}\n\nThis test has no questions.", InlineKeyboardMarkup(rows)

    index = controller.current_index
    selected = controller.selected_option(question.id)
    lines = [
        header,
        "",
        f"{question.subject_name} · Question {index + 1}/{controller.total_questions}",
        "",
        question.text or "(no text)",
    ]
    if question.image_url:
        lines.append(f"🖼 {question.image_url}")
    lines.append("")
    option_buttons = []
    for position, option in enumerate(question.options):
        label = OPTION_LABELS[position % len(OPTION_LABELS)]
        lines.append(f"{label}) {option.text}")
        mark = "● " if option.id == selected else ""
        option_buttons.append(
            InlineKeyboardButton(f"{mark}{label}", callback_data=f"ans:{key}:{index}:{position}")
        )
    if not question.options:
        lines.append("(no answer options)")

    rows = [option_buttons[i : i + 4] for i in range(0, len(option_buttons), 4)]
    nav = []
    if controller.can_go_previous:
        nav.append(InlineKeyboardButton("◀", callback_data=f"nav:{key}:prev"))
    if controller.can_go_next:
        nav.append(InlineKeyboardButton("Skip ⏭", callback_data=f"nav:{key}:skip"))
        nav.append(InlineKeyboardButton("▶", callback_data=f"nav:{key}:next"))
    if nav:
        rows.append(nav)
    rows.append(
        [
            InlineKeyboardButton("📊 Progress", callback_data=f"prog:{key}"),
            InlineKeyboardButton("🧮", callback_data="calc:open"),
            InlineKeyboardButton("⏱", callback_data=f"nav:{key}:stay"),
        ]
    )
    rows.append(
        [
            InlineKeyboardButton("✅ Finish", callback_data=f"finish:{key}"),
            InlineKeyboardButton("✖ Quit", callback_data=f"abandon:{key}"),
        ]
    )
    return "\n".join(lines), InlineKeyboardMarkup(rows)


def render_progress(chat_session: ChatSession) -> tuple[str, InlineKeyboardMarkup]:
    controller = chat_session.controller
    key = chat_session.key
    groups = controller.progress()
    rows = []
    for group in groups:
        target = next(
            (i for i in group.indices if controller.selected_option(controller.questions[i].id) is None),
            group.indices[0],
        )
        rows.append([InlineKeyboardButton(progress_badge(group), callback_data=f"goto:{key}:{target}")])
    rows.append([InlineKeyboardButton("◀ Back", callback_data=f"nav:{key}:stay")])
    clock = format_clock(controller.remaining_seconds, controller.mode)
    text = f"⏱ {clock}\nAnswered {controller.answered_count}/{controller.total_questions}\n\n{format_progress(groups)}"
    return text, InlineKeyboardMarkup(rows)


def render_finished(chat_session: ChatSession) -> tuple[str, InlineKeyboardMarkup | None]:
    controller = chat_session.controller
    key = chat_session.key
    if controller.result is not None:
        markup = InlineKeyboardMarkup([[InlineKeyboardButton("Close", callback_data=f"close:{key}")]])
        return format_result(controller.result), markup
    if controller.finish_in_flight:
        return "Submitting your answers…", None
    error = controller.last_error
    text = (
        "Your answers could not be submitted"
        + (f": {error}" if error else ".")
        + f"\nYour {controller.answered_count}/{controller.total_questions} answers are saved."
    )
    markup = InlineKeyboardMarkup([[InlineKeyboardButton("🔄 Retry submission", callback_data=f"retry:{key}")]])
    return text, markup


async def announce_expiry(bot, chat_session: ChatSession) -> None:
    text, markup = render_finished(chat_session)
    try:
        await bot.send_message(chat_id=chat_session.chat_id, text=f"⏰ Time is up!\n\n{text}", reply_markup=markup)
    except TelegramError as exc:
        logger.warning("Could not announce expiry for session %s: %s", chat_session.key, exc)


async def _session_from_query(query) -> ChatSession | None:
    parts = (query.data or "").split(":")
    chat_session = session_store.get(parts[1]) if len(parts) > 1 else None
    if not chat_session or (query.from_user and chat_session.user_id != query.from_user.id):
        await query.answer()
        await safe_edit(query, "Session not found or expired. Send /start to begin a new test.")
        return None
    return chat_session


async def _show_current(query, chat_session: ChatSession) -> None:
    if chat_session.controller.status is SessionStatus.FINISHED:
        text, markup = render_finished(chat_session)
    else:
        text, markup = render_question(chat_session)
    await safe_edit(query, text, markup)


async def handle_answer(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    if not query:
        return
    chat_session = await _session_from_query(query)
    if not chat_session:
        return
    controller = chat_session.controller

    try:
        _, _, question_index, option_index = (query.data or "").split(":", 3)
        question = controller.questions[int(question_index)]
        option = question.options[int(option_index)]
    except (ValueError, IndexError):
        await query.answer("This button is out of date.")
        await _show_current(query, chat_session)
        return

    try:
        controller.select_answer(question.id, option.id)
    except SessionClosed as exc:
        logger.warning("Answer after close in session %s: %s", chat_session.key, exc)
        await query.answer("The test is already finished.")
        await _show_current(query, chat_session)
        return
    except InvalidReference as exc:
        logger.warning("Rejected answer in session %s: %s", chat_session.key, exc)
        await query.answer("This button is out of date.")
        await _show_current(query, chat_session)
        return

    await query.answer()
    await _show_current(query, chat_session)


async def nav_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    if not query:
        return
    chat_session = await _session_from_query(query)
    if not chat_session:
        return
    await query.answer()
    controller = chat_session.controller
    action = (query.data or "").rsplit(":", 1)[-1]
    if action == "prev":
        controller.previous()
    elif action == "next":
        controller.next()
    elif action == "skip":
        controller.skip()
    await _show_current(query, chat_session)


async def goto_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    if not query:
        return
    chat_session = await _session_from_query(query)
    if not chat_session:
        return
    await query.answer()
    raw = (query.data or "").rsplit(":", 1)[-1]
    if raw.isdigit():
        chat_session.controller.go_to(int(raw))
    await _show_current(query, chat_session)


async def progress_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    if not query:
        return
    chat_session = await _session_from_query(query)
    if not chat_session:
        return
    await query.answer()
    if chat_session.controller.status is not SessionStatus.IN_PROGRESS:
        await _show_current(query, chat_session)
        return
    text, markup = render_progress(chat_session)
    await safe_edit(query, text, markup)


async def finish_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    if not query:
        return
    chat_session = await _session_from_query(query)
    if not chat_session:
        return
    controller = chat_session.controller
    if controller.finish_in_flight:
        await query.answer("Submitting your answers…")
        return
    await query.answer()

    if controller.status is SessionStatus.IN_PROGRESS:
        await safe_edit(query, "Submitting your answers…")
    try:
        await controller.finish()
    except Unavailable as exc:
        logger.error("Finish failed for session %s: %s", chat_session.key, exc)
    except InvalidTransition as exc:
        logger.warning("Finish rejected for session %s: %s", chat_session.key, exc)
        await safe_edit(query, "This test is no longer active. Send /start to begin a new one.")
        return
    text, markup = render_finished(chat_session)
    await safe_edit(query, text, markup)


async def retry_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    if not query:
        return
    chat_session = await _session_from_query(query)
    if not chat_session:
        return
    controller = chat_session.controller
    if controller.finish_in_flight:
        await query.answer("Submitting your answers…")
        return
    await query.answer()
    await safe_edit(query, "Submitting your answers…")
    try:
        await controller.retry_finish()
    except Unavailable as exc:
        logger.error("Retry failed for session %s: %s", chat_session.key, exc)
    except InvalidTransition as exc:
        logger.warning("Retry rejected for session %s: %s", chat_session.key, exc)
        await _show_current(query, chat_session)
        return
    text, markup = render_finished(chat_session)
    await safe_edit(query, text, markup)


async def abandon_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    if not query:
        return
    chat_session = await _session_from_query(query)
    if not chat_session:
        return
    try:
        chat_session.controller.abandon()
    except InvalidTransition:
        await query.answer("The test is already finished.")
        await _show_current(query, chat_session)
        return
    await query.answer("Test cancelled")
    session_store.clear_session(chat_session.key)
    await safe_edit(query, "The test was cancelled and will not be scored.\n\nChoose a test type:", mode_keyboard())


async def close_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    if not query:
        return
    chat_session = await _session_from_query(query)
    if not chat_session:
        return
    await query.answer()
    session_store.clear_session(chat_session.key)
    await safe_edit(query, "Choose a test type:", mode_keyboard())
