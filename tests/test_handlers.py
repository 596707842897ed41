"""
Tests for the Telegram screens and callbacks, with the bot objects mocked.
"""
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from telegram.error import BadRequest

from exambot.handlers.calculator import calculator_key_callback, render_calculator
from exambot.handlers.results import render_results
from exambot.handlers.tests import (
    abandon_callback,
    finish_callback,
    handle_answer,
    nav_callback,
    parse_start_payload,
    render_finished,
    render_progress,
    render_question,
    safe_edit,
)
from exambot.services.api_client import ExamMode, ExamResult, ResultPage
from exambot.services.calculator import Calculator
from exambot.services.errors import Unavailable
from exambot.services.session import SessionStatus
from exambot.services.session_store import session_store
from tests.conftest import make_catalog

USER_ID = 501


def callback_data(markup):
    return [button.callback_data for row in markup.inline_keyboard for button in row]


def make_update(data: str, user_id: int = USER_ID) -> MagicMock:
    query = MagicMock()
    query.data = data
    query.from_user.id = user_id
    query.answer = AsyncMock()
    query.edit_message_text = AsyncMock()
    update = MagicMock()
    update.callback_query = query
    return update


@pytest_asyncio.fixture
async def chat_session(make_service, make_controller, grouped_selection):
    service = make_service(make_catalog(("Math", 2), ("Physics", 2)))
    controller = make_controller(service=service, mode=ExamMode.GROUPED, duration_seconds=10800)
    await controller.start(grouped_selection)
    session = session_store.start_session(user_id=USER_ID, chat_id=1, controller=controller)
    yield session
    if controller.status is SessionStatus.IN_PROGRESS:
        controller.abandon()
    session_store.clear_session(session.key)


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("dtm", ExamMode.GROUPED),
        ("run_mixed30", ExamMode.MIXED),
        ("DTM", ExamMode.GROUPED),
        ("unknown", None),
        (None, None),
    ],
)
def test_parse_start_payload(raw, expected):
    assert parse_start_payload(raw) is expected


class TestScreens:
    @pytest.mark.asyncio
    async def test_question_screen(self, chat_session):
        text, markup = render_question(chat_session)
        key = chat_session.key

        assert text.startswith("⏱ 03:00:00    ✍ 0/4")
        assert "Math · Question 1/4" in text
        assert "A) Option 0" in text
        data = callback_data(markup)
        assert f"ans:{key}:0:0" in data
        assert f"nav:{key}:prev" not in data
        assert f"nav:{key}:next" in data
        assert f"finish:{key}" in data

    @pytest.mark.asyncio
    async def test_selected_option_is_marked(self, chat_session):
        controller = chat_session.controller
        controller.select_answer("math-0", "math-0-o2")
        _, markup = render_question(chat_session)
        labels = [button.text for button in markup.inline_keyboard[0]]
        assert labels == ["A", "B", "● C", "D"]

    @pytest.mark.asyncio
    async def test_progress_jumps_to_first_unanswered(self, chat_session):
        chat_session.controller.select_answer("physics-0", "physics-0-o0")
        text, markup = render_progress(chat_session)
        key = chat_session.key

        assert "⚪ Math 0/2" in text
        assert "🟡 Physics 1/2" in text
        assert callback_data(markup)[:2] == [f"goto:{key}:0", f"goto:{key}:3"]

    @pytest.mark.asyncio
    async def test_finished_screen_variants(self, chat_session):
        controller = chat_session.controller
        controller.service.finish_session.side_effect = Unavailable("timeout")
        with pytest.raises(Unavailable):
            await controller.finish()

        text, markup = render_finished(chat_session)
        assert "could not be submitted: timeout" in text
        assert callback_data(markup) == [f"retry:{chat_session.key}"]

        controller.service.finish_session.side_effect = None
        await controller.retry_finish()
        text, markup = render_finished(chat_session)
        assert text.startswith("Test finished!")
        assert callback_data(markup) == [f"close:{chat_session.key}"]

    @pytest.mark.asyncio
    async def test_screen_while_expiry_submission_is_queued(self, chat_session):
        controller = chat_session.controller
        for _ in range(controller.remaining_seconds):
            controller.timer.tick()

        text, markup = render_finished(chat_session)
        assert text == "Submitting your answers…"
        assert markup is None

        await controller.pending_submission
        text, _ = render_finished(chat_session)
        assert text.startswith("Test finished!")


class TestCallbacks:
    @pytest.mark.asyncio
    async def test_answer_button_records_selection(self, chat_session):
        update = make_update(f"ans:{chat_session.key}:1:3")

        await handle_answer(update, MagicMock())

        assert chat_session.controller.selected_option("math-1") == "math-1-o3"
        update.callback_query.answer.assert_awaited_once_with()
        update.callback_query.edit_message_text.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stale_answer_button(self, chat_session):
        update = make_update(f"ans:{chat_session.key}:9:0")

        await handle_answer(update, MagicMock())

        assert chat_session.controller.answered_count == 0
        update.callback_query.answer.assert_awaited_once_with("This button is out of date.")

    @pytest.mark.asyncio
    async def test_other_users_cannot_touch_session(self, chat_session):
        update = make_update(f"nav:{chat_session.key}:next", user_id=999)

        await nav_callback(update, MagicMock())

        assert chat_session.controller.current_index == 0
        text = update.callback_query.edit_message_text.await_args.args[0]
        assert text.startswith("Session not found")

    @pytest.mark.asyncio
    async def test_finish_button_submits_and_shows_result(self, chat_session):
        update = make_update(f"finish:{chat_session.key}")

        await finish_callback(update, MagicMock())

        assert chat_session.controller.status is SessionStatus.FINISHED
        chat_session.controller.service.finish_session.assert_awaited_once()
        final_text = update.callback_query.edit_message_text.await_args.args[0]
        assert final_text.startswith("Test finished!")

    @pytest.mark.asyncio
    async def test_abandon_button(self, chat_session):
        update = make_update(f"abandon:{chat_session.key}")

        await abandon_callback(update, MagicMock())

        assert chat_session.controller.status is SessionStatus.ABANDONED
        assert session_store.get(chat_session.key) is None
        chat_session.controller.service.finish_session.assert_not_awaited()


@pytest.mark.asyncio
async def test_safe_edit_ignores_not_modified():
    query = MagicMock()
    query.edit_message_text = AsyncMock(side_effect=BadRequest("Message is not modified"))
    await safe_edit(query, "same text")

    query.edit_message_text = AsyncMock(side_effect=BadRequest("Message to edit not found"))
    with pytest.raises(BadRequest):
        await safe_edit(query, "text")


@pytest.mark.asyncio
async def test_calculator_key_callback_updates_display():
    session_store.clear_calculator(USER_ID)
    for key in ("5", "+", "3", "="):
        await calculator_key_callback(make_update(f"calc:k:{key}"), MagicMock())

    assert session_store.calculator_for(USER_ID).display == "8"
    session_store.clear_calculator(USER_ID)


def test_render_calculator_shows_pending_operation():
    calculator = Calculator()
    for key in ("1", "2", "×"):
        calculator.press(key)
    assert render_calculator(calculator) == "🧮 Calculator\n\n12 ×\n12"


def test_render_results():
    page = ResultPage(
        items=[ExamResult(24, 6, 30, 80.0)],
        page_number=2,
        total_count=11,
        has_next=True,
        has_previous=True,
    )
    text, markup = render_results(page)
    assert "• 24/30 correct, 6 wrong, 80%" in text
    assert callback_data(markup) == ["res:1", "res:3"]

    empty = ResultPage(items=[], page_number=1, total_count=0, has_next=False, has_previous=False)
    assert render_results(empty) == ("You have no finished tests yet.", None)
