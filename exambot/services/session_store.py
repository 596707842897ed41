from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Dict, Optional

from exambot.services.calculator import Calculator
from exambot.services.session import SessionController, SessionStatus

logger = logging.getLogger(__name__)


@dataclass
class ChatSession:
    key: str
    user_id: int
    chat_id: int
    controller: SessionController


class SessionStore:
    def __init__(self) -> None:
        self._sessions: Dict[str, ChatSession] = {}
        self._by_user: Dict[int, str] = {}
        self._calculators: Dict[int, Calculator] = {}

    def start_session(self, *, user_id: int, chat_id: int, controller: SessionController) -> ChatSession:
        prev_key = self._by_user.get(user_id)
        if prev_key:
            self._discard(prev_key)

        key = uuid.uuid4().hex[:12]
        session = ChatSession(key=key, user_id=user_id, chat_id=chat_id, controller=controller)
        self._sessions[key] = session
        self._by_user[user_id] = key
        return session

    def get(self, key: str) -> Optional[ChatSession]:
        return self._sessions.get(key)

    def get_for_user(self, user_id: int) -> Optional[ChatSession]:
        key = self._by_user.get(user_id)
        return self._sessions.get(key) if key else None

    def clear_session(self, key: str) -> None:
        session = self._sessions.pop(key, None)
        if session and self._by_user.get(session.user_id) == key:
            self._by_user.pop(session.user_id, None)

    def calculator_for(self, user_id: int) -> Calculator:
        return self._calculators.setdefault(user_id, Calculator())

    def clear_calculator(self, user_id: int) -> None:
        self._calculators.pop(user_id, None)

    def _discard(self, key: str) -> None:
        session = self._sessions.get(key)
        if session and session.controller.status is SessionStatus.IN_PROGRESS:
            logger.info("User %s started a new test; abandoning session %s", session.user_id, key)
            session.controller.abandon()
        self.clear_session(key)

    def __len__(self) -> int:
        return len(self._sessions)


session_store = SessionStore()
