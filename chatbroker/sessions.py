"""
Session identifiers shared with the engine: "<userId>_<chatId>".

The chat id is recovered by dropping everything up to the first separator,
so a user id that itself contains "_" cannot round-trip:
"u_1" + "c2_x" -> "u_1_c2_x" -> chat "1_c2_x".
"""

import logging
from typing import NamedTuple

logger = logging.getLogger(__name__)

SEPARATOR = "_"


def join_session_id(user_id: str, chat_id: str) -> str:
    if SEPARATOR in user_id:
        logger.warning("user id %r contains %r; chat id will not round-trip", user_id, SEPARATOR)
    return f"{user_id}{SEPARATOR}{chat_id}"


def chat_id_from_session(session_id: str) -> str:
    """Everything after the first separator, or "" when there is none."""
    return SEPARATOR.join(session_id.split(SEPARATOR)[1:])


class SessionKey(NamedTuple):
    """Structured (user, chat) pair for callers that can keep both halves."""

    user_id: str
    chat_id: str

    @property
    def session_id(self) -> str:
        return join_session_id(self.user_id, self.chat_id)

    @classmethod
    def parse(cls, session_id: str) -> "SessionKey":
        user_id, _, chat_id = session_id.partition(SEPARATOR)
        return cls(user_id, chat_id)
