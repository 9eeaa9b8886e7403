"""In-memory chat history, keyed by chat id."""

import threading
from typing import Dict, List

from chatbroker.models import ChatMessage


class ChatLog:
    def __init__(self):
        self._chats: Dict[str, List[ChatMessage]] = {}
        self._lock = threading.Lock()

    def append(self, chat_id: str, message: ChatMessage) -> None:
        with self._lock:
            self._chats.setdefault(chat_id, []).append(message)

    def messages(self, chat_id: str) -> List[ChatMessage]:
        with self._lock:
            return list(self._chats.get(chat_id, []))

    def chats(self) -> Dict[str, List[ChatMessage]]:
        with self._lock:
            return {chat_id: list(msgs) for chat_id, msgs in self._chats.items()}
