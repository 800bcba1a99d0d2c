"""
Conversation state for a chat, and persistence of finished chats.

`ConversationStateStore` holds one chat's message list for the duration of a
turn: `update()` records the user's message before the model is called and
`done()` records the assistant's answer once the stream has finished. After
`done()` the store is sealed.

`ChatRepository` keeps completed chats on disk as one JSON file per chat,
grouped by user: ``<root>/<user_id>/<chat_id>.json``.
"""
from __future__ import annotations
from pathlib import Path
from typing import Awaitable, Callable
import logging
import shutil

from .schemas import Chat, ConversationState

logger = logging.getLogger(__name__)

StateCallback = Callable[[ConversationState, bool], Awaitable[None]]


class ConversationStateStore:
    def __init__(self, state: ConversationState | None = None, on_set_state: StateCallback | None = None):
        self._state = state or ConversationState()
        self._on_set_state = on_set_state
        self._done = False

    @property
    def is_done(self) -> bool:
        return self._done

    def get(self) -> ConversationState:
        return self._state

    def _check_same_chat(self, new_state: ConversationState) -> None:
        if self._done:
            raise RuntimeError(f"State for chat {self._state.chat_id} is already done")
        if new_state.chat_id != self._state.chat_id:
            raise ValueError(f"Cannot replace chat {self._state.chat_id} with {new_state.chat_id}")

    async def update(self, new_state: ConversationState) -> None:
        self._check_same_chat(new_state)
        self._state = new_state
        if self._on_set_state:
            await self._on_set_state(new_state, False)

    async def done(self, final_state: ConversationState) -> None:
        self._check_same_chat(final_state)
        self._state = final_state
        self._done = True
        if self._on_set_state:
            await self._on_set_state(final_state, True)


class ChatRepository:
    def __init__(self, root: str | Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _user_dir(self, user_id: str) -> Path:
        # ids come from headers; keep them inside root
        safe = Path(user_id).name
        if not safe or safe in (".", ".."):
            raise ValueError(f"Invalid user id: {user_id!r}")
        return self.root / safe

    def _chat_path(self, chat_id: str, user_id: str) -> Path:
        safe = Path(chat_id).name
        if not safe or safe in (".", ".."):
            raise ValueError(f"Invalid chat id: {chat_id!r}")
        return self._user_dir(user_id) / f"{safe}.json"

    def save_chat(self, chat: Chat) -> None:
        path = self._chat_path(chat.id, chat.user_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(chat.model_dump_json(indent=2), encoding="utf-8")
        tmp.replace(path)
        logger.info(f"💾 Saved chat {chat.id} for user {chat.user_id} ({len(chat.messages)} messages)")

    def get_chat(self, chat_id: str, user_id: str) -> Chat | None:
        path = self._chat_path(chat_id, user_id)
        if not path.exists():
            return None
        return Chat.model_validate_json(path.read_text(encoding="utf-8"))

    def get_chats(self, user_id: str) -> list[Chat]:
        user_dir = self._user_dir(user_id)
        if not user_dir.exists():
            return []
        chats = [Chat.model_validate_json(p.read_text(encoding="utf-8")) for p in user_dir.glob("*.json")]
        chats.sort(key=lambda c: c.created_at, reverse=True)
        return chats

    def remove_chat(self, chat_id: str, user_id: str) -> bool:
        path = self._chat_path(chat_id, user_id)
        if not path.exists():
            return False
        path.unlink()
        return True

    def clear_chats(self, user_id: str) -> int:
        user_dir = self._user_dir(user_id)
        if not user_dir.exists():
            return 0
        count = len(list(user_dir.glob("*.json")))
        shutil.rmtree(user_dir)
        return count
