from __future__ import annotations
from collections import OrderedDict
from contextlib import aclosing
from typing import AsyncIterator
import asyncio
import logging

from .config import Settings, settings as default_settings
from .embeddings import Embedder, get_embedder
from .llm import LLM, get_llm
from .pipeline import RetrievalPipeline
from .prompts import format_conv_history
from .schemas import Chat, ConversationState, Message, UIMessage, ui_messages
from .state import ChatRepository, ConversationStateStore
from .vectorstore import VectorStore, get_vector_store

logger = logging.getLogger(__name__)

# (user_id, chat_id); anonymous chats have user_id None
StateKey = tuple[str | None, str]


class ChatService:
    """
    Runs chat turns: records the student's message, answers it through the
    retrieval pipeline and records the streamed answer once it is complete.

    Conversation states are scoped to the caller: a chat started by one user
    is invisible to anonymous callers and to every other user. Finished turns
    of signed-in users are written to the repository and dropped from memory;
    anonymous and unfinished states stay in a bounded in-memory cache, oldest
    evicted first.
    """

    def __init__(self, pipeline: RetrievalPipeline, repository: ChatRepository | None = None,
                 closeables: list | None = None, max_states: int = 1000):
        self.pipeline = pipeline
        self.repository = repository
        self.max_states = max_states
        self._states: OrderedDict[StateKey, ConversationState] = OrderedDict()
        self._locks: dict[StateKey, asyncio.Lock] = {}
        self._lock_users: dict[StateKey, int] = {}
        self._closeables = closeables or []

    @classmethod
    def from_settings(cls, cfg: Settings | None = None) -> ChatService:
        cfg = cfg or default_settings
        embedder: Embedder = get_embedder(cfg)
        store: VectorStore = get_vector_store(embedder, cfg)
        llm: LLM = get_llm(cfg)
        pipeline = RetrievalPipeline(
            llm,
            store,
            top_k=cfg.top_k,
            support_email=cfg.support_email,
            max_context_chars=cfg.max_context_chars,
        )
        logger.info(f"✅ Chat service ready (llm={cfg.llm_provider}, store={cfg.vector_store}, embeddings={cfg.embedding_provider})")
        return cls(pipeline, ChatRepository(cfg.chats_dir), closeables=[llm, store, embedder])

    async def aclose(self) -> None:
        for resource in self._closeables:
            await resource.aclose()

    def get_state(self, chat_id: str, user_id: str | None = None) -> ConversationState | None:
        """Return the caller's state for chat_id, or None if the caller does not own it."""
        user_id = user_id or None
        state = self._states.get((user_id, chat_id))
        if state is None and user_id and self.repository:
            chat = self.repository.get_chat(chat_id, user_id)
            if chat is not None:
                state = ConversationState(chat_id=chat.id, messages=tuple(chat.messages))
        return state

    def get_ui_state(self, chat_id: str, user_id: str | None = None) -> list[UIMessage] | None:
        state = self.get_state(chat_id, user_id)
        if state is None:
            return None
        return ui_messages(state.chat_id, state.messages)

    def _remember(self, key: StateKey, state: ConversationState) -> None:
        self._states[key] = state
        self._states.move_to_end(key)
        while len(self._states) > self.max_states:
            evicted, _ = self._states.popitem(last=False)
            logger.debug(f"Evicted in-memory state for chat {evicted[1]}")

    async def _persist(self, state: ConversationState, user_id: str | None) -> bool:
        if not user_id or self.repository is None:
            logger.debug(f"Chat {state.chat_id} not saved: no signed-in user")
            return False
        chat = Chat.from_state(state, user_id)
        existing = await asyncio.to_thread(self.repository.get_chat, state.chat_id, user_id)
        if existing is not None:
            chat.created_at = existing.created_at
        await asyncio.to_thread(self.repository.save_chat, chat)
        return True

    async def _state_store(self, key: StateKey) -> ConversationStateStore:
        user_id, chat_id = key

        async def on_set_state(state: ConversationState, done: bool) -> None:
            self._remember(key, state)
            if done and await self._persist(state, user_id):
                # the repository now holds it
                self._states.pop(key, None)

        state = await asyncio.to_thread(self.get_state, chat_id, user_id)
        return ConversationStateStore(state or ConversationState(chat_id=chat_id), on_set_state=on_set_state)

    async def submit_user_message(self, chat_id: str, content: str, user_id: str | None = None) -> AsyncIterator[str]:
        """
        Answer one student message, yielding the answer as text deltas.

        The user message is recorded before any model call; the assistant
        message only after the stream ends. If a hosted call fails the error
        propagates and the chat keeps just the user message.
        """
        key: StateKey = (user_id or None, chat_id)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                ai_state = await self._state_store(key)
                prior = ai_state.get()
                chat_history = format_conv_history(m.content for m in prior.messages)

                with_question = prior.append(Message(role="user", content=content))
                await ai_state.update(with_question)

                prepared = await self.pipeline.prepare(content, chat_history)

                parts: list[str] = []
                async with aclosing(self.pipeline.stream_answer(prepared, with_question.messages)) as deltas:
                    async for delta in deltas:
                        parts.append(delta)
                        yield delta

                answer = "".join(parts)
                if not answer.strip():
                    logger.warning(f"Empty answer from the chat model for chat {chat_id}")
                await ai_state.done(with_question.append(Message(role="assistant", content=answer)))
                logger.info(f"Turn complete for chat {chat_id} ({len(answer)} chars)")
        finally:
            # drop the lock once no turn holds or waits on it
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]
