from __future__ import annotations
from datetime import datetime, timezone
from typing import Any, Literal
import secrets
import string

from pydantic import BaseModel, ConfigDict, Field

Role = Literal["user", "assistant", "system", "function", "data", "tool"]

_ID_ALPHABET = string.ascii_letters + string.digits


def new_id(size: int = 7) -> str:
    """Short random id for chats and messages."""
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(size))


class Message(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    role: Role = Field(..., examples=["user", "assistant"])
    content: str
    name: str | None = None


class ConversationState(BaseModel):
    model_config = ConfigDict(frozen=True)

    chat_id: str = Field(default_factory=new_id)
    messages: tuple[Message, ...] = ()

    def append(self, message: Message) -> ConversationState:
        return self.model_copy(update={"messages": (*self.messages, message)})


class RetrievedDocument(BaseModel):
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    score: float | None = None


class Chat(BaseModel):
    id: str
    title: str
    user_id: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    messages: list[Message]
    path: str

    @classmethod
    def from_state(cls, state: ConversationState, user_id: str) -> Chat:
        messages = list(state.messages)
        title = messages[0].content[:100] if messages else ""
        return cls(
            id=state.chat_id,
            title=title,
            user_id=user_id,
            messages=messages,
            path=f"/chat/{state.chat_id}",
        )


class UIMessage(BaseModel):
    id: str
    role: Role
    content: str


def ui_messages(chat_id: str, messages: list[Message] | tuple[Message, ...]) -> list[UIMessage]:
    visible = [m for m in messages if m.role != "system"]
    return [
        UIMessage(id=f"{chat_id}-{i}", role=m.role, content=m.content)
        for i, m in enumerate(visible)
    ]


class ChatRequest(BaseModel):
    content: str = Field(..., min_length=1)
    chat_id: str | None = None
