"""
Chat repository tests.

Run with: pytest tests/test_state.py -v
"""

from datetime import datetime, timedelta, timezone

import pytest

from mentorchat.schemas import Chat, ConversationState, Message
from mentorchat.state import ChatRepository


def _chat(chat_id, user_id="u1", created_at=None, content="hello"):
    state = ConversationState(chat_id=chat_id).append(Message(role="user", content=content))
    chat = Chat.from_state(state, user_id)
    if created_at:
        chat.created_at = created_at
    return chat


@pytest.fixture
def repository(tmp_path):
    return ChatRepository(tmp_path / "chats")


def test_save_and_get(repository):
    repository.save_chat(_chat("c1", content="Who mentors physics?"))

    chat = repository.get_chat("c1", "u1")

    assert chat.title == "Who mentors physics?"
    assert chat.messages[0].role == "user"
    assert (repository.root / "u1" / "c1.json").exists()


def test_get_missing(repository):
    assert repository.get_chat("nope", "u1") is None


def test_get_chats_newest_first(repository):
    now = datetime.now(timezone.utc)
    repository.save_chat(_chat("old", created_at=now - timedelta(days=1)))
    repository.save_chat(_chat("new", created_at=now))

    assert [c.id for c in repository.get_chats("u1")] == ["new", "old"]
    assert repository.get_chats("someone-else") == []


def test_chats_are_scoped_by_user(repository):
    repository.save_chat(_chat("c1", user_id="u1"))

    assert repository.get_chat("c1", "u2") is None


def test_remove_chat(repository):
    repository.save_chat(_chat("c1"))

    assert repository.remove_chat("c1", "u1") is True
    assert repository.remove_chat("c1", "u1") is False
    assert repository.get_chat("c1", "u1") is None


def test_clear_chats(repository):
    repository.save_chat(_chat("c1"))
    repository.save_chat(_chat("c2"))
    repository.save_chat(_chat("c3", user_id="u2"))

    assert repository.clear_chats("u1") == 2
    assert repository.get_chats("u1") == []
    assert len(repository.get_chats("u2")) == 1
    assert repository.clear_chats("u1") == 0


@pytest.mark.parametrize("bad_id", ["", ".", ".."])
def test_rejects_bad_user_ids(repository, bad_id):
    with pytest.raises(ValueError):
        repository.get_chats(bad_id)


def test_path_components_are_stripped(repository):
    repository.save_chat(_chat("c1", user_id="../escape"))

    assert not (repository.root.parent / "escape").exists()
    assert repository.get_chat("c1", "escape") is not None
