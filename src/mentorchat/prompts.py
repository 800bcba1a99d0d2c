from __future__ import annotations
from typing import Iterable

from .schemas import RetrievedDocument

DOCUMENT_SEPARATOR = "\n\n"

STANDALONE_QUESTION_TEMPLATE = """Given some conversation history (if any) and a question, convert the question to a standalone question.
conversation history: {chat_history}
question: {question}
standalone question:"""

ANSWER_TEMPLATE = """You are a helpful and enthusiastic support bot who, based on a student statement or question, the context provided, and the conversation history, can return recommendations for mentor profiles. Try to find the answer in the context. If the answer is not given in the context, find the answer in the conversation history if possible. If you really don't know the answer, say "I'm sorry, I don't know the answer to that." And direct the questioner to email {support_email}. Don't try to make up an answer. Always speak as if you were chatting to a friend.
{context_block}
answer: """


def combine_documents(docs: Iterable[RetrievedDocument], max_chars: int | None = None) -> str:
    combined = DOCUMENT_SEPARATOR.join(d.content for d in docs)
    if max_chars is not None and len(combined) > max_chars:
        combined = combined[:max_chars]
    return combined


def format_conv_history(contents: Iterable[str]) -> str:
    # Roles are not kept; even positions are the student, odd ones the bot.
    lines = []
    for i, content in enumerate(contents):
        speaker = "Human" if i % 2 == 0 else "AI"
        lines.append(f"{speaker}: {content}")
    return "\n".join(lines)


def build_standalone_question_prompt(question: str, chat_history: str) -> str:
    return STANDALONE_QUESTION_TEMPLATE.format(chat_history=chat_history, question=question)


def build_answer_prompt(context: str, question: str, support_email: str) -> str:
    context_block = f"context: {context}\nquestion: {question}"
    return ANSWER_TEMPLATE.format(support_email=support_email, context_block=context_block)
