from __future__ import annotations
from dataclasses import dataclass, field
from typing import AsyncIterator, Iterable
import logging

from .llm import LLM
from .prompts import build_answer_prompt, build_standalone_question_prompt, combine_documents
from .schemas import Message, RetrievedDocument
from .vectorstore import VectorStore

logger = logging.getLogger(__name__)


class QuestionRewriter:
    """Turns a follow-up question into one that stands on its own."""

    def __init__(self, llm: LLM):
        self.llm = llm

    async def rewrite(self, question: str, chat_history: str) -> str:
        prompt = build_standalone_question_prompt(question=question, chat_history=chat_history)
        standalone = (await self.llm.complete(prompt)).strip()
        logger.info(f"Standalone question: '{question}' → '{standalone}'")
        return standalone


@dataclass
class PreparedAnswer:
    question: str
    standalone_question: str
    documents: list[RetrievedDocument] = field(default_factory=list)
    context: str = ""
    system_prompt: str = ""


class RetrievalPipeline:
    def __init__(self, llm: LLM, store: VectorStore, top_k: int = 4,
                 support_email: str = "help@aplentify.com", max_context_chars: int | None = None):
        self.llm = llm
        self.store = store
        self.rewriter = QuestionRewriter(llm)
        self.top_k = top_k
        self.support_email = support_email
        self.max_context_chars = max_context_chars

    async def prepare(self, question: str, chat_history: str) -> PreparedAnswer:
        standalone_question = await self.rewriter.rewrite(question, chat_history)

        documents = await self.store.similarity_search(standalone_question, k=self.top_k)
        logger.info(f"Retrieved {len(documents)} documents")
        for idx, doc in enumerate(documents[:3], 1):
            logger.debug(f"  Doc {idx} (score: {doc.score}) - {doc.content[:100]}...")

        context = combine_documents(documents, max_chars=self.max_context_chars)
        system_prompt = build_answer_prompt(context=context, question=question, support_email=self.support_email)

        return PreparedAnswer(
            question=question,
            standalone_question=standalone_question,
            documents=documents,
            context=context,
            system_prompt=system_prompt,
        )

    def stream_answer(self, prepared: PreparedAnswer, messages: Iterable[Message]) -> AsyncIterator[str]:
        return self.llm.stream(prepared.system_prompt, list(messages))
