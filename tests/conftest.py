"""
Shared fakes for the test suite.

Hosted services are replaced either by in-process fakes (FakeLLM, FakeStore,
HashEmbedder) or by httpx.MockTransport handlers in the client tests.
"""
import hashlib

import numpy as np
import pytest

from mentorchat.embeddings import Embedder
from mentorchat.llm import LLM
from mentorchat.schemas import RetrievedDocument
from mentorchat.vectorstore import VectorStore


class HashEmbedder(Embedder):
    """Bag-of-words hashed into a small normalized vector."""

    def __init__(self, dim: int = 64):
        self.dim = dim

    def vector(self, text: str) -> list[float]:
        vec = np.zeros(self.dim, dtype="float32")
        for word in text.lower().split():
            bucket = int(hashlib.md5(word.encode()).hexdigest(), 16) % self.dim
            vec[bucket] += 1.0
        norm = np.linalg.norm(vec)
        if norm > 0:
            vec /= norm
        return vec.tolist()

    async def embed_documents(self, texts):
        return [self.vector(t) for t in texts]


class FakeLLM(LLM):
    def __init__(self, standalone=None, tokens=("Hello", " there", "!"), fail_on=None):
        self.standalone = standalone
        self.tokens = list(tokens)
        self.fail_on = fail_on
        self.prompts: list[str] = []
        self.stream_calls: list[tuple[str, list]] = []

    async def complete(self, user_prompt):
        self.prompts.append(user_prompt)
        if self.fail_on == "complete":
            raise RuntimeError("OpenAI rate limit exceeded.")
        if self.standalone is not None:
            return self.standalone
        # Echo the question line back, like a model with nothing to resolve
        for line in user_prompt.splitlines():
            if line.startswith("question: "):
                return " " + line[len("question: "):] + "\n"
        return user_prompt

    async def stream(self, system, messages):
        self.stream_calls.append((system, list(messages)))
        for i, token in enumerate(self.tokens):
            if self.fail_on == "stream" and i == 1:
                raise RuntimeError("connection dropped")
            yield token

    async def aclose(self):
        pass


class FakeStore(VectorStore):
    def __init__(self, documents=None, fail=False):
        super().__init__(HashEmbedder())
        self.documents = documents or []
        self.fail = fail
        self.queries: list[tuple[str, int]] = []

    async def similarity_search(self, query, k=4):
        self.queries.append((query, k))
        if self.fail:
            raise RuntimeError("Cannot reach Supabase")
        return list(self.documents[:k])

    async def add_chunks(self, chunks, file_hash=None):
        self.documents.extend(RetrievedDocument(content=c.text, metadata=c.metadata()) for c in chunks)
        return len(chunks)


MENTOR_DOCS = [
    RetrievedDocument(
        content="Dana Levi - Computer Science mentor. Teaches with diagrams and whiteboard sketches.",
        metadata={"source": "mentors.md", "chunk_id": 0},
        score=0.91,
    ),
    RetrievedDocument(
        content="Omar Haddad - Software engineering mentor. Uses screen recordings and visual walkthroughs.",
        metadata={"source": "mentors.md", "chunk_id": 1},
        score=0.87,
    ),
]


@pytest.fixture
def embedder():
    return HashEmbedder()


@pytest.fixture
def mentor_docs():
    return list(MENTOR_DOCS)
