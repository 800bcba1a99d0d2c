"""
End-to-End Tests for ingestion into the local FAISS store

Tests:
- Initial indexing of a docs folder
- Incremental updates (add / modify / delete)
- Answering from the freshly built index

Run with: pytest tests/test_e2e.py -v
"""

import json
from pathlib import Path

import pytest

from mentorchat.chat import ChatService
from mentorchat.ingest import run_ingest
from mentorchat.pipeline import RetrievalPipeline
from mentorchat.vectorstore import FaissStore

from conftest import FakeLLM, HashEmbedder


@pytest.fixture
def docs_dir(tmp_path):
    docs = tmp_path / "docs"
    docs.mkdir()
    (docs / "mentors.md").write_text(
        "# Mentors\n\n"
        "Dana Levi mentors computer science students and explains algorithms with diagrams."
    )
    (docs / "faq.txt").write_text(
        "Sessions are booked through the student dashboard and last forty five minutes."
    )
    (docs / "programs.json").write_text(json.dumps({"program": "Summer coding bootcamp", "weeks": 6}))
    (docs / ".hidden.txt").write_text("should never be indexed")
    return docs


@pytest.fixture
def store(tmp_path):
    return FaissStore(str(tmp_path / "index"), HashEmbedder())


def _meta(index_dir):
    with open(Path(index_dir) / "metadata.jsonl", "r") as f:
        return [json.loads(line) for line in f]


class TestIngestion:

    @pytest.mark.asyncio
    async def test_initial_indexing(self, docs_dir, store):
        stats = await run_ingest(store, docs_dir=str(docs_dir), reset=True)

        assert stats["added"] == 3
        assert (store.index_dir / "faiss.index").exists()
        assert (store.index_dir / "doc_hashes.json").exists()
        sources = {m["source"] for m in _meta(store.index_dir)}
        assert sources == {"mentors.md", "faq.txt", "programs.json"}

    @pytest.mark.asyncio
    async def test_unchanged_files_are_skipped(self, docs_dir, store):
        await run_ingest(store, docs_dir=str(docs_dir))
        stats = await run_ingest(store, docs_dir=str(docs_dir))

        assert stats["added"] == 0
        assert stats["skipped"] == 3

    @pytest.mark.asyncio
    async def test_modified_file_is_replaced(self, docs_dir, store):
        await run_ingest(store, docs_dir=str(docs_dir))
        (docs_dir / "faq.txt").write_text("UPDATED: sessions now last one hour.")

        stats = await run_ingest(store, docs_dir=str(docs_dir))

        assert stats["added"] == 1
        faq = [m for m in _meta(store.index_dir) if m["source"] == "faq.txt"]
        assert len(faq) == 1
        assert "UPDATED" in faq[0]["text"]

    @pytest.mark.asyncio
    async def test_deleted_file_is_dropped(self, docs_dir, store):
        await run_ingest(store, docs_dir=str(docs_dir))
        (docs_dir / "programs.json").unlink()

        stats = await run_ingest(store, docs_dir=str(docs_dir))

        assert stats["removed"] == 1
        assert "programs.json" not in {m["source"] for m in _meta(store.index_dir)}

    @pytest.mark.asyncio
    async def test_index_survives_reload(self, docs_dir, store, tmp_path):
        await run_ingest(store, docs_dir=str(docs_dir))

        reloaded = FaissStore(str(tmp_path / "index"), HashEmbedder())
        reloaded.load()

        assert reloaded.sources() == store.sources()


class TestAnswerFromIndex:

    @pytest.mark.asyncio
    async def test_question_retrieves_ingested_mentor(self, docs_dir, store):
        await run_ingest(store, docs_dir=str(docs_dir))
        llm = FakeLLM(tokens=["Try", " Dana", " Levi."])
        service = ChatService(RetrievalPipeline(llm, store, top_k=1))

        answer = "".join([t async for t in service.submit_user_message(
            "c1", "which mentor explains computer science algorithms with diagrams"
        )])

        system, _ = llm.stream_calls[0]
        assert "Dana Levi mentors computer science students" in system
        assert answer == "Try Dana Levi."
