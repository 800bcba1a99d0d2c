from __future__ import annotations
from pathlib import Path
import asyncio
import json
import logging

import faiss
import httpx
import numpy as np

from .chunking import Chunk
from .config import Settings, settings as default_settings
from .embeddings import Embedder
from .schemas import RetrievedDocument

logger = logging.getLogger(__name__)


class VectorStore:
    def __init__(self, embedder: Embedder):
        self.embedder = embedder

    async def similarity_search(self, query: str, k: int = 4) -> list[RetrievedDocument]:
        raise NotImplementedError

    async def add_chunks(self, chunks: list[Chunk], file_hash: str | None = None) -> int:
        raise NotImplementedError

    async def aclose(self) -> None:
        pass


class SupabaseVectorStore(VectorStore):
    """
    pgvector table behind Supabase's PostgREST API.

    Search goes through the `match_documents` SQL function, which is expected
    to return rows of {id, content, metadata, similarity} ordered by
    similarity, most similar first.
    """

    def __init__(self, embedder: Embedder, url: str | None, service_role_key: str | None,
                 table_name: str = "documents", query_name: str = "match_documents",
                 client: httpx.AsyncClient | None = None, timeout: float = 60):
        super().__init__(embedder)
        if not url or not service_role_key:
            raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must both be set.")
        self.url = url.rstrip("/")
        self.table_name = table_name
        self.query_name = query_name
        self._headers = {
            "apikey": service_role_key,
            "Authorization": f"Bearer {service_role_key}",
        }
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def _post(self, path: str, payload, extra_headers: dict | None = None) -> httpx.Response:
        headers = {**self._headers, **(extra_headers or {})}
        try:
            r = await self.client.post(f"{self.url}/rest/v1/{path}", headers=headers, json=payload)
            r.raise_for_status()
            return r
        except httpx.HTTPStatusError as e:
            if e.response.status_code in (401, 403):
                raise RuntimeError("Supabase rejected the service role key. Check SUPABASE_SERVICE_ROLE_KEY.") from e
            raise RuntimeError(f"Supabase error: {e.response.status_code} - {e.response.text}") from e
        except httpx.TransportError as e:
            raise RuntimeError(f"Cannot reach Supabase at {self.url}: {e}") from e

    async def similarity_search(self, query: str, k: int = 4) -> list[RetrievedDocument]:
        query_vec = await self.embedder.embed_query(query)
        payload = {"query_embedding": query_vec, "match_count": k, "filter": {}}
        r = await self._post(f"rpc/{self.query_name}", payload)
        rows = r.json() or []
        logger.info(f"Supabase '{self.query_name}' returned {len(rows)} documents")
        return [
            RetrievedDocument(
                content=row.get("content") or "",
                metadata=row.get("metadata") or {},
                score=row.get("similarity"),
            )
            for row in rows
        ]

    async def add_chunks(self, chunks: list[Chunk], file_hash: str | None = None) -> int:
        if not chunks:
            return 0
        vectors = await self.embedder.embed_documents([c.text for c in chunks])
        rows = []
        for ch, vec in zip(chunks, vectors):
            metadata = ch.metadata()
            if file_hash:
                metadata["file_hash"] = file_hash
            rows.append({"content": ch.text, "metadata": metadata, "embedding": vec})
        await self._post(self.table_name, rows, {"Prefer": "return=minimal"})
        return len(rows)

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()


class FaissStore(VectorStore):
    """
    Local stand-in for the hosted store.

    Stores:
      - FAISS index (vectors, inner product)
      - metadata.jsonl with {id, source, chunk_id, text, timestamp}
      - doc_hashes.json with {source: file_hash}
    """
    def __init__(self, index_dir: str, embedder: Embedder):
        super().__init__(embedder)
        self.index_dir = Path(index_dir)
        self.index_dir.mkdir(parents=True, exist_ok=True)
        self.index_path = self.index_dir / "faiss.index"
        self.meta_path = self.index_dir / "metadata.jsonl"
        self.doc_hashes_path = self.index_dir / "doc_hashes.json"

        self.index: faiss.Index | None = None
        self.meta: list[dict] = []
        self.doc_hashes: dict[str, str] = {}  # source -> hash

    def reset(self):
        for path in (self.index_path, self.meta_path, self.doc_hashes_path):
            if path.exists():
                path.unlink()
        self.index = None
        self.meta = []
        self.doc_hashes = {}

    def exists(self) -> bool:
        return self.index_path.exists() and self.meta_path.exists()

    def load(self):
        if not self.exists():
            raise FileNotFoundError("Index not found. Run ingest first.")
        self.index = faiss.read_index(str(self.index_path))
        self.meta = []
        with self.meta_path.open("r", encoding="utf-8") as f:
            for line in f:
                self.meta.append(json.loads(line))

        if self.doc_hashes_path.exists():
            with self.doc_hashes_path.open("r", encoding="utf-8") as f:
                self.doc_hashes = json.load(f)
        else:
            self.doc_hashes = {}

    def save(self):
        if self.index is None:
            self.reset()
            return
        faiss.write_index(self.index, str(self.index_path))
        with self.meta_path.open("w", encoding="utf-8") as f:
            for m in self.meta:
                f.write(json.dumps(m, ensure_ascii=False) + "\n")
        with self.doc_hashes_path.open("w", encoding="utf-8") as f:
            json.dump(self.doc_hashes, f, indent=2)

    def add_vectors(self, vectors: np.ndarray, chunks: list[Chunk], file_hash: str | None = None):
        if len(chunks) == 0:
            return
        vectors = np.asarray(vectors, dtype="float32")
        if vectors.shape[0] != len(chunks):
            raise ValueError(f"Length mismatch: {vectors.shape[0]} vectors vs {len(chunks)} chunks.")

        if self.index is None:
            self.index = faiss.IndexFlatIP(vectors.shape[1])
        self.index.add(vectors)

        next_id = len(self.meta)
        for i, ch in enumerate(chunks):
            self.meta.append({"id": next_id + i, "text": ch.text, **ch.metadata()})

        if file_hash:
            self.doc_hashes[chunks[0].source] = file_hash

    def remove_document(self, source: str) -> int:
        """Remove all chunks of one source; returns how many were dropped"""
        if self.index is None or not self.meta:
            return 0

        indices_to_keep = [i for i, m in enumerate(self.meta) if m["source"] != source]
        removed = len(self.meta) - len(indices_to_keep)
        if removed == 0:
            return 0

        logger.info(f"🗑️  Removing {removed} chunks from '{source}'")
        self.doc_hashes.pop(source, None)

        if not indices_to_keep:
            self.index = None
            self.meta = []
            return removed

        # FAISS flat indexes can't drop vectors, so rebuild from the survivors
        dim = self.index.d
        old_vectors = self.index.reconstruct_n(0, self.index.ntotal)
        new_index = faiss.IndexFlatIP(dim)
        new_index.add(np.ascontiguousarray(old_vectors[indices_to_keep]))
        self.index = new_index

        self.meta = [self.meta[i] for i in indices_to_keep]
        for new_id, m in enumerate(self.meta):
            m["id"] = new_id
        return removed

    def needs_update(self, source: str, file_hash: str) -> bool:
        return self.doc_hashes.get(source) != file_hash

    def sources(self) -> set[str]:
        return {m["source"] for m in self.meta}

    def search_vectors(self, query_vec: np.ndarray, top_k: int = 4) -> list[dict]:
        if self.index is None or self.index.ntotal == 0:
            return []
        query_vec = np.asarray(query_vec, dtype="float32").reshape(1, -1)
        scores, ids = self.index.search(query_vec, min(top_k, self.index.ntotal))

        out = []
        for score, idx in zip(scores[0].tolist(), ids[0].tolist()):
            if idx == -1 or idx >= len(self.meta):
                continue
            m = dict(self.meta[idx])
            m["score"] = float(score)
            out.append(m)
        return out

    async def similarity_search(self, query: str, k: int = 4) -> list[RetrievedDocument]:
        query_vec = await self.embedder.embed_query(query)
        hits = await asyncio.to_thread(self.search_vectors, np.array(query_vec, dtype="float32"), k)
        return [
            RetrievedDocument(
                content=h.pop("text"),
                score=h.pop("score"),
                metadata=h,
            )
            for h in hits
        ]

    async def add_chunks(self, chunks: list[Chunk], file_hash: str | None = None) -> int:
        if not chunks:
            return 0
        vectors = await self.embedder.embed_documents([c.text for c in chunks])
        self.add_vectors(np.array(vectors, dtype="float32"), chunks, file_hash)
        return len(chunks)


def get_vector_store(embedder: Embedder, cfg: Settings | None = None,
                     client: httpx.AsyncClient | None = None) -> VectorStore:
    cfg = cfg or default_settings
    if cfg.vector_store.lower() == "faiss":
        store = FaissStore(cfg.index_dir, embedder)
        try:
            store.load()
            logger.info(f"📚 Loaded FAISS index: {len(store.meta)} chunks from {len(store.sources())} documents")
        except FileNotFoundError:
            logger.warning(f"No FAISS index in {cfg.index_dir}; searches return nothing until ingest runs")
        return store
    return SupabaseVectorStore(
        embedder,
        url=cfg.supabase_url,
        service_role_key=cfg.supabase_service_role_key,
        table_name=cfg.supabase_table,
        query_name=cfg.supabase_query_name,
        client=client,
        timeout=cfg.request_timeout,
    )
