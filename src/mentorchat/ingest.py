from __future__ import annotations
from pathlib import Path
import asyncio
import hashlib
import logging

from .chunking import chunk_text
from .config import settings
from .embeddings import get_embedder
from .vectorstore import FaissStore, VectorStore, get_vector_store

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = (".txt", ".md", ".json", ".csv")

def compute_file_hash(filepath: Path) -> str:
    """Compute SHA256 hash of a file"""
    sha256 = hashlib.sha256()
    with filepath.open('rb') as f:
        while chunk := f.read(8192):
            sha256.update(chunk)
    return sha256.hexdigest()

def find_documents(docs_dir: str | Path, exclude: list[Path] | None = None) -> dict[Path, str]:
    docs_path = Path(docs_dir)
    excluded = [Path(p).resolve() for p in exclude or []]
    found = {}
    for ext in SUPPORTED_EXTENSIONS:
        for path in docs_path.rglob(f"*{ext}"):
            if path.name.startswith('.'):
                continue
            resolved = path.resolve()
            # index files and saved chats may live under docs_dir
            if any(d == resolved or d in resolved.parents for d in excluded):
                continue
            found[path] = compute_file_hash(path)
    return found

async def run_ingest(store: VectorStore, docs_dir: str | None = None, reset: bool = False,
                     chunk_size: int | None = None, overlap: int | None = None) -> dict:
    """
    Load documents from docs_dir into the vector store.

    With a FaissStore the update is incremental: unchanged files (same hash)
    are skipped, changed files are replaced and files deleted from disk are
    dropped from the index. The hosted store has no hash bookkeeping, so every
    file found is uploaded.
    """
    docs_directory = docs_dir or settings.docs_dir
    chunk_size = chunk_size or settings.chunk_size
    overlap = settings.chunk_overlap if overlap is None else overlap
    local = isinstance(store, FaissStore)

    if local and reset:
        logger.info("🔄 Resetting index (full rebuild)...")
        store.reset()

    logger.info(f"📂 Scanning documents recursively in: {docs_directory}")
    excluded = [Path(settings.chats_dir)] + ([store.index_dir] if local else [])
    documents = find_documents(docs_directory, exclude=excluded)
    logger.info(f"   Found {len(documents)} documents")

    stats = {"added": 0, "skipped": 0, "removed": 0, "chunks": 0}

    if local:
        current_sources = {p.name for p in documents}
        for source in store.sources() - current_sources:
            store.remove_document(source)
            stats["removed"] += 1

    for path, file_hash in documents.items():
        source = path.name
        if local and not store.needs_update(source, file_hash):
            stats["skipped"] += 1
            continue

        text = path.read_text(encoding="utf-8", errors="replace")
        chunks = chunk_text(text, source=source, chunk_size=chunk_size, overlap=overlap)
        if not chunks:
            logger.warning(f"    ⚠️  Skipped (empty): {source}")
            stats["skipped"] += 1
            continue

        if local and source in store.sources():
            logger.info(f"    🔄 Updating existing document {source}")
            store.remove_document(source)

        added = await store.add_chunks(chunks, file_hash)
        stats["added"] += 1
        stats["chunks"] += added
        logger.info(f"    ✓ {source}: {added} chunks ({len(text)} chars)")

    if local:
        store.save()
        logger.info(f"💾 Index saved to {store.index_dir} ({len(store.meta)} chunks)")

    logger.info(f"✅ Ingest complete: {stats}")
    return stats

async def _main(docs_dir: str | None, reset: bool) -> None:
    embedder = get_embedder()
    store = get_vector_store(embedder)
    try:
        await run_ingest(store, docs_dir=docs_dir, reset=reset)
    finally:
        await store.aclose()
        await embedder.aclose()

if __name__ == "__main__":
    import argparse

    logging.basicConfig(
        level=settings.log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    parser = argparse.ArgumentParser(description="Load documents into the vector store")
    parser.add_argument("--reset", action="store_true", help="Reset the local index and rebuild from scratch")
    parser.add_argument("docs_dir", nargs="?", default=None, help="Directory containing documents")

    args = parser.parse_args()

    asyncio.run(_main(args.docs_dir, args.reset))
