from dataclasses import dataclass, field
import time

@dataclass
class Chunk:
    text: str
    source: str
    chunk_id: int
    timestamp: float = field(default_factory=time.time)

    def metadata(self) -> dict:
        return {"source": self.source, "chunk_id": self.chunk_id, "timestamp": self.timestamp}

def chunk_text(text: str, source: str, chunk_size: int = 1200, overlap: int = 200) -> list[Chunk]:
    # Character windows; consecutive chunks share `overlap` characters
    if overlap >= chunk_size:
        raise ValueError("overlap must be smaller than chunk_size")
    text = text.replace("\x00", " ").strip()
    if not text:
        return []

    chunks: list[Chunk] = []
    start = 0
    cid = 0
    while start < len(text):
        end = min(len(text), start + chunk_size)
        part = text[start:end].strip()
        if part:
            chunks.append(Chunk(text=part, source=source, chunk_id=cid))
            cid += 1
        if end == len(text):
            break
        start = end - overlap

    return chunks
