from __future__ import annotations
import asyncio
import logging

import httpx
import numpy as np

from .config import Settings, settings as default_settings

logger = logging.getLogger(__name__)


class Embedder:
    async def embed_query(self, text: str) -> list[float]:
        vectors = await self.embed_documents([text])
        return vectors[0]

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        raise NotImplementedError

    async def aclose(self) -> None:
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


class OpenAIEmbedder(Embedder):
    """Hosted OpenAI embeddings. Owns its HTTP client unless one is passed in."""

    def __init__(self, api_key: str | None, model: str, base_url: str = "https://api.openai.com/v1",
                 client: httpx.AsyncClient | None = None, timeout: float = 60):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        if not self.api_key:
            raise RuntimeError("OPENAI_API_KEY is missing.")
        if not texts:
            return []
        headers = {"Authorization": f"Bearer {self.api_key}"}
        payload = {"model": self.model, "input": texts}
        try:
            r = await self.client.post(f"{self.base_url}/embeddings", headers=headers, json=payload)
            r.raise_for_status()
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 401:
                raise RuntimeError("Invalid OpenAI API key. Please check OPENAI_API_KEY.") from e
            if e.response.status_code == 429:
                raise RuntimeError("OpenAI rate limit exceeded while embedding. Please try again later.") from e
            raise RuntimeError(f"OpenAI embeddings error: {e.response.status_code} - {e.response.text}") from e
        except httpx.TransportError as e:
            raise RuntimeError(f"Cannot reach OpenAI embeddings endpoint: {e}") from e
        data = sorted(r.json()["data"], key=lambda item: item["index"])
        return [item["embedding"] for item in data]

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()


class LocalEmbedder(Embedder):
    """sentence-transformers model, for running without the hosted API."""

    def __init__(self, model_name: str):
        from sentence_transformers import SentenceTransformer

        self.model = SentenceTransformer(model_name)

    def embed_texts(self, texts: list[str]) -> np.ndarray:
        vecs = self.model.encode(texts, normalize_embeddings=True, show_progress_bar=False)
        return np.array(vecs, dtype="float32")

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        vecs = await asyncio.to_thread(self.embed_texts, texts)
        return vecs.tolist()


def get_embedder(cfg: Settings | None = None, client: httpx.AsyncClient | None = None) -> Embedder:
    cfg = cfg or default_settings
    if cfg.embedding_provider.lower() == "local":
        logger.info(f"Using local embedding model {cfg.local_embedding_model}")
        return LocalEmbedder(cfg.local_embedding_model)
    return OpenAIEmbedder(
        api_key=cfg.openai_api_key,
        model=cfg.openai_embedding_model,
        base_url=cfg.openai_base_url,
        client=client,
        timeout=cfg.request_timeout,
    )
