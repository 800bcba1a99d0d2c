from __future__ import annotations
from typing import AsyncIterator, Iterable
import json
import logging

import httpx

from .config import Settings, settings as default_settings
from .schemas import Message

logger = logging.getLogger(__name__)

# Roles the chat completion APIs accept without extra tool-call fields
CHAT_ROLES = {"system", "user", "assistant"}


def to_chat_messages(messages: Iterable[Message]) -> list[dict]:
    out = []
    for m in messages:
        if m.role not in CHAT_ROLES:
            logger.debug(f"Not sending {m.role} message {m.id} to the chat model")
            continue
        item = {"role": m.role, "content": m.content}
        if m.name:
            item["name"] = m.name
        out.append(item)
    return out


class LLM:
    """Chat model client. Owns its HTTP client unless one is passed in."""

    def __init__(self, client: httpx.AsyncClient | None = None, timeout: float = 60):
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def complete(self, user_prompt: str) -> str:
        raise NotImplementedError

    def stream(self, system: str, messages: Iterable[Message]) -> AsyncIterator[str]:
        raise NotImplementedError

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


def _openai_error(e: httpx.HTTPStatusError) -> RuntimeError:
    if e.response.status_code == 429:
        return RuntimeError(
            "OpenAI rate limit exceeded. Please try again later or switch to Ollama by setting LLM_PROVIDER=ollama in your .env file."
        )
    if e.response.status_code == 401:
        return RuntimeError("Invalid OpenAI API key. Please check your OPENAI_API_KEY in the .env file.")
    return RuntimeError(f"OpenAI API error: {e.response.status_code} - {e.response.text}")


class OpenAILLM(LLM):
    def __init__(self, api_key: str | None, model: str, base_url: str = "https://api.openai.com/v1",
                 temperature: float = 0.7, client: httpx.AsyncClient | None = None, timeout: float = 60):
        super().__init__(client, timeout)
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.temperature = temperature

    def _headers(self) -> dict:
        if not self.api_key:
            raise RuntimeError("OPENAI_API_KEY is missing.")
        return {"Authorization": f"Bearer {self.api_key}"}

    async def complete(self, user_prompt: str) -> str:
        headers = self._headers()
        payload = {
            "model": self.model,
            "messages": [{"role": "user", "content": user_prompt}],
            "temperature": self.temperature,
        }
        try:
            r = await self.client.post(f"{self.base_url}/chat/completions", headers=headers, json=payload)
            r.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise _openai_error(e) from e
        except httpx.TransportError as e:
            raise RuntimeError(f"Cannot reach OpenAI at {self.base_url}: {e}") from e
        data = r.json()
        return data["choices"][0]["message"]["content"] or ""

    async def stream(self, system: str, messages: Iterable[Message]) -> AsyncIterator[str]:
        headers = self._headers()
        payload = {
            "model": self.model,
            "messages": [{"role": "system", "content": system}, *to_chat_messages(messages)],
            "temperature": self.temperature,
            "stream": True,
        }
        try:
            async with self.client.stream("POST", f"{self.base_url}/chat/completions", headers=headers, json=payload) as r:
                if r.is_error:
                    await r.aread()
                r.raise_for_status()
                # Server-sent events: "data: {...}" lines, closed by "data: [DONE]"
                async for line in r.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    data = line[len("data:"):].strip()
                    if data == "[DONE]":
                        break
                    chunk = json.loads(data)
                    choices = chunk.get("choices") or []
                    if not choices:
                        continue
                    delta = (choices[0].get("delta") or {}).get("content")
                    if delta:
                        yield delta
        except httpx.HTTPStatusError as e:
            raise _openai_error(e) from e
        except httpx.TransportError as e:
            raise RuntimeError(f"Cannot reach OpenAI at {self.base_url}: {e}") from e


class OllamaLLM(LLM):
    def __init__(self, base_url: str, model: str, temperature: float = 0.7,
                 client: httpx.AsyncClient | None = None, timeout: float = 120):
        super().__init__(client, timeout)
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.temperature = temperature

    def _connect_error(self) -> RuntimeError:
        return RuntimeError(
            f"Cannot connect to Ollama at {self.base_url}. Make sure Ollama is running with 'ollama serve' and the model '{self.model}' is pulled."
        )

    async def complete(self, user_prompt: str) -> str:
        payload = {
            "model": self.model,
            "messages": [{"role": "user", "content": user_prompt}],
            "stream": False,
            "options": {"temperature": self.temperature},
        }
        try:
            r = await self.client.post(f"{self.base_url}/api/chat", json=payload)
            r.raise_for_status()
        except httpx.ConnectError as e:
            raise self._connect_error() from e
        except httpx.HTTPStatusError as e:
            raise RuntimeError(f"Ollama API error: {e.response.status_code} - {e.response.text}") from e
        data = r.json()
        return data["message"]["content"]

    async def stream(self, system: str, messages: Iterable[Message]) -> AsyncIterator[str]:
        payload = {
            "model": self.model,
            "messages": [{"role": "system", "content": system}, *to_chat_messages(messages)],
            "stream": True,
            "options": {"temperature": self.temperature},
        }
        try:
            async with self.client.stream("POST", f"{self.base_url}/api/chat", json=payload) as r:
                if r.is_error:
                    await r.aread()
                r.raise_for_status()
                # One JSON object per line; the last one has "done": true
                async for line in r.aiter_lines():
                    if not line.strip():
                        continue
                    chunk = json.loads(line)
                    delta = (chunk.get("message") or {}).get("content")
                    if delta:
                        yield delta
                    if chunk.get("done"):
                        break
        except httpx.ConnectError as e:
            raise self._connect_error() from e
        except httpx.HTTPStatusError as e:
            raise RuntimeError(f"Ollama API error: {e.response.status_code} - {e.response.text}") from e


def get_llm(cfg: Settings | None = None, client: httpx.AsyncClient | None = None) -> LLM:
    cfg = cfg or default_settings
    if cfg.llm_provider.lower() == "ollama":
        return OllamaLLM(cfg.ollama_base_url, cfg.ollama_model, client=client, timeout=cfg.request_timeout)
    return OpenAILLM(
        api_key=cfg.openai_api_key,
        model=cfg.openai_model,
        base_url=cfg.openai_base_url,
        client=client,
        timeout=cfg.request_timeout,
    )
