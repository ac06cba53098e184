"""OllamaKernel: local cerebellum backend over the Ollama HTTP API.

Never raises for backend problems: connection errors, timeouts, non-2xx
statuses and malformed bodies come back as a failed BackendResponse,
``False`` or ``[]``.
"""

import time
from dataclasses import dataclass
from typing import Any

import httpx
from loguru import logger

from cerebellum_router.config import CerebellumConfig
from cerebellum_router.models import BackendResponse, LocalBackend, TokenUsage

# Seconds
CHECK_TIMEOUT = 5.0
GENERATE_TIMEOUT = 120.0
PULL_TIMEOUT = 300.0


@dataclass
class KernelStatus:
    available: bool
    model_available: bool
    model: str


class OllamaKernel(LocalBackend):
    """Generate / list / pull against an Ollama server."""

    def __init__(
        self,
        config: CerebellumConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.model = config.model
        self.base_url = config.base_url.rstrip("/")
        self._transport = transport

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url, timeout=timeout, transport=self._transport,
        )

    async def is_available(self) -> bool:
        try:
            async with self._client(CHECK_TIMEOUT) as client:
                r = await client.get("/api/tags")
            return r.is_success
        except httpx.HTTPError as e:
            logger.debug(f"Ollama availability check failed: {e}")
            return False

    async def list_models(self) -> list[str]:
        """Names of locally installed models, ``[]`` on any error."""
        try:
            async with self._client(CHECK_TIMEOUT) as client:
                r = await client.get("/api/tags")
            if not r.is_success:
                logger.debug(f"Ollama GET /api/tags returned {r.status_code}")
                return []
            data = r.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.debug(f"Ollama list_models failed: {e}")
            return []
        models = data.get("models") if isinstance(data, dict) else None
        if not isinstance(models, list):
            return []
        return [m["name"] for m in models if isinstance(m, dict) and m.get("name")]

    async def is_model_available(self, model: str | None = None) -> bool:
        target = model or self.model
        return any(
            name == target or name.startswith(target + ":")
            for name in await self.list_models()
        )

    async def pull_model(self, model: str | None = None) -> tuple[bool, str | None]:
        """Download a model. Returns (ok, error)."""
        target = model or self.model
        logger.info(f"Ollama: pulling {target}")
        try:
            async with self._client(PULL_TIMEOUT) as client:
                r = await client.post(
                    "/api/pull", json={"name": target, "model": target, "stream": False},
                )
            if not r.is_success:
                return False, f"Failed to pull model: {r.text}"
            return True, None
        except httpx.HTTPError as e:
            return False, f"Error pulling model: {e or type(e).__name__}"

    async def generate(
        self,
        prompt: str,
        system: str | None = None,
        *,
        temperature: float = 0.7,
        max_tokens: int = 2048,
    ) -> BackendResponse:
        start = time.monotonic()

        def elapsed_ms() -> int:
            return int((time.monotonic() - start) * 1000)

        if not await self.is_available():
            return BackendResponse.failure(
                "Ollama service is not available. Please ensure Ollama is running.",
                self.model, elapsed_ms(),
            )
        if not await self.is_model_available():
            return BackendResponse.failure(
                f"Model {self.model} is not available. Run 'ollama pull {self.model}' first.",
                self.model, elapsed_ms(),
            )

        payload: dict[str, Any] = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "options": {
                "temperature": temperature,
                "num_predict": max_tokens,
                "top_p": 0.9,
                "top_k": 40,
            },
        }
        if system:
            payload["system"] = system

        try:
            async with self._client(GENERATE_TIMEOUT) as client:
                r = await client.post("/api/generate", json=payload)
            if not r.is_success:
                return BackendResponse.failure(
                    f"Ollama API error ({r.status_code}): {r.text or r.reason_phrase}",
                    self.model, elapsed_ms(),
                )
            data = r.json()
        except httpx.TimeoutException:
            return BackendResponse.failure(
                f"Ollama generate timed out after {GENERATE_TIMEOUT:.0f}s", self.model, elapsed_ms(),
            )
        except (httpx.HTTPError, ValueError) as e:
            return BackendResponse.failure(
                str(e) or type(e).__name__, self.model, elapsed_ms(),
            )

        if not isinstance(data, dict):
            return BackendResponse.failure(
                "Ollama API error: unexpected response body", self.model, elapsed_ms(),
            )
        return BackendResponse(
            text=data.get("response") or "",
            success=True,
            model=data.get("model") or self.model,
            duration_ms=elapsed_ms(),
            usage=TokenUsage(
                input=int(data.get("prompt_eval_count") or 0),
                output=int(data.get("eval_count") or 0),
            ),
        )

    async def get_status(self) -> KernelStatus:
        available = await self.is_available()
        model_available = await self.is_model_available() if available else False
        return KernelStatus(available=available, model_available=model_available, model=self.model)
