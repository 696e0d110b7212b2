"""
Model gateway over Ollama's /api/generate endpoint.

Every generation call in Lectern goes through ``OllamaLLMService`` so the
concurrency cap, timeouts and model fallback live in one place.

Public API
----------
OllamaLLMService.generate_text(prompt, model_hint)                -> str ("" on failure)
OllamaLLMService.generate_json(prompt, model_hint)                -> Any | None
OllamaLLMService.stream_text(prompt, model_hint)                  -> async iterator of deltas
OllamaLLMService.generate_json_with_images(prompt, images, hint)  -> Any | None
OllamaLLMService.check_health()                                   -> bool
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import httpx

from lectern.config import settings
from lectern.exceptions import ModelUnavailableError
from lectern.utils.json_decoder import decode_model_json

logger = logging.getLogger(__name__)


class OllamaLLMService:
    """
    Thin async client for Ollama text and vision generation.

    Limits concurrency to MAX_CONCURRENT simultaneous LLM calls.  When the
    requested model is not installed (HTTP 404) the next model in
    ``OLLAMA_FALLBACK_MODELS`` is tried.
    """

    MAX_CONCURRENT: int = settings.LLM_MAX_CONCURRENT
    LLM_TIMEOUT: float = float(settings.OLLAMA_TIMEOUT)

    def __init__(
        self,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        fallback_models: Optional[List[str]] = None,
        vision_model: Optional[str] = None,
    ) -> None:
        self.base_url = (base_url or settings.OLLAMA_BASE_URL).rstrip("/")
        self.model = model or settings.OLLAMA_LLM_MODEL
        self.fallback_models = (
            fallback_models if fallback_models is not None else settings.get_fallback_models()
        )
        self.vision_model = vision_model or settings.OLLAMA_VISION_MODEL
        self.timeout = httpx.Timeout(self.LLM_TIMEOUT, connect=10.0)
        self._semaphore = asyncio.Semaphore(self.MAX_CONCURRENT)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def generate_text(
        self,
        prompt: str,
        model_hint: Optional[str] = None,
        max_tokens: int = 1200,
        temperature: float = 0.4,
    ) -> str:
        """Return the model's full response, or "" when every candidate model failed."""
        for model in self._candidate_models(model_hint):
            status_code, text = await self._call_llm(
                model, prompt, max_tokens=max_tokens, temperature=temperature
            )
            if status_code == 404:
                logger.warning("generate_text: model %r not available, trying next", model)
                continue
            return text
        return ""

    async def generate_json(
        self,
        prompt: str,
        model_hint: Optional[str] = None,
        max_tokens: int = 1500,
    ) -> Optional[Any]:
        """One call, decoded with the tolerant JSON decoder. ``None`` on failure."""
        text = await self.generate_text(
            prompt, model_hint=model_hint, max_tokens=max_tokens, temperature=0.1
        )
        if not text:
            return None
        return decode_model_json(text)

    async def generate_json_with_images(
        self,
        prompt: str,
        images: List[str],
        model_hint: Optional[str] = None,
        max_tokens: int = 2000,
    ) -> Optional[Any]:
        """
        Ask the vision model about base64-encoded page images.

        Falls back through the text fallbacks only if they were named
        explicitly as *model_hint*; vision needs a vision-capable model.
        """
        models = [model_hint] if model_hint else []
        models.append(self.vision_model)
        for model in dict.fromkeys(models):
            status_code, text = await self._call_llm(
                model, prompt, max_tokens=max_tokens, temperature=0.1, images=images
            )
            if status_code == 404:
                logger.warning("vision: model %r not available, trying next", model)
                continue
            return decode_model_json(text) if text else None
        return None

    async def stream_text(
        self,
        prompt: str,
        model_hint: Optional[str] = None,
        max_tokens: int = 900,
        temperature: float = 0.4,
    ) -> AsyncIterator[str]:
        """
        Yield response deltas as Ollama produces them (NDJSON stream).

        Raises:
            ModelUnavailableError: no candidate model could start a stream.
        """
        async with self._semaphore:
            for model in self._candidate_models(model_hint):
                payload = self._payload(model, prompt, max_tokens, temperature, stream=True)
                try:
                    async with httpx.AsyncClient(timeout=self.timeout) as client:
                        async with client.stream(
                            "POST", f"{self.base_url}/api/generate", json=payload
                        ) as resp:
                            if resp.status_code == 404:
                                logger.warning(
                                    "stream_text: model %r not available, trying next", model
                                )
                                continue
                            if resp.status_code != 200:
                                body = (await resp.aread()).decode("utf-8", "replace")
                                logger.error(
                                    "stream_text: Ollama returned HTTP %d: %s",
                                    resp.status_code,
                                    body[:300],
                                )
                                raise ModelUnavailableError(
                                    f"model backend returned HTTP {resp.status_code}"
                                )
                            async for line in resp.aiter_lines():
                                if not line.strip():
                                    continue
                                try:
                                    item = json.loads(line)
                                except json.JSONDecodeError:
                                    logger.debug("stream_text: skipping bad line %r", line[:120])
                                    continue
                                if item.get("error"):
                                    raise ModelUnavailableError(str(item["error"]))
                                delta = item.get("response", "")
                                if delta:
                                    yield delta
                                if item.get("done"):
                                    break
                            return
                except httpx.TimeoutException as exc:
                    logger.error("stream_text: timed out after %.0f s", self.LLM_TIMEOUT)
                    raise ModelUnavailableError("model backend timed out") from exc
                except httpx.HTTPError as exc:
                    logger.error("stream_text: connection error: %s", exc)
                    raise ModelUnavailableError(f"model backend unreachable: {exc}") from exc
        raise ModelUnavailableError("no configured model is available")

    async def check_health(self) -> bool:
        """Return True if Ollama answers /api/tags."""
        try:
            async with httpx.AsyncClient(timeout=10.0) as client:
                resp = await client.get(f"{self.base_url}/api/tags")
            return resp.status_code == 200
        except httpx.HTTPError as exc:
            logger.error("Ollama health check failed: %s", exc)
            return False

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _candidate_models(self, model_hint: Optional[str]) -> List[str]:
        models = [model_hint] if model_hint else []
        models.append(self.model)
        models.extend(self.fallback_models)
        # Preserve order, drop repeats
        return list(dict.fromkeys(models))

    @staticmethod
    def _payload(
        model: str,
        prompt: str,
        max_tokens: int,
        temperature: float,
        stream: bool = False,
        images: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": model,
            "prompt": prompt,
            "stream": stream,
            "options": {
                "num_predict": max_tokens,
                "temperature": temperature,
            },
        }
        if images:
            payload["images"] = images
        return payload

    async def _call_llm(
        self,
        model: str,
        prompt: str,
        max_tokens: int = 1000,
        temperature: float = 0.4,
        images: Optional[List[str]] = None,
    ) -> Tuple[int, str]:
        """
        POST to Ollama /api/generate and return ``(status_code, text)``.

        Uses semaphore to cap concurrent LLM calls.  Returns ``(0, "")``
        on timeout or connection failure and ``(status, "")`` on non-200.
        """
        async with self._semaphore:
            try:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    resp = await client.post(
                        f"{self.base_url}/api/generate",
                        json=self._payload(model, prompt, max_tokens, temperature, images=images),
                    )

                if resp.status_code == 200:
                    return 200, resp.json().get("response", "")

                logger.error(
                    "_call_llm: Ollama returned HTTP %d for %r: %s",
                    resp.status_code,
                    model,
                    resp.text[:300],
                )
                return resp.status_code, ""

            except httpx.TimeoutException:
                logger.error(
                    "_call_llm: request timed out after %.0f s", self.LLM_TIMEOUT
                )
                return 0, ""
            except httpx.ConnectError as exc:
                logger.error("_call_llm: connection error: %s", exc)
                return 0, ""
            except Exception as exc:
                logger.error("_call_llm: unexpected error: %s", exc)
                return 0, ""


# Module singleton used by the API; tests override ``get_llm_service``.
llm_service = OllamaLLMService()


def get_llm_service() -> OllamaLLMService:
    return llm_service
