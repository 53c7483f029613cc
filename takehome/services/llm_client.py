"""
LLMClient - text generation behind a single ``generate(prompt, schema)`` capability.
One vendor per process, chosen by PRIMARY_LLM_PROVIDER; failures surface as
UpstreamFailureError so callers never see vendor exceptions.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Protocol

import httpx

from takehome.core.config import settings
from takehome.core.error_handling import UpstreamFailureError
from takehome.core.metrics import collector

logger = logging.getLogger("llm")

OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"


class LLMProvider(str, Enum):
    OPENAI = "openai"
    GEMINI = "gemini"


class TextGenerator(Protocol):
    async def generate(
        self,
        prompt: str,
        schema: Optional[Dict[str, Any]] = None,
        system_message: Optional[str] = None,
    ) -> str:
        ...


@dataclass
class LLMRequest:
    """Standardized LLM request format"""
    prompt: str
    model: str
    temperature: float = 0.3
    max_tokens: Optional[int] = None
    system_message: Optional[str] = None
    json_output: bool = False


@dataclass
class LLMResponse:
    """Standardized LLM response format"""
    content: str
    provider: LLMProvider
    model: str
    tokens_used: Optional[int] = None
    response_time_ms: int = 0


class LLMConfigurationError(ValueError):
    """Provider selected but not usable (missing key or library)."""


class LLMClient:
    """
    Single-provider LLM client with exponential backoff on transient failures
    """

    def __init__(
        self,
        provider: LLMProvider | str,
        max_retries: int = 3,
        base_backoff: float = 2.0,
        max_backoff: float = 30.0,
        timeout: float = 30.0,
    ):
        self.provider = LLMProvider(provider)
        self.max_retries = max(1, max_retries)
        self.base_backoff = base_backoff
        self.max_backoff = max_backoff
        self.timeout = timeout

    @property
    def model(self) -> str:
        if self.provider == LLMProvider.GEMINI:
            return settings.gemini_model
        return settings.openai_model

    async def _call_openai(self, request: LLMRequest) -> LLMResponse:
        if not settings.openai_api_key:
            raise LLMConfigurationError("OpenAI API key not configured")

        headers = {"Authorization": f"Bearer {settings.openai_api_key}"}

        messages = []
        if request.system_message:
            messages.append({"role": "system", "content": request.system_message})
        messages.append({"role": "user", "content": request.prompt})

        payload: Dict[str, Any] = {
            "model": request.model,
            "messages": messages,
            "temperature": request.temperature,
        }
        if request.max_tokens:
            payload["max_tokens"] = request.max_tokens
        if request.json_output:
            payload["response_format"] = {"type": "json_object"}

        start_time = time.time()
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(OPENAI_CHAT_URL, json=payload, headers=headers)
            response.raise_for_status()
            data = response.json()

        return LLMResponse(
            content=data["choices"][0]["message"]["content"] or "",
            provider=LLMProvider.OPENAI,
            model=request.model,
            tokens_used=(data.get("usage") or {}).get("total_tokens"),
            response_time_ms=int((time.time() - start_time) * 1000),
        )

    async def _call_gemini(self, request: LLMRequest) -> LLMResponse:
        if not settings.gemini_api_key:
            raise LLMConfigurationError("Gemini API key not configured")

        from anyio import to_thread
        from google import genai
        from google.genai import types as genai_types

        def _sync_call() -> str:
            client = genai.Client(api_key=settings.gemini_api_key)
            config = genai_types.GenerateContentConfig(
                system_instruction=request.system_message,
                temperature=request.temperature,
                max_output_tokens=request.max_tokens,
                response_mime_type="application/json" if request.json_output else None,
            )
            response = client.models.generate_content(
                model=request.model,
                contents=request.prompt,
                config=config,
            )
            return response.text or ""

        start_time = time.time()
        content = await to_thread.run_sync(_sync_call)
        return LLMResponse(
            content=content,
            provider=LLMProvider.GEMINI,
            model=request.model,
            response_time_ms=int((time.time() - start_time) * 1000),
        )

    async def _call_with_retry(self, request: LLMRequest) -> LLMResponse:
        """Call the provider with exponential backoff retry"""

        for attempt in range(self.max_retries):
            try:
                if self.provider == LLMProvider.GEMINI:
                    return await self._call_gemini(request)
                return await self._call_openai(request)

            except LLMConfigurationError:
                raise

            except httpx.HTTPStatusError as e:
                retryable = e.response.status_code == 429 or e.response.status_code >= 500
                if retryable and attempt < self.max_retries - 1:
                    await asyncio.sleep(min(self.base_backoff * (2 ** attempt), self.max_backoff))
                    continue
                raise

            except Exception as e:
                if attempt < self.max_retries - 1:
                    logger.warning(
                        "LLM call failed, retrying",
                        extra={"provider": self.provider.value, "attempt": attempt + 1, "error": str(e)},
                    )
                    await asyncio.sleep(min(self.base_backoff * (2 ** attempt), self.max_backoff))
                    continue
                raise

        raise UpstreamFailureError(self.provider.value, f"Max retries ({self.max_retries}) exceeded")

    async def generate(
        self,
        prompt: str,
        schema: Optional[Dict[str, Any]] = None,
        system_message: Optional[str] = None,
        temperature: float = 0.3,
        max_tokens: Optional[int] = None,
    ) -> str:
        """Generate text. With ``schema`` the model is asked for a matching JSON document."""
        if schema is not None:
            instructions = (
                "Respond with a single JSON object that validates against this JSON schema:\n"
                + json.dumps(schema)
            )
            system_message = f"{system_message}\n\n{instructions}" if system_message else instructions

        request = LLMRequest(
            prompt=prompt,
            model=self.model,
            temperature=temperature,
            max_tokens=max_tokens,
            system_message=system_message,
            json_output=schema is not None,
        )

        try:
            response = await self._call_with_retry(request)
        except UpstreamFailureError:
            raise
        except httpx.HTTPStatusError as e:
            collector.increment_counter("llm_failure")
            logger.error(
                "LLM provider returned an error",
                extra={"provider": self.provider.value, "status_code": e.response.status_code},
            )
            raise UpstreamFailureError(self.provider.value, "AI provider returned an error", e.response.status_code)
        except Exception as e:
            collector.increment_counter("llm_failure")
            logger.error(
                "LLM call failed",
                extra={"provider": self.provider.value, "error": str(e), "exception_type": type(e).__name__},
            )
            raise UpstreamFailureError(self.provider.value, f"AI provider call failed: {type(e).__name__}")

        collector.record_histogram("llm_ms", response.response_time_ms)
        logger.info(
            "LLM call completed",
            extra={
                "provider": response.provider.value,
                "model": response.model,
                "tokens_used": response.tokens_used,
                "duration_ms": response.response_time_ms,
            },
        )
        return response.content


def get_text_generator() -> TextGenerator:
    """FastAPI dependency: the configured generator."""
    return LLMClient(
        provider=settings.primary_llm_provider,
        max_retries=settings.llm_max_retries,
        timeout=settings.llm_timeout_seconds,
    )
