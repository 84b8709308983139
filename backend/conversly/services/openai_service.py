# backend/conversly/services/openai_service.py
"""
Thin async wrapper around the OpenAI chat completions API.

Both the conversation coach (turn-by-turn scoring) and the next-steps agent go
through this class, so timeouts and error mapping live in one place.
"""
from __future__ import annotations

import asyncio
import time
from typing import Any, Optional

from openai import AsyncOpenAI, OpenAIError

from conversly.config import settings
from conversly.errors import AnalysisError, UpstreamUnavailable
from conversly.utils.logger import logger


class OpenAIService:

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        *,
        timeout_s: Optional[float] = None,
        client: Optional[Any] = None,
    ):
        key = api_key if api_key is not None else settings.OPENAI_API_KEY
        self.model = (model or settings.OPENAI_MODEL or "gpt-4o-mini").strip()
        self.timeout_s = timeout_s if timeout_s is not None else settings.ANALYSIS_TIMEOUT_SECONDS

        self.client = client
        if self.client is None and key:
            self.client = AsyncOpenAI(api_key=key)
        if self.client is None:
            logger.warning("OPENAI_API_KEY is missing - analysis calls will fail")

    @property
    def configured(self) -> bool:
        return self.client is not None

    async def generate_json(
        self,
        *,
        system_prompt: str,
        user_content: str,
        temperature: float = 0.3,
        max_tokens: int = 2000,
        operation: str = "completion",
    ) -> str:
        """
        Run one JSON-mode chat completion and return the raw message content.

        Raises UpstreamUnavailable when no client is configured or the API errors,
        AnalysisError on timeout or an empty answer.
        """
        if not self.client:
            raise UpstreamUnavailable("OpenAI API key not configured", provider="openai")

        started = time.time()
        try:
            resp = await asyncio.wait_for(
                self.client.chat.completions.create(
                    model=self.model,
                    temperature=temperature,
                    max_tokens=max_tokens,
                    response_format={"type": "json_object"},
                    messages=[
                        {"role": "system", "content": system_prompt},
                        {"role": "user", "content": user_content},
                    ],
                ),
                timeout=self.timeout_s,
            )
        except asyncio.TimeoutError as e:
            elapsed = (time.time() - started) * 1000
            logger.warning(f"[{operation}] OpenAI call timed out after {elapsed:.0f}ms")
            raise AnalysisError(f"{operation} timed out") from e
        except OpenAIError as e:
            elapsed = (time.time() - started) * 1000
            logger.error(f"[{operation}] OpenAI call failed after {elapsed:.0f}ms: {e}")
            raise UpstreamUnavailable(f"OpenAI request failed: {e}", provider="openai") from e

        elapsed = (time.time() - started) * 1000
        logger.info(f"[{operation}] OpenAI completion: {elapsed:.0f}ms (model={self.model})")

        content = (resp.choices[0].message.content or "").strip() if resp.choices else ""
        if not content:
            raise AnalysisError(f"{operation} returned an empty response")
        return content

    async def aclose(self) -> None:
        if self.client is not None:
            await self.client.close()
