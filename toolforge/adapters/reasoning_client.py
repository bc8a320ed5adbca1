"""Reasoning service client (OpenAI chat completions) used by the analyzer and synthesizer."""

import asyncio
import json
import logging
import re
import time
from typing import Any, Dict, Optional
from openai import AsyncOpenAI

from toolforge.infra.config import config
from toolforge.infra.circuit_breaker import CircuitOpenError, reasoning_circuit_breaker
from toolforge.infra.error_handler import ReasoningServiceError, wrap_llm_error
from toolforge.infra.metrics import reasoning_call_duration, reasoning_calls_total
from toolforge.infra.timeout import REASONING_CALL_TIMEOUT

logger = logging.getLogger(__name__)

_FENCED_JSON = re.compile(r"```(?:json)?\s*\n(.*?)\n?```", re.DOTALL)


def extract_json_block(text: str) -> Dict[str, Any]:
    """
    Parse the single JSON object in a reasoning response.

    Prefers a fenced ```json block; otherwise falls back to the outermost
    braces in the text.

    Raises:
        ValueError: If no JSON object can be parsed
    """
    if not text:
        raise ValueError("empty response")

    match = _FENCED_JSON.search(text)
    if match:
        candidate = match.group(1)
    else:
        start, end = text.find("{"), text.rfind("}")
        if start == -1 or end <= start:
            raise ValueError("no JSON object in response")
        candidate = text[start:end + 1]

    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError as e:
        raise ValueError(f"malformed JSON in response: {e}") from e
    if not isinstance(parsed, dict):
        raise ValueError("response JSON is not an object")
    return parsed


class ReasoningClient:
    """Client for the reasoning service."""

    def __init__(self, model: Optional[str] = None, timeout: float = REASONING_CALL_TIMEOUT):
        self._client = None
        self.model = model or config.REASONING_MODEL
        self.timeout = timeout

    @property
    def client(self):
        """Lazy initialization of OpenAI client."""
        if self._client is None:
            if not config.OPENAI_API_KEY:
                raise ReasoningServiceError("OPENAI_API_KEY not configured")
            self._client = AsyncOpenAI(api_key=config.OPENAI_API_KEY, timeout=self.timeout)
        return self._client

    async def _create(self, system_prompt: str, user_prompt: str, max_tokens: int) -> str:
        response = await asyncio.wait_for(
            self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                max_tokens=max_tokens,
                temperature=0.2,
            ),
            timeout=self.timeout,
        )
        if not response.choices:
            raise ReasoningServiceError("reasoning service returned no choices")
        return response.choices[0].message.content or ""

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        purpose: str = "general",
        max_tokens: int = 4000,
    ) -> str:
        """
        Send (system prompt, user prompt) and return the response text.

        Args:
            system_prompt: Fixed instructions for the call
            user_prompt: Request-specific content
            purpose: Metrics label ("analysis" | "synthesis")
            max_tokens: Completion token cap

        Returns:
            Raw response text

        Raises:
            ReasoningServiceError: On timeout, open circuit, missing key or API error
        """
        start = time.time()
        try:
            text = await reasoning_circuit_breaker.call_async(
                self._create, system_prompt, user_prompt, max_tokens
            )
        except CircuitOpenError as e:
            reasoning_calls_total.labels(purpose=purpose, status="circuit_open").inc()
            raise ReasoningServiceError(str(e)) from e
        except Exception as e:
            reasoning_calls_total.labels(purpose=purpose, status="error").inc()
            logger.warning(f"Reasoning call ({purpose}) failed: {type(e).__name__}: {e}")
            raise wrap_llm_error(e, "openai") from e
        finally:
            reasoning_call_duration.labels(purpose=purpose).observe(time.time() - start)

        reasoning_calls_total.labels(purpose=purpose, status="success").inc()
        return text


reasoning_client = ReasoningClient()
