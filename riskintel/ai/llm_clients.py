"""LLM transport clients: Anthropic messages API and OpenAI-compatible chat completions."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

import httpx
from anthropic import APIConnectionError, APIStatusError, APITimeoutError, AsyncAnthropic

from riskintel.utils import setup_logger

logger = setup_logger(__name__)


class AiServiceError(RuntimeError):
    """Raised when the AI service call fails."""

    def __init__(self, message: str, *, temporary: bool = False) -> None:
        super().__init__(message)
        self.temporary = temporary


@dataclass
class LlmResponse:
    text: str
    model: str
    usage: Optional[Dict[str, Any]] = None


class LlmClient(Protocol):
    model_name: str

    async def complete(self, system_prompt: str, user_prompt: str) -> LlmResponse:
        ...


def _is_temporary_status(status: Optional[int]) -> bool:
    return status is not None and (status in {408, 429} or 500 <= status < 600)


async def _backoff(attempt: int, max_retries: int, base: float) -> None:
    if attempt < max_retries and base > 0:
        delay = base * (2 ** attempt)
        logger.debug("AI retry in %.2fs (attempt %s/%s)", delay, attempt + 1, max_retries + 1)
        await asyncio.sleep(delay)


class AnthropicClient:
    """Thin async wrapper around the Anthropic messages API."""

    def __init__(
        self,
        *,
        api_key: str,
        model_name: str,
        timeout: float = 25.0,
        max_retries: int = 1,
        retry_backoff_seconds: float = 1.5,
        max_output_tokens: int = 1500,
        base_url: Optional[str] = None,
    ) -> None:
        if not api_key:
            raise AiServiceError("Anthropic API key is required")
        client_kwargs: Dict[str, Any] = {"api_key": api_key, "max_retries": 0}
        if base_url:
            client_kwargs["base_url"] = base_url
        self._client = AsyncAnthropic(**client_kwargs)
        self.model_name = model_name or "claude-3-5-haiku-20241022"
        self._timeout = float(timeout)
        self._max_retries = max(0, int(max_retries))
        self._retry_backoff = max(0.0, float(retry_backoff_seconds))
        self._max_output_tokens = max(256, int(max_output_tokens))

    async def complete(self, system_prompt: str, user_prompt: str) -> LlmResponse:
        last_exc: Exception | None = None
        message = "Claude call failed"
        temporary = False

        for attempt in range(self._max_retries + 1):
            try:
                response = await asyncio.wait_for(
                    self._client.messages.create(
                        model=self.model_name,
                        system=system_prompt,
                        max_tokens=self._max_output_tokens,
                        messages=[{"role": "user", "content": user_prompt}],
                    ),
                    timeout=self._timeout,
                )
            except asyncio.CancelledError:
                raise
            except (asyncio.TimeoutError, APITimeoutError) as exc:
                last_exc, message, temporary = exc, "Claude request timed out", True
                logger.warning("⚠️ Claude timeout (attempt %s/%s)", attempt + 1, self._max_retries + 1)
            except APIStatusError as exc:
                status = getattr(exc, "status_code", None)
                last_exc = exc
                message = f"Claude returned status {status}"
                temporary = _is_temporary_status(status)
                logger.warning("⚠️ Claude HTTP error (attempt %s/%s): %s", attempt + 1, self._max_retries + 1, message)
                if not temporary:
                    break
            except APIConnectionError as exc:
                last_exc, message, temporary = exc, "Claude connection error", True
                logger.warning("⚠️ Claude connection error (attempt %s/%s): %s", attempt + 1, self._max_retries + 1, exc)
            else:
                text = "".join(
                    getattr(block, "text", "") for block in response.content if getattr(block, "type", "") == "text"
                )
                if not text:
                    raise AiServiceError("Claude returned empty content")
                usage = getattr(response, "usage", None)
                return LlmResponse(
                    text=text,
                    model=self.model_name,
                    usage={
                        "input_tokens": getattr(usage, "input_tokens", None),
                        "output_tokens": getattr(usage, "output_tokens", None),
                    }
                    if usage
                    else None,
                )
            await _backoff(attempt, self._max_retries, self._retry_backoff)

        raise AiServiceError(message, temporary=temporary) from last_exc


class OpenAIChatClient:
    """Generic client for OpenAI-compatible chat completion APIs."""

    def __init__(
        self,
        *,
        api_key: str,
        model_name: str,
        base_url: str,
        timeout: float = 25.0,
        max_retries: int = 1,
        retry_backoff_seconds: float = 1.5,
        max_output_tokens: int = 1500,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not api_key:
            raise AiServiceError("AI API key is required")
        normalized_base = (base_url or "").strip() or "https://api.openai.com/v1"
        self._endpoint = normalized_base.rstrip("/") + "/chat/completions"
        self.model_name = model_name
        self._timeout = float(timeout)
        self._max_retries = max(0, int(max_retries))
        self._retry_backoff = max(0.0, float(retry_backoff_seconds))
        self._max_output_tokens = int(max_output_tokens)
        self._transport = transport
        self._headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    async def complete(self, system_prompt: str, user_prompt: str) -> LlmResponse:
        payload = {
            "model": self.model_name,
            "max_tokens": self._max_output_tokens,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        }

        last_exc: Exception | None = None
        message = "AI call failed"
        temporary = False

        for attempt in range(self._max_retries + 1):
            try:
                async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                    response = await client.post(self._endpoint, headers=self._headers, json=payload)
                response.raise_for_status()
            except asyncio.CancelledError:
                raise
            except httpx.TimeoutException as exc:
                last_exc, message, temporary = exc, "AI request timed out", True
                logger.warning("⚠️ AI timeout (attempt %s/%s)", attempt + 1, self._max_retries + 1)
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                last_exc = exc
                message = f"AI service returned status {status}"
                temporary = _is_temporary_status(status)
                logger.warning("⚠️ AI HTTP error (attempt %s/%s): %s", attempt + 1, self._max_retries + 1, message)
                logger.debug("AI response body: %s", exc.response.text[:500])
                if not temporary:
                    break
            except httpx.RequestError as exc:
                last_exc, message, temporary = exc, "AI network error", True
                logger.warning("⚠️ AI network error (attempt %s/%s): %s", attempt + 1, self._max_retries + 1, exc)
            else:
                try:
                    data = response.json()
                except json.JSONDecodeError as exc:
                    raise AiServiceError("AI returned a non-JSON envelope") from exc
                choices = data.get("choices") or []
                if not choices:
                    raise AiServiceError("AI response has no choices")
                content = (choices[0] or {}).get("message", {}).get("content")
                if isinstance(content, list):
                    content = "".join(
                        part.get("text", "") if isinstance(part, dict) else str(part) for part in content
                    )
                if not content:
                    raise AiServiceError("AI returned empty content")
                return LlmResponse(text=str(content), model=self.model_name, usage=data.get("usage"))
            await _backoff(attempt, self._max_retries, self._retry_backoff)

        raise AiServiceError(message, temporary=temporary) from last_exc


def build_llm_client(config: Any) -> Optional[LlmClient]:
    """Create the configured client, or None when AI is disabled or unconfigured."""
    if not getattr(config, "AI_ENABLED", False):
        return None
    api_key = getattr(config, "AI_API_KEY", "")
    if not api_key:
        logger.warning("⚠️ AI_API_KEY not configured, classifier disabled")
        return None

    provider = (getattr(config, "AI_PROVIDER", "anthropic") or "anthropic").lower()
    common = {
        "api_key": api_key,
        "model_name": config.AI_MODEL_NAME,
        "timeout": config.AI_TIMEOUT_SECONDS,
        "max_retries": config.AI_MAX_RETRIES,
        "retry_backoff_seconds": config.AI_RETRY_BACKOFF_SECONDS,
        "max_output_tokens": config.AI_MAX_TOKENS,
    }
    if provider == "anthropic":
        client: LlmClient = AnthropicClient(**common)
    elif provider == "openai":
        client = OpenAIChatClient(base_url=config.AI_BASE_URL, **common)
    else:
        raise AiServiceError(f"Unsupported AI_PROVIDER: {provider}")
    logger.info("🤖 AI classifier ready (provider=%s model=%s)", provider, client.model_name)
    return client
