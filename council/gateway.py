"""Single chat-completion call to one backend model, with retry and backoff."""

import asyncio
import logging
import os
import re
from collections.abc import Awaitable, Callable

import openai
from openai import AsyncOpenAI

from config.config_loader import EngineConfig, GatewayConfig
from council.models import Message

logger = logging.getLogger(__name__)

RATE_LIMIT = "RATE_LIMIT"


class ConfigurationError(Exception):
    """Raised when the gateway cannot be used as configured (e.g. missing credential)."""


class GatewayError(Exception):
    """Raised when a backend call fails."""

    kind = "BACKEND"

    def __init__(self, model_id: str, message: str) -> None:
        self.model_id = model_id
        self.message = message
        super().__init__(message)


class RateLimitError(GatewayError):
    """Raised on HTTP 429 so callers can tell throttling apart from other failures."""

    kind = RATE_LIMIT

    def __init__(self, model_id: str, message: str) -> None:
        super().__init__(model_id, f"{RATE_LIMIT}: {message}")


_FENCE_OPEN = re.compile(r"```json\n?")
_FENCE_CLOSE = re.compile(r"```\n?$")


def clean_json_response(content: str) -> str:
    """Strip markdown fences and cut out the outermost {...} block."""
    cleaned = _FENCE_OPEN.sub("", content, count=1)
    cleaned = _FENCE_CLOSE.sub("", cleaned)
    cleaned = cleaned.replace("```", "").strip()
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start != -1 and end != -1 and end > start:
        return cleaned[start:end + 1]
    return cleaned


def is_reasoning_model(model_id: str, prefixes: list[str]) -> bool:
    """True when the last path segment of model_id starts with a reasoning-family prefix."""
    tail = model_id.rsplit("/", 1)[-1].lower()
    return any(tail.startswith(p.lower()) for p in prefixes)


class ModelGateway:
    """OpenAI-compatible chat-completions client shared by all stages."""

    def __init__(
        self,
        config: GatewayConfig,
        client: AsyncOpenAI | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._config = config
        self._client = client
        self._sleep = sleep

    def ensure_credentials(self) -> None:
        """Raise ConfigurationError when no client is injected and the API key is unset."""
        if self._client is not None:
            return
        if not os.environ.get(self._config.api_key_env, "").strip():
            raise ConfigurationError(
                f"{self._config.api_key_env} is not set. Add it to your environment or .env file."
            )

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            self.ensure_credentials()
            self._client = AsyncOpenAI(
                api_key=os.environ[self._config.api_key_env].strip(),
                base_url=self._config.base_url,
                max_retries=0,
            )
        return self._client

    def build_params(self, model_id: str, engine: EngineConfig) -> dict:
        """Sampling parameters for model_id. Reasoning models take a completion budget only."""
        if is_reasoning_model(model_id, self._config.reasoning_prefixes):
            params: dict = {"max_completion_tokens": engine.reasoning_max_completion_tokens}
            if engine.reasoning_effort:
                params["reasoning_effort"] = engine.reasoning_effort
            return params
        return {
            "temperature": engine.temperature,
            "max_tokens": engine.max_tokens,
            "top_p": engine.top_p,
        }

    async def _call_once(self, model_id: str, messages: list[Message], engine: EngineConfig) -> str:
        client = self._get_client()
        try:
            response = await asyncio.wait_for(
                client.chat.completions.create(
                    model=model_id,
                    messages=[m.to_dict() for m in messages],
                    **self.build_params(model_id, engine),
                ),
                timeout=self._config.timeout_sec,
            )
        except TimeoutError as exc:
            raise GatewayError(model_id, f"Request timed out after {self._config.timeout_sec}s") from exc
        except openai.APIStatusError as exc:
            logger.error("Backend error (%s): HTTP %s %s", model_id, exc.status_code, exc.message)
            if exc.status_code == 429:
                raise RateLimitError(model_id, exc.message or "Too many requests") from exc
            raise GatewayError(model_id, exc.message or f"Backend error: HTTP {exc.status_code}") from exc
        except openai.OpenAIError as exc:
            raise GatewayError(model_id, f"API call failed: {exc}") from exc

        choice = response.choices[0] if response.choices else None
        if not choice or not choice.message or not choice.message.content:
            raise GatewayError(model_id, f"Invalid response from backend for {model_id}")
        return choice.message.content

    async def call(
        self,
        model_id: str,
        messages: list[Message],
        engine: EngineConfig,
        json_mode: bool = False,
    ) -> str:
        """Call model_id, retrying failed attempts with exponential backoff.

        Args:
            model_id: Backend model identifier.
            messages: Conversation to send.
            engine: Sampling settings for this run.
            json_mode: Return only the JSON object found in the reply.

        Returns:
            The reply text (or its JSON block when json_mode is set).

        Raises:
            ConfigurationError: If the API key is missing. Never retried.
            GatewayError: The last attempt's failure once retries are exhausted.
        """
        retries_left = max(self._config.retries, 0)
        attempt = 1
        while True:
            try:
                content = await self._call_once(model_id, messages, engine)
                return clean_json_response(content) if json_mode else content
            except GatewayError as exc:
                logger.warning(
                    "Attempt %d failed for %s. %d retries left. Error: %s",
                    attempt, model_id, retries_left, exc,
                )
                if not retries_left:
                    raise
            delay = min(
                self._config.min_timeout_sec * (2 ** (attempt - 1)),
                self._config.max_timeout_sec,
            )
            await self._sleep(delay)
            retries_left -= 1
            attempt += 1
