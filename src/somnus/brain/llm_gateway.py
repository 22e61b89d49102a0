import logging
import time
from typing import List, Optional, Any

import litellm

from somnus.core.config import SomnusConfig, mask_secret
from somnus.core.system_logger import log_event

logger = logging.getLogger("somnus.brain.gateway")

# Provider statuses worth another key: rate limit, request timeout, server side.
RETRYABLE_STATUSES = {408, 429}


class GatewayError(Exception):
    """Base class for text-generation failures."""


class GatewayNotConfiguredError(GatewayError):
    """No provider API keys are configured."""


class UpstreamClientError(GatewayError):
    """The provider rejected the request itself (4xx other than rate limits)."""

    def __init__(self, status_code: int, message: str):
        super().__init__(f"API Error: {status_code} - {message}")
        self.status_code = status_code


class KeysExhaustedError(GatewayError):
    """Every configured key was tried and none produced text."""

    def __init__(self, attempts: int, last_error: Optional[str] = None):
        super().__init__(f"All {attempts} API keys failed to generate a response.")
        self.attempts = attempts
        self.last_error = last_error


class LLMGateway:
    """
    Text-completion gateway with ordered key failover.

    Keys are tried strictly one after another, one provider call per key.
    The first non-empty completion wins; rate limits, timeouts, server errors,
    network failures and malformed bodies move on to the next key, while
    other client errors stop the loop immediately.
    """

    def __init__(self, config: SomnusConfig):
        self.config = config
        self.model = config.llm.model
        self.keys: List[str] = list(config.llm.api_keys)
        self.timeout = config.llm.timeout

        # Suppress noisy LiteLLM logs
        litellm.suppress_debug_info = True

    @property
    def is_configured(self) -> bool:
        return bool(self.keys)

    async def complete(self, prompt: str, **kwargs) -> str:
        """Runs a single-turn completion and returns the generated text."""
        if not self.keys:
            logger.error("API keys missing in configuration")
            raise GatewayNotConfiguredError("API key not configured")

        messages = [{"role": "user", "content": prompt}]
        last_error: Optional[str] = None

        for attempt, key in enumerate(self.keys, start=1):
            masked = mask_secret(key)
            logger.debug(f"Attempting request with key ending in {masked}")
            start_time = time.time()
            try:
                response = await self._call_model(messages, key, **kwargs)
            except Exception as e:
                status = self._status_of(e)
                duration = (time.time() - start_time) * 1000
                log_event("LLM_ATTEMPT", {
                    "key": masked, "attempt": attempt, "status": status,
                    "error": str(e), "duration_ms": duration,
                }, level="WARNING")

                if self._is_retryable(status):
                    logger.warning(f"Provider error with key {masked} (status {status}): {e}")
                    last_error = str(e)
                    continue

                logger.error(f"Provider rejected request with key {masked} (status {status}): {e}")
                raise UpstreamClientError(status, str(e)) from e

            text = self._extract_text(response)
            duration = (time.time() - start_time) * 1000
            log_event("LLM_ATTEMPT", {
                "key": masked, "attempt": attempt, "status": 200,
                "ok": bool(text), "duration_ms": duration,
            })
            if text:
                return text

            logger.error(f"No text found in successful response body (key {masked})")
            last_error = "empty response body"

        log_event("LLM_EXHAUSTED", {"attempts": len(self.keys), "last_error": last_error}, level="ERROR")
        raise KeysExhaustedError(len(self.keys), last_error)

    async def _call_model(self, messages: List[dict], api_key: str, **kwargs) -> Any:
        """Executes the actual model call via litellm. Failover is ours, not litellm's."""
        if self.timeout is not None:
            kwargs.setdefault("timeout", self.timeout)
        return await litellm.acompletion(
            model=self.model,
            messages=messages,
            api_key=api_key,
            num_retries=0,
            **kwargs
        )

    @staticmethod
    def _status_of(error: Exception) -> Optional[int]:
        status = getattr(error, "status_code", None)
        try:
            return int(status) if status is not None else None
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _is_retryable(status: Optional[int]) -> bool:
        # No status means the request never got an HTTP answer (network failure).
        if status is None:
            return True
        # A non-error status on a raised exception is a broken exchange, same as
        # a malformed body.
        if status < 400:
            return True
        return status in RETRYABLE_STATUSES or status >= 500

    @staticmethod
    def _extract_text(response: Any) -> Optional[str]:
        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError, TypeError):
            return None
        if not isinstance(content, str):
            return None
        content = content.strip()
        return content or None
