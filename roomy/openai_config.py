"""
AI Gateway Configuration Module
===============================

OpenAI-compatible chat completion client for the Roomy assistant:
- Environment variable management (AI_GATEWAY_*)
- One retry on timeouts / connection failures (tenacity)
- Gateway status codes mapped onto UpstreamError
  (429 and 402 pass through, everything else is a 500)

The gateway speaks the OpenAI chat-completions protocol, so the official
`openai` SDK is pointed at it through `base_url`.
"""

import os
import logging
from typing import List, Optional
from functools import lru_cache

from dotenv import load_dotenv
from openai import (
    OpenAI,
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    RateLimitError,
)
from tenacity import (
    retry,
    stop_after_attempt,
    wait_fixed,
    retry_if_exception_type
)

from roomy.errors import UpstreamError

load_dotenv()

# Configure logging
logger = logging.getLogger(__name__)


FALLBACK_REPLY = "I'm having trouble responding right now. Please try again."

RATE_LIMITED_MESSAGE = "Rate limits exceeded, please try again later."
PAYMENT_REQUIRED_MESSAGE = "Payment required, please add funds to your Lovable AI workspace."
NOT_CONFIGURED_MESSAGE = "AI backend is not properly configured"


class GatewayConfig:
    """AI gateway configuration with production defaults"""

    def __init__(self):
        self.api_key = os.getenv("AI_GATEWAY_API_KEY")
        self.base_url = os.getenv("AI_GATEWAY_BASE_URL", "https://ai.gateway.lovable.dev/v1")
        self.model = os.getenv("AI_GATEWAY_MODEL", "google/gemini-2.5-flash")
        self.max_tokens = int(os.getenv("AI_GATEWAY_MAX_TOKENS", "800"))
        self.timeout = int(os.getenv("AI_GATEWAY_TIMEOUT_SECONDS", "30"))

        if not self.api_key:
            raise ValueError("AI_GATEWAY_API_KEY environment variable is required")

    def __repr__(self):
        return (
            f"GatewayConfig(model={self.model}, base_url={self.base_url}, "
            f"max_tokens={self.max_tokens}, timeout={self.timeout}s)"
        )


@lru_cache(maxsize=1)
def get_gateway_config() -> GatewayConfig:
    """
    Get gateway configuration (cached).

    Raises:
        ValueError: If AI_GATEWAY_API_KEY is not set
    """
    return GatewayConfig()


@lru_cache(maxsize=1)
def get_openai_client() -> OpenAI:
    """
    Get the OpenAI SDK client pointed at the gateway (cached).

    SDK-level retries are disabled; call_gateway_with_retry owns retrying.
    """
    config = get_gateway_config()

    client = OpenAI(
        api_key=config.api_key,
        base_url=config.base_url,
        timeout=config.timeout,
        max_retries=0
    )

    logger.info(f"AI gateway client initialized: {config}")
    return client


@retry(
    retry=retry_if_exception_type((APITimeoutError, APIConnectionError)),
    stop=stop_after_attempt(2),
    wait=wait_fixed(1),
    reraise=True
)
def call_gateway_with_retry(
    client: OpenAI,
    model: str,
    messages: List[dict],
    max_tokens: int = 800
):
    """
    One non-streaming chat completion; retried once on transient network
    failures. Status errors (429, 402, 5xx) are never retried.
    """
    response = client.chat.completions.create(
        model=model,
        messages=messages,
        max_tokens=max_tokens,
        stream=False,
    )
    usage = getattr(response, "usage", None)
    logger.info(
        f"AI gateway call successful: model={model}, "
        f"tokens={usage.total_tokens if usage else 'n/a'}"
    )
    return response


# =============================================================================
# GATEWAY
# =============================================================================

class ChatGateway:
    """Completion gateway interface: system prompt + user message -> reply"""

    def complete(self, system_prompt: str, user_message: str) -> str:
        raise NotImplementedError


class OpenAIGateway(ChatGateway):
    """
    Production gateway.

    Usage:
        gateway = OpenAIGateway()
        reply = gateway.complete(system_prompt, "dorms near AUB")
    """

    def __init__(self, client: Optional[OpenAI] = None, model: Optional[str] = None, max_tokens: Optional[int] = None):
        self._client = client
        self._model = model
        self._max_tokens = max_tokens

    def _resolve(self):
        if self._client is not None:
            return self._client, self._model or "google/gemini-2.5-flash", self._max_tokens or 800
        try:
            config = get_gateway_config()
        except ValueError as e:
            logger.error(f"AI gateway misconfigured: {e}")
            raise UpstreamError(NOT_CONFIGURED_MESSAGE) from e
        return get_openai_client(), self._model or config.model, self._max_tokens or config.max_tokens

    def complete(self, system_prompt: str, user_message: str) -> str:
        client, model, max_tokens = self._resolve()
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_message},
        ]

        try:
            response = call_gateway_with_retry(client, model, messages, max_tokens)
        except RateLimitError as e:
            logger.error(f"AI gateway rate limit exceeded: {e}")
            raise UpstreamError(RATE_LIMITED_MESSAGE, status_code=429) from e
        except APIStatusError as e:
            if e.status_code == 402:
                logger.error("AI gateway payment required")
                raise UpstreamError(PAYMENT_REQUIRED_MESSAGE, status_code=402) from e
            logger.error(f"AI gateway error: {e.status_code} {e}")
            raise UpstreamError() from e
        except APIConnectionError as e:
            # Includes timeouts, after the retry
            logger.error(f"AI gateway unreachable: {e}")
            raise UpstreamError() from e

        choices = getattr(response, "choices", None) or []
        content = choices[0].message.content if choices else None
        return content or FALLBACK_REPLY


_gateway: Optional[ChatGateway] = None


def get_gateway() -> ChatGateway:
    """Get the global gateway instance"""
    global _gateway
    if _gateway is None:
        _gateway = OpenAIGateway()
    return _gateway
