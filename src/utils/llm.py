"""LLM client utilities for OpenAI-compatible chat backends with async support and retry logic."""

import asyncio
import json
import logging
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import aiohttp


logger = logging.getLogger(__name__)


class LLMError(Exception):
    """Base exception for LLM-related errors."""
    pass


class RateLimitError(LLMError):
    """Exception raised when rate limit is exceeded."""
    pass


class ValidationError(LLMError):
    """Exception raised when the backend returns a malformed payload."""
    pass


class APIError(LLMError):
    """Exception raised for API-specific errors."""
    pass


@dataclass
class ChatMessage:
    """One role-tagged chat message."""
    role: str
    content: str

    def to_payload(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class LLMRequest:
    """Represents a single chat completion request."""
    messages: List[ChatMessage]
    model: str
    temperature: float = 0.7
    max_tokens: Optional[int] = None
    metadata: Optional[Dict[str, Any]] = None


@dataclass
class LLMResponse:
    """Represents a single chat completion response."""
    content: str
    model: Optional[str] = None
    latency_ms: Optional[float] = None
    token_usage: Dict[str, int] = field(default_factory=dict)

    @property
    def total_tokens(self) -> int:
        """Total tokens reported by the backend, summing parts when no total is given."""
        if not self.token_usage:
            return 0
        if "total_tokens" in self.token_usage:
            return int(self.token_usage["total_tokens"] or 0)
        return int(self.token_usage.get("prompt_tokens", 0) or 0) + int(
            self.token_usage.get("completion_tokens", 0) or 0
        )


class LLMProvider(ABC):
    """Abstract base class for LLM providers."""

    @abstractmethod
    async def call_single(self, request: LLMRequest) -> LLMResponse:
        """Make a single LLM call."""
        pass


class OpenAICompatibleProvider(LLMProvider):
    """Provider for OpenAI-compatible `/chat/completions` endpoints (xAI, OpenAI, local gateways)."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.x.ai/v1",
        max_retries: int = 3,
        retry_delay: float = 1.0,
        timeout: float = 120.0
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.timeout = timeout

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/chat/completions"

    async def call_single(self, request: LLMRequest) -> LLMResponse:
        """Make a single chat completion call with retry logic for network errors."""
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}"
        }

        payload = {
            "model": request.model,
            "messages": [message.to_payload() for message in request.messages],
            "temperature": request.temperature,
            "stream": False
        }
        if request.max_tokens:
            payload["max_tokens"] = request.max_tokens

        start_time = time.time()

        for attempt in range(self.max_retries + 1):
            try:
                async with aiohttp.ClientSession() as session:
                    async with session.post(
                        self.endpoint,
                        headers=headers,
                        json=payload,
                        timeout=aiohttp.ClientTimeout(total=self.timeout)
                    ) as response:

                        if response.status == 429:
                            raise RateLimitError("Rate limit exceeded")
                        elif response.status >= 400:
                            error_text = await response.text()
                            raise APIError(f"API error {response.status}: {error_text}")

                        response_data = await response.json()
                        return self._parse_response(response_data, start_time)

            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                if attempt == self.max_retries:
                    raise APIError(f"API call failed after {self.max_retries} retries: {e}")
                await asyncio.sleep(self.retry_delay * (2 ** attempt))

    def _parse_response(self, response_data: Any, start_time: float) -> LLMResponse:
        """Convert a chat completion payload into an LLMResponse."""
        if not isinstance(response_data, dict):
            raise ValidationError("Response payload is not a JSON object")

        choices = response_data.get("choices") or []
        if not choices:
            raise ValidationError("Response payload contains no choices")

        message = choices[0].get("message") or {}
        content = message.get("content")
        if content is None:
            raise ValidationError("Response choice contains no message content")

        usage = response_data.get("usage") or {}
        token_usage = {
            key: int(value)
            for key, value in usage.items()
            if isinstance(value, (int, float))
        }

        return LLMResponse(
            content=content,
            model=response_data.get("model"),
            latency_ms=(time.time() - start_time) * 1000,
            token_usage=token_usage
        )


class LLMClient:
    """High-level client for chat calls with built-in retry and error handling."""

    def __init__(
        self,
        provider: LLMProvider,
        default_retry_count: int = 2,
        default_retry_delay: float = 1.0,
        rate_limit_delay: float = 2.0
    ):
        self.provider = provider
        self.default_retry_count = default_retry_count
        self.default_retry_delay = default_retry_delay
        self.rate_limit_delay = rate_limit_delay

    async def chat(
        self,
        messages: List[ChatMessage],
        model: str,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
        retry_count: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> LLMResponse:
        """Make a single chat call with retry logic."""
        request = LLMRequest(
            messages=messages,
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            metadata=metadata or {}
        )

        retry_count = self.default_retry_count if retry_count is None else retry_count

        for attempt in range(retry_count + 1):
            try:
                response = await self.provider.call_single(request)

                logger.info(
                    "LLM call completed",
                    extra={
                        "model": model,
                        "message_count": len(messages),
                        "response_length": len(response.content),
                        "latency_ms": response.latency_ms,
                        "attempt": attempt + 1,
                        "tokens": response.token_usage
                    }
                )

                return response

            except RateLimitError:
                if attempt == retry_count:
                    logger.error(f"Rate limit persisted after {retry_count} retries")
                    raise
                logger.warning(f"Rate limit hit, waiting {self.rate_limit_delay}s before retry")
                await asyncio.sleep(self.rate_limit_delay)
            except ValidationError as e:
                if attempt == retry_count:
                    logger.error(f"Malformed response after {retry_count} retries: {e}")
                    raise
                logger.warning(f"Malformed response on attempt {attempt + 1}, retrying: {e}")
                await asyncio.sleep(self.default_retry_delay * (attempt + 1))
            except Exception as e:
                if attempt == retry_count:
                    logger.error(f"LLM call failed after {retry_count} retries: {e}")
                    raise LLMError(f"Failed after {retry_count} retries: {e}") from e
                logger.warning(f"Error on attempt {attempt + 1}, retrying: {e}")
                await asyncio.sleep(self.default_retry_delay * (attempt + 1))


def extract_json(content: str) -> Optional[str]:
    """Extract a JSON array or object from LLM response content.

    Fenced code blocks win over bare JSON; within bare text an array is
    preferred when it starts before any object.
    """
    if not content:
        return None

    fenced = re.search(r"```(?:json)?\s*([\[{].*?[\]}])\s*```", content, re.DOTALL)
    if fenced:
        return fenced.group(1)

    stripped = content.strip()
    if stripped[:1] in ("[", "{"):
        return stripped

    starts = [i for i in (content.find("["), content.find("{")) if i != -1]
    if not starts:
        return None
    start = min(starts)
    closing = "]" if content[start] == "[" else "}"
    end = content.rfind(closing)
    if end <= start:
        return None
    return content[start:end + 1]


def parse_json(content: str) -> Any:
    """Extract and decode JSON from LLM content, raising ValidationError on failure."""
    json_str = extract_json(content)
    if json_str is None:
        raise ValidationError("No JSON found in response content")
    try:
        return json.loads(json_str)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Failed to parse JSON from response: {e}") from e


def create_llm_client(
    api_key: str,
    base_url: str = "https://api.x.ai/v1",
    max_retries: int = 2,
    retry_delay: float = 1.0,
    timeout: float = 120.0
) -> LLMClient:
    """Create an LLM client for one OpenAI-compatible backend credential."""
    if not api_key:
        raise ValueError("API key required for backend client")

    provider = OpenAICompatibleProvider(
        api_key=api_key,
        base_url=base_url,
        max_retries=max_retries,
        retry_delay=retry_delay,
        timeout=timeout
    )
    return LLMClient(
        provider=provider,
        default_retry_count=max_retries,
        default_retry_delay=retry_delay
    )
