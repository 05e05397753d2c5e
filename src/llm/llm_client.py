"""
LLM Client

OpenAI-compatible chat-completions client (DeepSeek, OpenAI, Ollama all speak
the same dialect): POST {base_url}/chat/completions with a Bearer key.

Requests pass through a per-minute window rate limiter; once the quota is
spent the caller sleeps until the window resets. Because the semantic
detector runs as its own task, that sleep never holds up other detectors.
"""

import asyncio
from typing import Any, Dict, List, Optional

import aiohttp

from config.constants import LLM_RATE_WINDOW_SEC, LLM_REQUEST_TIMEOUT_SEC
from config.settings import ArbitrageSettings
from utils.exceptions import APIError, APITimeoutError, InvalidResponseError, RateLimitError
from utils.logger import get_logger
from utils.rate_limiter import MinuteWindowRateLimiter


logger = get_logger(__name__)


class LLMClient:
    """Async chat-completions client with rate limiting"""

    def __init__(
        self,
        settings: ArbitrageSettings,
        session: Optional[aiohttp.ClientSession] = None,
        rate_limiter: Optional[MinuteWindowRateLimiter] = None,
    ):
        self.settings = settings
        self.base_url = settings.llm_base_url.rstrip('/')
        self.model = settings.llm_model
        self._session = session
        self._owns_session = session is None
        self.rate_limiter = rate_limiter or MinuteWindowRateLimiter(
            max_requests=settings.llm_rate_limit,
            window_sec=LLM_RATE_WINDOW_SEC,
        )

        self.total_requests = 0
        self.failed_requests = 0
        self.total_tokens = 0

    def is_enabled(self) -> bool:
        """Requests are only issued when enabled AND a key is configured"""
        return bool(self.settings.llm_enabled and self.settings.llm_api_key)

    def _headers(self) -> Dict[str, str]:
        headers = {'Content-Type': 'application/json'}
        if self.settings.llm_api_key:
            headers['Authorization'] = f"Bearer {self.settings.llm_api_key}"
        return headers

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=LLM_REQUEST_TIMEOUT_SEC),
                headers=self._headers(),
            )
            self._owns_session = True
        return self._session

    async def chat(self, messages: List[Dict[str, str]]) -> str:
        """
        Send one chat-completion request

        Args:
            messages: [{'role': 'system'|'user'|'assistant', 'content': ...}]

        Returns:
            Content of the first choice ('' when absent)

        Raises:
            RateLimitError: HTTP 429
            APITimeoutError: Request exceeded the timeout
            InvalidResponseError: Body is not the expected JSON shape
            APIError: Any other non-200 status or transport failure
        """
        await self.rate_limiter.acquire()
        session = await self._get_session()

        payload = {
            'model': self.model,
            'messages': messages,
            'max_tokens': self.settings.llm_max_tokens,
            'temperature': self.settings.llm_temperature,
        }
        url = f"{self.base_url}/chat/completions"

        try:
            async with session.post(
                url,
                json=payload,
                headers=self._headers(),
                timeout=aiohttp.ClientTimeout(total=LLM_REQUEST_TIMEOUT_SEC),
            ) as response:
                if response.status == 429:
                    self.failed_requests += 1
                    raise RateLimitError(
                        "LLM rate limit exceeded",
                        status_code=429,
                        details={'retry_after': response.headers.get('Retry-After')}
                    )
                if response.status != 200:
                    error_text = await response.text()
                    self.failed_requests += 1
                    raise APIError(
                        f"LLM request failed: HTTP {response.status}",
                        status_code=response.status,
                        response_data=error_text[:500]
                    )

                try:
                    data = await response.json(content_type=None)
                except (aiohttp.ContentTypeError, ValueError) as e:
                    self.failed_requests += 1
                    raise InvalidResponseError("LLM response is not JSON", original_error=e)

        except asyncio.TimeoutError as e:
            self.failed_requests += 1
            raise APITimeoutError(
                f"LLM request timed out after {LLM_REQUEST_TIMEOUT_SEC:.0f}s",
                original_error=e
            )
        except aiohttp.ClientError as e:
            self.failed_requests += 1
            raise APIError(f"LLM transport error: {e}", original_error=e)

        content = self._extract_content(data)
        self.total_requests += 1
        usage = data.get('usage') or {}
        self.total_tokens += int(usage.get('total_tokens') or 0)

        return content

    @staticmethod
    def _extract_content(data: Any) -> str:
        if not isinstance(data, dict):
            raise InvalidResponseError("LLM response has unexpected shape", response_data=str(data)[:200])
        choices = data.get('choices') or []
        if not choices:
            return ''
        message = choices[0].get('message') or {}
        return message.get('content') or ''

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
            logger.info("Closed LLM aiohttp session")

    def get_stats(self) -> Dict[str, Any]:
        return {
            'enabled': self.is_enabled(),
            'provider': self.settings.llm_provider,
            'model': self.model,
            'total_requests': self.total_requests,
            'failed_requests': self.failed_requests,
            'total_tokens': self.total_tokens,
            'rate_limiter': self.rate_limiter.get_stats(),
        }
