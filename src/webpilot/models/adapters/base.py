import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import aiohttp
from pydantic import ValidationError

from webpilot.agents.exceptions import ModelAPIError, ModelResponseError
from webpilot.models.response_models import HarmonizedResponse

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = (500, 502, 503, 504, 529, 408)


class APIProviderAdapter(ABC):
    """Abstract base class for API provider adapters"""

    provider_name: str = "unknown"

    def __init__(self, model_name: str, **provider_config):
        self.model_name = model_name
        self.config = provider_config

    @abstractmethod
    def get_headers(self) -> Dict[str, str]:
        """Return provider-specific headers"""
        pass

    @abstractmethod
    def format_request_payload(self, messages: List[Dict], **kwargs) -> Dict[str, Any]:
        """Convert OpenAI-shaped messages and tools into the provider request body"""
        pass

    @abstractmethod
    def get_endpoint_url(self) -> str:
        """Return the full endpoint URL"""
        pass

    @abstractmethod
    def harmonize_response(
        self, raw_response: Dict[str, Any], request_start_time: float
    ) -> HarmonizedResponse:
        """Convert the provider response body to a HarmonizedResponse"""
        pass

    def handle_api_error(
        self,
        status_code: Optional[int] = None,
        body: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        exception: Optional[Exception] = None,
    ) -> ModelAPIError:
        """Classify an HTTP failure for this provider."""
        return ModelAPIError.from_provider_response(
            provider=self.provider_name,
            status_code=status_code,
            body=body,
            headers=headers,
            exception=exception,
        )


class AsyncBaseAPIAdapter(APIProviderAdapter):
    """
    Async adapter using aiohttp.

    Reuses the provider's request formatting and response harmonization, and adds
    a persistent client session plus exponential backoff for transient failures.
    """

    max_retries: int = 3
    base_delay: float = 1.0
    request_timeout: float = 360.0

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._session: Optional[aiohttp.ClientSession] = None

    async def _ensure_session(self) -> aiohttp.ClientSession:
        """Create a persistent session for connection pooling."""
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(limit=100, limit_per_host=30, ttl_dns_cache=300)
            self._session = aiohttp.ClientSession(connector=connector)
        return self._session

    def _backoff(self, attempt: int) -> float:
        return self.base_delay * (2 ** attempt)

    async def arun(self, messages: List[Dict], **kwargs) -> HarmonizedResponse:
        """
        Execute the request with retries.

        Raises:
            ModelAPIError: classified provider or network failure
            ModelResponseError: the provider answered but the body is unusable
        """
        for attempt in range(self.max_retries + 1):
            request_start_time = time.time()
            headers = self.get_headers()
            payload = self.format_request_payload(messages, **kwargs)
            url = self.get_endpoint_url()

            try:
                session = await self._ensure_session()
                async with session.post(
                    url,
                    headers=headers,
                    json=payload,
                    timeout=aiohttp.ClientTimeout(total=self.request_timeout),
                ) as response:
                    status = response.status

                    if status in RETRYABLE_STATUS_CODES and attempt < self.max_retries:
                        delay = self._backoff(attempt)
                        logger.warning(
                            f"Server error {status} from {self.model_name}. "
                            f"Retry {attempt + 1}/{self.max_retries} after {delay:.1f}s"
                        )
                        await asyncio.sleep(delay)
                        continue

                    if status == 429 and attempt < self.max_retries:
                        retry_after = response.headers.get("retry-after")
                        try:
                            delay = float(retry_after) if retry_after else self._backoff(attempt)
                        except ValueError:
                            delay = self._backoff(attempt)
                        logger.warning(
                            f"Rate limit (429) from {self.model_name}. "
                            f"Retry {attempt + 1}/{self.max_retries} after {delay:.1f}s"
                        )
                        await asyncio.sleep(delay)
                        continue

                    if status != 200:
                        try:
                            body = await response.json(content_type=None)
                        except (aiohttp.ContentTypeError, ValueError):
                            body = {"error": {"message": await response.text()}}
                        raise self.handle_api_error(
                            status_code=status, body=body, headers=dict(response.headers)
                        )

                    raw_response = await response.json(content_type=None)

            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                if attempt < self.max_retries:
                    delay = self._backoff(attempt)
                    logger.warning(
                        f"Network error talking to {self.model_name}: {e}. "
                        f"Retry {attempt + 1}/{self.max_retries} after {delay:.1f}s"
                    )
                    await asyncio.sleep(delay)
                    continue
                raise self.handle_api_error(exception=e) from e

            try:
                return self.harmonize_response(raw_response, request_start_time)
            except (ValidationError, KeyError, IndexError, TypeError) as e:
                raise ModelResponseError(
                    f"Could not interpret {self.provider_name} response: {e}",
                    response_content=raw_response,
                ) from e

        # Every iteration either returns, raises, or continues with attempts left
        raise ModelAPIError(
            f"Retries exhausted for {self.model_name}", provider=self.provider_name
        )

    async def cleanup(self):
        """Close the aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()
