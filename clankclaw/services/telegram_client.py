"""
Telegram Bot API client with multi-origin failover
"""

import json
import asyncio
import logging
from typing import Dict, List, Optional

import aiohttp

from ..models import ApiResult
from ..settings import normalize_base_url, parse_origins
from .telegram_errors import (
    DEFAULT_RETRY_POLICY,
    RetryPolicy,
    TelegramRetryExhaustedError,
    TelegramTransportError,
)

DEFAULT_TIMEOUT = 40.0  # must exceed the 30s getUpdates long-poll
PROBE_TIMEOUT = 12.0


class TelegramApiClient:
    """Calls `POST {origin}/bot{token}/{method}` across a pool of origins.

    The active origin is sticky: each call starts from the last origin that
    answered, and rotates forward on retryable failures.
    """

    def __init__(self, bot_token: str, api_origins=None, file_base: str = '',
                 retry_policy: Optional[RetryPolicy] = None,
                 timeout: float = DEFAULT_TIMEOUT, probe_timeout: float = PROBE_TIMEOUT,
                 sleep=None):
        self.bot_token = bot_token
        self.origins: List[str] = parse_origins(api_origins)
        self.file_base = normalize_base_url(file_base)
        self.retry_policy = retry_policy or DEFAULT_RETRY_POLICY
        self.timeout = timeout
        self.probe_timeout = probe_timeout
        self.active_origin_index = 0
        self._sleep = sleep or asyncio.sleep
        self._session: Optional[aiohttp.ClientSession] = None
        self.logger = logging.getLogger('clankclaw')

    @property
    def active_origin(self) -> str:
        return self.origins[self.active_origin_index]

    def build_api_url(self, origin: str, method: str) -> str:
        return f"{normalize_base_url(origin)}/bot{self.bot_token}/{method}"

    def build_file_url(self, origin: str, file_path: str) -> str:
        base = self.file_base or f"{normalize_base_url(origin)}/file"
        return f"{base}/bot{self.bot_token}/{file_path}"

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self):
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def call_at_origin(self, origin: str, method: str, params: Optional[Dict] = None,
                             timeout: Optional[float] = None) -> ApiResult:
        """Single request to one origin, no retry or rotation"""
        session = await self._get_session()
        client_timeout = aiohttp.ClientTimeout(total=timeout or self.probe_timeout)

        async with session.post(self.build_api_url(origin, method), json=params or {},
                                timeout=client_timeout) as response:
            status = response.status
            raw = await response.read()

        # proxies sometimes answer with non-UTF-8 error pages
        body = raw.decode('utf-8', errors='replace')

        try:
            payload = json.loads(body)
        except ValueError:
            return ApiResult.from_raw_body(body, status, origin)

        return ApiResult.from_payload(payload, status, origin)

    async def call(self, method: str, params: Optional[Dict] = None, max_attempts: int = 3) -> ApiResult:
        """Call a bot API method with failover.

        Returns the ApiResult for successes and permanent failures. Raises
        TelegramRetryExhaustedError or TelegramTransportError when every
        attempt failed transiently.
        """
        total_attempts = max(1, max_attempts, len(self.origins))
        last_result = None

        for attempt in range(1, total_attempts + 1):
            index = (self.active_origin_index + attempt - 1) % len(self.origins)
            origin = self.origins[index]

            try:
                result = await self.call_at_origin(origin, method, params, self.timeout)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                self.logger.warning(f"Telegram {method} request error via {origin} "
                                    f"(attempt {attempt}/{total_attempts}): {str(e) or type(e).__name__}")
                if attempt == total_attempts:
                    raise TelegramTransportError(method, total_attempts, e) from e
                await self._sleep(self.retry_policy.delay_for(None, attempt))
                continue

            if result.ok:
                self.active_origin_index = index
                return result

            if not self.retry_policy.is_retryable(result):
                self.active_origin_index = index
                return result

            last_result = result
            if attempt == total_attempts:
                break

            delay = self.retry_policy.delay_for(result, attempt)
            self.logger.warning(f"Telegram {method} retryable failure via {origin} "
                                f"({result.status_code}: {result.description}), retrying in {delay:.1f}s")
            await self._sleep(delay)

        raise TelegramRetryExhaustedError(method, total_attempts, last_result)
