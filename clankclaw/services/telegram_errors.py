"""
Telegram API error types and retry classification

The classification is a policy table so the permanent/retryable boundary can
be tuned without touching the client. Numeric codes are consulted first;
description fragments cover cases where Telegram only differs in wording.
"""

from dataclasses import dataclass
from typing import FrozenSet, Optional, Tuple

from ..models import ApiResult

MARKDOWN_ERROR_TEXT = 'parse entities'
MESSAGE_NOT_MODIFIED_TEXT = 'message is not modified'


class TelegramError(Exception):
    """Base class for bot API failures"""


class TelegramApiError(TelegramError):
    """The API answered with ok=false"""

    def __init__(self, result: ApiResult, message: Optional[str] = None):
        self.result = result
        super().__init__(message or result.description or f'HTTP {result.status_code or "unknown"}')

    @property
    def error_code(self) -> int:
        return self.result.status_code

    @property
    def description(self) -> str:
        return str(self.result.description or '')


class TelegramRetryExhaustedError(TelegramApiError):
    """Every attempt returned a retryable failure"""

    def __init__(self, method: str, attempts: int, result: ApiResult):
        self.method = method
        self.attempts = attempts
        super().__init__(
            result,
            f'{method} failed after {attempts} attempts: {result.description or result.status_code}',
        )


class TelegramTransportError(TelegramError):
    """Network-level failure (timeout, connection reset) on the last attempt"""

    def __init__(self, method: str, attempts: int, cause: BaseException):
        self.method = method
        self.attempts = attempts
        self.cause = cause
        super().__init__(f'{method} failed after {attempts} attempts: {str(cause) or type(cause).__name__}')


@dataclass(frozen=True)
class RetryPolicy:
    """Which failed results are worth retrying, and how long to wait"""
    retryable_codes: FrozenSet[int] = frozenset({408, 409, 425, 429})
    permanent_prefixes: Tuple[str, ...] = ('bad request', 'unauthorized')
    forbidden_permanent_fragments: Tuple[str, ...] = (
        'bot was blocked by the user',
        'user is deactivated',
        'bot is not a member',
        'bot was kicked',
    )
    permanent_fragments: Tuple[str, ...] = (
        MARKDOWN_ERROR_TEXT,
        'chat not found',
        MESSAGE_NOT_MODIFIED_TEXT,
    )
    transient_signals: Tuple[str, ...] = (
        'timeout',
        'temporar',
        'gateway',
        'upstream',
        'connection reset',
        'econn',
        'socket hang up',
    )
    base_delay: float = 1.0  # seconds
    max_delay: float = 30.0
    min_rate_limit_delay: float = 1.0

    def is_permanent_4xx(self, result: ApiResult) -> bool:
        """A 4xx the remote API itself attributes to a permanent condition"""
        code = result.status_code
        if code < 400 or code >= 500 or code == 429:
            return False

        desc = result.normalized_description
        if not desc:
            return False

        if desc.startswith(self.permanent_prefixes):
            return True

        if desc.startswith('forbidden'):
            return any(fragment in desc for fragment in self.forbidden_permanent_fragments)

        return any(fragment in desc for fragment in self.permanent_fragments)

    def is_retryable(self, result: ApiResult) -> bool:
        if result.ok:
            return False

        code = result.status_code
        if code in self.retryable_codes or code >= 500:
            return True

        # A 4xx without a recognizable API description usually comes from a proxy
        if 400 <= code < 500 and not self.is_permanent_4xx(result):
            return True

        desc = result.normalized_description
        return any(signal in desc for signal in self.transient_signals)

    def delay_for(self, result: Optional[ApiResult], attempt: int) -> float:
        """Seconds to wait before the next attempt (attempt is 1-based)"""
        if result is not None and result.status_code == 429:
            return max(self.min_rate_limit_delay, float(result.retry_after_seconds or 0))
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)


DEFAULT_RETRY_POLICY = RetryPolicy()


def is_markdown_parse_error(result: Optional[ApiResult]) -> bool:
    return bool(result) and not result.ok and MARKDOWN_ERROR_TEXT in result.normalized_description


def is_message_not_modified(result: Optional[ApiResult]) -> bool:
    return bool(result) and not result.ok and MESSAGE_NOT_MODIFIED_TEXT in result.normalized_description
