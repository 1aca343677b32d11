"""
Result of a single bot API call
"""

from dataclasses import dataclass, replace
from typing import Any, Optional


@dataclass(frozen=True)
class ApiResult:
    """Immutable outcome of a Transport Client call"""
    ok: bool
    http_status: Optional[int] = None
    error_code: Optional[int] = None
    description: Optional[str] = None
    result: Any = None
    origin_used: Optional[str] = None
    retry_after_seconds: Optional[int] = None

    @classmethod
    def from_payload(cls, payload: Any, http_status: Optional[int], origin: Optional[str]) -> 'ApiResult':
        """Build from a decoded JSON response body"""
        if not isinstance(payload, dict):
            return cls.from_raw_body(str(payload), http_status, origin)

        parameters = payload.get('parameters') or {}
        retry_after = parameters.get('retry_after') if isinstance(parameters, dict) else None
        try:
            retry_after = int(retry_after) if retry_after is not None else None
        except (TypeError, ValueError):
            retry_after = None

        error_code = payload.get('error_code')
        return cls(
            ok=payload.get('ok') is True,
            http_status=http_status,
            error_code=int(error_code) if isinstance(error_code, int) else None,
            description=payload.get('description'),
            result=payload.get('result'),
            origin_used=origin,
            retry_after_seconds=retry_after,
        )

    @classmethod
    def from_raw_body(cls, body: str, http_status: Optional[int], origin: Optional[str]) -> 'ApiResult':
        """Non-JSON body (e.g. a proxy error page)"""
        return cls(
            ok=False,
            http_status=http_status,
            error_code=http_status,
            description=body,
            origin_used=origin,
        )

    @classmethod
    def failure(cls, description: str, origin: Optional[str] = None) -> 'ApiResult':
        return cls(ok=False, description=description, origin_used=origin)

    @property
    def status_code(self) -> int:
        """error_code when present, otherwise the HTTP status"""
        return int(self.error_code or self.http_status or 0)

    @property
    def normalized_description(self) -> str:
        return str(self.description or '').strip().lower()

    def as_ok(self) -> 'ApiResult':
        return replace(self, ok=True)
