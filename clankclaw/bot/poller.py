"""
Long-polling loop for getUpdates
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional, Tuple

from ..models import ApiResult
from ..services.telegram_errors import TelegramApiError, TelegramError
from ..settings import FATAL_CONFIG_EXIT_CODE

LONG_POLL_TIMEOUT = 30  # seconds
ERROR_BACKOFF_BASE = 5.0
ERROR_BACKOFF_MAX = 60.0
ALLOWED_UPDATES = ['message', 'callback_query']

CONFLICT_MARKER = 'terminated by other getupdates request'
AUTH_MARKERS = ('unauthorized', 'invalid bot token', 'not found')


class FatalPollingError(Exception):
    """Polling cannot continue without operator action"""

    def __init__(self, reason: str, exit_code: int = FATAL_CONFIG_EXIT_CODE):
        super().__init__(reason)
        self.reason = reason
        self.exit_code = exit_code


def _failure_details(error) -> Tuple[int, str]:
    if isinstance(error, ApiResult):
        return error.status_code, error.normalized_description
    if isinstance(error, TelegramApiError):
        return error.error_code, error.description.strip().lower()
    return 0, str(error or '').strip().lower()


def is_conflict_error(error) -> bool:
    code, description = _failure_details(error)
    return code == 409 or CONFLICT_MARKER in description


def is_auth_error(error) -> bool:
    code, description = _failure_details(error)
    if code in (401, 404):
        return True
    return any(marker in description for marker in AUTH_MARKERS)


class UpdatePoller:
    """Fetches updates after the last consumed id and hands them to `handler` in order"""

    def __init__(self, client, handler: Callable[[Dict], Awaitable], conflict_backoff: float = 30.0,
                 max_conflict_backoff: float = 300.0, max_conflict_errors: int = 20, sleep=None):
        self.client = client
        self.handler = handler
        self.conflict_backoff = conflict_backoff
        self.max_conflict_backoff = max(max_conflict_backoff, conflict_backoff)
        self.max_conflict_errors = max(1, int(max_conflict_errors))
        self.last_update_id = 0
        self.consecutive_errors = 0
        self.consecutive_conflicts = 0
        self.running = False
        self._sleep = sleep or asyncio.sleep
        self.logger = logging.getLogger('clankclaw')

    @classmethod
    def from_settings(cls, client, handler, settings, sleep=None) -> 'UpdatePoller':
        return cls(
            client,
            handler,
            conflict_backoff=settings.conflict_backoff,
            max_conflict_backoff=settings.max_conflict_backoff,
            max_conflict_errors=settings.max_conflict_errors,
            sleep=sleep,
        )

    def stop(self):
        self.running = False

    async def dispatch(self, updates):
        for update in updates:
            update_id = update.get('update_id', 0)
            self.last_update_id = max(self.last_update_id, update_id)
            try:
                await self.handler(update)
            except Exception as e:
                # one bad update must not stall the rest of the batch
                self.logger.error(f"Handler error on update {update_id}: {e}", exc_info=True)

    async def _handle_failure(self, error):
        if is_conflict_error(error):
            self.consecutive_conflicts += 1
            delay = min(self.conflict_backoff * self.consecutive_conflicts, self.max_conflict_backoff)
            self.logger.error(f"Poll conflict ({self.consecutive_conflicts}): {_failure_details(error)[1]}")
            if self.consecutive_conflicts == 1 or self.consecutive_conflicts % 5 == 0:
                self.logger.error("⚠️ Another bot instance is polling with the same token. "
                                  "Keep only one active instance.")
            if self.consecutive_conflicts > self.max_conflict_errors:
                raise FatalPollingError(f"conflict persisted {self.consecutive_conflicts} times")
            await self._sleep(delay)
            return

        if is_auth_error(error):
            raise FatalPollingError(_failure_details(error)[1] or 'unauthorized')

        self.consecutive_errors += 1
        delay = min(ERROR_BACKOFF_BASE * 2 ** (self.consecutive_errors - 1), ERROR_BACKOFF_MAX)
        self.logger.error(f"Poll error ({self.consecutive_errors}): {_failure_details(error)[1] or error}")
        await self._sleep(delay)

    async def poll_once(self):
        """One getUpdates cycle; raises FatalPollingError on fatal conditions"""
        error: Optional[object] = None
        try:
            result = await self.client.call('getUpdates', {
                'offset': self.last_update_id + 1,
                'timeout': LONG_POLL_TIMEOUT,
                'allowed_updates': ALLOWED_UPDATES,
            })
        except TelegramError as e:
            error = e
        except Exception as e:
            # anything else from the transport is a generic, retryable poll error
            self.logger.error(f"Unexpected getUpdates failure: {type(e).__name__}: {e}", exc_info=True)
            error = e
        else:
            if result.ok:
                self.consecutive_errors = 0
                self.consecutive_conflicts = 0
                await self.dispatch(result.result or [])
                return
            error = result

        await self._handle_failure(error)

    async def run(self):
        """Poll until stopped; FatalPollingError propagates to the caller"""
        self.running = True
        self.logger.info("🔄 Polling for updates...")
        while self.running:
            await self.poll_once()
