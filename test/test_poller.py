import asyncio

import pytest

from conftest import session_client

from clankclaw.bot.poller import FatalPollingError, UpdatePoller, is_auth_error, is_conflict_error
from clankclaw.models import ApiResult
from clankclaw.services import TelegramRetryExhaustedError

CONFLICT = ApiResult(ok=False, http_status=409, error_code=409,
                     description='Conflict: terminated by other getUpdates request')


class QueueClient:
    def __init__(self, *results):
        self.results = list(results)
        self.params = []

    async def call(self, method, params=None, max_attempts=3):
        self.params.append(params)
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


def make_poller(client, handler=None, **kwargs):
    sleeps = []
    seen = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    async def record(update):
        seen.append(update)

    poller = UpdatePoller(client, handler or record, sleep=fake_sleep, **kwargs)
    return poller, sleeps, seen


def test_offset_follows_last_update_id():
    client = QueueClient(
        ApiResult(ok=True, result=[{'update_id': 7}, {'update_id': 9}]),
        ApiResult(ok=True, result=[]),
    )
    poller, _, seen = make_poller(client)

    async def _run():
        await poller.poll_once()
        await poller.poll_once()
    asyncio.run(_run())

    assert [update['update_id'] for update in seen] == [7, 9]
    assert client.params[0]['offset'] == 1
    assert client.params[1]['offset'] == 10
    assert client.params[1]['timeout'] == 30
    assert client.params[1]['allowed_updates'] == ['message', 'callback_query']


def test_handler_error_does_not_stop_batch():
    seen = []

    async def flaky(update):
        if update['update_id'] == 1:
            raise RuntimeError('boom')
        seen.append(update['update_id'])

    client = QueueClient(ApiResult(ok=True, result=[{'update_id': 1}, {'update_id': 2}]))
    poller, _, _ = make_poller(client, handler=flaky)
    asyncio.run(poller.poll_once())

    assert seen == [2]
    assert poller.last_update_id == 2


def test_conflicts_back_off_then_become_fatal():
    client = QueueClient(*[CONFLICT] * 4)
    poller, sleeps, _ = make_poller(client, conflict_backoff=30, max_conflict_backoff=60, max_conflict_errors=3)

    async def _run():
        for _ in range(3):
            await poller.poll_once()
        await poller.poll_once()

    with pytest.raises(FatalPollingError) as excinfo:
        asyncio.run(_run())

    assert sleeps == [30, 60, 60]
    assert excinfo.value.exit_code == 2


def test_success_resets_conflict_counter():
    client = QueueClient(CONFLICT, ApiResult(ok=True, result=[]), CONFLICT)
    poller, sleeps, _ = make_poller(client, conflict_backoff=30)

    async def _run():
        for _ in range(3):
            await poller.poll_once()
    asyncio.run(_run())

    assert sleeps == [30, 30]
    assert poller.consecutive_conflicts == 1


def test_exhausted_conflict_retries_are_classified_by_code():
    error = TelegramRetryExhaustedError('getUpdates', 3, CONFLICT)
    assert is_conflict_error(error)
    assert not is_auth_error(error)


def test_auth_failure_is_fatal():
    client = QueueClient(ApiResult(ok=False, http_status=401, error_code=401, description='Unauthorized'))
    poller, _, _ = make_poller(client)

    with pytest.raises(FatalPollingError) as excinfo:
        asyncio.run(poller.poll_once())
    assert excinfo.value.exit_code == 2


def test_generic_errors_back_off_exponentially():
    failure = ApiResult(ok=False, description='socket hang up')
    client = QueueClient(*[failure] * 6)
    poller, sleeps, _ = make_poller(client)

    async def _run():
        for _ in range(6):
            await poller.poll_once()
    asyncio.run(_run())

    assert sleeps == [5, 10, 20, 40, 60, 60]


def test_run_stops_when_flag_cleared():
    poller = None

    async def stop_after_first(update):
        poller.stop()

    client = QueueClient(ApiResult(ok=True, result=[{'update_id': 1}]))
    poller, _, _ = make_poller(client, handler=stop_after_first)
    asyncio.run(poller.run())

    assert not poller.running
    assert len(client.params) == 1


def test_unexpected_transport_exception_backs_off_instead_of_escaping():
    client = QueueClient(UnicodeDecodeError('utf-8', b'\xff', 0, 1, 'invalid start byte'),
                         ApiResult(ok=True, result=[]))
    poller, sleeps, _ = make_poller(client)

    async def _run():
        await poller.poll_once()
        await poller.poll_once()
    asyncio.run(_run())

    assert sleeps == [5]
    assert poller.consecutive_errors == 0


def test_garbled_gateway_page_reaches_generic_backoff():
    client = session_client({'https://api.example': (502, b'<html>\xff\xfe bad gateway</html>')})
    poller, sleeps, _ = make_poller(client)

    asyncio.run(poller.poll_once())

    assert sleeps == [5]
    assert poller.consecutive_errors == 1
    assert len(client._session.urls) == 3
