import asyncio

import aiohttp
import pytest

from conftest import session_client

from clankclaw.models import ApiResult
from clankclaw.services import (
    TelegramApiClient,
    TelegramRetryExhaustedError,
    TelegramTransportError,
)


def make_client(origins, responses):
    """Client whose network layer replays `responses` (results or exceptions) in order"""
    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    client = TelegramApiClient('123:abc', origins, sleep=fake_sleep)
    calls = []

    async def fake_call_at_origin(origin, method, params=None, timeout=None):
        calls.append(origin)
        response = responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return ApiResult(**{**response, 'origin_used': origin})

    client.call_at_origin = fake_call_at_origin
    return client, calls, sleeps


def test_fails_over_to_next_origin_and_keeps_it_active():
    client, calls, _ = make_client(
        ['https://primary.example', 'https://backup.example'],
        [aiohttp.ClientConnectionError('reset'), {'ok': True, 'result': {'id': 1}}],
    )

    result = asyncio.run(client.call('getMe'))

    assert result.ok
    assert result.origin_used == 'https://backup.example'
    assert calls == ['https://primary.example', 'https://backup.example']
    assert client.active_origin == 'https://backup.example'


def test_next_call_starts_from_active_origin():
    client, calls, _ = make_client(
        ['https://primary.example', 'https://backup.example'],
        [{'ok': False, 'http_status': 502, 'error_code': 502, 'description': 'Bad Gateway'},
         {'ok': True, 'result': {}},
         {'ok': True, 'result': {}}],
    )

    async def _run():
        await client.call('getMe')
        await client.call('getMe')

    asyncio.run(_run())
    assert calls == ['https://primary.example', 'https://backup.example', 'https://backup.example']


def test_retry_bound_is_exact():
    failure = {'ok': False, 'http_status': 502, 'error_code': 502, 'description': 'Bad Gateway'}
    client, calls, sleeps = make_client(['https://only.example'], [dict(failure) for _ in range(10)])

    with pytest.raises(TelegramRetryExhaustedError):
        asyncio.run(client.call('sendMessage', {'chat_id': 1}, max_attempts=3))

    assert len(calls) == 3
    assert len(sleeps) == 2


def test_transport_errors_exhaust_into_transport_error():
    client, calls, _ = make_client(
        ['https://only.example'],
        [asyncio.TimeoutError(), asyncio.TimeoutError()],
    )

    with pytest.raises(TelegramTransportError):
        asyncio.run(client.call('getMe', max_attempts=2))
    assert len(calls) == 2


def test_rate_limit_waits_retry_after():
    client, calls, sleeps = make_client(
        ['https://only.example'],
        [{'ok': False, 'http_status': 429, 'error_code': 429,
          'description': 'Too Many Requests: retry after 7', 'retry_after_seconds': 7},
         {'ok': True, 'result': True}],
    )

    result = asyncio.run(client.call('sendMessage'))

    assert result.ok
    assert sleeps == [7.0]
    assert len(calls) == 2


def test_permanent_failure_is_returned_without_retry():
    client, calls, sleeps = make_client(
        ['https://primary.example', 'https://backup.example'],
        [{'ok': False, 'http_status': 400, 'error_code': 400, 'description': 'Bad Request: chat not found'}],
    )

    result = asyncio.run(client.call('sendMessage'))

    assert not result.ok
    assert result.status_code == 400
    assert calls == ['https://primary.example']
    assert sleeps == []


def test_error_code_in_body_wins_over_http_status():
    result = ApiResult.from_payload(
        {'ok': False, 'error_code': 409, 'description': 'Conflict'}, 200, 'https://api.example')

    assert result.status_code == 409


def test_non_json_body_becomes_failure():
    result = ApiResult.from_raw_body('<html>502</html>', 502, 'https://api.example')

    assert not result.ok
    assert result.status_code == 502


def test_file_url_uses_file_base_when_set():
    client = TelegramApiClient('123:abc', ['https://api.example'], file_base='https://files.example/')

    assert client.build_file_url('https://api.example', 'photos/a.jpg') == 'https://files.example/bot123:abc/photos/a.jpg'
    assert client.build_api_url('https://api.example/', 'getMe') == 'https://api.example/bot123:abc/getMe'


def test_non_utf8_error_page_becomes_failed_result():
    client = session_client({'https://api.example': (502, b'<html>\xff\xfe bad gateway</html>')})

    result = asyncio.run(client.call_at_origin('https://api.example', 'getUpdates'))

    assert not result.ok
    assert result.status_code == 502
    assert 'bad gateway' in result.description


def test_json_without_ok_is_not_success():
    result = ApiResult.from_payload({'error': 'upstream down'}, 502, 'https://api.example')

    assert not result.ok
    assert result.status_code == 502


def test_upstream_json_error_fails_over_to_next_origin():
    client = session_client({
        'https://bad.example': (502, b'{"error": "upstream down"}'),
        'https://good.example': (200, b'{"ok": true, "result": {"message_id": 1}}'),
    })

    result = asyncio.run(client.call('sendMessage', {'chat_id': 1, 'text': 'hi'}))

    assert result.ok
    assert result.origin_used == 'https://good.example'
    assert client.active_origin == 'https://good.example'
    assert len(client._session.urls) == 2
