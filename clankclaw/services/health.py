"""
Runtime health probes for Telegram origins and RPC endpoints
"""

import re
import time
import asyncio
from typing import Dict, List, Optional

import aiohttp
from web3 import Web3

from ..settings import DEFAULT_RPC_URL, parse_csv
from .telegram_errors import TelegramError

RPC_HEALTH_TIMEOUT = 10  # seconds

IPFS_PROVIDER_LABELS = (
    ('kubo_local', 'Kubo Local'),
    ('pinata', 'Pinata'),
    ('web3_storage', 'web3.storage'),
)


def format_health_error(value) -> str:
    return re.sub(r'\s+', ' ', str(value or 'unknown error')).strip() or 'unknown error'


def list_enabled_ipfs_providers(status: Optional[Dict[str, bool]]) -> List[str]:
    status = status or {}
    return [label for key, label in IPFS_PROVIDER_LABELS if status.get(key)]


def get_status_rpc_candidates(primary_rpc_url: str = '', fallback_rpc_urls_csv=None,
                              default_rpc_url: str = DEFAULT_RPC_URL) -> List[str]:
    """Primary (or default) RPC followed by the fallbacks, de-duplicated"""
    if isinstance(fallback_rpc_urls_csv, (list, tuple)):
        fallbacks = [str(url).strip() for url in fallback_rpc_urls_csv if str(url).strip()]
    else:
        fallbacks = parse_csv(fallback_rpc_urls_csv)
    candidates = [str(primary_rpc_url or '').strip() or default_rpc_url, *fallbacks]
    return list(dict.fromkeys(url for url in candidates if url))


def _elapsed_ms(started_at: float) -> int:
    return int((time.monotonic() - started_at) * 1000)


async def probe_telegram_origin(origin: str, client) -> Dict:
    """getMe against one origin, bypassing rotation"""
    started_at = time.monotonic()
    try:
        result = await client.call_at_origin(origin, 'getMe')
    except (TelegramError, aiohttp.ClientError, asyncio.TimeoutError) as e:
        return {'origin': origin, 'ok': False, 'latencyMs': _elapsed_ms(started_at),
                'error': format_health_error(str(e) or type(e).__name__)}

    latency = _elapsed_ms(started_at)
    if result.ok:
        username = result.result.get('username') if isinstance(result.result, dict) else None
        return {'origin': origin, 'ok': True, 'latencyMs': latency, 'username': username}
    return {'origin': origin, 'ok': False, 'latencyMs': latency,
            'error': format_health_error(result.description or f"HTTP {result.http_status or 'unknown'}")}


def _read_block_number(rpc_url: str, timeout: float) -> int:
    w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={'timeout': timeout}))
    return w3.eth.block_number


async def probe_rpc_endpoint(rpc_url: str, timeout: float = RPC_HEALTH_TIMEOUT, reader=None) -> Dict:
    """Read the latest block number; web3 is blocking so it runs in the executor"""
    started_at = time.monotonic()
    loop = asyncio.get_running_loop()
    try:
        block_number = await loop.run_in_executor(None, reader or _read_block_number, rpc_url, timeout)
    except Exception as e:
        # web3 surfaces provider failures as many unrelated exception types
        return {'rpcUrl': rpc_url, 'ok': False, 'latencyMs': _elapsed_ms(started_at),
                'error': format_health_error(str(e) or type(e).__name__)}
    return {'rpcUrl': rpc_url, 'ok': True, 'latencyMs': _elapsed_ms(started_at),
            'blockNumber': str(block_number)}


async def find_healthy_rpc(candidates: List[str], timeout: float = RPC_HEALTH_TIMEOUT, reader=None) -> Optional[Dict]:
    """First candidate that answers, in order"""
    for rpc_url in candidates:
        probe = await probe_rpc_endpoint(rpc_url, timeout, reader)
        if probe['ok']:
            return probe
    return None
