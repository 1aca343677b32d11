"""
Runtime settings and logging setup for the bot and CLI
"""

import os
import re
import logging
import tempfile
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from dotenv import load_dotenv

DEFAULT_TELEGRAM_ORIGIN = 'https://api.telegram.org'
DEFAULT_RPC_URL = 'https://mainnet.base.org'
DEFAULT_CONFIG_STORE_PATH = os.path.join('data', 'bot-config-store.json')
FATAL_CONFIG_EXIT_CODE = 2

LOG_FORMAT = '%(asctime)s | %(levelname)s | %(message)s'


def normalize_base_url(value) -> str:
    """Trim whitespace and trailing slashes from a base URL"""
    return str(value or '').strip().rstrip('/')


def parse_csv(value) -> List[str]:
    return [item.strip() for item in str(value or '').split(',') if item.strip()]


def parse_origins(api_bases=None, api_base=None) -> List[str]:
    """Build the ordered, de-duplicated origin list.

    `api_bases` may be a list or a comma-separated string. When it yields
    nothing, `api_base` is used, falling back to the public Telegram API.
    """
    if isinstance(api_bases, (list, tuple)):
        candidates = [normalize_base_url(item) for item in api_bases]
    else:
        candidates = [normalize_base_url(item) for item in str(api_bases or '').split(',')]
    candidates = [item for item in candidates if item]

    if not candidates:
        candidates = [normalize_base_url(api_base) or DEFAULT_TELEGRAM_ORIGIN]

    # dict preserves insertion order
    return list(dict.fromkeys(candidates))


def _is_placeholder_admin(value: str) -> bool:
    normalized = value.strip().upper()
    if not normalized:
        return False
    if normalized == '123456789':
        return True
    return any(marker in normalized for marker in ('REPLACE', 'YOUR', '<', '>'))


def parse_admin_allowlist(raw_value) -> Tuple[List[str], int]:
    """Parse TELEGRAM_ADMIN_IDS into (ids, skipped_placeholder_count)"""
    items = [item.strip() for item in re.split(r'[,\n;]+', str(raw_value or '')) if item.strip()]
    ids = []
    placeholders = 0
    for item in items:
        if _is_placeholder_admin(item):
            placeholders += 1
            continue
        ids.append(item)
    return list(dict.fromkeys(ids)), placeholders


def normalize_private_key(raw) -> Optional[str]:
    """Return a 0x-prefixed 64-hex private key, or None when malformed"""
    value = str(raw or '').strip()
    if not re.fullmatch(r'(0x)?[0-9a-fA-F]{64}', value):
        return None
    return value if value.startswith('0x') else f'0x{value}'


def private_key_error(raw) -> Optional[str]:
    """None when the key is usable, otherwise why it is not"""
    if not str(raw or '').strip():
        return 'PRIVATE_KEY not configured'
    if not normalize_private_key(raw):
        return 'PRIVATE_KEY invalid'
    return None


def parse_bool(value) -> bool:
    """Parse an env flag, tolerating quotes ('"true"')"""
    return str(value or '').strip().strip('"\'').lower() in ('1', 'true', 'yes', 'on')


def _int_env(name: str, default: int) -> int:
    try:
        return int(float(os.getenv(name, default)))
    except (TypeError, ValueError):
        return default


def default_lock_path(bot_token: str) -> str:
    fingerprint = re.sub(r'[^a-zA-Z0-9_-]', '_', (bot_token or '')[:16]) or 'bot'
    return os.path.join(tempfile.gettempdir(), f'clank-and-claw-{fingerprint}.lock')


@dataclass
class BotSettings:
    """Everything the bot process reads from the environment"""
    bot_token: str = ''
    admin_ids: List[str] = field(default_factory=list)
    skipped_admin_placeholders: int = 0
    api_origins: List[str] = field(default_factory=lambda: [DEFAULT_TELEGRAM_ORIGIN])
    file_base: str = ''
    lock_file: str = ''
    config_store_path: str = DEFAULT_CONFIG_STORE_PATH
    conflict_backoff: float = 30.0  # seconds
    max_conflict_backoff: float = 300.0
    max_conflict_errors: int = 20
    rpc_url: str = ''
    rpc_fallback_urls: List[str] = field(default_factory=list)
    private_key: str = ''
    dry_run: bool = False

    @classmethod
    def from_env(cls) -> 'BotSettings':
        """Load settings from .env and the process environment"""
        load_dotenv()

        bot_token = os.getenv('TELEGRAM_BOT_TOKEN', '').strip()
        admin_ids, placeholders = parse_admin_allowlist(os.getenv('TELEGRAM_ADMIN_IDS'))

        conflict_backoff_ms = max(5000, _int_env('TELEGRAM_CONFLICT_BACKOFF_MS', 30000))
        max_conflict_backoff_ms = max(conflict_backoff_ms, _int_env('TELEGRAM_MAX_CONFLICT_BACKOFF_MS', 300000))
        max_conflict_errors = max(1, _int_env('TELEGRAM_MAX_CONFLICT_ERRORS', 20))

        return cls(
            bot_token=bot_token,
            admin_ids=admin_ids,
            skipped_admin_placeholders=placeholders,
            api_origins=parse_origins(os.getenv('TELEGRAM_API_BASES'), os.getenv('TELEGRAM_API_BASE')),
            file_base=normalize_base_url(os.getenv('TELEGRAM_FILE_BASE')),
            lock_file=(os.getenv('BOT_LOCK_FILE') or '').strip() or default_lock_path(bot_token),
            config_store_path=os.getenv('CONFIG_STORE_PATH') or DEFAULT_CONFIG_STORE_PATH,
            conflict_backoff=conflict_backoff_ms / 1000,
            max_conflict_backoff=max_conflict_backoff_ms / 1000,
            max_conflict_errors=max_conflict_errors,
            rpc_url=(os.getenv('RPC_URL') or '').strip(),
            rpc_fallback_urls=parse_csv(os.getenv('RPC_FALLBACK_URLS')),
            private_key=(os.getenv('PRIVATE_KEY') or '').strip(),
            dry_run=parse_bool(os.getenv('DRY_RUN')),
        )

    def is_authorized(self, chat_id, user_id=None) -> bool:
        if not self.admin_ids:
            return True
        candidates = [str(value) for value in (chat_id, user_id) if value is not None]
        return any(candidate in self.admin_ids for candidate in candidates)


def setup_logging(log_file: str = 'bot.log', name: str = 'clankclaw') -> logging.Logger:
    """Setup file + console logging"""
    os.makedirs('logs', exist_ok=True)

    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)
    if logger.handlers:
        return logger

    formatter = logging.Formatter(LOG_FORMAT)

    file_handler = logging.FileHandler(os.path.join('logs', log_file))
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(formatter)

    logger.addHandler(file_handler)
    logger.addHandler(console_handler)

    # Reduce noise from HTTP and chain clients
    for noisy in ('aiohttp.access', 'web3', 'urllib3'):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return logger
