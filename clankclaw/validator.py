"""
Deploy config validation and auto-healing
"""

import os
import re
import copy
import time
import logging
from dataclasses import dataclass
from typing import Dict, List, Tuple

from .deploy_config import DEFAULT_DESCRIPTION, INTERFACE_NAME, normalize_social_url
from .models import DEFAULT_CLANKER_FEE, DEFAULT_PAIRED_FEE, normalize_fee
from .settings import parse_bool

MAX_STATIC_FEE_BPS = 600
MAX_REWARD_BPS = 10000
DEFAULT_IMAGE = 'https://gateway.pinata.cloud/ipfs/bafkreibk3covs5ltyqxa272uodhculbr6kea6betidfwy3ajsav2vjzyum'

STATUS_ID = re.compile(r'/status/(\d+)')


class ConfigValidationError(ValueError):
    """Config cannot be deployed as given"""


@dataclass(frozen=True)
class ValidationEvent:
    """One validation log line; callers decide how to render it"""
    level: str  # info | warning
    message: str


def _symbol_from_name(name: str) -> str:
    letters = re.sub(r'[^A-Za-z0-9]', '', name or '').upper()
    return letters[:10]


def _clamp_bps(value) -> int:
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return 0
    if parsed != parsed:
        return 0
    return int(min(max(parsed, 0), MAX_REWARD_BPS))


def validate_config(config: Dict) -> Tuple[Dict, List[ValidationEvent]]:
    """Return a healed copy of `config` plus the events describing each fix"""
    config = copy.deepcopy(config)
    events: List[ValidationEvent] = []

    def info(message):
        events.append(ValidationEvent('info', message))

    def warn(message):
        events.append(ValidationEvent('warning', message))

    meta = config.get('_meta') or {}
    strict_mode = bool(meta.get('strictMode'))
    if strict_mode:
        info("🛡️  STRICT_MODE: Enabled (enforcing indexing checklist)")

    # Identity
    name = str(config.get('name') or '').strip()
    symbol = str(config.get('symbol') or '').strip().upper()
    if not symbol:
        symbol = _symbol_from_name(name) or 'TOKEN'
        warn(f"Symbol missing, using {symbol}")
    if not name:
        name = symbol
        warn(f"Name missing, using {name}")
    config['name'] = name
    config['symbol'] = symbol

    if not str(config.get('image') or '').strip():
        config['image'] = DEFAULT_IMAGE
        warn("Image missing, using default image")

    # Fees
    fees = config.get('fees') or {'type': 'static'}
    if fees.get('type', 'static') == 'static':
        fees['type'] = 'static'
        fees['clankerFee'] = normalize_fee(fees.get('clankerFee'), DEFAULT_CLANKER_FEE)
        fees['pairedFee'] = normalize_fee(fees.get('pairedFee'), DEFAULT_PAIRED_FEE)
        total = fees['clankerFee'] + fees['pairedFee']
        if total > MAX_STATIC_FEE_BPS:
            warn(f"Fees {total / 100:.2f}% exceed {MAX_STATIC_FEE_BPS / 100:.0f}% cap, reset to 3% + 3%")
            fees['clankerFee'] = DEFAULT_CLANKER_FEE
            fees['pairedFee'] = DEFAULT_PAIRED_FEE
    config['fees'] = fees

    # Context
    context = config.get('context') or {}
    context.setdefault('interface', INTERFACE_NAME)
    context['platform'] = str(context.get('platform') or 'website').lower()
    message_id = str(context.get('messageId') or '').strip()

    if context['platform'] in ('twitter', 'x') and message_id:
        match = STATUS_ID.search(message_id)
        if match:
            message_id = match.group(1)
        elif message_id.startswith('http'):
            warn("Twitter profile URL given instead of a tweet; indexing may fail. "
                 "Use https://x.com/user/status/123...")

    require_context = meta['requireContext'] if 'requireContext' in meta else parse_bool(os.getenv('REQUIRE_CONTEXT'))
    if not message_id and require_context:
        message_id = str(int(time.time() * 1000))
        warn(f"Context required but missing, using synthetic id {message_id}")

    context['messageId'] = message_id
    config['context'] = context

    # Metadata
    metadata = config.get('metadata') or {}
    social_urls = []
    for item in metadata.get('socialMediaUrls') or []:
        if not isinstance(item, dict):
            continue
        platform = str(item.get('platform') or 'website')
        url = normalize_social_url(platform, item.get('url'))
        if url:
            social_urls.append({'platform': platform, 'url': url})
    metadata['socialMediaUrls'] = social_urls
    metadata.setdefault('auditUrls', [])
    metadata['description'] = str(metadata.get('description') or '').strip() or DEFAULT_DESCRIPTION
    config['metadata'] = metadata

    # Rewards
    rewards = config.get('rewards')
    if rewards and isinstance(rewards.get('recipients'), list):
        for recipient in rewards['recipients']:
            clamped = _clamp_bps(recipient.get('bps'))
            if clamped != recipient.get('bps'):
                warn(f"Reward bps {recipient.get('bps')} clamped to {clamped}")
            recipient['bps'] = clamped
        if len(rewards['recipients']) > 1 and config.get('tokenAdmin'):
            spoof = rewards['recipients'][-1].get('recipient')
            if spoof and str(spoof).lower() == str(config['tokenAdmin']).lower():
                info(f"🎭  SPOOFING: Token admin set to {str(spoof)[:10]}...")

    if strict_mode:
        if context['platform'] != 'farcaster':
            raise ConfigValidationError("STRICT_MODE: context platform must be farcaster")
        if not context['messageId']:
            raise ConfigValidationError("STRICT_MODE: context message id required")
        if metadata['description'] == DEFAULT_DESCRIPTION:
            raise ConfigValidationError("STRICT_MODE: custom description required")

    return config, events


def log_events(events: List[ValidationEvent], logger: logging.Logger = None):
    logger = logger or logging.getLogger('clankclaw')
    for event in events:
        if event.level == 'warning':
            logger.warning(event.message)
        else:
            logger.info(event.message)
