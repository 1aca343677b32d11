"""
Deployment config construction - from a chat draft or from the environment
"""

import os
import re
import json
import logging
from typing import Dict, List, Mapping, Optional

from .models import DEFAULT_CLANKER_FEE, DEFAULT_PAIRED_FEE, TokenDraft, normalize_fee
from .services.ipfs_service import gateway_url, is_ipfs_cid, strip_ipfs_prefix
from .settings import parse_bool

ZERO_ADDRESS = '0x0000000000000000000000000000000000000000'
INTERFACE_NAME = 'Clank & Claw'
DEFAULT_DESCRIPTION = 'Deployed with Clank & Claw'
SPOOF_DEPLOYER_BPS = 9990
SPOOF_TARGET_BPS = 10

logger = logging.getLogger('clankclaw')


def process_image(value) -> str:
    """Map a CID or ipfs:// URI to a gateway URL; pass URLs through"""
    text = str(value or '').strip()
    if not text:
        return ''
    if text.startswith('http'):
        return text
    if is_ipfs_cid(text):
        return gateway_url(strip_ipfs_prefix(text))
    return text


def normalize_social_url(platform: str, value) -> Optional[str]:
    """Coerce a social link to https://; '@handle' on x/twitter becomes an x.com URL"""
    text = str(value or '').strip()
    if not text:
        return None
    if text.startswith('@'):
        handle = text[1:].strip()
        if not handle:
            return None
        if platform in ('x', 'twitter'):
            return f"https://x.com/{handle}"
        return None
    if re.match(r'^https?://', text, re.IGNORECASE):
        return text
    return f"https://{text.lstrip('/')}"


def build_social_media_urls(socials: Dict[str, str]) -> List[Dict[str, str]]:
    urls = []
    for platform, value in (socials or {}).items():
        name = 'x' if platform == 'twitter' else platform
        url = normalize_social_url(name, value)
        if url:
            urls.append({'platform': name, 'url': url})
    return urls


def create_config_from_session(draft: TokenDraft, deployer_address: str) -> Dict:
    """Build the deploy config for a chat's draft.

    With spoofTo set to an address other than the deployer, the spoof target
    becomes token admin and receives a 0.1% reward slice. The deployer keeps
    the rest.
    """
    if not isinstance(draft, TokenDraft):
        draft = TokenDraft.from_dict(draft)

    deployer = str(deployer_address or '').strip()
    spoof_to = str(draft.spoof_to or '').strip()
    spoof_enabled = bool(spoof_to) and spoof_to.lower() != deployer.lower()

    config = {
        'name': draft.name or draft.symbol or '',
        'symbol': draft.symbol or '',
        'image': process_image(draft.image),
        'tokenAdmin': spoof_to if spoof_enabled else deployer,
        'metadata': {
            'description': (draft.description or '').strip() or DEFAULT_DESCRIPTION,
            'socialMediaUrls': build_social_media_urls(draft.socials),
            'auditUrls': [],
        },
        'context': {
            'interface': INTERFACE_NAME,
            'platform': draft.context.platform if draft.context else 'website',
            'messageId': draft.context.message_id if draft.context else '',
        },
        'fees': {
            'type': 'static',
            'clankerFee': draft.fees.clanker_fee,
            'pairedFee': draft.fees.paired_fee,
        },
        'vanity': False,
        '_meta': {
            'strictMode': False,
            'rewardRecipient': deployer,
            'devBuyEth': 0.0,
            'spoofEnabled': spoof_enabled,
        },
    }

    if spoof_enabled:
        config['rewards'] = {'recipients': [
            {'recipient': deployer, 'admin': deployer, 'bps': SPOOF_DEPLOYER_BPS, 'token': 'Both'},
            {'recipient': spoof_to, 'admin': spoof_to, 'bps': SPOOF_TARGET_BPS, 'token': 'Both'},
        ]}

    return config


def _float_env(env: Mapping[str, str], name: str, default: float = 0.0) -> float:
    try:
        return float(env.get(name, default))
    except (TypeError, ValueError):
        return default


def _load_rewards(env: Mapping[str, str], token_admin: str) -> Dict:
    recipients = []

    rewards_json = env.get('REWARDS_JSON') or ''
    if len(rewards_json) > 5:
        try:
            parsed = json.loads(rewards_json)
        except ValueError as e:
            logger.error(f"Error parsing REWARDS_JSON: {e}")
            parsed = []
        if isinstance(parsed, list):
            recipients = [item for item in parsed if isinstance(item, dict)]
    elif env.get('REWARD_CREATOR') and env.get('REWARD_INTERFACE'):
        recipients = [
            {
                'recipient': env.get('REWARD_CREATOR'),
                'admin': env.get('REWARD_CREATOR_ADMIN') or token_admin,
                'bps': SPOOF_DEPLOYER_BPS,
                'token': 'Both',
            },
            {
                'recipient': env.get('REWARD_INTERFACE'),
                'admin': env.get('REWARD_INTERFACE_ADMIN') or token_admin,
                'bps': SPOOF_TARGET_BPS,
                'token': 'Both',
            },
        ]
    else:
        recipient = env.get('ADMIN_SPOOF') or env.get('REWARD_RECIPIENT') or token_admin
        if recipient:
            recipients = [{'recipient': recipient, 'admin': token_admin, 'bps': 10000, 'token': 'Both'}]

    return {'recipients': recipients}


def load_config(env: Optional[Mapping[str, str]] = None) -> Dict:
    """Build the deploy config from TOKEN_*, REWARD_*, FEE_*, SOCIAL_* and CONTEXT_* keys.

    `env` defaults to the process environment.
    """
    env = os.environ if env is None else env
    token_admin = env.get('TOKEN_ADMIN') or env.get('REWARD_INTERFACE_ADMIN') or ZERO_ADDRESS
    rewards = _load_rewards(env, token_admin)

    socials = {
        'x': env.get('SOCIAL_X'),
        'telegram': env.get('SOCIAL_TELEGRAM'),
        'farcaster': env.get('SOCIAL_FARCASTER'),
        'website': env.get('SOCIAL_WEBSITE'),
    }
    social_urls = [
        {'platform': platform, 'url': url.strip()}
        for platform, url in socials.items()
        if url and url.strip().startswith('http')
    ]

    dev_buy_eth = _float_env(env, 'DEV_BUY_ETH_AMOUNT', 0.0)

    config = {
        'name': env.get('TOKEN_NAME') or 'My Token',
        'symbol': env.get('TOKEN_SYMBOL') or 'TOKEN',
        'tokenAdmin': token_admin,
        'image': process_image(env.get('TOKEN_IMAGE')),
        'vanity': parse_bool(env.get('VANITY')),
        'metadata': {
            'description': env.get('METADATA_DESCRIPTION') or DEFAULT_DESCRIPTION,
            'socialMediaUrls': social_urls,
            'auditUrls': [],
        },
        'context': {
            'interface': INTERFACE_NAME,
            'platform': (env.get('CONTEXT_PLATFORM') or 'farcaster').lower(),
            'messageId': env.get('CONTEXT_MESSAGE_ID') or '',
        },
        'fees': {
            'type': 'static',
            'clankerFee': normalize_fee(env.get('FEE_CLANKER_BPS'), DEFAULT_CLANKER_FEE),
            'pairedFee': normalize_fee(env.get('FEE_PAIRED_BPS'), DEFAULT_PAIRED_FEE),
        },
        '_meta': {
            'strictMode': parse_bool(env.get('STRICT_MODE')),
            'requireContext': parse_bool(env.get('REQUIRE_CONTEXT')),
            'rewardRecipient': rewards['recipients'][0]['recipient'] if rewards['recipients'] else token_admin,
            'devBuyEth': dev_buy_eth,
        },
    }

    if rewards['recipients']:
        config['rewards'] = rewards
    if dev_buy_eth > 0:
        config['devBuy'] = {'ethAmount': dev_buy_eth}

    return config
