"""
Token command parsing - name, symbol, fees and source link from free text
"""

import math
import re
from typing import Dict, Optional

STOP_WORDS = frozenset({'WITH', 'AND', 'THE', 'FOR', 'FROM', 'DEPLOY', 'LAUNCH', 'CREATE', 'MAKE', 'FEES'})

TWITTER_STATUS = re.compile(r'(?:twitter\.com|x\.com)/(\w+)/status/(\d+)', re.IGNORECASE)
WARPCAST_CAST = re.compile(r'warpcast\.com/(\w+)/(0x[a-fA-F0-9]+)', re.IGNORECASE)
FARCASTER_HASH = re.compile(r'^0x[a-fA-F0-9]{8,}$')
TWITTER_PROFILE = re.compile(r'(?:twitter\.com|x\.com)/\w+/?$', re.IGNORECASE)
URL_PATTERN = re.compile(r'https?://\S+', re.IGNORECASE)
COMMAND_PREFIX = re.compile(r'^/(?:go|quick|deploy|launch)\s*', re.IGNORECASE)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def parse_source_link(url) -> Optional[Dict]:
    """Recognize a tweet, cast or cast hash usable as deployment context"""
    if not url or not isinstance(url, str):
        return None

    trimmed = url.strip()

    match = TWITTER_STATUS.search(trimmed)
    if match:
        return {
            'platform': 'twitter',
            'messageId': trimmed,
            'username': match.group(1),
            'statusId': match.group(2),
        }

    match = WARPCAST_CAST.search(trimmed)
    if match:
        return {
            'platform': 'farcaster',
            'messageId': trimmed,
            'username': match.group(1),
            'castHash': match.group(2),
        }

    if FARCASTER_HASH.match(trimmed):
        return {'platform': 'farcaster', 'messageId': trimmed}

    if TWITTER_PROFILE.search(trimmed):
        return {
            'platform': 'twitter',
            'messageId': trimmed,
            'isProfile': True,
            'warning': 'Profile URL detected. Use specific tweet for better indexing.',
        }

    return None


def parse_fees(text) -> Optional[Dict[str, int]]:
    """Parse fee text into {clankerFee, pairedFee} bps.

    Accepts "6%", "3% 3%", "3%/3%", "600bps", "250 250" and bare numbers
    (<= 100 is a total percent, above that total bps).
    """
    if not text or not isinstance(text, str):
        return None

    trimmed = text.strip().lower()

    match = re.match(r'^(\d+(?:\.\d+)?)\s*(?:%|percent)(?:\s+\w+)?$', trimmed)
    if match:
        half = _round_half_up(float(match.group(1)) / 2 * 100)
        return {'clankerFee': half, 'pairedFee': half}

    match = re.search(r'(\d+(?:\.\d+)?)\s*%\s*(?:/|\s|,|and)\s*(\d+(?:\.\d+)?)\s*%', trimmed)
    if match:
        return {
            'clankerFee': _round_half_up(float(match.group(1)) * 100),
            'pairedFee': _round_half_up(float(match.group(2)) * 100),
        }

    match = re.match(r'^(\d+)\s*bps$', trimmed)
    if match:
        total = int(match.group(1))
        return {'clankerFee': total // 2, 'pairedFee': total - total // 2}

    match = re.match(r'^(\d+)\s*[/\s,]\s*(\d+)$', trimmed)
    if match:
        return {'clankerFee': int(match.group(1)), 'pairedFee': int(match.group(2))}

    match = re.match(r'^(\d+)$', trimmed)
    if match:
        value = int(match.group(1))
        if value <= 100:
            half = _round_half_up(value / 2 * 100)
            return {'clankerFee': half, 'pairedFee': half}
        return {'clankerFee': value // 2, 'pairedFee': value - value // 2}

    return None


def parse_token_command(text) -> Dict:
    """
    Extract token info from natural language

    Examples:
    - "Deploy PEPE (Pepe Token) 10% https://x.com/user/status/123"
    - "/go DOGE 'Dogecoin 2' 500bps"
    - "Launch TOKEN with 5% fees"
    """
    result = {
        'name': None,
        'symbol': None,
        'fees': None,
        'context': None,
        'description': None,
        'raw': text,
    }
    if not text or not isinstance(text, str):
        return result

    cleaned = COMMAND_PREFIX.sub('', text).strip()
    lines = [line.strip() for line in cleaned.split('\n') if line.strip()]
    main_line = lines[0] if lines else ''

    for candidate in re.findall(r'\b([A-Z][A-Z0-9]{1,9})\b', main_line):
        if candidate not in STOP_WORDS:
            result['symbol'] = candidate
            break

    paren = re.search(r'\(([^)]+)\)', main_line)
    if paren:
        result['name'] = paren.group(1).strip()
    else:
        quoted = re.search(r'["\']([^"\']+)["\']', main_line)
        if quoted:
            result['name'] = quoted.group(1).strip()

    if not result['name'] and result['symbol']:
        result['name'] = result['symbol']

    for url in URL_PATTERN.findall(text):
        parsed = parse_source_link(url)
        if parsed:
            result['context'] = parsed
            break

    fee_match = re.search(r'(\d+(?:\.\d+)?)\s*(?:%|percent|bps)', text, re.IGNORECASE)
    if fee_match:
        result['fees'] = parse_fees(fee_match.group(0))

    if not result['fees']:
        with_match = re.search(r'(?:with|fees?:?)\s*(\d+(?:\.\d+)?)\s*(?:%|bps)?', text, re.IGNORECASE)
        if with_match:
            unit = 'bps' if 'bps' in text else '%'
            result['fees'] = parse_fees(with_match.group(1) + unit)

    if len(lines) > 1:
        description_lines = [line for line in lines[1:] if not URL_PATTERN.search(line)]
        if description_lines:
            result['description'] = ' '.join(description_lines)

    return result
