"""
Social media and source link detection
"""

import re
from typing import Dict, List, Optional, Tuple
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

URL_PATTERN = re.compile(r'https?://[^\s<>"{}|\\^`\[\]]+', re.IGNORECASE)
TRACKING_PARAMS = frozenset({'utm_source', 'utm_medium', 'utm_campaign', 'ref', 'fbclid'})


def _group(pattern: str, text: str, index: int = 1) -> Optional[str]:
    match = re.search(pattern, text, re.IGNORECASE)
    return match.group(index) if match else None


def detect_social_platform(url) -> Optional[Dict]:
    """Classify a URL (or @handle) by platform and link type"""
    if not url or not isinstance(url, str):
        return None

    cleaned = url.strip()

    if re.search(r'(?:twitter\.com|x\.com)', cleaned, re.IGNORECASE):
        x_url = cleaned.replace('twitter.com', 'x.com')
        status_id = _group(r'(?:twitter\.com|x\.com)/[^/]+/status/(\d+)', cleaned)
        if status_id:
            return {
                'platform': 'twitter',
                'type': 'tweet',
                'url': x_url,
                'messageId': status_id,
                'username': _group(r'(?:twitter\.com|x\.com)/([^/?]+)', cleaned),
            }
        return {'platform': 'twitter', 'type': 'profile', 'url': x_url}

    if re.search(r'(?:warpcast\.com|farcaster)', cleaned, re.IGNORECASE):
        cast_hash = _group(r'warpcast\.com/[^/]+/(0x[a-fA-F0-9]+)', cleaned)
        if cast_hash:
            return {
                'platform': 'farcaster',
                'type': 'cast',
                'url': cleaned,
                'messageId': cast_hash,
                'username': _group(r'warpcast\.com/([^/?]+)', cleaned),
            }
        return {'platform': 'farcaster', 'type': 'profile', 'url': cleaned}

    if re.search(r'(?:t\.me|telegram\.me|telegram\.org)', cleaned, re.IGNORECASE):
        return {
            'platform': 'telegram',
            'type': 'channel',
            'url': re.sub(r'telegram\.(me|org)', 't.me', cleaned),
            'channel': _group(r't\.me/([^/?]+)', cleaned),
        }

    if re.search(r'discord\.(?:gg|com)', cleaned, re.IGNORECASE):
        return {
            'platform': 'discord',
            'type': 'invite',
            'url': cleaned,
            'invite': _group(r'discord\.(?:gg|com/invite)/([a-zA-Z0-9]+)', cleaned),
        }

    if re.search(r'github\.com', cleaned, re.IGNORECASE):
        return {
            'platform': 'github',
            'type': 'repo',
            'url': cleaned,
            'owner': _group(r'github\.com/([^/]+)/([^/?]+)', cleaned, 1),
            'repo': _group(r'github\.com/([^/]+)/([^/?]+)', cleaned, 2),
        }

    if re.search(r'medium\.com', cleaned, re.IGNORECASE):
        return {'platform': 'medium', 'type': 'profile', 'url': cleaned}

    if re.search(r'reddit\.com', cleaned, re.IGNORECASE):
        return {
            'platform': 'reddit',
            'type': 'subreddit',
            'url': cleaned,
            'subreddit': _group(r'reddit\.com/r/([^/?]+)', cleaned),
        }

    if re.search(r'instagram\.com', cleaned, re.IGNORECASE):
        return {
            'platform': 'instagram',
            'type': 'profile',
            'url': cleaned,
            'username': _group(r'instagram\.com/([^/?]+)', cleaned),
        }

    if re.search(r'youtube\.com|youtu\.be', cleaned, re.IGNORECASE):
        return {
            'platform': 'youtube',
            'type': 'channel',
            'url': cleaned,
            'channel': _group(r'youtube\.com/(?:c/|channel/|@)([^/?]+)', cleaned),
        }

    if re.search(r'tiktok\.com', cleaned, re.IGNORECASE):
        return {
            'platform': 'tiktok',
            'type': 'profile',
            'url': cleaned,
            'username': _group(r'tiktok\.com/@([^/?]+)', cleaned),
        }

    if re.search(r'linkedin\.com', cleaned, re.IGNORECASE):
        return {'platform': 'linkedin', 'type': 'profile', 'url': cleaned}

    if re.match(r'^https?://', cleaned, re.IGNORECASE):
        return {'platform': 'website', 'type': 'url', 'url': cleaned, 'domain': urlsplit(cleaned).hostname}

    if cleaned.startswith('@'):
        return {'platform': 'unknown', 'type': 'username', 'username': cleaned[1:]}

    return None


def parse_multiple_socials(text) -> List[Dict]:
    if not text or not isinstance(text, str):
        return []
    socials = []
    for url in URL_PATTERN.findall(text):
        parsed = detect_social_platform(url)
        if parsed:
            socials.append(parsed)
    return socials


def organize_socials(socials: List[Dict]) -> Dict:
    """Split detected links into one deployment context and per-platform profiles.

    The first tweet or cast is the context. Without one, the first other
    recognized link doubles as the context and is kept as a profile too.
    """
    context = None
    fallback_context = None
    profiles: Dict[str, str] = {}

    for social in socials:
        link_type = social.get('type')
        platform = social.get('platform')

        if link_type == 'tweet' and not context:
            context = {'platform': 'twitter', 'url': social['url'], 'messageId': social['messageId']}
        elif link_type == 'cast' and not context:
            context = {'platform': 'farcaster', 'url': social['url'], 'messageId': social['messageId']}
        elif not fallback_context and social.get('url') and platform and platform != 'unknown':
            fallback_context = {
                'platform': 'twitter' if platform == 'x' else platform,
                'url': social['url'],
                'messageId': social['url'],
            }
            profiles.setdefault(platform, social['url'])
        elif social.get('url'):
            profiles.setdefault(platform, social['url'])

    return {'context': context or fallback_context, 'profiles': profiles}


def parse_smart_social_input(text) -> Tuple[Optional[Dict], Dict[str, str]]:
    """Returns (context, socials) from free text containing links"""
    if not text or not isinstance(text, str):
        return None, {}
    organized = organize_socials(parse_multiple_socials(text))
    return organized['context'], organized['profiles']


def is_valid_context_url(url) -> bool:
    parsed = detect_social_platform(url)
    return bool(parsed) and parsed['type'] in ('tweet', 'cast')


def normalize_url(url):
    """Drop tracking params and map twitter.com to x.com"""
    if not url or not isinstance(url, str):
        return url

    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        return url

    query = urlencode([(key, value) for key, value in parse_qsl(parts.query, keep_blank_values=True)
                       if key not in TRACKING_PARAMS])
    netloc = parts.netloc
    if parts.hostname == 'twitter.com':
        netloc = netloc.replace('twitter.com', 'x.com')
    return urlunsplit((parts.scheme, netloc, parts.path, query, parts.fragment))
