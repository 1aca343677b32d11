"""
Token draft model - the token configuration a chat is building
"""

import math
from dataclasses import dataclass, field
from typing import Dict, Optional

DEFAULT_CLANKER_FEE = 300  # 3%
DEFAULT_PAIRED_FEE = 300  # 3%


def normalize_fee(value, fallback: int) -> int:
    """Coerce a fee to a finite, non-negative integer (bps)"""
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return int(fallback)
    if not math.isfinite(parsed) or parsed < 0:
        return int(fallback)
    return int(math.floor(parsed + 0.5))


def _text_or_none(value) -> Optional[str]:
    if value is None:
        return None
    return str(value)


@dataclass
class FeeConfig:
    """Static fee pair in basis points"""
    clanker_fee: int = DEFAULT_CLANKER_FEE
    paired_fee: int = DEFAULT_PAIRED_FEE

    def __post_init__(self):
        self.clanker_fee = normalize_fee(self.clanker_fee, DEFAULT_CLANKER_FEE)
        self.paired_fee = normalize_fee(self.paired_fee, DEFAULT_PAIRED_FEE)

    @property
    def total_bps(self) -> int:
        return self.clanker_fee + self.paired_fee

    @property
    def total_percent(self) -> float:
        return self.total_bps / 100

    @classmethod
    def from_dict(cls, data) -> 'FeeConfig':
        data = data if isinstance(data, dict) else {}
        return cls(clanker_fee=data.get('clankerFee'), paired_fee=data.get('pairedFee'))

    def to_dict(self) -> Dict[str, int]:
        return {'clankerFee': self.clanker_fee, 'pairedFee': self.paired_fee}


@dataclass
class TokenContext:
    """Source link used for indexing (tweet, cast, website...)"""
    platform: str = 'website'
    message_id: str = ''

    @classmethod
    def from_dict(cls, data) -> Optional['TokenContext']:
        if not isinstance(data, dict):
            return None
        platform = _text_or_none(data.get('platform'))
        message_id = _text_or_none(data.get('messageId'))
        if not platform and not message_id:
            return None
        return cls(platform=platform or 'website', message_id=message_id or '')

    def to_dict(self) -> Dict[str, str]:
        return {'platform': self.platform, 'messageId': self.message_id}


def normalize_socials(value) -> Dict[str, str]:
    """Trim social URLs and drop empty entries"""
    if not isinstance(value, dict):
        return {}
    socials = {}
    for key, raw in value.items():
        text = str(raw or '').strip()
        if text:
            socials[str(key)] = text
    return socials


@dataclass
class TokenDraft:
    """In-progress token configuration owned by one chat session"""
    name: Optional[str] = None
    symbol: Optional[str] = None
    image: Optional[str] = None
    description: Optional[str] = None
    fees: FeeConfig = field(default_factory=FeeConfig)
    context: Optional[TokenContext] = None
    socials: Dict[str, str] = field(default_factory=dict)
    spoof_to: Optional[str] = None  # reward-split target address

    @classmethod
    def from_dict(cls, data) -> 'TokenDraft':
        """Build a normalized draft from its JSON form"""
        data = data if isinstance(data, dict) else {}
        return cls(
            name=_text_or_none(data.get('name')),
            symbol=_text_or_none(data.get('symbol')),
            image=_text_or_none(data.get('image')),
            description=_text_or_none(data.get('description')),
            fees=FeeConfig.from_dict(data.get('fees')),
            context=TokenContext.from_dict(data.get('context')),
            socials=normalize_socials(data.get('socials')),
            spoof_to=_text_or_none(data.get('spoofTo')),
        )

    def to_dict(self) -> Dict:
        """JSON form as stored in the draft store"""
        return {
            'name': self.name,
            'symbol': self.symbol,
            'image': self.image,
            'description': self.description,
            'fees': self.fees.to_dict(),
            'context': self.context.to_dict() if self.context else None,
            'socials': normalize_socials(self.socials),
            'spoofTo': self.spoof_to,
        }

    def copy(self) -> 'TokenDraft':
        return TokenDraft.from_dict(self.to_dict())
