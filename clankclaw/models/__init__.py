from .api_result import ApiResult
from .session import HydrationState, Session, SessionState, IMAGE_INPUT_STATES, PROFILE_INPUT_STATES
from .token_draft import (
    DEFAULT_CLANKER_FEE,
    DEFAULT_PAIRED_FEE,
    FeeConfig,
    TokenContext,
    TokenDraft,
    normalize_fee,
)

__all__ = [
    'ApiResult',
    'HydrationState',
    'Session',
    'SessionState',
    'IMAGE_INPUT_STATES',
    'PROFILE_INPUT_STATES',
    'DEFAULT_CLANKER_FEE',
    'DEFAULT_PAIRED_FEE',
    'FeeConfig',
    'TokenContext',
    'TokenDraft',
    'normalize_fee',
]
