from .social_parser import (
    detect_social_platform,
    is_valid_context_url,
    normalize_url,
    organize_socials,
    parse_multiple_socials,
    parse_smart_social_input,
)
from .token_parser import parse_fees, parse_source_link, parse_token_command

__all__ = [
    'detect_social_platform',
    'is_valid_context_url',
    'normalize_url',
    'organize_socials',
    'parse_multiple_socials',
    'parse_smart_social_input',
    'parse_fees',
    'parse_source_link',
    'parse_token_command',
]
