"""
Inline-keyboard panels and readiness checks for the chat UI
"""

import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from ..models import Session, TokenDraft


class UIAction:
    """callback_data values used by the panel buttons"""
    MENU = 'm_menu'
    WIZARD = 'm_wizard'
    SETTINGS = 'm_settings'
    FALLBACK = 'm_fallback'
    SET_NAME = 'm_name'
    SET_SYMBOL = 'm_symbol'
    SET_FEES = 'm_fees'
    FEE_PRESET_6 = 'm_fee_6'
    FEE_PRESET_5 = 'm_fee_5'
    SET_CONTEXT = 'm_context'
    SET_IMAGE = 'm_image'
    SET_SPOOF = 'm_spoof'
    PROFILES = 'm_profiles'
    PROFILE_SAVE = 'pf_save'
    PROFILE_LOAD = 'pf_load'
    PROFILE_DELETE = 'pf_delete'
    STATUS = 'm_status'
    HEALTH = 'm_health'
    DEPLOY = 'm_deploy'
    CANCEL = 'm_cancel'
    HELP = 'm_help'
    WIZ_FEE_6 = 'w_fee_6'
    WIZ_FEE_5 = 'w_fee_5'
    WIZ_SKIP_IMAGE = 'w_skip_img'
    WIZ_SKIP_CONTEXT = 'w_skip_ctx'
    FB_AUTOFILL = 'fb_autofill'
    FB_CLEAR_IMAGE = 'fb_clear_img'
    FB_CLEAR_CONTEXT = 'fb_clear_ctx'
    FB_CLEAR_SOCIALS = 'fb_clear_socials'

    CONFIRM_DEPLOY = 'confirm_deploy'
    CANCEL_DEPLOY = 'cancel_deploy'


Button = Dict[str, str]
Keyboard = List[List[Button]]

PANEL_RULE = '━━━━━━━━━━━━━━━━━━━━━'


@dataclass
class ReadyStatus:
    ready: bool
    missing: List[str] = field(default_factory=list)
    has_context: bool = False
    has_image: bool = False


def _valid_fee(value) -> bool:
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return False
    return math.isfinite(parsed) and parsed >= 0


def get_ready_status(token: Optional[TokenDraft]) -> ReadyStatus:
    """Symbol and fees are required; the name falls back to the symbol"""
    token = token or TokenDraft()
    name = str(token.name or '').strip()
    symbol = str(token.symbol or '').strip()

    missing = []
    if not symbol:
        missing.append('symbol')
    if not name and not symbol:
        missing.append('name')
    fees = token.fees
    if fees is None or not _valid_fee(fees.clanker_fee) or not _valid_fee(fees.paired_fee):
        missing.append('fees')

    context_id = str(token.context.message_id if token.context else '').strip()
    return ReadyStatus(
        ready=not missing,
        missing=missing,
        has_context=bool(context_id),
        has_image=bool(str(token.image or '').strip()),
    )


def get_panel_buttons(ready: bool) -> Keyboard:
    deploy_label = 'Deploy' if ready else 'Validate'
    return [
        [{'text': deploy_label, 'data': UIAction.DEPLOY}, {'text': 'Wizard', 'data': UIAction.WIZARD}],
        [{'text': 'Settings', 'data': UIAction.SETTINGS}, {'text': 'Status', 'data': UIAction.STATUS}],
        [{'text': 'Health', 'data': UIAction.HEALTH}, {'text': 'Cancel', 'data': UIAction.CANCEL}],
    ]


def get_settings_buttons(token: TokenDraft) -> Keyboard:
    spoof_label = 'Spoof: On' if token.spoof_to else 'Spoof: Off'
    return [
        [{'text': 'Name', 'data': UIAction.SET_NAME}, {'text': 'Symbol', 'data': UIAction.SET_SYMBOL}],
        [{'text': 'Fees', 'data': UIAction.SET_FEES}, {'text': 'Context', 'data': UIAction.SET_CONTEXT}],
        [{'text': 'Image', 'data': UIAction.SET_IMAGE}, {'text': spoof_label, 'data': UIAction.SET_SPOOF}],
        [{'text': 'Profiles', 'data': UIAction.PROFILES}, {'text': 'Fallback', 'data': UIAction.FALLBACK}],
        [{'text': 'Main Panel', 'data': UIAction.MENU}],
    ]


def get_fallback_buttons() -> Keyboard:
    return [
        [{'text': 'Auto-fill Missing', 'data': UIAction.FB_AUTOFILL},
         {'text': 'Clear Image', 'data': UIAction.FB_CLEAR_IMAGE}],
        [{'text': 'Clear Context', 'data': UIAction.FB_CLEAR_CONTEXT},
         {'text': 'Clear Socials', 'data': UIAction.FB_CLEAR_SOCIALS}],
        [{'text': 'Reset Session', 'data': UIAction.CANCEL}, {'text': 'Settings', 'data': UIAction.SETTINGS}],
    ]


def get_profile_buttons() -> Keyboard:
    return [
        [{'text': 'Save Preset', 'data': UIAction.PROFILE_SAVE},
         {'text': 'Load Preset', 'data': UIAction.PROFILE_LOAD}],
        [{'text': 'Delete Preset', 'data': UIAction.PROFILE_DELETE},
         {'text': 'Settings', 'data': UIAction.SETTINGS}],
        [{'text': 'Main Panel', 'data': UIAction.MENU}],
    ]


def get_confirm_buttons() -> Keyboard:
    return [
        [{'text': 'Confirm Deploy', 'data': UIAction.CONFIRM_DEPLOY},
         {'text': 'Cancel', 'data': UIAction.CANCEL_DEPLOY}],
        [{'text': 'Settings', 'data': UIAction.SETTINGS}, {'text': 'Main Panel', 'data': UIAction.MENU}],
    ]


def render_field_value(value, not_set: str = '_not set_') -> str:
    if value is None:
        return not_set
    raw = str(value)
    if not raw:
        return '`(empty)`'
    if not raw.strip():
        return '`(spaces)`'
    return raw


def format_session_panel(session: Session, title: str = '*Session Panel*') -> Tuple[str, Keyboard]:
    """Panel text summarizing the draft, plus the main keyboard"""
    token = session.token
    status = get_ready_status(token)
    fees = token.fees

    context_status = token.context.platform.upper() if token.context and token.context.message_id else 'Not set'
    spoof_status = f"ON ({token.spoof_to[:8]}...)" if token.spoof_to else 'OFF'

    lines = [
        title,
        PANEL_RULE,
        f"*Name:* {render_field_value(token.name)}",
        f"*Symbol:* {render_field_value(token.symbol)}",
        f"*Fees:* {fees.total_percent:.2f}% ({fees.clanker_fee}/{fees.paired_fee} bps)",
        f"*Context:* {context_status}",
        f"*Image:* {'Set' if token.image else 'Not set'}",
        f"*Socials:* {len(token.socials or {})}",
        f"*Spoof:* {spoof_status}",
        '',
        'Ready to deploy' if status.ready else 'Configure fields using buttons below',
    ]
    return '\n'.join(lines), get_panel_buttons(status.ready)


def format_deploy_summary(token: TokenDraft, title: str = '*Deployment Dashboard*') -> str:
    """Confirmation text shown before committing a deploy"""
    status = get_ready_status(token)
    fees = token.fees
    symbol = render_field_value(token.symbol, 'AUTO')
    name = render_field_value(token.name, f"{symbol} Token")
    platform = token.context.platform.upper() if token.context and token.context.platform else 'None'
    socials = ', '.join(key.capitalize() for key in sorted(token.socials or {}))
    social_line = f"{len(token.socials)} added ({socials})" if token.socials else 'None'

    lines = [
        title,
        PANEL_RULE,
        '',
        '*Token Information*',
        f"• *Name:* {name}",
        f"• *Symbol:* {symbol}",
        f"• *Fees:* {fees.total_percent:g}% ({fees.clanker_fee}/{fees.paired_fee} bps)",
        '',
        '*Deployment Context*',
        f"• *Platform:* {platform} ({'set' if status.has_context else 'not set'})",
        f"• *Socials:* {social_line}",
        '',
        '*Settings*',
        f"• *Image:* {'Set' if status.has_image else 'Auto fallback'}",
    ]
    if token.spoof_to:
        lines += ['• *Spoofing:* Active', f"  Target: `{token.spoof_to}`"]
    else:
        lines.append('• *Spoofing:* Inactive')
    lines += ['', 'Type *"/confirm"* or *"yes"* to deploy.', 'Type *"/cancel"* to abort.']
    return '\n'.join(lines)
