"""
Conversation engine - routes Telegram updates through the per-chat state machine

Every handler takes the chat id and works on the chat's Session. Draft
mutations are persisted through the SessionStore as soon as they happen.
"""

import re
import asyncio
import logging
from typing import Dict, Optional

from eth_account import Account
from eth_utils import is_address
from web3 import Web3

from .. import __version__
from ..deploy_config import ZERO_ADDRESS, create_config_from_session
from ..models import FeeConfig, Session, SessionState, TokenContext, PROFILE_INPUT_STATES
from ..parsers import parse_fees, parse_smart_social_input, parse_token_command
from ..services.health import (
    find_healthy_rpc,
    format_health_error,
    get_status_rpc_candidates,
    list_enabled_ipfs_providers,
    probe_rpc_endpoint,
    probe_telegram_origin,
)
from ..services.ipfs_service import is_ipfs_cid, strip_ipfs_prefix
from ..settings import normalize_private_key, private_key_error
from ..validator import ConfigValidationError, log_events, validate_config
from .fallback import handle_fallback
from .panel import (
    PANEL_RULE,
    UIAction,
    format_deploy_summary,
    get_confirm_buttons,
    get_fallback_buttons,
    get_profile_buttons,
    get_ready_status,
    get_settings_buttons,
    format_session_panel,
    render_field_value,
)

CONFIRM_WORDS = frozenset({'yes', 'y', 'deploy', 'go', 'confirm', '/confirm'})
ABORT_WORDS = frozenset({'no', 'n', 'cancel', '/cancel'})
SKIP_WORDS = frozenset({'/skip', 'skip'})
SPOOF_DISABLE_KEYWORDS = frozenset({'off', 'disable', 'none', 'clear', 'reset'})
LAST_USED_PRESET = 'last-used'
MAX_LISTED_PRESETS = 20

FIVE_PERCENT_FEES = {'clankerFee': 250, 'pairedFee': 250}
IMAGE_DOCUMENT_NAME = re.compile(r'\.(png|jpe?g|gif|webp|svg)$', re.IGNORECASE)
HTTP_URL = re.compile(r'^https?://', re.IGNORECASE)

WIZARD_TEXT_STATES = (SessionState.WIZARD_NAME, SessionState.WIZARD_SYMBOL, SessionState.WIZARD_FEES)
MENU_INPUT_STATES = frozenset({
    SessionState.MENU_NAME,
    SessionState.MENU_SYMBOL,
    SessionState.MENU_FEES,
    SessionState.MENU_CONTEXT,
    SessionState.MENU_IMAGE,
    SessionState.MENU_SPOOF,
}) | PROFILE_INPUT_STATES

UI_ACTIONS = frozenset(
    value for key, value in vars(UIAction).items()
    if not key.startswith('_') and key not in ('CONFIRM_DEPLOY', 'CANCEL_DEPLOY')
)


def _back_cancel(back: str = UIAction.SETTINGS):
    return [[{'text': 'Back', 'data': back}, {'text': 'Cancel', 'data': UIAction.CANCEL}]]


def _read_balance(rpc_url: str, address: str) -> float:
    w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={'timeout': 10}))
    return float(w3.from_wei(w3.eth.get_balance(address), 'ether'))


def is_image_document(document: Optional[Dict]) -> bool:
    if not document:
        return False
    mime_type = str(document.get('mime_type') or '')
    return mime_type.startswith('image/') or bool(IMAGE_DOCUMENT_NAME.search(str(document.get('file_name') or '')))


class ConversationEngine:
    """Handles one update at a time for any number of chats"""

    def __init__(self, settings, messenger, session_store, draft_store, ipfs, deployer, client=None,
                 balance_reader=None, rpc_reader=None):
        self.settings = settings
        self.messenger = messenger
        self.sessions = session_store
        self.draft_store = draft_store
        self.ipfs = ipfs
        self.deployer = deployer
        self.client = client
        self._balance_reader = balance_reader or _read_balance
        self._rpc_reader = rpc_reader
        self.logger = logging.getLogger('clankclaw')

    # ─── session helpers ───

    def get_session(self, chat_id) -> Session:
        return self.sessions.get_session(chat_id)

    def reset_session(self, chat_id, clear_draft: bool = True) -> Session:
        return self.sessions.reset_session(chat_id, clear_draft=clear_draft)

    def persist(self, chat_id, session: Session):
        self.sessions.persist(chat_id, session)

    # ─── panels ───

    async def show_control_panel(self, chat_id, session: Session, title: str = '*Control Panel*'):
        self.persist(chat_id, session)
        text, buttons = format_session_panel(session, title)
        return await self.messenger.send_buttons(chat_id, text, buttons)

    async def show_settings_panel(self, chat_id, session: Session, title: str = '*Settings Panel*'):
        self.persist(chat_id, session)
        token = session.token
        text = (
            f"{title}\n"
            f"{PANEL_RULE}\n"
            f"Configure token fields using buttons below.\n\n"
            f"Name: {render_field_value(token.name, 'Not set')}\n"
            f"Symbol: {render_field_value(token.symbol, 'Not set')}\n"
            f"Fees: {token.fees.total_percent:.2f}%\n"
            f"Context: {'Set' if token.context and token.context.message_id else 'Not set'}\n"
            f"Image: {'Set' if token.image else 'Not set'}\n"
            f"Spoof: {'On' if token.spoof_to else 'Off'}"
        )
        return await self.messenger.send_buttons(chat_id, text, get_settings_buttons(token))

    async def show_fallback_panel(self, chat_id, session: Session):
        self.persist(chat_id, session)
        text = (
            f"*Fallback Tools*\n"
            f"{PANEL_RULE}\n"
            f"Use these actions to auto-heal or clean the current config."
        )
        return await self.messenger.send_buttons(chat_id, text, get_fallback_buttons())

    async def show_profiles_panel(self, chat_id, session: Session, title: str = '*Config Profiles*'):
        self.persist(chat_id, session)
        presets = self.draft_store.list_presets(chat_id)
        if presets:
            lines = [f"{index}. {item['name']}" for index, item in enumerate(presets[:MAX_LISTED_PRESETS], 1)]
        else:
            lines = ['No presets saved.']
        text = (
            f"{title}\n"
            f"{PANEL_RULE}\n"
            f"Saved presets ({len(presets)}):\n"
            + '\n'.join(lines)
            + "\n\nTip: draft for current chat is auto-saved."
        )
        return await self.messenger.send_buttons(chat_id, text, get_profile_buttons())

    async def send_wizard_image_prompt(self, chat_id):
        return await self.messenger.send_buttons(
            chat_id,
            "Step 3.5/4: Token Image\n"
            "Send image as photo, image URL, or IPFS CID.\n"
            "If no image, choose Skip Image.",
            [[{'text': 'Skip Image', 'data': UIAction.WIZ_SKIP_IMAGE}, {'text': 'Cancel', 'data': UIAction.CANCEL}]],
        )

    async def send_wizard_context_prompt(self, chat_id):
        return await self.messenger.send_buttons(
            chat_id,
            "Step 4/4: Context Link\n"
            "Send source link for indexing quality.\n"
            "If no context, choose Skip Context.",
            [[{'text': 'Skip Context', 'data': UIAction.WIZ_SKIP_CONTEXT}, {'text': 'Cancel', 'data': UIAction.CANCEL}]],
        )

    # ─── commands ───

    async def handle_start(self, chat_id, username: Optional[str] = None):
        session = self.get_session(chat_id)
        wallet_status = 'Missing Key' if private_key_error(self.deployer.private_key) else 'Active'
        storage_status = 'Active' if any(self.ipfs.provider_status().values()) else 'Limited'

        await self.messenger.send_message(chat_id, (
            f"*Clank & Claw v{__version__}*\n"
            f"━━━━━━━━━━━━━━━━━━━━━━━━\n\n"
            f"*Operator:* @{username or 'Agent'}\n"
            f"*Wallet:* {wallet_status}\n"
            f"*Storage:* {storage_status}\n\n"
            f"*Deployment Controls*\n"
            f"• */a* - Open action panel\n"
            f"• */deploy* - Start guided wizard\n"
            f"• */go* <SYMBOL> \"<NAME>\" <FEES> - Quick setup\n"
            f"• */spoof* <ADDRESS> - Set spoof target\n"
            f"• */profiles* - Manage saved config presets\n\n"
            f"Use */a* for button-first workflow.\n"
            f"Image uploads are accepted only from */a* -> *Settings* -> *Image*.\n"
            f"IPFS upload priority: *Local Kubo* -> Pinata -> web3.storage.\n\n"
            f"_Ready for instructions._"
        ))
        await self.show_control_panel(chat_id, session)

    async def handle_help(self, chat_id):
        await self.messenger.send_message(chat_id, (
            f"*Quick Guide*\n"
            f"{PANEL_RULE}\n\n"
            f"1. Open */a*.\n"
            f"2. Use *Settings* to set name, symbol, fees, context, image.\n"
            f"3. Use *Deploy* and confirm.\n\n"
            f"*Commands*\n"
            f"`/a` open action panel\n"
            f"`/deploy` guided wizard\n"
            f"`/go SYMBOL \"Name\" FEES` quick setup\n"
            f"`/spoof 0x...` enable spoof\n"
            f"`/spoof off` disable spoof\n"
            f"`/profiles` saved presets\n"
            f"`/status` wallet status\n"
            f"`/health` system health\n"
            f"`/cancel` reset session"
        ))
        await self.show_control_panel(chat_id, self.get_session(chat_id))

    async def handle_status(self, chat_id):
        await self.messenger.send_typing(chat_id)

        error = private_key_error(self.deployer.private_key)
        if error:
            return await self.messenger.send_message(chat_id, f"❌ {error}")

        address = Account.from_key(normalize_private_key(self.deployer.private_key)).address
        candidates = get_status_rpc_candidates(self.settings.rpc_url, self.settings.rpc_fallback_urls)
        healthy = await find_healthy_rpc(candidates, reader=self._rpc_reader)
        if not healthy:
            return await self.messenger.send_message(chat_id, "❌ Error: No healthy RPC endpoint available")

        loop = asyncio.get_running_loop()
        try:
            eth = await loop.run_in_executor(None, self._balance_reader, healthy['rpcUrl'], address)
        except Exception as e:
            # web3 surfaces provider failures as many unrelated exception types
            return await self.messenger.send_message(chat_id, f"❌ Error: {format_health_error(e)}")

        if eth > 0.1:
            level = 'Healthy'
        elif eth > 0.01:
            level = 'Low'
        else:
            level = 'Critical'
        warning = '\nWarning: low balance for deployment.' if eth < 0.01 else ''

        await self.messenger.send_message(chat_id, (
            f"*Wallet Status*\n"
            f"{PANEL_RULE}\n\n"
            f"Address: `{address}`\n"
            f"Balance: *{eth:.4f} ETH* ({level})\n"
            f"Network: Base Mainnet\n"
            f"RPC: `{healthy['rpcUrl']}`"
            f"{warning}"
        ))

    async def handle_health(self, chat_id):
        await self.messenger.send_typing(chat_id)
        progress = await self.messenger.send_message(
            chat_id, 'Running health check...\nChecking Telegram API, RPC, wallet, and IPFS.')
        message_id = progress.result.get('message_id') if isinstance(progress.result, dict) else None

        origins = list(self.client.origins) if self.client else []
        rpc_candidates = get_status_rpc_candidates(self.settings.rpc_url, self.settings.rpc_fallback_urls)
        telegram_checks, rpc_checks = await asyncio.gather(
            asyncio.gather(*[probe_telegram_origin(origin, self.client) for origin in origins]),
            asyncio.gather(*[probe_rpc_endpoint(url, reader=self._rpc_reader) for url in rpc_candidates]),
        )

        key_error = private_key_error(self.deployer.private_key)
        ipfs_status = self.ipfs.provider_status()
        ipfs_providers = list_enabled_ipfs_providers(ipfs_status)
        healthy_rpc = next((item for item in rpc_checks if item['ok']), None)
        store_stats = self.draft_store.get_stats()
        active_origin = self.client.active_origin if self.client else 'n/a'

        telegram_lines = [
            f"• ✅ `{item['origin']}` ({item['latencyMs']}ms)" if item['ok']
            else f"• ❌ `{item['origin']}` ({item['latencyMs']}ms) _{item['error']}_"
            for item in telegram_checks
        ]
        rpc_lines = [
            f"• ✅ `{item['rpcUrl']}` ({item['latencyMs']}ms, block {item['blockNumber']})" if item['ok']
            else f"• ❌ `{item['rpcUrl']}` ({item['latencyMs']}ms) _{item['error']}_"
            for item in rpc_checks
        ]
        summary = '\n'.join([
            f"Wallet: {key_error or 'Ready'}",
            f"IPFS: {', '.join(ipfs_providers) if ipfs_providers else 'Not configured'}",
            f"Active Telegram Origin: `{active_origin}`",
            f"Preferred RPC: {'`' + healthy_rpc['rpcUrl'] + '`' if healthy_rpc else '_No healthy RPC_'}",
            f"Session Cache: {self.sessions.count()} active chat(s)",
            f"Config DB: {store_stats['users']} chat(s), {store_stats['presets']} preset(s)",
        ])

        text = (
            f"*System Health*\n"
            f"{PANEL_RULE}\n\n"
            f"{summary}\n\n"
            f"*Telegram Origins*\n" + '\n'.join(telegram_lines or ['• none']) + "\n\n"
            f"*RPC Endpoints*\n" + '\n'.join(rpc_lines or ['• none'])
        )
        await self.messenger.edit_message(chat_id, message_id, text)

    async def handle_save_preset(self, chat_id, name_input):
        session = self.get_session(chat_id)
        name = str(name_input or '').strip()
        if not name:
            return await self.messenger.send_message(chat_id, 'Preset name is required. Example: `/save default`')
        try:
            saved = self.draft_store.save_preset(chat_id, name, session.token)
        except (OSError, ValueError) as e:
            return await self.messenger.send_message(chat_id, f"Failed to save preset: {e}")
        self.persist(chat_id, session)
        return await self.messenger.send_message(chat_id, f"Preset saved: *{saved['name']}*")

    async def handle_load_preset(self, chat_id, name_input, show_panel: bool = True):
        session = self.get_session(chat_id)
        name = str(name_input or '').strip()
        if not name:
            return await self.messenger.send_message(chat_id, 'Preset name is required. Example: `/load default`')

        preset = self.draft_store.load_preset(chat_id, name)
        if not preset:
            return await self.messenger.send_message(chat_id, f"Preset not found: *{name}*")

        self.sessions.hydrate(session, preset['token'])
        self.persist(chat_id, session)
        await self.messenger.send_message(chat_id, f"Preset loaded: *{preset['name']}*")
        if show_panel:
            await self.show_control_panel(chat_id, session, '*Current Session*')

    async def handle_delete_preset(self, chat_id, name_input):
        name = str(name_input or '').strip()
        if not name:
            return await self.messenger.send_message(
                chat_id, 'Preset name is required. Example: `/deletepreset default`')
        try:
            deleted = self.draft_store.delete_preset(chat_id, name)
        except OSError as e:
            return await self.messenger.send_message(chat_id, f"Failed to delete preset: {e}")
        if not deleted:
            return await self.messenger.send_message(chat_id, f"Preset not found: *{name}*")
        return await self.messenger.send_message(chat_id, f"Preset deleted: *{name}*")

    async def handle_spoof(self, chat_id, address):
        session = self.get_session(chat_id)
        target = str(address or '').strip()

        if not target or target.lower() in SPOOF_DISABLE_KEYWORDS:
            if not session.token.spoof_to:
                return await self.messenger.send_message(chat_id, 'Spoof is already disabled.')
            session.token.spoof_to = None
            self.persist(chat_id, session)
            return await self.messenger.send_message(
                chat_id, 'Spoof disabled. Rewards now route to the deployer wallet.')

        if not is_address(target):
            current = f"`{session.token.spoof_to}`" if session.token.spoof_to else '_None_'
            return await self.messenger.send_message(chat_id, (
                f"*Spoof Mode*\n"
                f"{PANEL_RULE}\n"
                f"Usage: `/spoof 0xYourStealthAddress`\n"
                f"Disable: `/spoof off`\n"
                f"Current: {current}"
            ))

        session.token.spoof_to = target
        self.persist(chat_id, session)
        return await self.messenger.send_message(chat_id, f"Spoof enabled: `{target}`")

    async def handle_go(self, chat_id, args: str):
        """Quick setup: `/go SYMBOL "Name" 6% [link]`"""
        session = self.get_session(chat_id)
        token = session.token
        parsed = parse_token_command(args)

        if parsed['symbol']:
            token.symbol = parsed['symbol']
        if parsed['name']:
            token.name = parsed['name']
        if parsed['fees']:
            token.fees = FeeConfig.from_dict(parsed['fees'])
        if parsed['context']:
            token.context = TokenContext.from_dict(parsed['context'])
        if parsed['description']:
            token.description = parsed['description']

        if not token.symbol and not token.name and str(args or '').strip():
            token.name = str(args)
        if not token.name and token.symbol:
            token.name = token.symbol

        status = get_ready_status(token)
        session.state = SessionState.COLLECTING
        self.persist(chat_id, session)

        lines = [
            '*Token Configured*',
            PANEL_RULE,
            '',
            f"{render_field_value(token.name)} ({render_field_value(token.symbol)})",
            f"Fees: *{token.fees.total_percent:g}%*",
        ]
        if token.context:
            lines.append(f"Context: {token.context.platform}")
        if token.spoof_to:
            lines.append('Spoof: Active')
        lines += ['', '*Next Steps:*']
        if not token.image:
            lines.append('1. (Optional) Set token *image* in *Settings*.')
        if not token.context:
            lines.append('2. (Recommended) Set *source link* context in *Settings*.')
        if status.ready:
            lines += ['', 'Ready to deploy. Use the *Deploy* button.']

        await self.messenger.send_message(chat_id, '\n'.join(lines))
        await self.show_control_panel(chat_id, session, '*Current Session*')
        if status.ready:
            session.state = SessionState.CONFIRMING

    async def handle_deploy(self, chat_id):
        """Start the wizard from a clean session"""
        session = self.reset_session(chat_id)
        session.state = SessionState.WIZARD_NAME
        await self.messenger.send_buttons(chat_id, (
            f"*Token Deployment Wizard*\n"
            f"{PANEL_RULE}\n\n"
            f"*Step 1/4: Token Name*\n"
            f"What should the token be called?\n\n"
            f"_Example: Pepe Token_"
        ), [[{'text': 'Cancel', 'data': UIAction.CANCEL}]])

    async def handle_cancel(self, chat_id):
        session = self.reset_session(chat_id)
        await self.messenger.send_message(chat_id, 'Session cancelled. Start fresh with /go, /deploy, or /a.')
        await self.show_control_panel(chat_id, session)

    # ─── buttons ───

    def apply_session_fallbacks(self, session: Session):
        """Fill blank fields the same way the deploy path would"""
        config, _ = validate_config(create_config_from_session(session.token, ZERO_ADDRESS))
        token = session.token
        token.name = config['name']
        token.symbol = config['symbol']
        token.image = config['image']
        token.context = TokenContext.from_dict(config['context'])
        description = (config.get('metadata') or {}).get('description')
        if description and not str(token.description or '').strip():
            token.description = description
        if config['fees'].get('type') == 'static':
            token.fees = FeeConfig.from_dict(config['fees'])

    async def _set_menu_state(self, chat_id, session: Session, state: str, prompt: str, back: str = UIAction.SETTINGS):
        session.state = state
        return await self.messenger.send_buttons(chat_id, prompt, _back_cancel(back))

    async def handle_menu_action(self, chat_id, data: str):
        session = self.get_session(chat_id)
        token = session.token

        if data == UIAction.MENU:
            return await self.show_control_panel(chat_id, session)
        if data == UIAction.SETTINGS:
            return await self.show_settings_panel(chat_id, session)
        if data == UIAction.FALLBACK:
            return await self.show_fallback_panel(chat_id, session)
        if data == UIAction.PROFILES:
            return await self.show_profiles_panel(chat_id, session)
        if data == UIAction.WIZARD:
            return await self.handle_deploy(chat_id)

        if data == UIAction.SET_NAME:
            return await self._set_menu_state(chat_id, session, SessionState.MENU_NAME,
                                              'Send token *name* (any text).')
        if data == UIAction.SET_SYMBOL:
            return await self._set_menu_state(chat_id, session, SessionState.MENU_SYMBOL,
                                              'Send token *symbol* (any text, can be empty/spaces).')
        if data == UIAction.SET_FEES:
            session.state = SessionState.MENU_FEES
            return await self.messenger.send_buttons(chat_id, (
                "*Set Fees*\n"
                "Choose preset or send custom fee text:\n"
                "`6%`, `600bps`, or `3% 3%`"
            ), [
                [{'text': 'Use 6% (3%+3%)', 'data': UIAction.FEE_PRESET_6},
                 {'text': 'Use 5% (2.5%+2.5%)', 'data': UIAction.FEE_PRESET_5}],
                *_back_cancel(),
            ])
        if data in (UIAction.FEE_PRESET_6, UIAction.FEE_PRESET_5):
            six = data == UIAction.FEE_PRESET_6
            token.fees = FeeConfig() if six else FeeConfig.from_dict(FIVE_PERCENT_FEES)
            session.state = SessionState.COLLECTING
            self.persist(chat_id, session)
            label = 'Fees set to *6.00%* (3% + 3%).' if six else 'Fees set to *5.00%* (2.5% + 2.5%).'
            await self.messenger.send_message(chat_id, label)
            return await self.show_settings_panel(chat_id, session)
        if data == UIAction.SET_CONTEXT:
            return await self._set_menu_state(chat_id, session, SessionState.MENU_CONTEXT,
                                              'Send source link for context (X/Farcaster/GitHub/Website/etc).')
        if data == UIAction.SET_IMAGE:
            return await self._set_menu_state(chat_id, session, SessionState.MENU_IMAGE,
                                              'Send image as photo, image URL, or IPFS CID.')
        if data == UIAction.SET_SPOOF:
            return await self._set_menu_state(chat_id, session, SessionState.MENU_SPOOF,
                                              'Send spoof address (`0x...`) or `off` to disable.')

        if data == UIAction.PROFILE_SAVE:
            return await self._set_menu_state(chat_id, session, SessionState.MENU_PROFILE_SAVE,
                                              'Send preset name to save current config.', UIAction.PROFILES)
        if data == UIAction.PROFILE_LOAD:
            return await self._set_menu_state(chat_id, session, SessionState.MENU_PROFILE_LOAD,
                                              'Send preset name to load.', UIAction.PROFILES)
        if data == UIAction.PROFILE_DELETE:
            return await self._set_menu_state(chat_id, session, SessionState.MENU_PROFILE_DELETE,
                                              'Send preset name to delete.', UIAction.PROFILES)

        if data == UIAction.FB_AUTOFILL:
            try:
                self.apply_session_fallbacks(session)
            except ConfigValidationError as e:
                await self.messenger.send_message(chat_id, f"Fallback failed: {e}")
            else:
                await self.messenger.send_message(chat_id, 'Fallback auto-fill applied to current config.')
            return await self.show_fallback_panel(chat_id, session)
        if data in (UIAction.FB_CLEAR_IMAGE, UIAction.FB_CLEAR_CONTEXT, UIAction.FB_CLEAR_SOCIALS):
            if data == UIAction.FB_CLEAR_IMAGE:
                token.image = None
                notice = 'Image cleared.'
            elif data == UIAction.FB_CLEAR_CONTEXT:
                token.context = None
                notice = 'Context cleared.'
            else:
                token.socials = {}
                notice = 'Social links cleared.'
            session.state = SessionState.COLLECTING
            await self.messenger.send_message(chat_id, notice)
            return await self.show_fallback_panel(chat_id, session)

        if data in (UIAction.WIZ_FEE_6, UIAction.WIZ_FEE_5):
            if session.state != SessionState.WIZARD_FEES:
                return await self.show_control_panel(chat_id, session)
            token.fees = FeeConfig() if data == UIAction.WIZ_FEE_6 else FeeConfig.from_dict(FIVE_PERCENT_FEES)
            session.state = SessionState.WIZARD_IMAGE
            self.persist(chat_id, session)
            return await self.send_wizard_image_prompt(chat_id)
        if data == UIAction.WIZ_SKIP_IMAGE:
            if session.state != SessionState.WIZARD_IMAGE:
                return await self.show_control_panel(chat_id, session)
            session.state = SessionState.WIZARD_CONTEXT
            return await self.send_wizard_context_prompt(chat_id)
        if data == UIAction.WIZ_SKIP_CONTEXT:
            if session.state != SessionState.WIZARD_CONTEXT:
                return await self.show_control_panel(chat_id, session)
            session.state = SessionState.COLLECTING
            return await self.check_and_prompt(chat_id, session)

        if data == UIAction.STATUS:
            return await self.handle_status(chat_id)
        if data == UIAction.HEALTH:
            return await self.handle_health(chat_id)
        if data == UIAction.HELP:
            return await self.handle_help(chat_id)
        if data == UIAction.CANCEL:
            return await self.handle_cancel(chat_id)

        if data == UIAction.DEPLOY:
            if not get_ready_status(token).ready:
                await self.messenger.send_message(chat_id, 'Token config is not ready yet. Complete fields first.')
                return await self.show_control_panel(chat_id, session, '*Current Session*')
            session.state = SessionState.CONFIRMING
            return await self.messenger.send_buttons(
                chat_id, format_deploy_summary(token, '*Confirm Deployment*'), get_confirm_buttons())

        return await self.messenger.send_message(chat_id, 'Unknown action. Type /a to reopen panel.')

    # ─── free text ───

    async def _finish_menu_edit(self, chat_id, session: Session, notice: str):
        session.state = SessionState.COLLECTING
        self.persist(chat_id, session)
        await self.messenger.send_message(chat_id, notice)
        return await self.show_settings_panel(chat_id, session)

    async def _handle_menu_input(self, chat_id, text: str, session: Session):
        token = session.token
        state = session.state

        if state == SessionState.MENU_NAME:
            token.name = text
            return await self._finish_menu_edit(chat_id, session, f"Name set: {render_field_value(token.name, '`(empty)`')}")

        if state == SessionState.MENU_SYMBOL:
            token.symbol = text
            if not token.name:
                token.name = token.symbol
            return await self._finish_menu_edit(
                chat_id, session, f"Symbol set: {render_field_value(token.symbol, '`(empty)`')}")

        if state == SessionState.MENU_FEES:
            fees = parse_fees(text)
            if not fees:
                return await self.messenger.send_message(
                    chat_id, 'Invalid fee format. Try `6%`, `600bps`, or `3% 3%`.')
            token.fees = FeeConfig.from_dict(fees)
            return await self._finish_menu_edit(chat_id, session, f"Fees set: *{token.fees.total_percent:.2f}%*")

        if state == SessionState.MENU_CONTEXT:
            context, socials = parse_smart_social_input(text)
            if not context:
                return await self.messenger.send_message(chat_id, 'Context link not detected. Send a valid URL.')
            token.context = TokenContext.from_dict(context)
            if socials:
                token.socials = {**token.socials, **socials}
            return await self._finish_menu_edit(
                chat_id, session, f"Context set: *{token.context.platform}* ({token.context.message_id})")

        if state == SessionState.MENU_IMAGE:
            trimmed = text.strip()
            if is_ipfs_cid(trimmed):
                token.image = strip_ipfs_prefix(trimmed)
            elif HTTP_URL.match(trimmed):
                token.image = trimmed
            else:
                return await self.messenger.send_message(chat_id, 'Send image as photo, HTTPS URL, or IPFS CID.')
            return await self._finish_menu_edit(chat_id, session, 'Image reference updated.')

        if state == SessionState.MENU_SPOOF:
            target = text.strip()
            if target.lower() in SPOOF_DISABLE_KEYWORDS:
                token.spoof_to = None
                return await self._finish_menu_edit(chat_id, session, 'Spoof disabled.')
            if not is_address(target):
                return await self.messenger.send_message(chat_id, 'Invalid address. Send `0x...` or `off`.')
            token.spoof_to = target
            return await self._finish_menu_edit(chat_id, session, f"Spoof target set: `{target}`")

        preset_name = text.strip()
        if not preset_name:
            return await self.messenger.send_message(chat_id, 'Preset name cannot be empty.')
        if state == SessionState.MENU_PROFILE_SAVE:
            await self.handle_save_preset(chat_id, preset_name)
        elif state == SessionState.MENU_PROFILE_LOAD:
            await self.handle_load_preset(chat_id, preset_name, show_panel=False)
        else:
            await self.handle_delete_preset(chat_id, preset_name)
        session.state = SessionState.COLLECTING
        return await self.show_profiles_panel(chat_id, session)

    async def _handle_wizard_image_text(self, chat_id, text: str, session: Session):
        lowered = text.strip().lower()
        trimmed = text.strip()
        if lowered in SKIP_WORDS:
            session.state = SessionState.WIZARD_CONTEXT
            self.persist(chat_id, session)
            return await self.send_wizard_context_prompt(chat_id)

        if is_ipfs_cid(trimmed):
            session.token.image = strip_ipfs_prefix(trimmed)
            notice = 'Image set.'
        elif HTTP_URL.match(trimmed):
            session.token.image = trimmed
            notice = 'Image URL set.'
        else:
            return await self.messenger.send_message(
                chat_id, 'Send image as photo, HTTPS URL, or IPFS CID. Use /skip to continue.')

        session.state = SessionState.WIZARD_CONTEXT
        self.persist(chat_id, session)
        await self.messenger.send_message(chat_id, notice)
        return await self.send_wizard_context_prompt(chat_id)

    async def _merge_links(self, chat_id, session: Session, context: Optional[Dict], socials: Dict[str, str]):
        token = session.token
        if context:
            token.context = TokenContext.from_dict(context)
            await self.messenger.send_message(
                chat_id, f"Context set: *{token.context.platform}* ({token.context.message_id})")
        if socials:
            token.socials = {**token.socials, **socials}
            listing = '\n'.join(f"• {platform}: {url}" for platform, url in socials.items())
            await self.messenger.send_message(chat_id, f"Social links updated:\n{listing}")
            if not context and not token.context:
                await self.messenger.send_message(
                    chat_id, '⚠️ Saved socials, but still need a *Context Link* (any source URL).')
        if session.state not in WIZARD_TEXT_STATES:
            session.state = SessionState.COLLECTING
        self.persist(chat_id, session)
        return await self.check_and_prompt(chat_id, session)

    async def _handle_wizard_step(self, chat_id, text: str, session: Session):
        token = session.token
        if session.state == SessionState.WIZARD_NAME:
            token.name = text
            session.state = SessionState.WIZARD_SYMBOL
            self.persist(chat_id, session)
            return await self.messenger.send_buttons(chat_id, (
                f"Name: {render_field_value(token.name, '`(empty)`')}\n\n"
                f"*Step 2/4: Symbol*\n"
                f"What's the ticker? (e.g., PEPE)"
            ), [[{'text': 'Cancel', 'data': UIAction.CANCEL}]])

        if session.state == SessionState.WIZARD_SYMBOL:
            token.symbol = text
            session.state = SessionState.WIZARD_FEES
            self.persist(chat_id, session)
            return await self.messenger.send_buttons(chat_id, (
                f"Symbol: {render_field_value(token.symbol, '`(empty)`')}\n\n"
                f"*Step 3/4: Fees*\n"
                f"Choose preset fees, or send custom fee text.\n\n"
                f"_Examples: 6%, 600bps, 3% 3%_"
            ), [
                [{'text': 'Use 6%', 'data': UIAction.WIZ_FEE_6}, {'text': 'Use 5%', 'data': UIAction.WIZ_FEE_5}],
                [{'text': 'Cancel', 'data': UIAction.CANCEL}],
            ])

        # wizard_fees
        if text.strip().lower() in SKIP_WORDS:
            token.fees = FeeConfig()
        else:
            fees = parse_fees(text)
            if not fees:
                return await self.messenger.send_message(chat_id, 'Invalid format. Try: `6%`, `600bps`, or `3% 3%`')
            token.fees = FeeConfig.from_dict(fees)
        session.state = SessionState.WIZARD_IMAGE
        self.persist(chat_id, session)
        await self.messenger.send_message(chat_id, f"Fees: *{token.fees.total_percent:g}%*")
        return await self.send_wizard_image_prompt(chat_id)

    async def process_message(self, chat_id, text: str, session: Session):
        """Route free text according to the session state"""
        text = str(text or '')
        lowered = text.strip().lower()

        if session.state == SessionState.CONFIRMING:
            if lowered in CONFIRM_WORDS:
                return await self.execute_deploy(chat_id, session)
            if lowered in ABORT_WORDS:
                fresh = self.reset_session(chat_id)
                await self.messenger.send_message(chat_id, 'Cancelled.')
                return await self.show_control_panel(chat_id, fresh)

        # targeted edits and preset names consume their own input
        if session.state in MENU_INPUT_STATES:
            return await self._handle_menu_input(chat_id, text, session)

        if session.state == SessionState.WIZARD_IMAGE:
            return await self._handle_wizard_image_text(chat_id, text, session)

        if session.state == SessionState.WIZARD_CONTEXT and lowered in SKIP_WORDS:
            session.state = SessionState.COLLECTING
            self.persist(chat_id, session)
            return await self.check_and_prompt(chat_id, session)

        context, socials = parse_smart_social_input(text)
        if context or socials:
            return await self._merge_links(chat_id, session, context, socials)

        if is_ipfs_cid(text):
            return await self.messenger.send_message(
                chat_id, 'Image/CID input is allowed only after choosing `Settings` -> `Image` from `/a`.')

        if session.state == SessionState.WIZARD_CONTEXT:
            return await self.messenger.send_buttons(
                chat_id, 'Send a valid source link, or choose Skip Context.',
                [[{'text': 'Skip Context', 'data': UIAction.WIZ_SKIP_CONTEXT},
                  {'text': 'Cancel', 'data': UIAction.CANCEL}]])

        if session.state in WIZARD_TEXT_STATES:
            return await self._handle_wizard_step(chat_id, text, session)

        if session.state in (SessionState.COLLECTING, SessionState.IDLE):
            parsed = parse_token_command(text)
            if parsed['symbol']:
                return await self._apply_natural_language(chat_id, session, parsed)

        await handle_fallback(chat_id, text, session, self.messenger, self.reset_session)
        session = self.get_session(chat_id)
        return await self.show_control_panel(chat_id, session)

    async def _apply_natural_language(self, chat_id, session: Session, parsed: Dict):
        token = session.token
        token.symbol = parsed['symbol']
        if parsed['name']:
            token.name = parsed['name']
        if parsed['fees']:
            token.fees = FeeConfig.from_dict(parsed['fees'])
        if parsed['context']:
            token.context = TokenContext.from_dict(parsed['context'])
        session.state = SessionState.COLLECTING
        self.persist(chat_id, session)
        await self.messenger.send_message(chat_id, (
            f"*Detected:* {token.symbol} \"{token.name or token.symbol}\"\n"
            f"Fees: {token.fees.total_percent:g}%\n\n"
            f"Continue in *Settings*, or deploy from the panel."
        ))

    # ─── images ───

    async def handle_unexpected_image(self, chat_id, message_id, session: Session):
        await self.messenger.delete_message(chat_id, message_id)
        await self.messenger.send_message(chat_id, 'Image ignored. Use `/a` -> `Settings` -> `Image` before uploading.')
        await self.show_control_panel(chat_id, session, '*Session Panel*')

    async def process_photo(self, chat_id, file_id: Optional[str], session: Session, file_url: Optional[str] = None):
        """Upload a Telegram photo/document to IPFS and store the CID on the draft"""
        await self.messenger.send_typing(chat_id)

        if not any(self.ipfs.provider_status().values()):
            return await self.messenger.send_message(chat_id, (
                "*IPFS Not Configured*\n\n"
                "Add one of these to .env:\n"
                "• `KUBO_API_URL=http://127.0.0.1:5001` (no API key, own node)\n"
                "• `PINATA_API_KEY=...` + `PINATA_SECRET_KEY=...` (recommended)\n"
                "• `WEB3_STORAGE_TOKEN=...`\n\n"
                "Or paste an existing IPFS CID."
            ))

        status = await self.messenger.send_message(chat_id, 'Uploading to IPFS...')
        status_id = status.result.get('message_id') if isinstance(status.result, dict) else None

        if not file_id:
            return await self.messenger.edit_message(
                chat_id, status_id, 'Invalid image payload. Try sending the image again.')
        file_url = file_url or await self.messenger.get_file(file_id)
        if not file_url:
            return await self.messenger.edit_message(chat_id, status_id, 'Could not download image. Try again.')

        result = await self.ipfs.process_image_input(file_url)
        if not result.success:
            return await self.messenger.edit_message(chat_id, status_id, f"Upload failed: {result.error}")

        previous_state = session.state
        session.token.image = result.cid
        if previous_state == SessionState.MENU_IMAGE:
            session.state = SessionState.COLLECTING
        elif previous_state == SessionState.WIZARD_IMAGE:
            session.state = SessionState.WIZARD_CONTEXT
        self.persist(chat_id, session)

        await self.messenger.edit_message(chat_id, status_id, f"*Image uploaded*\nCID: `{result.cid}`")

        if previous_state == SessionState.WIZARD_IMAGE:
            return await self.send_wizard_context_prompt(chat_id)
        if previous_state == SessionState.MENU_IMAGE:
            return await self.show_settings_panel(chat_id, session)
        return await self.check_and_prompt(chat_id, session)

    # ─── readiness and deploy ───

    async def check_and_prompt(self, chat_id, session: Session):
        """Move a ready draft to confirming, otherwise say what is left"""
        self.persist(chat_id, session)
        status = get_ready_status(session.token)

        if status.ready:
            session.state = SessionState.CONFIRMING
            return await self.messenger.send_buttons(
                chat_id, format_deploy_summary(session.token), get_confirm_buttons())

        hints = []
        if not status.has_image:
            hints.append('(Optional) set token *image*')
        if not status.has_context:
            hints.append('(Recommended) set *source link* context')
        await self.messenger.send_message(chat_id, f"*Missing:* {', '.join(status.missing)}")
        if hints:
            await self.messenger.send_message(chat_id, f"*Next:* {' or '.join(hints)}")
        return await self.show_control_panel(chat_id, session, '*Current Session*')

    def _format_success(self, token, result) -> str:
        address = result.address or 'Not detected (check tx link)'
        tx_display = f"{result.tx_hash[:20]}..." if result.tx_hash else 'N/A'
        scan_label = 'View on Basescan' if result.address else 'View TX on Basescan'
        lines = [
            '🎉 *DEPLOYED SUCCESSFULLY!*' if not result.dry_run else '🧪 *DRY RUN COMPLETE*',
            '━━━━━━━━━━━━━━━━━━━━━━━━',
            '',
            f"📛 *{token.name}* ({token.symbol})",
            f"📍 Address: `{address}`",
            f"🔗 [{scan_label}]({result.scan_url})",
            '',
            f"💰 TX: `{tx_display}`",
            '',
            'Your token is now live on Base!' if not result.dry_run else 'No transaction was sent.',
        ]
        if token.spoof_to:
            lines += ['', '🎭 Rewards routed to stealth address.']
        return '\n'.join(lines)

    async def execute_deploy(self, chat_id, session: Session):
        """Deploy the chat's draft once; the session is reset whatever the outcome"""
        if session.is_deploying:
            return
        session.is_deploying = True
        await self.messenger.send_typing(chat_id)

        key_error = private_key_error(self.deployer.private_key)
        if key_error and not self.deployer.dry_run:
            session.is_deploying = False
            return await self.messenger.send_message(chat_id, f"❌ {key_error}\n\nCannot deploy without wallet.")

        token = session.token
        status = get_ready_status(token)
        if not status.ready:
            session.is_deploying = False
            return await self.messenger.send_message(chat_id, f"❌ Missing: {', '.join(status.missing)}")

        launch = await self.messenger.send_message(chat_id, '🚀 *Launching...*\nTurbo-confirmation active.')
        launch_id = launch.result.get('message_id') if isinstance(launch.result, dict) else None

        try:
            deployer_address = self.deployer.deployer_address() or ZERO_ADDRESS
            config, events = validate_config(create_config_from_session(token, deployer_address))
            log_events(events, self.logger)
            self.logger.info(f"🚀 Bot Deploy Request: {token.name} ({token.symbol}) from chat {chat_id}")

            result = await self.deployer.deploy_token(config)
            if result.success:
                await self.messenger.edit_message(chat_id, launch_id, self._format_success(token, result))
            else:
                await self.messenger.edit_message(
                    chat_id, launch_id, f"❌ *Deployment Failed*\n\n`{result.error}`")
        except Exception as e:
            self.logger.error(f"ExecuteDeploy error: {e}", exc_info=True)
            await self.messenger.edit_message(chat_id, launch_id, f"❌ *Error:* {e}")
        finally:
            try:
                self.draft_store.save_preset(chat_id, LAST_USED_PRESET, token)
            except (OSError, ValueError) as e:
                self.logger.warning(f"Preset autosave warning: {e}")
            fresh = self.reset_session(chat_id)
            await self.show_control_panel(chat_id, fresh, '*Ready for Next Deployment*')

    # ─── update routing ───

    async def _reply_unauthorized(self, chat_id, user_id):
        await self.messenger.send_message(chat_id, (
            f"⛔ Unauthorized.\n\n"
            f"User ID: `{user_id or 'unknown'}`\n"
            f"Chat ID: `{chat_id}`\n\n"
            f"Ask admin to add your ID in `TELEGRAM_ADMIN_IDS`."
        ))

    async def handle_callback_query(self, callback_query: Dict):
        await self.messenger.answer_callback_query(callback_query.get('id'))
        chat_id = ((callback_query.get('message') or {}).get('chat') or {}).get('id')
        user_id = (callback_query.get('from') or {}).get('id')
        data = callback_query.get('data')
        if not chat_id:
            return
        if not self.settings.is_authorized(chat_id, user_id):
            return await self._reply_unauthorized(chat_id, user_id)

        if data == UIAction.CONFIRM_DEPLOY:
            session = self.get_session(chat_id)
            session.state = SessionState.CONFIRMING
            return await self.process_message(chat_id, 'yes', session)
        if data == UIAction.CANCEL_DEPLOY:
            return await self.handle_cancel(chat_id)
        if data in UI_ACTIONS:
            return await self.handle_menu_action(chat_id, data)
        return await self.messenger.send_message(chat_id, 'Unknown button action. Type /a.')

    async def handle_command(self, chat_id, command: str, args: str, session: Session, username=None) -> bool:
        """Run a slash command; False when `command` is not one"""
        if command == '/start':
            await self.handle_start(chat_id, username)
        elif command == '/help':
            await self.handle_help(chat_id)
        elif command in ('/a', '/menu', '/panel'):
            await self.show_control_panel(chat_id, session)
        elif command == '/status':
            await self.handle_status(chat_id)
        elif command == '/health':
            await self.handle_health(chat_id)
        elif command == '/config':
            await self.show_control_panel(chat_id, session, '*Current Session*')
        elif command == '/profiles':
            await self.show_profiles_panel(chat_id, session)
        elif command in ('/save', '/savepreset'):
            await self.handle_save_preset(chat_id, args)
        elif command == '/load':
            await self.handle_load_preset(chat_id, args)
        elif command in ('/deletepreset', '/delpreset'):
            await self.handle_delete_preset(chat_id, args)
        elif command == '/deploy':
            await self.handle_deploy(chat_id)
        elif command == '/cancel':
            await self.handle_cancel(chat_id)
        elif command == '/spoof':
            await self.handle_spoof(chat_id, args)
        elif command in ('/go', '/quick', '/launch'):
            await self.handle_go(chat_id, args)
        elif command in ('/confirm', '/yes'):
            session.state = SessionState.CONFIRMING
            await self.process_message(chat_id, 'yes', session)
        else:
            return False
        return True

    async def handle_update(self, update: Dict):
        """Entry point for one getUpdates item"""
        if update.get('callback_query'):
            return await self.handle_callback_query(update['callback_query'])

        message = update.get('message')
        if not message:
            return

        chat_id = message['chat']['id']
        sender = message.get('from') or {}
        user_id = sender.get('id')
        if not self.settings.is_authorized(chat_id, user_id):
            return await self._reply_unauthorized(chat_id, user_id)

        session = self.get_session(chat_id)

        if message.get('text'):
            text = message['text'].strip()
            command = text.split(' ')[0].lower()
            args = text[len(command):].strip()
            # "/cmd@BotName" in group chats
            command = command.split('@')[0]
            if await self.handle_command(chat_id, command, args, session, sender.get('username')):
                return
            return await self.process_message(chat_id, text, session)

        if message.get('photo'):
            if not session.can_accept_image():
                return await self.handle_unexpected_image(chat_id, message.get('message_id'), session)
            largest = message['photo'][-1]
            return await self.process_photo(chat_id, largest.get('file_id'), session)

        document = message.get('document')
        if is_image_document(document):
            if not session.can_accept_image():
                return await self.handle_unexpected_image(chat_id, message.get('message_id'), session)
            file_url = await self.messenger.get_file(document.get('file_id'))
            if not file_url:
                return await self.messenger.send_message(
                    chat_id, '❌ Could not download image file from Telegram. Try sending as photo.')
            return await self.process_photo(chat_id, document.get('file_id'), session, file_url)
