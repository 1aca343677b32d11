"""
Per-chat conversation session model
"""

import time
from dataclasses import dataclass, field
from enum import Enum

from .token_draft import TokenDraft


class SessionState:
    """Conversation states"""
    IDLE = 'idle'
    COLLECTING = 'collecting'
    CONFIRMING = 'confirming'

    WIZARD_NAME = 'wizard_name'
    WIZARD_SYMBOL = 'wizard_symbol'
    WIZARD_FEES = 'wizard_fees'
    WIZARD_IMAGE = 'wizard_image'
    WIZARD_CONTEXT = 'wizard_context'

    MENU_NAME = 'menu_name'
    MENU_SYMBOL = 'menu_symbol'
    MENU_FEES = 'menu_fees'
    MENU_CONTEXT = 'menu_context'
    MENU_IMAGE = 'menu_image'
    MENU_SPOOF = 'menu_spoof'

    MENU_PROFILE_SAVE = 'menu_profile_save'
    MENU_PROFILE_LOAD = 'menu_profile_load'
    MENU_PROFILE_DELETE = 'menu_profile_delete'


IMAGE_INPUT_STATES = frozenset({SessionState.MENU_IMAGE, SessionState.WIZARD_IMAGE})
PROFILE_INPUT_STATES = frozenset({
    SessionState.MENU_PROFILE_SAVE,
    SessionState.MENU_PROFILE_LOAD,
    SessionState.MENU_PROFILE_DELETE,
})


class HydrationState(Enum):
    """Whether the durable draft has been loaded into the session"""
    UNLOADED = 'unloaded'
    LOADING = 'loading'
    LOADED = 'loaded'


@dataclass
class Session:
    """Represents one chat's conversation with the bot"""
    chat_id: str
    state: str = SessionState.IDLE
    token: TokenDraft = field(default_factory=TokenDraft)
    created_at: float = field(default_factory=time.time)
    last_active: float = field(default_factory=time.time)
    is_deploying: bool = False
    hydration: HydrationState = HydrationState.UNLOADED

    def touch(self):
        self.last_active = time.time()

    def can_accept_image(self) -> bool:
        return self.state in IMAGE_INPUT_STATES
