from .conversation import ConversationEngine
from .panel import UIAction, get_ready_status, format_session_panel
from .poller import FatalPollingError, UpdatePoller

__all__ = [
    'ConversationEngine',
    'UIAction',
    'get_ready_status',
    'format_session_panel',
    'FatalPollingError',
    'UpdatePoller',
]
