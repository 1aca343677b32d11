from .instance_lock import InstanceLock, InstanceLockError
from .ipfs_service import IPFSService, ImageUploadResult, is_ipfs_cid
from .messenger import TelegramMessenger
from .session_manager import SessionManager, SessionStore
from .telegram_client import TelegramApiClient
from .telegram_errors import (
    RetryPolicy,
    TelegramApiError,
    TelegramError,
    TelegramRetryExhaustedError,
    TelegramTransportError,
)
from .token_deployer import DeployResult, TokenDeployer

__all__ = [
    'InstanceLock',
    'InstanceLockError',
    'IPFSService',
    'ImageUploadResult',
    'is_ipfs_cid',
    'TelegramMessenger',
    'SessionManager',
    'SessionStore',
    'TelegramApiClient',
    'RetryPolicy',
    'TelegramApiError',
    'TelegramError',
    'TelegramRetryExhaustedError',
    'TelegramTransportError',
    'DeployResult',
    'TokenDeployer',
]
