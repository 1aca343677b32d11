import os
import sys

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from clankclaw.bot import ConversationEngine  # noqa: E402
from clankclaw.database import DraftStore  # noqa: E402
from clankclaw.models import ApiResult  # noqa: E402
from clankclaw.services import DeployResult, SessionManager, SessionStore, TelegramApiClient  # noqa: E402
from clankclaw.settings import BotSettings  # noqa: E402


class FakeMessenger:
    """Records every outgoing message instead of calling Telegram"""

    def __init__(self):
        self.sent = []
        self.deleted = []
        self.answered = []
        self._next_id = 100

    def _ok(self):
        self._next_id += 1
        return ApiResult(ok=True, result={'message_id': self._next_id})

    async def send_message(self, chat_id, text, **options):
        self.sent.append(('message', chat_id, text, None))
        return self._ok()

    async def send_buttons(self, chat_id, text, buttons):
        self.sent.append(('buttons', chat_id, text, buttons))
        return self._ok()

    async def edit_message(self, chat_id, message_id, text):
        self.sent.append(('edit', chat_id, text, message_id))
        return ApiResult(ok=True, result={'message_id': message_id})

    async def send_typing(self, chat_id):
        pass

    async def delete_message(self, chat_id, message_id):
        self.deleted.append((chat_id, message_id))

    async def answer_callback_query(self, callback_query_id):
        self.answered.append(callback_query_id)

    async def get_file(self, file_id):
        return f"https://files.example/{file_id}.png"

    def texts(self):
        return [item[2] for item in self.sent]


class FakeIPFS:
    def __init__(self, configured=True):
        self.configured = configured
        self.inputs = []

    def provider_status(self):
        return {'kubo_local': self.configured, 'pinata': False, 'web3_storage': False}

    async def process_image_input(self, url_or_cid):
        from clankclaw.services import ImageUploadResult
        self.inputs.append(url_or_cid)
        return ImageUploadResult(success=True, cid='bafkreiuploadedcid', source='uploaded')


class FakeDeployer:
    private_key = '0x' + '11' * 32
    dry_run = False

    def __init__(self, result=None):
        self.configs = []
        self.result = result or DeployResult(
            success=True,
            address='0x1234567890abcdef1234567890abcdef12345678',
            tx_hash='0x' + 'ab' * 32,
            scan_url='https://basescan.org/address/0x1234567890abcdef1234567890abcdef12345678',
        )

    def deployer_address(self):
        return '0x19E7E376E7C213B7E7e7e46cc70A5dD086DAff2A'

    async def deploy_token(self, config):
        self.configs.append(config)
        return self.result


@pytest.fixture
def draft_store(tmp_path):
    return DraftStore(str(tmp_path / 'store.json'))


@pytest.fixture
def messenger():
    return FakeMessenger()


@pytest.fixture
def deployer():
    return FakeDeployer()


@pytest.fixture
def ipfs():
    return FakeIPFS()


@pytest.fixture
def engine(draft_store, messenger, deployer, ipfs):
    session_store = SessionStore(SessionManager(), draft_store)
    return ConversationEngine(
        settings=BotSettings(),
        messenger=messenger,
        session_store=session_store,
        draft_store=draft_store,
        ipfs=ipfs,
        deployer=deployer,
    )


def text_update(chat_id, text, update_id=1, user_id=None):
    return {
        'update_id': update_id,
        'message': {
            'message_id': update_id,
            'chat': {'id': chat_id},
            'from': {'id': user_id or chat_id, 'username': 'tester'},
            'text': text,
        },
    }


def callback_update(chat_id, data, update_id=1):
    return {
        'update_id': update_id,
        'callback_query': {
            'id': f'cb{update_id}',
            'data': data,
            'from': {'id': chat_id},
            'message': {'chat': {'id': chat_id}},
        },
    }


class FakeResponse:
    def __init__(self, status, body):
        self.status = status
        self.body = body

    async def read(self):
        return self.body

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    """Stands in for aiohttp.ClientSession, answering per origin"""
    closed = False

    def __init__(self, routes):
        self.routes = routes
        self.urls = []

    def post(self, url, json=None, timeout=None):
        self.urls.append(url)
        for origin, (status, body) in self.routes.items():
            if url.startswith(origin):
                return FakeResponse(status, body)
        raise AssertionError(f'unexpected url {url}')


def session_client(routes):
    async def no_sleep(seconds):
        pass

    client = TelegramApiClient('123:abc', list(routes), sleep=no_sleep)
    client._session = FakeSession(routes)
    return client
