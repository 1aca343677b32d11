"""
Durable per-chat draft and preset store (single JSON document)
"""

import os
import copy
import json
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from ..models import TokenDraft
from ..settings import DEFAULT_CONFIG_STORE_PATH

STORE_VERSION = 1


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def _normalize_preset_name(value) -> str:
    return str(value or '').strip()


def _normalize_draft(token) -> Dict:
    if isinstance(token, TokenDraft):
        return token.to_dict()
    return TokenDraft.from_dict(token).to_dict()


class DraftStore:
    """Chat drafts and named presets, written atomically.

    Layout: {version, users: {chatId: {updatedAt, draft, presets: {name: {token, updatedAt}}}}}
    """

    def __init__(self, store_path: str = None):
        self.store_path = os.path.abspath(store_path or os.getenv('CONFIG_STORE_PATH') or DEFAULT_CONFIG_STORE_PATH)
        self.logger = logging.getLogger('clankclaw')
        self.write_count = 0
        self._loaded = False
        self._store: Dict = {'version': STORE_VERSION, 'users': {}}

    def _ensure_loaded(self):
        if self._loaded:
            return
        self._loaded = True

        if not os.path.exists(self.store_path):
            return
        try:
            with open(self.store_path, 'r', encoding='utf-8') as f:
                raw = f.read()
            if not raw.strip():
                return
            parsed = json.loads(raw)
        except (OSError, ValueError) as e:
            self.logger.warning(f"Draft store load warning ({self.store_path}): {e}")
            self._store = {'version': STORE_VERSION, 'users': {}}
            return

        if isinstance(parsed, dict) and isinstance(parsed.get('users'), dict):
            self._store = {'version': STORE_VERSION, 'users': parsed['users']}

    def _write(self):
        """Write to {path}.{pid}.tmp then rename over the store"""
        directory = os.path.dirname(self.store_path)
        os.makedirs(directory, exist_ok=True)

        tmp_path = f"{self.store_path}.{os.getpid()}.tmp"
        payload = json.dumps(self._store, indent=2)

        try:
            fd = os.open(tmp_path, os.O_CREAT | os.O_TRUNC | os.O_WRONLY, 0o600)
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                f.write(payload)
            os.replace(tmp_path, self.store_path)
        except OSError:
            try:
                os.remove(tmp_path)
            except FileNotFoundError:
                pass
            raise
        self.write_count += 1

    def _commit(self, snapshot: Dict):
        """Write the mutated store, restoring `snapshot` in memory if the write fails"""
        try:
            self._write()
        except OSError as e:
            self._store = snapshot
            self.logger.error(f"Draft store write failed ({self.store_path}): {e}")
            raise

    def _snapshot(self) -> Dict:
        self._ensure_loaded()
        return copy.deepcopy(self._store)

    def _get_user(self, chat_id, create: bool = False) -> Optional[Dict]:
        self._ensure_loaded()
        user_id = str(chat_id)
        users = self._store['users']
        if user_id not in users or not isinstance(users[user_id], dict):
            if not create:
                return None
            users[user_id] = {'updatedAt': _now_iso(), 'draft': None, 'presets': {}}
        user = users[user_id]
        if not isinstance(user.get('presets'), dict):
            user['presets'] = {}
        return user

    def get_draft(self, chat_id) -> Optional[TokenDraft]:
        user = self._get_user(chat_id)
        if not user or not user.get('draft'):
            return None
        return TokenDraft.from_dict(user['draft'])

    def save_draft(self, chat_id, token) -> Dict:
        """Persist the normalized draft; no-op if nothing changed"""
        normalized = _normalize_draft(token)
        existing = self._get_user(chat_id)
        if existing and existing.get('draft') == normalized:
            return existing['draft']

        snapshot = self._snapshot()
        user = self._get_user(chat_id, create=True)
        user['draft'] = normalized
        user['updatedAt'] = _now_iso()
        self._commit(snapshot)
        return user['draft']

    def clear_draft(self, chat_id) -> bool:
        user = self._get_user(chat_id)
        if not user or not user.get('draft'):
            return False
        snapshot = self._snapshot()
        user['draft'] = None
        user['updatedAt'] = _now_iso()
        self._commit(snapshot)
        return True

    def list_presets(self, chat_id) -> List[Dict[str, str]]:
        """Preset names for a chat, most recently updated first"""
        user = self._get_user(chat_id)
        if not user:
            return []
        presets = [
            {'name': name, 'updatedAt': str((value or {}).get('updatedAt') or '')}
            for name, value in user['presets'].items()
        ]
        return sorted(presets, key=lambda item: item['updatedAt'], reverse=True)

    def _find_preset_key(self, user: Dict, input_name) -> Optional[str]:
        """Exact match first, then case-insensitive"""
        name = _normalize_preset_name(input_name)
        if not name:
            return None
        if name in user['presets']:
            return name
        lowered = name.lower()
        for key in user['presets']:
            if str(key).lower() == lowered:
                return key
        return None

    def save_preset(self, chat_id, name, token) -> Dict[str, str]:
        preset_name = _normalize_preset_name(name)
        if not preset_name:
            raise ValueError('Preset name cannot be empty')

        snapshot = self._snapshot()
        user = self._get_user(chat_id, create=True)
        # Overwrite an existing preset under its stored casing
        key = self._find_preset_key(user, preset_name) or preset_name
        user['presets'][key] = {'token': _normalize_draft(token), 'updatedAt': _now_iso()}
        user['updatedAt'] = _now_iso()
        self._commit(snapshot)
        return {'name': key}

    def load_preset(self, chat_id, name) -> Optional[Dict]:
        """Returns {name, token} with the stored name casing"""
        user = self._get_user(chat_id)
        if not user:
            return None
        key = self._find_preset_key(user, name)
        if not key:
            return None
        value = user['presets'][key] or {}
        return {'name': key, 'token': TokenDraft.from_dict(value.get('token'))}

    def delete_preset(self, chat_id, name) -> bool:
        user = self._get_user(chat_id)
        if not user:
            return False
        key = self._find_preset_key(user, name)
        if not key:
            return False
        snapshot = self._snapshot()
        del user['presets'][key]
        user['updatedAt'] = _now_iso()
        self._commit(snapshot)
        return True

    def get_stats(self) -> Dict:
        self._ensure_loaded()
        users = self._store['users']
        preset_count = sum(len((user or {}).get('presets') or {}) for user in users.values())
        return {'path': self.store_path, 'users': len(users), 'presets': preset_count}
