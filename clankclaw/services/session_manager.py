"""
In-memory chat sessions with idle eviction, backed by the draft store
"""

import time
import logging
from typing import Dict, Optional

from ..models import HydrationState, Session, SessionState, TokenDraft

DEFAULT_TTL_MINUTES = 15
CLEANUP_INTERVAL = 60  # seconds


class SessionManager:
    """Per-chat sessions, evicted after `ttl_minutes` of inactivity"""

    def __init__(self, ttl_minutes: float = DEFAULT_TTL_MINUTES, clock=None):
        self.sessions: Dict[str, Session] = {}
        self.ttl = ttl_minutes * 60
        self._clock = clock or time.time
        self._last_cleanup = self._clock()
        self.logger = logging.getLogger('clankclaw')
        self.logger.info(f"⏱️  Session manager initialized (TTL: {ttl_minutes}m)")

    def _maybe_cleanup(self):
        now = self._clock()
        if now - self._last_cleanup >= CLEANUP_INTERVAL:
            self._last_cleanup = now
            self.cleanup()

    def get(self, chat_id) -> Session:
        """Existing session (TTL refreshed) or a fresh one"""
        self._maybe_cleanup()
        key = str(chat_id)
        session = self.sessions.get(key)
        if session is None:
            return self.create(key)
        session.last_active = self._clock()
        return session

    def has(self, chat_id) -> bool:
        return str(chat_id) in self.sessions

    def create(self, chat_id) -> Session:
        key = str(chat_id)
        now = self._clock()
        session = Session(chat_id=key, created_at=now, last_active=now)
        self.sessions[key] = session
        return session

    def reset(self, chat_id) -> Session:
        self.sessions.pop(str(chat_id), None)
        return self.create(chat_id)

    def cleanup(self) -> int:
        """Drop idle sessions; returns how many were removed"""
        now = self._clock()
        stale = [key for key, session in self.sessions.items() if now - session.last_active > self.ttl]
        for key in stale:
            del self.sessions[key]
        if stale:
            self.logger.debug(f"Cleaned {len(stale)} stale sessions")
        return len(stale)

    def count(self) -> int:
        return len(self.sessions)


class SessionStore:
    """Joins the session cache with the durable draft store.

    A session is hydrated from its stored draft at most once per process, so a
    later lookup never overwrites edits made since.
    """

    def __init__(self, session_manager: SessionManager, draft_store):
        self.session_manager = session_manager
        self.draft_store = draft_store
        self.logger = logging.getLogger('clankclaw')

    def hydrate(self, session: Session, draft: Optional[TokenDraft]):
        if draft is None:
            return
        session.token = draft.copy()
        session.state = SessionState.COLLECTING

    def get_session(self, chat_id) -> Session:
        session = self.session_manager.get(chat_id)
        if session.hydration is HydrationState.UNLOADED:
            session.hydration = HydrationState.LOADING
            try:
                self.hydrate(session, self.draft_store.get_draft(chat_id))
            finally:
                session.hydration = HydrationState.LOADED
        return session

    def reset_session(self, chat_id, clear_draft: bool = True) -> Session:
        session = self.session_manager.reset(chat_id)
        # A reset session must not pick the old draft back up
        session.hydration = HydrationState.LOADED
        if clear_draft:
            self.clear(chat_id)
        return session

    def persist(self, chat_id, session: Session):
        """Write-through of the session's draft"""
        try:
            self.draft_store.save_draft(chat_id, session.token)
        except (OSError, ValueError) as e:
            self.logger.warning(f"Draft save warning: {e}")

    def clear(self, chat_id):
        try:
            self.draft_store.clear_draft(chat_id)
        except OSError as e:
            self.logger.warning(f"Draft clear warning: {e}")

    def count(self) -> int:
        return self.session_manager.count()
