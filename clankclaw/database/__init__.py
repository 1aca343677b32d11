from .draft_store import DraftStore

__all__ = ['DraftStore']
