from ._store import HistoryStore
from .ranges import glob_to_like
from .types import Command, ContextSummary, LikeRecentOptions

__all__ = ["Command", "ContextSummary", "HistoryStore", "LikeRecentOptions", "glob_to_like"]
