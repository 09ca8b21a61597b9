"""Local and cloud persistence."""

from dictation_learning.db.cloud_store import CloudStore, SupabaseCloudStore
from dictation_learning.db.local_store import LocalStore

__all__ = ["CloudStore", "LocalStore", "SupabaseCloudStore"]
