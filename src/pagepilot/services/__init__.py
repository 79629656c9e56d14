"""Service layer helpers (settings, document store, extraction)."""

from .document_store import DocumentStoreClient, RetrievalResult, StoreResponse
from .settings import Settings, SettingsStore

__all__ = ["DocumentStoreClient", "RetrievalResult", "Settings", "SettingsStore", "StoreResponse"]
