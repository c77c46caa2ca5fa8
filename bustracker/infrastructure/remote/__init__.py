from .document_store import (
    DocumentStore,
    FirestoreRestStore,
    InMemoryDocumentStore,
    RemoteStoreError,
    PermissionDeniedError,
    RemoteTimestamp,
)
from ..config import RemoteStoreSettings


def create_document_store(settings: RemoteStoreSettings) -> DocumentStore:
    """Firestore when a project is configured, otherwise in-memory."""
    if settings.enabled:
        return FirestoreRestStore(
            project_id=settings.project_id,
            api_key=settings.api_key,
            database=settings.database,
            base_url=settings.base_url,
            timeout=settings.timeout_seconds,
        )
    return InMemoryDocumentStore()


__all__ = [
    "DocumentStore",
    "FirestoreRestStore",
    "InMemoryDocumentStore",
    "RemoteStoreError",
    "PermissionDeniedError",
    "RemoteTimestamp",
    "create_document_store",
]
