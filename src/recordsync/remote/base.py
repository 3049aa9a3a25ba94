"""Remote store interface.

The engine treats the authoritative backend as an opaque collaborator.
Any object implementing RemoteStore can be plugged in; HttpRemoteStore is
the bundled HTTP/JSON implementation.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol

Document = dict[str, Any]
SnapshotCallback = Callable[[list[Document]], None]
Unsubscribe = Callable[[], None]


class RemoteStore(Protocol):
    """Operations the sync engine needs from the remote store.

    Implementations raise the recordsync error taxonomy:
    TransientNetworkError for retryable failures, PermissionDeniedError,
    ValidationError and RemoteNotFoundError otherwise.
    """

    def create(self, collection: str, document_id: str | None, payload: Document) -> str:
        """Create a document; with an id this is an upsert under that key.

        Returns:
            The document id.
        """
        ...

    def update(self, collection: str, document_id: str, payload: Document) -> None:
        ...

    def delete(self, collection: str, document_id: str) -> None:
        ...

    def get(self, collection: str, document_id: str) -> Document | None:
        ...

    def list(self, collection: str) -> list[Document]:
        """List documents of a collection, newest first."""
        ...

    def subscribe(self, collection: str, callback: SnapshotCallback) -> Unsubscribe:
        """Push full collection snapshots to callback until unsubscribed."""
        ...
