"""HTTP client for a REST record store.

This module provides:
- HttpRemoteStore: RemoteStore implementation over httpx

Endpoint layout:
    POST   /api/collections/{collection}/documents        create (server id)
    PUT    /api/collections/{collection}/documents/{id}   create (client id, upsert)
    PATCH  /api/collections/{collection}/documents/{id}   update
    DELETE /api/collections/{collection}/documents/{id}   delete
    GET    /api/collections/{collection}/documents/{id}   get
    GET    /api/collections/{collection}/documents        list (newest first)
    GET    /health                                        health check
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import httpx

from recordsync.core.errors import (
    PermissionDeniedError,
    RemoteError,
    RemoteNotFoundError,
    TransientNetworkError,
    ValidationError,
)
from recordsync.core.serialization import encode_json
from recordsync.remote.listener import CollectionListener

if TYPE_CHECKING:
    from recordsync.core.config import RemoteConfig
    from recordsync.remote.base import Document, SnapshotCallback, Unsubscribe

logger = logging.getLogger(__name__)

TRANSIENT_STATUS_CODES = frozenset({408, 425, 429, 500, 502, 503, 504})


def _detail(response: httpx.Response, default: str) -> str:
    try:
        return str(response.json().get("detail", default))
    except (ValueError, AttributeError):
        return default


class HttpRemoteStore:
    """HTTP client implementing the RemoteStore interface."""

    def __init__(
        self,
        config: RemoteConfig,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: Server URL, token and timeouts.
            transport: Optional httpx transport (used by tests).
        """
        self._config = config
        headers = {"Authorization": f"Bearer {config.token}"} if config.token else {}
        self._client = httpx.Client(
            base_url=config.server_url,
            timeout=config.timeout,
            verify=config.verify_ssl,
            headers=headers,
            transport=transport,
        )
        self._listeners: list[CollectionListener] = []

    @property
    def config(self) -> RemoteConfig:
        return self._config

    def close(self) -> None:
        """Stop listeners and close the HTTP client."""
        for listener in list(self._listeners):
            listener.stop()
        self._listeners.clear()
        self._client.close()

    def __enter__(self) -> HttpRemoteStore:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    def is_authenticated(self) -> bool:
        """Check if a token is configured."""
        return bool(self._config.token)

    # === Transport helpers ===

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = self._client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            raise TransientNetworkError(f"{method} {url}: {e}") from e
        return self._handle_response(response)

    def _handle_response(self, response: httpx.Response) -> httpx.Response:
        """Map HTTP status codes onto the recordsync error taxonomy."""
        status = response.status_code
        if status < 400:
            return response
        if status in (401, 403):
            raise PermissionDeniedError(_detail(response, "Permission denied"))
        if status == 404:
            raise RemoteNotFoundError(_detail(response, "Document not found"), 404)
        if status in (400, 422):
            raise ValidationError(_detail(response, "Invalid document"))
        if status in TRANSIENT_STATUS_CODES or status >= 500:
            raise TransientNetworkError(f"Server error {status}: {_detail(response, 'unavailable')}")
        raise RemoteError(_detail(response, "Unknown error"), status)

    @staticmethod
    def _documents_url(collection: str, document_id: str | None = None) -> str:
        url = f"/api/collections/{quote(collection, safe='')}/documents"
        if document_id is not None:
            url += f"/{quote(document_id, safe='')}"
        return url

    @staticmethod
    def _encode(payload: Document) -> bytes:
        try:
            return encode_json(payload).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Payload is not JSON serializable: {e}") from e

    # === Health check ===

    def health_check(self) -> bool:
        """Check if the server is reachable.

        Returns:
            True if server is healthy.
        """
        try:
            response = self._client.get("/health")
            return response.status_code == 200
        except httpx.RequestError:
            return False

    # === Documents ===

    def create(self, collection: str, document_id: str | None, payload: Document) -> str:
        """Create a document.

        Without an id the server assigns one; with an id the call is an
        upsert under that key, so replaying it is safe.

        Returns:
            The document id.
        """
        headers = {"Content-Type": "application/json"}
        if document_id is None:
            response = self._request(
                "POST",
                self._documents_url(collection),
                content=self._encode(payload),
                headers=headers,
            )
            created_id = str(response.json()["id"])
        else:
            self._request(
                "PUT",
                self._documents_url(collection, document_id),
                content=self._encode(payload),
                headers=headers,
            )
            created_id = document_id

        logger.debug("Created %s/%s", collection, created_id)
        return created_id

    def update(self, collection: str, document_id: str, payload: Document) -> None:
        self._request(
            "PATCH",
            self._documents_url(collection, document_id),
            content=self._encode(payload),
            headers={"Content-Type": "application/json"},
        )

    def delete(self, collection: str, document_id: str) -> None:
        self._request("DELETE", self._documents_url(collection, document_id))

    def get(self, collection: str, document_id: str) -> Document | None:
        try:
            response = self._request("GET", self._documents_url(collection, document_id))
        except RemoteNotFoundError:
            return None
        result: Document = response.json()
        return result

    def list(self, collection: str) -> list[Document]:
        response = self._request("GET", self._documents_url(collection))
        result: list[Document] = response.json()
        return result

    # === Change streams ===

    def subscribe(self, collection: str, callback: SnapshotCallback) -> Unsubscribe:
        """Stream collection snapshots over a WebSocket.

        Every change notification triggers a full ``list()`` refetch, which
        is handed to ``callback``.
        """
        listener = CollectionListener(
            config=self._config,
            collection=collection,
            fetch=lambda: self.list(collection),
            callback=callback,
        )
        listener.start()
        self._listeners.append(listener)

        def unsubscribe() -> None:
            listener.stop()
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe
