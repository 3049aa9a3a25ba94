"""Per-collection change stream over WebSocket.

This module provides:
- CollectionListener: receives change notifications for one collection
  and pushes fresh snapshots to a callback

Architecture:
    Server ─push─► CollectionListener ─fetch()─► callback(snapshot)
                          │
                   (on (re)connect: fetch() once to catch up)

Messages are only used as a signal; the snapshot always comes from a full
refetch, so a missed or duplicated notification cannot corrupt local data.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import ssl
import threading
from collections.abc import Callable
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import websockets
from websockets.exceptions import WebSocketException

if TYPE_CHECKING:
    from websockets.asyncio.client import ClientConnection

    from recordsync.core.config import RemoteConfig

logger = logging.getLogger(__name__)

CHANGE_MESSAGE_TYPES = frozenset({"document_change", "snapshot"})


class CollectionListener:
    """WebSocket listener streaming snapshots of one remote collection.

    Usage:
        listener = CollectionListener(config, "transactions", fetch, callback)
        listener.start()
        ...
        listener.stop()
    """

    def __init__(
        self,
        config: RemoteConfig,
        collection: str,
        fetch: Callable[[], list[dict[str, Any]]],
        callback: Callable[[list[dict[str, Any]]], None],
        reconnect_delay: float = 5.0,
    ) -> None:
        """Initialize the listener.

        Args:
            config: Server configuration with URL and token.
            collection: Collection to watch.
            fetch: Loads the full collection (runs in an executor).
            callback: Receives every snapshot.
            reconnect_delay: Delay between reconnection attempts.
        """
        self._config = config
        self._collection = collection
        self._fetch = fetch
        self._callback = callback
        self._reconnect_delay = reconnect_delay

        # Connection
        self._ws: ClientConnection | None = None
        self._should_run = False

        # Thread and loop
        self._thread: threading.Thread | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._stop_event: asyncio.Event | None = None

    @property
    def ws_url(self) -> str:
        url = f"{self._config.ws_url}/ws/collections/{quote(self._collection, safe='')}"
        if self._config.token:
            url += f"?token={quote(self._config.token, safe='')}"
        return url

    def start(self) -> None:
        """Start the listener in a background thread."""
        if self._thread and self._thread.is_alive():
            logger.warning("CollectionListener for %s already running", self._collection)
            return

        self._should_run = True
        self._thread = threading.Thread(
            target=self._run_loop,
            name=f"CollectionListener-{self._collection}",
            daemon=True,
        )
        self._thread.start()
        logger.info("Listening for changes on %s", self._collection)

    def stop(self) -> None:
        """Stop the listener."""
        self._should_run = False

        loop = self._loop
        if loop and self._stop_event:
            with contextlib.suppress(RuntimeError):
                asyncio.run_coroutine_threadsafe(self._signal_stop(), loop)

        if loop and self._ws:
            with contextlib.suppress(TimeoutError, RuntimeError):
                asyncio.run_coroutine_threadsafe(
                    self._close_connection(), loop
                ).result(timeout=2.0)

        if self._thread:
            self._thread.join(timeout=5.0)
            self._thread = None

        logger.info("Stopped listening on %s", self._collection)

    async def _signal_stop(self) -> None:
        if self._stop_event:
            self._stop_event.set()

    def _run_loop(self) -> None:
        self._loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self._loop)
        self._stop_event = asyncio.Event()

        try:
            self._loop.run_until_complete(self._connection_loop())
        finally:
            self._loop.close()
            self._loop = None
            self._stop_event = None

    async def _connection_loop(self) -> None:
        """Main connection loop with automatic reconnection."""
        was_connected = False

        while self._should_run:
            try:
                await self._connect()
                if was_connected:
                    logger.info("Reconnected to %s stream, refreshing...", self._collection)
                await self._refresh()

                was_connected = True
                await self._listen_for_messages()

            except WebSocketException as e:
                if was_connected:
                    logger.warning("Change stream for %s disconnected: %s", self._collection, e)
                logger.debug("WebSocket error: %s", e)
            except OSError as e:
                if was_connected:
                    logger.warning("Change stream for %s lost", self._collection)
                logger.debug("Connection error: %s", e)
            except Exception as e:
                logger.warning("Change stream error: %s", e)
                logger.debug("Full traceback:", exc_info=True)

            if not self._should_run:
                break

            try:
                await asyncio.wait_for(
                    self._stop_event.wait(),  # type: ignore[union-attr]
                    timeout=self._reconnect_delay,
                )
                break
            except TimeoutError:
                pass

    async def _connect(self) -> None:
        ssl_context: ssl.SSLContext | None = None
        if self.ws_url.startswith("wss://"):
            ssl_context = ssl.create_default_context()
            if not self._config.verify_ssl:
                ssl_context.check_hostname = False
                ssl_context.verify_mode = ssl.CERT_NONE

        self._ws = await websockets.connect(
            self.ws_url,
            ssl=ssl_context,
            open_timeout=10,
            close_timeout=5,
        )
        logger.debug("Connected to %s", self.ws_url)

    async def _listen_for_messages(self) -> None:
        while self._should_run and self._ws:
            try:
                message = await asyncio.wait_for(self._ws.recv(), timeout=30.0)
                if isinstance(message, bytes):
                    message = message.decode("utf-8")
                await self._handle_message(message)
            except TimeoutError:
                continue
            except websockets.ConnectionClosed:
                logger.info("Change stream closed by server")
                break

    async def _handle_message(self, message: str) -> None:
        """Refresh on change notifications, ignore everything else.

        Expected shape:
            {"type": "document_change", "collection": "...", "id": "...", "action": "..."}
        """
        try:
            data = json.loads(message)
        except json.JSONDecodeError:
            logger.warning("Invalid message received: %s", message[:100])
            return

        if data.get("type") in CHANGE_MESSAGE_TYPES:
            logger.debug("Change on %s: %s", self._collection, data.get("id"))
            await self._refresh()

    async def _refresh(self) -> None:
        """Refetch the collection and hand the snapshot to the callback."""
        try:
            loop = asyncio.get_running_loop()
            snapshot = await loop.run_in_executor(None, self._fetch)
        except Exception as e:
            logger.warning("Failed to refresh %s: %s", self._collection, e)
            return

        try:
            self._callback(snapshot)
        except Exception:
            logger.exception("Snapshot callback for %s failed", self._collection)

    async def _close_connection(self) -> None:
        if self._ws:
            with contextlib.suppress(WebSocketException):
                await self._ws.close()
            self._ws = None
