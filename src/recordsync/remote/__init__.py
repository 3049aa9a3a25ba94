"""Remote store interface and the bundled HTTP implementation."""

from recordsync.remote.base import Document, RemoteStore, SnapshotCallback, Unsubscribe
from recordsync.remote.http import HttpRemoteStore
from recordsync.remote.listener import CollectionListener

__all__ = [
    "CollectionListener",
    "Document",
    "HttpRemoteStore",
    "RemoteStore",
    "SnapshotCallback",
    "Unsubscribe",
]
