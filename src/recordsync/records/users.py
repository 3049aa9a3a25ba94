"""Profile data of signed-in users, available offline."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from recordsync.core.errors import ValidationError
from recordsync.core.types import Namespace, OperationType
from recordsync.records.base import RecordRepository, sanitize

logger = logging.getLogger(__name__)

USERS_COLLECTION = "users"


class UserDataService(RecordRepository):
    """User profiles keyed by user id.

    Unlike transactions the id is known up front, so a save is an upsert of
    the whole profile.
    """

    collection = USERS_COLLECTION
    namespace = Namespace.USER_DATA.value

    def validate(self, data: Mapping[str, Any]) -> None:
        if not data.get("id"):
            raise ValidationError("User ID is required")

    def save_user_data(self, user: Mapping[str, Any]) -> None:
        """Store a profile locally and push it (or queue it) remotely.

        Raises:
            ValidationError: The profile has no id.
            LocalStorageError: The local write failed.
        """
        self.validate(user)
        user_id = user["id"]
        previous = self._store.get_by_id(self.namespace, user_id)
        record = {**user, "updated_at": self._now_iso()}
        self._store.put(self.namespace, record)

        def rollback() -> None:
            if previous is None:
                self._store.remove(self.namespace, user_id)
            else:
                self._store.put(self.namespace, previous)

        payload = sanitize(record)
        if self._push(
            user_id,
            lambda: self._remote.create(self.collection, user_id, payload),
            f"Save user {user_id}",
            rollback=rollback,
        ):
            return

        self._sync.queue_operation(OperationType.CREATE, self.collection, user_id, payload)
        logger.info("Saved user %s locally, remote update pending", user_id)

    def get_user_data(self, user_id: str) -> dict[str, Any] | None:
        """Get a profile, local copy first.

        On a local miss the remote copy is fetched and kept locally. Remote
        failures (including permission errors) are logged and give None.
        """
        return self.get(user_id)
