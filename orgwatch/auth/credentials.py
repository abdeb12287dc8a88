"""Durable client-side record of the org's connected-app parameters."""

from __future__ import annotations

import json
import logging

from ..exceptions import StorageError
from .types import ENVIRONMENTS, OrgCredentials
from .storage import LocalStorage, MemoryStorage


logger = logging.getLogger("orgwatch.auth")

CREDENTIALS_KEY = "sf_org_credentials"
SELECTED_ORG_KEY = "sf_selected_org_id"
ENVIRONMENT_KEY = "sf_environment"


class CredentialStore:
    """Persist OrgCredentials plus the selected org and environment.

    Storage that cannot be read is treated as absence: every getter
    returns None rather than raising. Writes propagate ``StorageError``
    so registration forms can report the failure.

    Parameters
    ----------
    storage : LocalStorage, optional
        Backing key/value store. Defaults to an in-memory store.
    """

    def __init__(self, storage: LocalStorage | None = None) -> None:
        self.storage = storage or MemoryStorage()

    def _get(self, key: str) -> str | None:
        try:
            return self.storage.get_item(key)
        except StorageError as exc:
            logger.warning("Storage unavailable reading %s: %s", key, exc)
            return None

    def _remove(self, key: str) -> None:
        try:
            self.storage.remove_item(key)
        except StorageError as exc:
            logger.warning("Storage unavailable removing %s: %s", key, exc)

    def store(self, credentials: OrgCredentials) -> None:
        """Persist ``credentials``, overwriting any existing record."""
        self.storage.set_item(CREDENTIALS_KEY, json.dumps(credentials.to_dict()))
        logger.debug("Stored credentials for org %r", credentials.org_name)

    def get(self) -> OrgCredentials | None:
        """Return the stored credentials, or None if absent or unreadable."""
        raw = self._get(CREDENTIALS_KEY)
        if not raw:
            return None
        try:
            data = json.loads(raw)
            if not isinstance(data, dict):
                return None
            return OrgCredentials.from_dict(data)
        except ValueError as exc:
            logger.warning("Ignoring malformed stored credentials: %s", exc)
            return None

    def clear(self) -> None:
        """Remove the stored credentials, forcing re-registration."""
        self._remove(CREDENTIALS_KEY)

    def get_selected_org_id(self) -> str | None:
        return self._get(SELECTED_ORG_KEY) or None

    def set_selected_org_id(self, org_id: str | None) -> None:
        if org_id:
            self.storage.set_item(SELECTED_ORG_KEY, org_id)
        else:
            self._remove(SELECTED_ORG_KEY)

    def get_environment(self) -> str | None:
        value = self._get(ENVIRONMENT_KEY)
        return value if value in ENVIRONMENTS else None

    def set_environment(self, environment: str) -> None:
        if environment not in ENVIRONMENTS:
            msg = f"Unknown environment: {environment!r}"
            raise ValueError(msg)
        self.storage.set_item(ENVIRONMENT_KEY, environment)
