# cryptbin/persistence/server_salt.py
"""
Server salt: a random secret generated on first use and persisted in the
config store, so it survives restarts and migrations between backends.
"""

import logging
import secrets
from typing import Optional

from cryptbin.storage.base import NAMESPACE_SALT, DataStore

logger = logging.getLogger(__name__)

# Random bytes per salt (hex encoded when stored)
SALT_BYTES = 256


class ServerSalt:
    """Lazily initialized server secret backed by a data store."""

    def __init__(self, store: DataStore):
        self._store = store
        self._salt: Optional[str] = None

    @staticmethod
    def generate() -> str:
        """Generate a new hex encoded salt from the OS CSPRNG."""
        return secrets.token_hex(SALT_BYTES)

    def get(self) -> str:
        """Return the salt, generating and persisting it if the store has none."""
        if self._salt:
            return self._salt

        salt = self._store.get_value(NAMESPACE_SALT)
        if not salt:
            salt = self.generate()
            if not self._store.set_value(salt, NAMESPACE_SALT):
                raise RuntimeError("Unable to persist server salt")
            logger.info(f"Generated new server salt in {self._store.name} store")

        self._salt = salt
        return salt

    def reset(self) -> None:
        """Forget the cached value; the next get() reads the store again."""
        self._salt = None
