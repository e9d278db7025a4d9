# cryptbin/storage/base.py
"""
Data store interface for pastes, comments and config values.

Design principles:
- Records are opaque JSON documents (ciphertext + adata + meta), never interpreted
- create/create_comment are create-once: a duplicate id returns False, never overwrites
- Expired pastes are invisible to read() even before a purge removes them
- Each backend owns its physical layout; callers only use this interface
- Expected conditions return False/None/""; medium failures raise BackendUnavailable
"""

import logging
import random
import re
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, Iterable, List, Optional, Tuple, Type

from cryptbin.exceptions import BackendUnavailable
from cryptbin.logging_config import log_store_operation

logger = logging.getLogger(__name__)

# Config namespaces understood by every backend
NAMESPACE_SALT = "salt"
NAMESPACE_PURGE_LIMITER = "purge_limiter"
NAMESPACE_TRAFFIC_LIMITER = "traffic_limiter"
NAMESPACES = (NAMESPACE_SALT, NAMESPACE_PURGE_LIMITER, NAMESPACE_TRAFFIC_LIMITER)

# Paste and comment ids are 8 random bytes, hex encoded
ID_PATTERN = re.compile(r"^[a-f0-9]{16}$")

# Inspect at most this many times the batch size before giving up a sweep
PURGE_INSPECT_FACTOR = 10


def is_valid_id(value: Any) -> bool:
    """Check that a paste or comment id is 16 lowercase hex characters."""
    return isinstance(value, str) and ID_PATTERN.match(value) is not None


def is_expired(paste: Dict[str, Any], now: Optional[int] = None) -> bool:
    """True if the paste carries an expire_date that lies in the past."""
    expire_date = paste.get("meta", {}).get("expire_date")
    if not expire_date:
        return False
    if now is None:
        now = int(time.time())
    return int(expire_date) < now


def upgrade_pre_v1_format(paste: Dict[str, Any]) -> Dict[str, Any]:
    """
    Move legacy attachment fields out of meta.

    Very old pastes kept attachment and attachmentname inside meta. Records
    that were already upgraded pass through unchanged.
    """
    meta = paste.get("meta")
    if isinstance(meta, dict) and "attachment" in meta:
        paste["attachment"] = meta.pop("attachment")
        if "attachmentname" in meta:
            paste["attachmentname"] = meta.pop("attachmentname")
    return paste


def get_open_slot(comments: Dict[str, Any], created: Any) -> str:
    """
    Find a free ordering slot for a comment timestamp.

    Colliding timestamps are suffixed with .1, .2, ... instead of overwriting
    the comment that already occupies the slot.
    """
    slot = str(created)
    if slot not in comments:
        return slot

    base, _, suffix = slot.partition(".")
    counter = int(suffix) if suffix else 0
    while True:
        counter += 1
        candidate = f"{base}.{counter}"
        if candidate not in comments:
            return candidate


def slot_sort_key(slot: str) -> tuple:
    """Sort key for ordering slots: timestamp first, collision suffix second."""
    base, _, suffix = slot.partition(".")
    return (int(base), int(suffix) if suffix else 0)


def comment_timestamp(comment: Dict[str, Any]) -> int:
    """Creation time of a comment: created (v2) or postdate (v1)."""
    meta = comment.get("meta", {})
    if "created" in meta:
        return int(meta["created"])
    return int(meta.get("postdate", 0))


@contextmanager
def medium_errors(backend: str, operation: str, key: str, errors: Tuple[Type[BaseException], ...]):
    """
    Time a backend call and turn medium failures into BackendUnavailable.

    The original exception is chained but its message never reaches clients.
    """
    try:
        with log_store_operation(backend, operation, key):
            yield
    except errors as e:
        raise BackendUnavailable(f"{backend} {operation} failed", details={"key": key}) from e


class DataStore(ABC):
    """
    Abstract interface for paste, comment and config persistence.

    Implementations must provide:
    - Atomic create-once for pastes and comments
    - Cascade delete of a paste's discussion
    - Keyed string values per namespace (salt, purge_limiter, traffic_limiter)
    - Enumeration of all paste ids for purge sweeps
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend name (e.g., 'filesystem', 'database', 's3')."""
        pass

    # -------------------------------------------------------------------------
    # Pastes
    # -------------------------------------------------------------------------

    @abstractmethod
    def create(self, paste_id: str, paste: Dict[str, Any]) -> bool:
        """
        Store a new paste.

        Returns:
            True if stored, False if a paste with this id already exists
        """
        pass

    @abstractmethod
    def _read(self, paste_id: str) -> Optional[Dict[str, Any]]:
        """Load a paste as stored, including expired ones. None if absent."""
        pass

    def read(self, paste_id: str) -> Optional[Dict[str, Any]]:
        """
        Read a paste.

        Returns:
            The paste record, or None if it is missing or has expired
        """
        paste = self._read(paste_id)
        if paste is None or is_expired(paste):
            return None
        return upgrade_pre_v1_format(paste)

    @abstractmethod
    def delete(self, paste_id: str) -> None:
        """Delete a paste and all its comments. No-op if absent."""
        pass

    @abstractmethod
    def exists(self, paste_id: str) -> bool:
        """Check if a paste is stored (expired or not)."""
        pass

    # -------------------------------------------------------------------------
    # Comments
    # -------------------------------------------------------------------------

    @abstractmethod
    def create_comment(
        self,
        paste_id: str,
        parent_id: str,
        comment_id: str,
        comment: Dict[str, Any],
    ) -> bool:
        """
        Store a new comment.

        Returns:
            True if stored, False if this (paste, parent, comment) triple exists
        """
        pass

    @abstractmethod
    def _load_comments(self, paste_id: str) -> Iterable[Dict[str, Any]]:
        """Yield the paste's comments, each annotated with id and parentid."""
        pass

    def read_comments(self, paste_id: str) -> List[Dict[str, Any]]:
        """
        Read all comments of a paste, oldest first.

        Comments sharing a timestamp keep distinct slots, so none is lost;
        ties are broken by comment id, whatever order the backend lists them in.
        """
        slots: Dict[str, Dict[str, Any]] = {}
        loaded = sorted(self._load_comments(paste_id), key=lambda c: (comment_timestamp(c), c.get("id", "")))
        for comment in loaded:
            slot = get_open_slot(slots, comment_timestamp(comment))
            slots[slot] = comment
        return [slots[slot] for slot in sorted(slots, key=slot_sort_key)]

    @abstractmethod
    def exists_comment(self, paste_id: str, parent_id: str, comment_id: str) -> bool:
        """Check if a comment exists."""
        pass

    # -------------------------------------------------------------------------
    # Config values
    # -------------------------------------------------------------------------

    @abstractmethod
    def set_value(self, value: str, namespace: str, key: str = "") -> bool:
        """
        Save a value.

        Returns:
            True if stored, False on an unknown namespace
        """
        pass

    @abstractmethod
    def get_value(self, namespace: str, key: str = "") -> str:
        """Load a value, or "" if it was never set."""
        pass

    @abstractmethod
    def purge_values(self, namespace: str, cutoff: int) -> None:
        """Delete values in a namespace whose numeric value is below cutoff."""
        pass

    # -------------------------------------------------------------------------
    # Purging
    # -------------------------------------------------------------------------

    @abstractmethod
    def get_all_paste_ids(self) -> List[str]:
        """List the id of every stored paste. May be expensive."""
        pass

    def _get_expire_date(self, paste_id: str) -> Optional[int]:
        """Expiration timestamp of a stored paste, None if it never expires or is gone."""
        paste = self._read(paste_id)
        if paste is None:
            return None
        expire_date = paste.get("meta", {}).get("expire_date")
        return int(expire_date) if expire_date else None

    def _get_expired_pastes(self, batch_size: int) -> List[str]:
        """
        Find up to batch_size expired paste ids.

        Ids are shuffled so a backlog does not always hit the same
        lexicographically-first pastes; at most batch_size * 10 are inspected.
        """
        expired: List[str] = []
        inspected = 0
        limit = batch_size * PURGE_INSPECT_FACTOR
        now = int(time.time())

        paste_ids = self.get_all_paste_ids()
        random.shuffle(paste_ids)
        for paste_id in paste_ids:
            if not self.exists(paste_id):
                continue
            expire_date = self._get_expire_date(paste_id)
            if expire_date is not None and expire_date < now:
                expired.append(paste_id)
                if len(expired) >= batch_size:
                    break
            inspected += 1
            if inspected >= limit:
                break

        return expired

    def purge_expired(self, batch_size: int) -> List[str]:
        """
        Delete up to batch_size expired pastes.

        A failed delete is skipped and left for the next sweep.

        Returns:
            Ids of the pastes that were removed
        """
        removed: List[str] = []
        for paste_id in self._get_expired_pastes(batch_size):
            try:
                self.delete(paste_id)
            except Exception as e:
                logger.warning(
                    f"Failed to purge paste {paste_id}: {e}",
                    extra={"event": "purge_delete_failed", "backend": self.name, "paste_id": paste_id},
                )
                continue
            removed.append(paste_id)

        if removed:
            logger.info(
                f"Purged {len(removed)} expired pastes from {self.name}",
                extra={"event": "purge_complete", "backend": self.name, "removed": len(removed)},
            )
        return removed
