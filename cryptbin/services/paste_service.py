# cryptbin/services/paste_service.py
"""
Paste service: the inbound operations of the paste API.

Flow for writes:
    traffic limiter -> purge sweep (pastes only) -> size limit
    -> format validator -> server-set meta -> store.create

The service never looks inside the ciphertext. Errors are raised as
CryptbinError subclasses and rendered by the HTTP layer.
"""

import hashlib
import hmac
import logging
import secrets
import time
from typing import Any, Dict, Optional

from cryptbin.config import Settings, get_settings
from cryptbin.exceptions import (
    ConflictError,
    DeletionTokenError,
    NotFoundError,
    ValidationError,
)
from cryptbin.format_validator import FormatValidator
from cryptbin.persistence.purge_limiter import PurgeLimiter
from cryptbin.persistence.server_salt import ServerSalt
from cryptbin.persistence.traffic_limiter import TrafficLimiter
from cryptbin.services.purge_service import run_purge
from cryptbin.storage.base import DataStore, is_valid_id

logger = logging.getLogger(__name__)

# Random bytes per paste/comment id (16 hex chars)
ID_BYTES = 8

# Random bytes of the per-paste salt keying the deletion token
PASTE_SALT_BYTES = 32


def generate_id() -> str:
    return secrets.token_hex(ID_BYTES)


def _is_discussion_open(paste: Dict[str, Any]) -> bool:
    adata = paste.get("adata")
    if isinstance(adata, list) and len(adata) > 2:
        return adata[2] == 1
    # v1 pastes keep their flags in meta
    return bool(paste.get("meta", {}).get("opendiscussion"))


def format_size(size: int) -> str:
    """Human readable byte count, e.g. 10485760 -> '10 MiB'."""
    value = float(size)
    for unit in ("B", "KiB", "MiB", "GiB"):
        if value < 1024 or unit == "GiB":
            return f"{value:g} {unit}"
        value /= 1024
    return f"{size} B"


class PasteService:
    """
    Orchestrates paste and comment operations for one data store.

    All collaborators can be injected; defaults are built from settings.
    """

    def __init__(
        self,
        store: DataStore,
        settings: Optional[Settings] = None,
        validator: Optional[FormatValidator] = None,
        server_salt: Optional[ServerSalt] = None,
        traffic_limiter: Optional[TrafficLimiter] = None,
        purge_limiter: Optional[PurgeLimiter] = None,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.validator = validator or FormatValidator(
            min_iterations=self.settings.FORMAT_MIN_ITERATIONS,
            max_iv_bytes=self.settings.FORMAT_MAX_IV_BYTES,
            max_salt_bytes=self.settings.FORMAT_MAX_SALT_BYTES,
            min_entropy_ratio=self.settings.FORMAT_MIN_ENTROPY_RATIO,
        )
        self.server_salt = server_salt or ServerSalt(store)
        self.traffic_limiter = traffic_limiter or TrafficLimiter(
            store,
            self.server_salt,
            limit_seconds=self.settings.TRAFFIC_LIMIT_SECONDS,
            exempted=self.settings.TRAFFIC_EXEMPTED,
            creators=self.settings.TRAFFIC_CREATORS,
        )
        self.purge_limiter = purge_limiter or PurgeLimiter(store, self.settings.PURGE_LIMIT_SECONDS)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _check_size(self, post: Dict[str, Any]) -> None:
        ct = post.get("ct") if isinstance(post, dict) else None
        if isinstance(ct, str) and len(ct) > self.settings.SIZE_LIMIT:
            raise ValidationError(
                f"Paste is limited to {format_size(self.settings.SIZE_LIMIT)} of encrypted data."
            )

    def _validate(self, post: Any, is_comment: bool = False) -> None:
        reason = self.validator.validate(post, is_comment=is_comment)
        if reason:
            logger.info(f"Rejected {'comment' if is_comment else 'paste'}: {reason}")
            raise ValidationError()

    def _expire_seconds(self, label: Any) -> int:
        options = self.settings.EXPIRE_OPTIONS
        if isinstance(label, str) and label in options:
            return options[label]
        return options.get(self.settings.EXPIRE_DEFAULT, 0)

    def delete_token(self, paste_id: str, paste: Dict[str, Any]) -> str:
        """HMAC-SHA256 of the paste id, keyed by the paste salt (server salt for legacy pastes)."""
        key = paste.get("meta", {}).get("salt") or self.server_salt.get()
        return hmac.new(key.encode("utf-8"), paste_id.encode("utf-8"), hashlib.sha256).hexdigest()

    def _load(self, paste_id: str) -> Dict[str, Any]:
        """Read a live paste; an expired one is removed on the way."""
        if not is_valid_id(paste_id):
            raise ValidationError()

        paste = self.store.read(paste_id)
        if paste is None:
            if self.store.exists(paste_id):
                # expired but not yet purged
                self.store.delete(paste_id)
            raise NotFoundError()
        return paste

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def create_paste(self, post: Any, client_address: str) -> Dict[str, str]:
        """
        Store a new paste.

        Returns:
            {"id": ..., "deletetoken": ...}
        """
        self.traffic_limiter.can_pass(client_address)
        run_purge(self.store, self.purge_limiter, self.settings.PURGE_BATCH_SIZE)

        self._check_size(post)
        self._validate(post)

        open_discussion, burn_after_reading = post["adata"][2], post["adata"][3]
        if open_discussion == 1 and (burn_after_reading == 1 or not self.settings.DISCUSSION_ENABLED):
            raise ValidationError()

        now = int(time.time())
        meta: Dict[str, Any] = {"created": now, "salt": secrets.token_hex(PASTE_SALT_BYTES)}
        expire_seconds = self._expire_seconds(post["meta"]["expire"])
        if expire_seconds:
            meta["expire_date"] = now + expire_seconds

        paste = {"v": post["v"], "adata": post["adata"], "ct": post["ct"], "meta": meta}

        paste_id = generate_id()
        if self.store.exists(paste_id) or not self.store.create(paste_id, paste):
            raise ConflictError()

        logger.info(
            f"Created paste {paste_id}",
            extra={"event": "paste_created", "backend": self.store.name, "paste_id": paste_id},
        )
        return {"id": paste_id, "deletetoken": self.delete_token(paste_id, paste)}

    def create_comment(self, paste_id: str, post: Any, client_address: str) -> Dict[str, str]:
        """
        Store a comment on a paste with open discussion.

        Returns:
            {"id": ...}
        """
        self.traffic_limiter.can_pass(client_address)

        self._check_size(post)
        self._validate(post, is_comment=True)

        if post["pasteid"] != paste_id or not is_valid_id(post["parentid"]):
            raise ValidationError()

        try:
            paste = self._load(paste_id)
        except NotFoundError:
            raise ValidationError() from None

        if not _is_discussion_open(paste) or not self.settings.DISCUSSION_ENABLED:
            raise ValidationError()

        parent_id = post["parentid"]
        if parent_id != paste_id and not any(c["id"] == parent_id for c in self.store.read_comments(paste_id)):
            raise ValidationError()

        comment = {
            "v": post["v"],
            "adata": post["adata"],
            "ct": post["ct"],
            "meta": {"created": int(time.time())},
        }

        comment_id = generate_id()
        if self.store.exists_comment(paste_id, parent_id, comment_id) or not self.store.create_comment(
            paste_id, parent_id, comment_id, comment
        ):
            raise ConflictError()

        logger.info(
            f"Created comment {comment_id} on paste {paste_id}",
            extra={"event": "comment_created", "backend": self.store.name, "paste_id": paste_id},
        )
        return {"id": comment_id}

    def read_paste(self, paste_id: str) -> Dict[str, Any]:
        """
        Read a paste with its comments.

        expire_date is returned as time_to_live (seconds left); created
        timestamps and the paste salt are never returned. Legacy v1 pastes
        keep their postdate, and their syntaxcoloring flag is reported as the
        syntaxhighlighting formatter. Burn-after-reading pastes are deleted
        once read.
        """
        paste = self._load(paste_id)
        meta = dict(paste.get("meta", {}))

        if "expire_date" in meta:
            meta["time_to_live"] = int(meta.pop("expire_date")) - int(time.time())
        for key in ("created", "salt"):
            meta.pop(key, None)
        if meta.pop("syntaxcoloring", False):
            meta["formatter"] = "syntaxhighlighting"

        response = {key: value for key, value in paste.items() if key != "meta"}
        response["id"] = paste_id
        response["meta"] = meta
        response["comments"] = self.store.read_comments(paste_id)
        response["comment_count"] = len(response["comments"])
        response["comment_offset"] = 0

        adata = paste.get("adata")
        burn = (isinstance(adata, list) and len(adata) > 3 and adata[3] == 1) or bool(
            paste.get("meta", {}).get("burnafterreading")
        )
        if burn:
            self.store.delete(paste_id)
            logger.info(
                f"Burned paste {paste_id} after reading",
                extra={"event": "paste_burned", "backend": self.store.name, "paste_id": paste_id},
            )
        return response

    def delete_paste(self, paste_id: str, token: str) -> None:
        """Delete a paste if the token matches its deletion token."""
        paste = self._load(paste_id)
        expected = self.delete_token(paste_id, paste).encode("utf-8")
        if not hmac.compare_digest(expected, str(token or "").encode("utf-8")):
            raise DeletionTokenError()

        self.store.delete(paste_id)
        logger.info(
            f"Deleted paste {paste_id}",
            extra={"event": "paste_deleted", "backend": self.store.name, "paste_id": paste_id},
        )
