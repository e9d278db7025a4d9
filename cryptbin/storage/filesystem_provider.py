# cryptbin/storage/filesystem_provider.py
"""
Filesystem data store.

Layout under the data directory (kept stable for migrations between deployments):

    .htaccess                                   "Require all denied"
    f4/68/f468483c313401e8.php                  paste
    f4/68/f468483c313401e8.discussion/
        f468483c313401e8.<commentid>.<parentid>.php
    salt.php, purge_limiter.php, traffic_limiter.php

Every record file starts with a protection line, so a web server that
executes the data directory aborts with 403 instead of leaking ciphertext.
"""

import fcntl
import json
import logging
import os
import re
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from cryptbin.storage.base import (
    NAMESPACE_SALT,
    NAMESPACES,
    DataStore,
    is_valid_id,
    medium_errors,
)

logger = logging.getLogger(__name__)

# First line of every record file
PROTECTION_LINE = "<?php http_response_code(403); /*"

# Content of the .htaccess file written to the data directory
HTACCESS_LINE = "Require all denied"

# Two directory levels, then a 16 hex char id with or without the .php suffix
PASTE_FILE_PATTERN = "[a-f0-9][a-f0-9]/[a-f0-9][a-f0-9]/" + "[a-f0-9]" * 16 + "*"

# Salt files written by older deployments: <?php # |<salt>|
LEGACY_SALT_PATTERN = re.compile(r"^<\?php # \|([^|]+)\|\s*$")


class FilesystemStore(DataStore):
    """
    Filesystem data store.

    Pastes are spread over two levels of two-character directories to bound
    the number of entries per directory. Creation relies on O_EXCL, so two
    processes racing for the same id get exactly one success.

    Configuration:
    - FILESYSTEM_DATA_DIR: Base directory (default: ./data)
    """

    def __init__(self, base_path: str | None = None):
        """
        Initialize filesystem storage.

        Args:
            base_path: Data directory (or FILESYSTEM_DATA_DIR env)
        """
        self._base_path = Path(base_path or os.getenv("FILESYSTEM_DATA_DIR", "./data"))
        self._base_path.mkdir(mode=0o700, parents=True, exist_ok=True)

        logger.info(f"Filesystem storage initialized: {self._base_path}")

    @property
    def name(self) -> str:
        return "filesystem"

    @property
    def base_path(self) -> Path:
        return self._base_path

    # -------------------------------------------------------------------------
    # Paths
    # -------------------------------------------------------------------------

    def _get_path(self, *parts: str) -> Path:
        """Get filesystem path below the data directory, with path traversal protection."""
        resolved = self._base_path.joinpath(*parts).resolve()
        if not resolved.is_relative_to(self._base_path.resolve()):
            raise ValueError("Path traversal detected")
        return resolved

    def _paste_dir(self, paste_id: str) -> Path:
        """e.g. 'e3570978f9e4aa90' -> <root>/e3/57/"""
        if not is_valid_id(paste_id):
            raise ValueError(f"Invalid paste id: {paste_id!r}")
        return self._get_path(paste_id[:2], paste_id[2:4])

    def _paste_path(self, paste_id: str) -> Path:
        return self._paste_dir(paste_id) / f"{paste_id}.php"

    def _discussion_dir(self, paste_id: str) -> Path:
        """e.g. 'e3570978f9e4aa90' -> <root>/e3/57/e3570978f9e4aa90.discussion/"""
        return self._paste_dir(paste_id) / f"{paste_id}.discussion"

    def _comment_path(self, paste_id: str, parent_id: str, comment_id: str) -> Path:
        if not is_valid_id(parent_id) or not is_valid_id(comment_id):
            raise ValueError("Invalid comment id")
        return self._discussion_dir(paste_id) / f"{paste_id}.{comment_id}.{parent_id}.php"

    # -------------------------------------------------------------------------
    # Low level file access
    # -------------------------------------------------------------------------

    def _ensure_root(self) -> None:
        """Create the data directory and its .htaccess if missing."""
        self._base_path.mkdir(mode=0o700, parents=True, exist_ok=True)
        htaccess = self._base_path / ".htaccess"
        if not htaccess.exists():
            htaccess.write_text(HTACCESS_LINE + "\n")

    def _store(self, path: Path, record: Dict[str, Any]) -> bool:
        """Write a record to a new file. False if the file already exists."""
        try:
            payload = PROTECTION_LINE + "\n" + json.dumps(record)
        except (TypeError, ValueError) as e:
            logger.warning(f"Refusing to store unserializable record {path.name}: {e}")
            return False

        self._ensure_root()
        path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        try:
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o640)
        except FileExistsError:
            return False

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
        except OSError:
            # never leave a half-written record behind
            path.unlink(missing_ok=True)
            raise
        return True

    def _get(self, path: Path) -> Optional[Dict[str, Any]]:
        """Load a record file, stripping the protection line."""
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

        if text.startswith(PROTECTION_LINE):
            text = text[len(PROTECTION_LINE) + 1:]

        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            logger.warning(f"Unreadable record {path.name}: {e}")
            return None

    def _prepend_rename(self, src: Path, dest: Path) -> None:
        """Convert a legacy file to dest, prepending the protection line."""
        # don't overwrite an already converted file
        if not dest.exists():
            content = src.read_text(encoding="utf-8")
            try:
                fd = os.open(dest, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o640)
            except FileExistsError:
                pass
            else:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(PROTECTION_LINE + "\n" + content)
        src.unlink(missing_ok=True)

    # -------------------------------------------------------------------------
    # Pastes
    # -------------------------------------------------------------------------

    def create(self, paste_id: str, paste: Dict[str, Any]) -> bool:
        """Create a paste file exclusively."""
        path = self._paste_path(paste_id)
        with medium_errors(self.name, "create", paste_id, (OSError,)):
            if self.exists(paste_id):
                return False
            return self._store(path, paste)

    def _read(self, paste_id: str) -> Optional[Dict[str, Any]]:
        with medium_errors(self.name, "read", paste_id, (OSError,)):
            if not self.exists(paste_id):
                return None
            return self._get(self._paste_path(paste_id))

    def delete(self, paste_id: str) -> None:
        """Delete a paste and its discussion directory."""
        paste_dir = self._paste_dir(paste_id)
        with medium_errors(self.name, "delete", paste_id, (OSError,)):
            if not paste_dir.is_dir():
                return

            (paste_dir / f"{paste_id}.php").unlink(missing_ok=True)
            (paste_dir / paste_id).unlink(missing_ok=True)

            discussion_dir = self._discussion_dir(paste_id)
            if discussion_dir.is_dir():
                for entry in discussion_dir.iterdir():
                    if entry.is_file():
                        entry.unlink(missing_ok=True)
                discussion_dir.rmdir()

    def exists(self, paste_id: str) -> bool:
        """
        Check if a paste exists.

        Legacy files without protection line (and their comments) are
        converted on the first call; converted files are never touched again.
        """
        paste_dir = self._paste_dir(paste_id)
        legacy_path = paste_dir / paste_id
        paste_path = paste_dir / f"{paste_id}.php"

        with medium_errors(self.name, "exists", paste_id, (OSError,)):
            if legacy_path.is_file():
                self._prepend_rename(legacy_path, paste_path)

                discussion_dir = self._discussion_dir(paste_id)
                if discussion_dir.is_dir():
                    for entry in discussion_dir.iterdir():
                        if entry.is_file() and not entry.name.endswith(".php") and len(entry.name) >= 16:
                            self._prepend_rename(entry, entry.with_name(entry.name + ".php"))

            return paste_path.is_file()

    # -------------------------------------------------------------------------
    # Comments
    # -------------------------------------------------------------------------

    def create_comment(
        self,
        paste_id: str,
        parent_id: str,
        comment_id: str,
        comment: Dict[str, Any],
    ) -> bool:
        path = self._comment_path(paste_id, parent_id, comment_id)
        with medium_errors(self.name, "create_comment", f"{paste_id}/{comment_id}", (OSError,)):
            return self._store(path, comment)

    def _load_comments(self, paste_id: str) -> Iterable[Dict[str, Any]]:
        discussion_dir = self._discussion_dir(paste_id)
        comments = []
        with medium_errors(self.name, "read_comments", paste_id, (OSError,)):
            if not discussion_dir.is_dir():
                return comments

            for entry in discussion_dir.iterdir():
                # Filename is pasteid.commentid.parentid.php, parentid may be the pasteid
                items = entry.name.split(".")
                if not entry.is_file() or len(items) < 3:
                    continue
                comment = self._get(entry)
                if comment is None:
                    continue
                comment["id"] = items[1]
                comment["parentid"] = items[2]
                comments.append(comment)

        return comments

    def exists_comment(self, paste_id: str, parent_id: str, comment_id: str) -> bool:
        with medium_errors(self.name, "exists_comment", f"{paste_id}/{comment_id}", (OSError,)):
            return self._comment_path(paste_id, parent_id, comment_id).is_file()

    # -------------------------------------------------------------------------
    # Config values
    # -------------------------------------------------------------------------

    def _config_path(self, namespace: str) -> Path:
        return self._base_path / f"{namespace}.php"

    def _read_values(self, namespace: str) -> Dict[str, str]:
        path = self._config_path(namespace)
        if not path.is_file():
            return {}

        text = path.read_text(encoding="utf-8")
        if namespace == NAMESPACE_SALT:
            legacy = LEGACY_SALT_PATTERN.match(text)
            if legacy:
                return {"": legacy.group(1)}

        if text.startswith(PROTECTION_LINE):
            text = text[len(PROTECTION_LINE) + 1:]
        try:
            values = json.loads(text)
        except json.JSONDecodeError as e:
            logger.warning(f"Unreadable config file {path.name}: {e}")
            return {}
        return values if isinstance(values, dict) else {}

    def _write_values(self, namespace: str, values: Dict[str, str]) -> None:
        """Replace a config file atomically (temp file + rename)."""
        self._ensure_root()
        fd, tmp_name = tempfile.mkstemp(dir=self._base_path, prefix=f".{namespace}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(PROTECTION_LINE + "\n" + json.dumps(values))
            os.chmod(tmp_name, 0o640)
            os.replace(tmp_name, self._config_path(namespace))
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    @contextmanager
    def _locked(self, namespace: str):
        """Hold an exclusive lock on a namespace for a read-modify-write of its config file."""
        self._ensure_root()
        with open(self._base_path / f".{namespace}.lock", "a") as lock_file:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def set_value(self, value: str, namespace: str, key: str = "") -> bool:
        if namespace not in NAMESPACES:
            return False

        with medium_errors(self.name, "set_value", namespace, (OSError,)):
            with self._locked(namespace):
                values = self._read_values(namespace)
                values[key] = str(value)
                self._write_values(namespace, values)
        return True

    def get_value(self, namespace: str, key: str = "") -> str:
        if namespace not in NAMESPACES:
            return ""

        with medium_errors(self.name, "get_value", namespace, (OSError,)):
            return str(self._read_values(namespace).get(key, ""))

    def purge_values(self, namespace: str, cutoff: int) -> None:
        if namespace not in NAMESPACES or namespace == NAMESPACE_SALT:
            return

        with medium_errors(self.name, "purge_values", namespace, (OSError,)):
            with self._locked(namespace):
                values = self._read_values(namespace)
                kept = {k: v for k, v in values.items() if not (str(v).isdigit() and int(v) < cutoff)}
                if len(kept) != len(values):
                    self._write_values(namespace, kept)

    # -------------------------------------------------------------------------
    # Purging
    # -------------------------------------------------------------------------

    def get_all_paste_ids(self) -> List[str]:
        """Glob both protected (.php) and legacy paste files."""
        paste_ids = []
        seen = set()
        with medium_errors(self.name, "list", "", (OSError,)):
            for path in self._base_path.glob(PASTE_FILE_PATTERN):
                if not path.is_file():
                    continue
                paste_id = path.name.removesuffix(".php")
                if is_valid_id(paste_id) and paste_id not in seen:
                    seen.add(paste_id)
                    paste_ids.append(paste_id)
        return paste_ids
