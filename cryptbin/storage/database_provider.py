# cryptbin/storage/database_provider.py
"""
Relational data store using SQLAlchemy Core.

Tables (names carry the configured prefix):
- paste:   one row per paste, expiration kept in its own indexed column
- comment: one row per comment, unique on (pasteid, parentid, dataid)
- config:  id -> value, ids are NAMESPACE or NAMESPACE/key

Create-once: an existing row is looked up in the insert's transaction and
the primary keys (or, on inherited tables, unique indexes) turn a racing
duplicate insert into IntegrityError. Both are reported as False.

v1 pastes keep postdate, opendiscussion and burnafterreading in columns of
their own, as older releases wrote them.
"""

import json
import logging
import os
import time
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import (
    Column,
    Index,
    Integer,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
    Text,
    and_,
    delete,
    inspect,
    insert,
    select,
    text,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from cryptbin.database import create_db_engine
from cryptbin.storage.base import (
    NAMESPACE_SALT,
    NAMESPACES,
    DataStore,
    medium_errors,
)

logger = logging.getLogger(__name__)

# Bumped whenever the table layout changes
SCHEMA_VERSION = "3"

# Paste columns an older table may lack, with the type they are added with
_UPGRADE_COLUMNS = {
    "postdate": "INT",
    "opendiscussion": "INT",
    "burnafterreading": "INT",
    "meta": "TEXT",
    "attachment": "TEXT",
    "attachmentname": "TEXT",
}

# v1 paste options kept in their own columns
_V1_FLAGS = ("opendiscussion", "burnafterreading")


def sanitize_clob(value: Any) -> Any:
    """
    Return LOB values as plain strings.

    Some drivers hand out stream handles for BLOB/CLOB columns; those are
    read to the end. Bytes are decoded, everything else passes through.
    """
    if hasattr(value, "read"):
        value = value.read()
    if isinstance(value, memoryview):
        value = value.tobytes()
    if isinstance(value, bytes):
        value = value.decode("utf-8")
    return value


def _decode_record(data: Any) -> Dict[str, Any]:
    """Decode the data column: a JSON envelope (v2) or a bare v1 ciphertext."""
    data = sanitize_clob(data)
    try:
        record = json.loads(data)
    except (TypeError, ValueError):
        return {"data": data}
    if isinstance(record, dict) and "adata" in record:
        return record
    return {"data": data}


class DatabaseStore(DataStore):
    """
    SQL data store (SQLite, PostgreSQL, MySQL, ... via SQLAlchemy).

    Configuration:
    - DATABASE_URL: SQLAlchemy URL
    - DATABASE_TABLE_PREFIX: prefix for table names
    - LEGACY_DATA_DIR: filesystem data dir whose salt is imported once
    """

    def __init__(
        self,
        database_url: str | None = None,
        table_prefix: str | None = None,
        legacy_data_dir: str | None = None,
        engine: Engine | None = None,
    ):
        self._engine = engine or create_db_engine(database_url)
        self._prefix = table_prefix if table_prefix is not None else os.getenv("DATABASE_TABLE_PREFIX", "")
        self._legacy_data_dir = legacy_data_dir or os.getenv("LEGACY_DATA_DIR")

        self._metadata = MetaData()
        self._paste = Table(
            f"{self._prefix}paste",
            self._metadata,
            Column("dataid", String(16), primary_key=True),
            Column("data", Text),
            Column("postdate", Integer),
            Column("expiredate", Integer, nullable=False, default=0),
            Column("opendiscussion", Integer),
            Column("burnafterreading", Integer),
            Column("meta", Text),
            Column("attachment", Text),
            Column("attachmentname", Text),
            Index(f"{self._prefix}paste_expiredate", "expiredate"),
        )
        self._comment = Table(
            f"{self._prefix}comment",
            self._metadata,
            Column("dataid", String(16), nullable=False),
            Column("pasteid", String(16), nullable=False),
            Column("parentid", String(16), nullable=False),
            Column("data", Text),
            Column("nickname", Text),
            Column("vizhash", Text),
            Column("postdate", Integer),
            PrimaryKeyConstraint("pasteid", "parentid", "dataid"),
            Index(f"{self._prefix}comment_parent", "pasteid"),
        )
        self._config = Table(
            f"{self._prefix}config",
            self._metadata,
            Column("id", String(255), primary_key=True),
            Column("value", Text),
        )

        with medium_errors(self.name, "init", self._prefix or "-", (SQLAlchemyError,)):
            self._ensure_schema()

        logger.info(f"Database storage initialized: {self._engine.url.render_as_string(hide_password=True)}")

    @property
    def name(self) -> str:
        return "database"

    @property
    def engine(self) -> Engine:
        return self._engine

    # -------------------------------------------------------------------------
    # Schema
    # -------------------------------------------------------------------------

    def _ensure_schema(self) -> None:
        """
        Create missing tables and upgrade tables from older releases.

        Older tables may lack columns and were created without primary keys;
        they get the missing columns plus the unique indexes the create-once
        checks rely on.
        """
        inspector = inspect(self._engine)
        existing_tables = set(inspector.get_table_names())
        self._metadata.create_all(self._engine)

        if self._paste.name in existing_tables:
            columns = {column["name"] for column in inspector.get_columns(self._paste.name)}
            missing = [name for name in _UPGRADE_COLUMNS if name not in columns]
            if missing:
                table_name = self._engine.dialect.identifier_preparer.quote(self._paste.name)
                with self._engine.begin() as conn:
                    for name in missing:
                        conn.execute(text(f"ALTER TABLE {table_name} ADD COLUMN {name} {_UPGRADE_COLUMNS[name]}"))
                logger.info(f"Upgraded table {self._paste.name}: added {', '.join(missing)}")
            self._ensure_unique_index(Index(f"{self._prefix}paste_id_unique", self._paste.c.dataid, unique=True))

        if self._comment.name in existing_tables:
            self._ensure_unique_index(
                Index(
                    f"{self._prefix}comment_id_unique",
                    self._comment.c.pasteid,
                    self._comment.c.parentid,
                    self._comment.c.dataid,
                    unique=True,
                )
            )

        if self._read_config("VERSION") != SCHEMA_VERSION:
            self._write_config("VERSION", SCHEMA_VERSION)

    def _ensure_unique_index(self, index: Index) -> None:
        """Add a unique index to an inherited table; duplicate rows leave it out."""
        try:
            with self._engine.begin() as conn:
                index.create(conn, checkfirst=True)
        except IntegrityError as e:
            # create() still checks for an existing row first
            logger.warning(f"Could not add unique index {index.name}, table holds duplicates: {e}")

    def _read_config(self, config_id: str) -> Optional[str]:
        with self._engine.connect() as conn:
            row = conn.execute(select(self._config.c.value).where(self._config.c.id == config_id)).first()
        return None if row is None else sanitize_clob(row.value)

    def _write_config(self, config_id: str, value: str) -> None:
        """Upsert a config row; a concurrent insert falls back to update."""
        statement = update(self._config).where(self._config.c.id == config_id).values(value=value)
        with self._engine.begin() as conn:
            if conn.execute(statement).rowcount:
                return
        try:
            with self._engine.begin() as conn:
                conn.execute(insert(self._config).values(id=config_id, value=value))
        except IntegrityError:
            with self._engine.begin() as conn:
                conn.execute(statement)

    # -------------------------------------------------------------------------
    # Pastes
    # -------------------------------------------------------------------------

    def create(self, paste_id: str, paste: Dict[str, Any]) -> bool:
        meta = dict(paste.get("meta", {}))
        expire_date = int(meta.pop("expire_date", 0) or 0)
        data = {key: value for key, value in paste.items() if key != "meta"}

        # legacy attachments live in their own columns
        attachment = data.pop("attachment", meta.pop("attachment", None))
        attachment_name = data.pop("attachmentname", meta.pop("attachmentname", None))

        values = {
            "dataid": paste_id,
            "expiredate": expire_date,
            "meta": json.dumps(meta),
            "attachment": attachment,
            "attachmentname": attachment_name,
        }
        if "adata" in data:
            values["data"] = json.dumps(data)
        else:
            values["data"] = data.get("data", "")
            values["postdate"] = int(meta.get("postdate", 0) or 0)
            for flag in _V1_FLAGS:
                values[flag] = int(bool(meta.get(flag)))

        with medium_errors(self.name, "create", paste_id, (SQLAlchemyError,)):
            try:
                with self._engine.begin() as conn:
                    # tables inherited from older releases may have no primary key
                    taken = conn.execute(select(self._paste.c.dataid).where(self._paste.c.dataid == paste_id)).first()
                    if taken is not None:
                        return False
                    conn.execute(insert(self._paste).values(**values))
            except IntegrityError:
                return False
        return True

    def _read(self, paste_id: str) -> Optional[Dict[str, Any]]:
        with medium_errors(self.name, "read", paste_id, (SQLAlchemyError,)):
            with self._engine.connect() as conn:
                row = conn.execute(select(self._paste).where(self._paste.c.dataid == paste_id)).first()
        if row is None:
            return None

        paste = _decode_record(row.data)
        try:
            meta = json.loads(sanitize_clob(row.meta))
        except (TypeError, ValueError):
            meta = {}
        if not isinstance(meta, dict):
            meta = {}
        if row.expiredate:
            meta["expire_date"] = int(row.expiredate)
        if "adata" not in paste:
            if row.postdate and "postdate" not in meta:
                meta["postdate"] = int(row.postdate)
            for flag in _V1_FLAGS:
                if getattr(row, flag) and flag not in meta:
                    meta[flag] = True
        paste["meta"] = meta

        attachment = sanitize_clob(row.attachment)
        if attachment:
            paste["attachment"] = attachment
            attachment_name = sanitize_clob(row.attachmentname)
            if attachment_name:
                paste["attachmentname"] = attachment_name
        return paste

    def delete(self, paste_id: str) -> None:
        with medium_errors(self.name, "delete", paste_id, (SQLAlchemyError,)):
            with self._engine.begin() as conn:
                conn.execute(delete(self._comment).where(self._comment.c.pasteid == paste_id))
                conn.execute(delete(self._paste).where(self._paste.c.dataid == paste_id))

    def exists(self, paste_id: str) -> bool:
        with medium_errors(self.name, "exists", paste_id, (SQLAlchemyError,)):
            with self._engine.connect() as conn:
                row = conn.execute(select(self._paste.c.dataid).where(self._paste.c.dataid == paste_id)).first()
        return row is not None

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
        meta = dict(comment.get("meta", {}))
        postdate = int(meta.get("created", meta.get("postdate", 0)) or 0)
        data = {key: value for key, value in comment.items() if key not in ("meta", "id", "parentid")}
        payload = json.dumps(data) if "adata" in data else data.get("data", "")

        with medium_errors(self.name, "create_comment", f"{paste_id}/{comment_id}", (SQLAlchemyError,)):
            try:
                with self._engine.begin() as conn:
                    if conn.execute(self._comment_lookup(paste_id, parent_id, comment_id)).first() is not None:
                        return False
                    conn.execute(
                        insert(self._comment).values(
                            dataid=comment_id,
                            pasteid=paste_id,
                            parentid=parent_id,
                            data=payload,
                            nickname=meta.get("nickname"),
                            vizhash=meta.get("vizhash"),
                            postdate=postdate,
                        )
                    )
            except IntegrityError:
                return False
        return True

    def _load_comments(self, paste_id: str) -> Iterable[Dict[str, Any]]:
        with medium_errors(self.name, "read_comments", paste_id, (SQLAlchemyError,)):
            with self._engine.connect() as conn:
                rows = conn.execute(select(self._comment).where(self._comment.c.pasteid == paste_id)).all()

        comments = []
        for row in rows:
            comment = _decode_record(row.data)
            if "adata" in comment:
                meta = {"created": int(row.postdate or 0)}
            else:
                meta = {"postdate": int(row.postdate or 0)}
                for field in ("nickname", "vizhash"):
                    value = sanitize_clob(getattr(row, field))
                    if value:
                        meta[field] = value
            comment["meta"] = meta
            comment["id"] = row.dataid
            comment["parentid"] = row.parentid
            comments.append(comment)
        return comments

    def _comment_lookup(self, paste_id: str, parent_id: str, comment_id: str):
        return select(self._comment.c.dataid).where(
            and_(
                self._comment.c.pasteid == paste_id,
                self._comment.c.parentid == parent_id,
                self._comment.c.dataid == comment_id,
            )
        )

    def exists_comment(self, paste_id: str, parent_id: str, comment_id: str) -> bool:
        statement = self._comment_lookup(paste_id, parent_id, comment_id)
        with medium_errors(self.name, "exists_comment", f"{paste_id}/{comment_id}", (SQLAlchemyError,)):
            with self._engine.connect() as conn:
                return conn.execute(statement).first() is not None

    # -------------------------------------------------------------------------
    # Config values
    # -------------------------------------------------------------------------

    @staticmethod
    def _config_id(namespace: str, key: str = "") -> str:
        if key:
            return f"{namespace.upper()}/{key}"
        return namespace.upper()

    def set_value(self, value: str, namespace: str, key: str = "") -> bool:
        if namespace not in NAMESPACES:
            return False

        with medium_errors(self.name, "set_value", namespace, (SQLAlchemyError,)):
            self._write_config(self._config_id(namespace, key), str(value))
        return True

    def get_value(self, namespace: str, key: str = "") -> str:
        if namespace not in NAMESPACES:
            return ""

        with medium_errors(self.name, "get_value", namespace, (SQLAlchemyError,)):
            value = self._read_config(self._config_id(namespace, key))

        if value is None and namespace == NAMESPACE_SALT and not key:
            value = self._import_legacy_salt()
        return value or ""

    def _import_legacy_salt(self) -> Optional[str]:
        """Move the salt of a former filesystem deployment into the config table."""
        if not self._legacy_data_dir:
            return None
        legacy_dir = Path(self._legacy_data_dir)
        if not (legacy_dir / f"{NAMESPACE_SALT}.php").is_file():
            return None

        from cryptbin.storage.filesystem_provider import FilesystemStore

        legacy_store = FilesystemStore(base_path=str(legacy_dir))
        salt = legacy_store.get_value(NAMESPACE_SALT)
        if not salt:
            return None

        self.set_value(salt, NAMESPACE_SALT)
        (legacy_dir / f"{NAMESPACE_SALT}.php").unlink(missing_ok=True)
        logger.info("Imported server salt from legacy filesystem store")
        return salt

    def purge_values(self, namespace: str, cutoff: int) -> None:
        if namespace not in NAMESPACES or namespace == NAMESPACE_SALT:
            return

        prefix = self._config_id(namespace)
        statement = select(self._config.c.id, self._config.c.value).where(
            (self._config.c.id == prefix) | self._config.c.id.like(f"{prefix}/%")
        )
        with medium_errors(self.name, "purge_values", namespace, (SQLAlchemyError,)):
            with self._engine.begin() as conn:
                stale = [
                    row.id
                    for row in conn.execute(statement)
                    if str(sanitize_clob(row.value)).isdigit() and int(sanitize_clob(row.value)) < cutoff
                ]
                if stale:
                    conn.execute(delete(self._config).where(self._config.c.id.in_(stale)))

    # -------------------------------------------------------------------------
    # Purging
    # -------------------------------------------------------------------------

    def get_all_paste_ids(self) -> List[str]:
        with medium_errors(self.name, "list", "", (SQLAlchemyError,)):
            with self._engine.connect() as conn:
                return [row.dataid for row in conn.execute(select(self._paste.c.dataid))]

    def _get_expired_pastes(self, batch_size: int) -> List[str]:
        """Expired ids straight from the expiredate index, no full scan."""
        now = int(time.time())
        statement = (
            select(self._paste.c.dataid)
            .where(and_(self._paste.c.expiredate > 0, self._paste.c.expiredate < now))
            .limit(batch_size)
        )
        with medium_errors(self.name, "list_expired", "", (SQLAlchemyError,)):
            with self._engine.connect() as conn:
                return [row.dataid for row in conn.execute(statement)]
