# cryptbin/storage/s3_provider.py
"""
S3 data store implementation using boto3.

Supports:
- AWS S3
- S3-compatible services (MinIO, DigitalOcean Spaces, etc.)

Object layout (kept stable for migrations between deployments):
- <prefix>/<pasteid>                                  paste
- <prefix>/<pasteid>/discussion/<parentid>/<commentid> comment
- <prefix>/config/<namespace>[/<key>]                 config value

Paste meta (except salt and legacy attachments) is mirrored into the object
metadata, so expiry checks only need HEAD requests.
"""

import json
import logging
import os
from typing import Any, Dict, Iterable, List, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from cryptbin.storage.base import (
    NAMESPACE_SALT,
    NAMESPACES,
    DataStore,
    medium_errors,
)

logger = logging.getLogger(__name__)

# S3 error codes meaning "no such object"
_NOT_FOUND_CODES = ("404", "NoSuchKey", "NotFound")

# Meta fields that are never mirrored into object metadata
_UNMIRRORED_META = ("attachment", "attachmentname", "salt")

_MEDIUM_ERRORS = (ClientError, BotoCoreError)


def _is_not_found(error: ClientError) -> bool:
    return error.response.get("Error", {}).get("Code", "") in _NOT_FOUND_CODES


class S3Store(DataStore):
    """
    S3/S3-compatible data store.

    Object stores offer no exclusive create here, so create() checks for an
    existing object first. The remaining race window between check and put
    is accepted: ids are random 64-bit values.

    Configuration via environment:
    - S3_BUCKET: Bucket name (required)
    - S3_PREFIX: Key prefix for all objects
    - S3_ENDPOINT_URL: Custom endpoint for S3-compatible services
    - S3_REGION: AWS region (default: us-east-1)
    - AWS_ACCESS_KEY_ID: AWS credentials
    - AWS_SECRET_ACCESS_KEY: AWS credentials
    """

    def __init__(
        self,
        bucket: Optional[str] = None,
        prefix: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        region: Optional[str] = None,
        client: Any = None,
    ):
        """
        Initialize S3 store.

        Args:
            bucket: S3 bucket name (or S3_BUCKET env var)
            prefix: Key prefix (or S3_PREFIX env var)
            endpoint_url: Custom endpoint for S3-compatible services
            region: AWS region
            client: Preconfigured boto3 S3 client
        """
        self._bucket = bucket or os.getenv("S3_BUCKET")
        if not self._bucket:
            raise ValueError("S3 bucket required. Set S3_BUCKET env var or pass bucket.")

        self._prefix = (prefix if prefix is not None else os.getenv("S3_PREFIX", "")).strip("/")

        if client is None:
            config = Config(
                retries={"max_attempts": 3, "mode": "adaptive"},
                connect_timeout=5,
                read_timeout=30,
            )
            client = boto3.client(
                "s3",
                endpoint_url=endpoint_url or os.getenv("S3_ENDPOINT_URL"),
                region_name=region or os.getenv("S3_REGION", "us-east-1"),
                config=config,
            )
        self._client = client

        logger.info(f"S3 storage initialized: bucket={self._bucket} prefix={self._prefix or '-'}")

    @property
    def name(self) -> str:
        return "s3"

    @property
    def bucket(self) -> str:
        return self._bucket

    # -------------------------------------------------------------------------
    # Keys
    # -------------------------------------------------------------------------

    def _key_prefix(self) -> str:
        return f"{self._prefix}/" if self._prefix else ""

    def _get_key(self, paste_id: str) -> str:
        return f"{self._key_prefix()}{paste_id}"

    def _discussion_prefix(self, paste_id: str) -> str:
        return f"{self._get_key(paste_id)}/discussion/"

    def _comment_key(self, paste_id: str, parent_id: str, comment_id: str) -> str:
        return f"{self._discussion_prefix(paste_id)}{parent_id}/{comment_id}"

    def _config_key(self, namespace: str, key: str = "") -> str:
        config_key = f"{self._key_prefix()}config/{namespace}"
        if key:
            config_key += f"/{key}"
        return config_key

    # -------------------------------------------------------------------------
    # Object helpers
    # -------------------------------------------------------------------------

    def _list_all_objects(self, prefix: str) -> List[Dict[str, Any]]:
        """List every object under prefix, draining all continuation tokens."""
        objects = []
        paginator = self._client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self._bucket, Prefix=prefix):
            objects.extend(page.get("Contents", []))
        return objects

    def _object_exists(self, key: str) -> bool:
        try:
            self._client.head_object(Bucket=self._bucket, Key=key)
            return True
        except ClientError as e:
            if _is_not_found(e):
                return False
            raise

    def _head_metadata(self, key: str) -> Optional[Dict[str, str]]:
        try:
            response = self._client.head_object(Bucket=self._bucket, Key=key)
        except ClientError as e:
            if _is_not_found(e):
                return None
            raise
        return response.get("Metadata") or {}

    def _get_body(self, key: str) -> Optional[bytes]:
        try:
            response = self._client.get_object(Bucket=self._bucket, Key=key)
        except ClientError as e:
            if _is_not_found(e):
                return None
            raise
        return response["Body"].read()

    def _upload(self, key: str, payload: Dict[str, Any]) -> None:
        """
        Store a record as a JSON document.

        Its meta is replicated as object metadata, except attachment,
        attachmentname and salt.
        """
        metadata = {
            k: str(v)
            for k, v in payload.get("meta", {}).items()
            if k not in _UNMIRRORED_META
        }
        self._client.put_object(
            Bucket=self._bucket,
            Key=key,
            Body=json.dumps(payload).encode("utf-8"),
            ContentType="application/json",
            Metadata=metadata,
        )

    def _delete_object(self, key: str) -> None:
        try:
            self._client.delete_object(Bucket=self._bucket, Key=key)
        except ClientError as e:
            # already deleted by another instance
            if not _is_not_found(e):
                raise

    # -------------------------------------------------------------------------
    # Pastes
    # -------------------------------------------------------------------------

    def create(self, paste_id: str, paste: Dict[str, Any]) -> bool:
        key = self._get_key(paste_id)
        with medium_errors(self.name, "create", key, _MEDIUM_ERRORS):
            if self._object_exists(key):
                return False
            self._upload(key, paste)
        return True

    def _read(self, paste_id: str) -> Optional[Dict[str, Any]]:
        key = self._get_key(paste_id)
        with medium_errors(self.name, "read", key, _MEDIUM_ERRORS):
            body = self._get_body(key)
        if body is None:
            return None
        try:
            return json.loads(body)
        except ValueError as e:
            logger.warning(f"Unreadable S3 object {key}: {e}")
            return None

    def delete(self, paste_id: str) -> None:
        key = self._get_key(paste_id)
        with medium_errors(self.name, "delete", key, _MEDIUM_ERRORS):
            for entry in self._list_all_objects(self._discussion_prefix(paste_id)):
                self._delete_object(entry["Key"])
            self._delete_object(key)

    def exists(self, paste_id: str) -> bool:
        key = self._get_key(paste_id)
        with medium_errors(self.name, "exists", key, _MEDIUM_ERRORS):
            return self._object_exists(key)

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
        key = self._comment_key(paste_id, parent_id, comment_id)
        with medium_errors(self.name, "create_comment", key, _MEDIUM_ERRORS):
            if self._object_exists(key):
                return False
            self._upload(key, comment)
        return True

    def _load_comments(self, paste_id: str) -> Iterable[Dict[str, Any]]:
        prefix = self._discussion_prefix(paste_id)
        comments = []
        with medium_errors(self.name, "read_comments", prefix, _MEDIUM_ERRORS):
            for entry in self._list_all_objects(prefix):
                body = self._get_body(entry["Key"])
                if body is None:
                    continue
                comment = json.loads(body)
                # key is <prefix>/<pasteid>/discussion/<parentid>/<commentid>
                parent_id, comment_id = entry["Key"][len(prefix):].split("/", 1)
                comment["id"] = comment_id
                comment["parentid"] = parent_id
                comments.append(comment)
        return comments

    def exists_comment(self, paste_id: str, parent_id: str, comment_id: str) -> bool:
        key = self._comment_key(paste_id, parent_id, comment_id)
        with medium_errors(self.name, "exists_comment", key, _MEDIUM_ERRORS):
            return self._object_exists(key)

    # -------------------------------------------------------------------------
    # Config values
    # -------------------------------------------------------------------------

    def set_value(self, value: str, namespace: str, key: str = "") -> bool:
        """Values outside the salt namespace are mirrored into metadata for purge_values."""
        if namespace not in NAMESPACES:
            return False

        metadata = {"namespace": namespace}
        if namespace != NAMESPACE_SALT:
            metadata["value"] = str(value)

        object_key = self._config_key(namespace, key)
        with medium_errors(self.name, "set_value", object_key, _MEDIUM_ERRORS):
            self._client.put_object(
                Bucket=self._bucket,
                Key=object_key,
                Body=str(value).encode("utf-8"),
                ContentType="text/plain",
                Metadata=metadata,
            )
        return True

    def get_value(self, namespace: str, key: str = "") -> str:
        if namespace not in NAMESPACES:
            return ""

        object_key = self._config_key(namespace, key)
        with medium_errors(self.name, "get_value", object_key, _MEDIUM_ERRORS):
            body = self._get_body(object_key)
        return "" if body is None else body.decode("utf-8")

    def purge_values(self, namespace: str, cutoff: int) -> None:
        if namespace not in NAMESPACES or namespace == NAMESPACE_SALT:
            return

        path = self._config_key(namespace)
        with medium_errors(self.name, "purge_values", path, _MEDIUM_ERRORS):
            for entry in self._list_all_objects(path):
                name = entry["Key"]
                # skip namespaces that merely share the prefix (config/foo vs config/foobar)
                if len(name) > len(path) and name[len(path)] != "/":
                    continue
                metadata = self._head_metadata(name) or {}
                value = metadata.get("value", "")
                if value.isdigit() and int(value) < cutoff:
                    self._delete_object(name)

    # -------------------------------------------------------------------------
    # Purging
    # -------------------------------------------------------------------------

    def get_all_paste_ids(self) -> List[str]:
        """Top-level objects under the prefix are pastes; comments and config contain a slash."""
        prefix = self._key_prefix()
        paste_ids = []
        with medium_errors(self.name, "list", prefix, _MEDIUM_ERRORS):
            for entry in self._list_all_objects(prefix):
                candidate = entry["Key"][len(prefix):]
                if candidate and "/" not in candidate:
                    paste_ids.append(candidate)
        return paste_ids

    def _get_expire_date(self, paste_id: str) -> Optional[int]:
        """Read expire_date from the mirrored object metadata (HEAD only)."""
        key = self._get_key(paste_id)
        with medium_errors(self.name, "head", key, _MEDIUM_ERRORS):
            metadata = self._head_metadata(key)
        if not metadata:
            return None
        expire_date = metadata.get("expire_date", "")
        if not expire_date.isdigit() or int(expire_date) == 0:
            return None
        return int(expire_date)
