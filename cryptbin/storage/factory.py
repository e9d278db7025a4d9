# cryptbin/storage/factory.py
"""
Factory function for creating the configured data store.
"""

import logging
from typing import Optional

from cryptbin.config import get_settings
from cryptbin.storage.base import DataStore

logger = logging.getLogger(__name__)

# Global singleton instance
_data_store: Optional[DataStore] = None


def get_data_store(store_name: Optional[str] = None, **kwargs) -> DataStore:
    """
    Get or create the data store instance.

    Args:
        store_name: 'filesystem', 'database' or 's3' (default from DATA_STORE)
        **kwargs: Overrides for the backend constructor

    Returns:
        DataStore instance (singleton)
    """
    global _data_store

    if _data_store is not None:
        return _data_store

    settings = get_settings()
    name = (store_name or settings.DATA_STORE).lower().strip()

    if name == "filesystem":
        from cryptbin.storage.filesystem_provider import FilesystemStore

        kwargs.setdefault("base_path", settings.FILESYSTEM_DATA_DIR)
        _data_store = FilesystemStore(**kwargs)
    elif name == "database":
        from cryptbin.storage.database_provider import DatabaseStore

        kwargs.setdefault("database_url", settings.DATABASE_URL)
        kwargs.setdefault("table_prefix", settings.DATABASE_TABLE_PREFIX)
        kwargs.setdefault("legacy_data_dir", settings.LEGACY_DATA_DIR)
        _data_store = DatabaseStore(**kwargs)
    elif name == "s3":
        from cryptbin.storage.s3_provider import S3Store

        kwargs.setdefault("bucket", settings.S3_BUCKET)
        kwargs.setdefault("prefix", settings.S3_PREFIX)
        kwargs.setdefault("endpoint_url", settings.S3_ENDPOINT_URL)
        kwargs.setdefault("region", settings.S3_REGION)
        _data_store = S3Store(**kwargs)
    else:
        raise ValueError(f"Unknown data store: {name}. Available: filesystem, database, s3")

    logger.info(f"Data store initialized: {_data_store.name}")
    return _data_store


def set_data_store(store: DataStore) -> None:
    """
    Set a custom data store (useful for testing).
    """
    global _data_store
    _data_store = store


def reset_data_store() -> None:
    """
    Reset the data store singleton (for testing).
    """
    global _data_store
    _data_store = None
