# cryptbin/storage/__init__.py
"""
Data store abstraction for pastes, comments and config values.

Three interchangeable backends (filesystem, relational database, S3) share
one contract, so a deployment can move between them without client changes.
"""

from cryptbin.storage.base import (
    NAMESPACE_PURGE_LIMITER,
    NAMESPACE_SALT,
    NAMESPACE_TRAFFIC_LIMITER,
    NAMESPACES,
    DataStore,
    is_valid_id,
)
from cryptbin.storage.factory import (
    get_data_store,
    reset_data_store,
    set_data_store,
)

__all__ = [
    "DataStore",
    "NAMESPACES",
    "NAMESPACE_SALT",
    "NAMESPACE_PURGE_LIMITER",
    "NAMESPACE_TRAFFIC_LIMITER",
    "is_valid_id",
    "get_data_store",
    "set_data_store",
    "reset_data_store",
]
