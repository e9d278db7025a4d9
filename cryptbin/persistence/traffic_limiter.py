# cryptbin/persistence/traffic_limiter.py
"""
Per-address admission control for paste and comment creation.

State lives in the config store under the traffic_limiter namespace, keyed
by HMAC-SHA512(address, server salt). Raw addresses are never persisted or
logged.
"""

import hashlib
import hmac
import logging
import time
from typing import Iterable, Mapping, Optional, Union

from cryptbin.exceptions import CreatorNotAllowedError, TrafficLimitError
from cryptbin.persistence.ip_matcher import matches_any, parse_matchers
from cryptbin.persistence.server_salt import ServerSalt
from cryptbin.storage.base import NAMESPACE_TRAFFIC_LIMITER, DataStore

logger = logging.getLogger(__name__)


def resolve_client_address(
    peer_address: Optional[str],
    headers: Optional[Mapping[str, str]] = None,
    trusted_header: str = "",
) -> str:
    """
    Determine the client address for a request.

    With a trusted proxy header configured, its first comma separated entry
    wins (X-Forwarded-For style); otherwise the socket peer address is used.
    """
    if trusted_header and headers:
        value = headers.get(trusted_header)
        if value:
            first = value.split(",")[0].strip()
            if first:
                return first
    return peer_address or ""


class TrafficLimiter:
    """
    Enforce a minimum interval between posts from one address.

    - creators: if non-empty, only matching addresses may post at all
    - exempted: matching addresses skip the interval check
    """

    def __init__(
        self,
        store: DataStore,
        server_salt: ServerSalt,
        limit_seconds: int = 10,
        exempted: Union[str, Iterable[str], None] = None,
        creators: Union[str, Iterable[str], None] = None,
    ):
        self._store = store
        self._server_salt = server_salt
        self.limit_seconds = limit_seconds
        self.exempted = parse_matchers(exempted)
        self.creators = parse_matchers(creators)

    def get_hash(self, address: str) -> str:
        """HMAC of the address keyed by the server salt."""
        return hmac.new(
            self._server_salt.get().encode("utf-8"),
            address.encode("utf-8"),
            hashlib.sha512,
        ).hexdigest()

    def can_pass(self, address: str) -> bool:
        """
        Admit or reject a post from address.

        Returns:
            True if the post may proceed

        Raises:
            CreatorNotAllowedError: creators list is set and address is not on it
            TrafficLimitError: the previous post was less than limit_seconds ago
        """
        if self.creators:
            if not matches_any(self.creators, address):
                raise CreatorNotAllowedError()
            # creators are trusted, their posts are not timed
            return True

        if self.limit_seconds < 1:
            return True

        if matches_any(self.exempted, address):
            return True

        key = self.get_hash(address)
        now = int(time.time())

        last_seen = self._store.get_value(NAMESPACE_TRAFFIC_LIMITER, key)
        self._store.purge_values(NAMESPACE_TRAFFIC_LIMITER, now - self.limit_seconds)

        if last_seen.isdigit() and now - int(last_seen) < self.limit_seconds:
            logger.info(
                f"Traffic limit hit for {key[:16]}",
                extra={"event": "traffic_limited", "key": key[:16]},
            )
            raise TrafficLimitError(
                self.limit_seconds,
                retry_after=self.limit_seconds - (now - int(last_seen)),
            )

        self._store.set_value(str(now), NAMESPACE_TRAFFIC_LIMITER, key)
        return True
