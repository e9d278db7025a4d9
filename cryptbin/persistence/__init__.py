# cryptbin/persistence/__init__.py
"""
Keyed state kept in the config store.

Services:
- server_salt: lazily generated server secret
- purge_limiter: global throttle for purge sweeps
- traffic_limiter: per-address post interval with exempted/creators lists
- ip_matcher: CIDR and glob matchers for those lists
"""

from cryptbin.persistence.ip_matcher import (
    GlobPattern,
    IPv4Range,
    IPv6Range,
    parse_matchers,
)
from cryptbin.persistence.purge_limiter import PurgeLimiter
from cryptbin.persistence.server_salt import ServerSalt
from cryptbin.persistence.traffic_limiter import (
    TrafficLimiter,
    resolve_client_address,
)

__all__ = [
    "ServerSalt",
    "PurgeLimiter",
    "TrafficLimiter",
    "resolve_client_address",
    "IPv4Range",
    "IPv6Range",
    "GlobPattern",
    "parse_matchers",
]
