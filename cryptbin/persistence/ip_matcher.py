# cryptbin/persistence/ip_matcher.py
"""
Address matchers for the traffic limiter's allow lists.

A list entry is one of:
- IPv4 range:  1.2.3.4, 10.10.10.0/24 or the short form 10.10.10/24
- IPv6 range:  2001:1620:2057::/48
- glob:        foobar, proxy-*

Globs only apply to non-IP identifiers (e.g. values a proxy puts in its
header). An IP address is only ever matched by a range, so "127.*" never
matches 127.0.0.1.
"""

import fnmatch
import ipaddress
from abc import ABC, abstractmethod
from typing import Iterable, List, Union


def _is_ip(address: str) -> bool:
    try:
        ipaddress.ip_address(address)
    except ValueError:
        return False
    return True


def _pad_ipv4(token: str) -> str:
    """Expand a short IPv4 network like '10.10.10/24' to '10.10.10.0/24'."""
    host, sep, prefix = token.partition("/")
    parts = host.split(".")
    if 1 <= len(parts) < 4 and all(part.isdigit() for part in parts):
        host = ".".join(parts + ["0"] * (4 - len(parts)))
    return f"{host}{sep}{prefix}"


class AddressMatcher(ABC):
    """One allow-list entry."""

    @abstractmethod
    def matches(self, address: str) -> bool:
        pass


class IPv4Range(AddressMatcher):
    def __init__(self, network: Union[str, ipaddress.IPv4Network]):
        self.network = ipaddress.IPv4Network(network, strict=False)

    def matches(self, address: str) -> bool:
        try:
            return ipaddress.IPv4Address(address) in self.network
        except ValueError:
            return False

    def __repr__(self) -> str:
        return f"IPv4Range({str(self.network)!r})"


class IPv6Range(AddressMatcher):
    def __init__(self, network: Union[str, ipaddress.IPv6Network]):
        self.network = ipaddress.IPv6Network(network, strict=False)

    def matches(self, address: str) -> bool:
        try:
            return ipaddress.IPv6Address(address) in self.network
        except ValueError:
            return False

    def __repr__(self) -> str:
        return f"IPv6Range({str(self.network)!r})"


class GlobPattern(AddressMatcher):
    def __init__(self, pattern: str):
        self.pattern = pattern

    def matches(self, address: str) -> bool:
        if _is_ip(address):
            return False
        return fnmatch.fnmatchcase(address, self.pattern)

    def __repr__(self) -> str:
        return f"GlobPattern({self.pattern!r})"


def parse_matcher(token: str) -> AddressMatcher:
    """Build the matcher for a single list entry."""
    token = token.strip()
    if ":" in token:
        try:
            return IPv6Range(token)
        except ValueError:
            pass
    else:
        try:
            return IPv4Range(_pad_ipv4(token))
        except ValueError:
            pass
    return GlobPattern(token)


def parse_matchers(entries: Union[str, Iterable[str], None]) -> List[AddressMatcher]:
    """
    Parse a comma separated list (or an iterable of entries) into matchers.

    Empty entries are ignored; the order of the list is kept.
    """
    if not entries:
        return []
    if isinstance(entries, str):
        entries = entries.split(",")
    return [parse_matcher(entry) for entry in entries if entry and entry.strip()]


def matches_any(matchers: Iterable[AddressMatcher], address: str) -> bool:
    """True if any matcher, tried in list order, accepts the address."""
    return any(matcher.matches(address) for matcher in matchers)
