"""Tests for allow-list matchers."""

from cryptbin.persistence.ip_matcher import (
    GlobPattern,
    IPv4Range,
    IPv6Range,
    matches_any,
    parse_matchers,
)


class TestParseMatchers:
    def test_entry_types(self):
        matchers = parse_matchers("1.2.3.4,10.10.10/24,2001:1620:2057::/48,foobar")
        assert [type(m) for m in matchers] == [IPv4Range, IPv4Range, IPv6Range, GlobPattern]

    def test_short_ipv4_form_is_padded(self):
        (matcher,) = parse_matchers("10.10.10/24")
        assert str(matcher.network) == "10.10.10.0/24"

    def test_empty_entries_ignored(self):
        assert parse_matchers("") == []
        assert parse_matchers(None) == []
        assert len(parse_matchers(" 1.2.3.4 , ,foo")) == 2

    def test_iterable_input(self):
        assert len(parse_matchers(["1.2.3.4", "::1"])) == 2


class TestMatching:
    def test_ipv4(self):
        matchers = parse_matchers("1.2.3.4,10.10.10/24")
        assert matches_any(matchers, "1.2.3.4")
        assert matches_any(matchers, "10.10.10.10")
        assert not matches_any(matchers, "10.10.11.1")
        assert not matches_any(matchers, "127.0.0.1")

    def test_ipv6(self):
        matchers = parse_matchers("2001:1620:2057::/48")
        assert matches_any(matchers, "2001:1620:2057:dead:beef::cafe:babe")
        assert not matches_any(matchers, "2001:1620:2058::1")
        assert not matches_any(matchers, "10.10.10.10")

    def test_glob_only_matches_non_ip_identifiers(self):
        matchers = parse_matchers("127.*,foo*")
        assert not matches_any(matchers, "127.0.0.1")
        assert matches_any(matchers, "foobar")
        assert not matches_any(matchers, "barfoo")

    def test_ranges_ignore_non_ip_identifiers(self):
        assert not IPv4Range("10.0.0.0/8").matches("foobar")
        assert not IPv6Range("::/0").matches("foobar")
