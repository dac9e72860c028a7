"""Unit tests for auth.dependencies.get_client_ip().

Covers:
- Untrusted peers are identified by the socket address; X-Forwarded-For is ignored
- Trusted peers: the chain is read right to left, skipping trusted hops
- Every hop trusted -> leftmost entry
- IPv4-mapped IPv6 peers are normalised
"""

from fastapi import Request

from auth.dependencies import get_client_ip

PROXIES = ["127.0.0.0/8", "10.0.0.0/8"]


def _request(peer: str | None, forwarded: str | None = None) -> Request:
    headers = []
    if forwarded is not None:
        headers.append((b"x-forwarded-for", forwarded.encode()))
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": headers,
        "client": (peer, 50000) if peer is not None else None,
    }
    return Request(scope)


class TestUntrustedPeer:
    def test_spoofed_header_is_ignored(self) -> None:
        request = _request("198.51.100.20", "203.0.113.7")
        assert get_client_ip(request, PROXIES) == "198.51.100.20"

    def test_non_ip_peer_is_untrusted(self) -> None:
        assert get_client_ip(_request("testclient", "203.0.113.7"), PROXIES) == "testclient"

    def test_no_trusted_proxies_configured(self) -> None:
        assert get_client_ip(_request("127.0.0.1", "203.0.113.7"), []) == "127.0.0.1"

    def test_no_peer(self) -> None:
        assert get_client_ip(_request(None, "203.0.113.7"), PROXIES) is None


class TestTrustedPeer:
    def test_single_hop(self) -> None:
        assert get_client_ip(_request("127.0.0.1", "203.0.113.7"), PROXIES) == "203.0.113.7"

    def test_client_prepended_entries_are_skipped(self) -> None:
        """A client can prepend anything; only the hop our proxy appended counts."""
        request = _request("127.0.0.1", "203.0.113.7, 198.51.100.20")
        assert get_client_ip(request, PROXIES) == "198.51.100.20"

    def test_trusted_hops_are_skipped(self) -> None:
        request = _request("127.0.0.1", "198.51.100.20, 10.0.0.4")
        assert get_client_ip(request, PROXIES) == "198.51.100.20"

    def test_all_hops_trusted_returns_leftmost(self) -> None:
        assert get_client_ip(_request("127.0.0.1", "10.0.0.9, 10.0.0.4"), PROXIES) == "10.0.0.9"

    def test_no_header_returns_peer(self) -> None:
        assert get_client_ip(_request("10.0.0.4"), PROXIES) == "10.0.0.4"

    def test_mapped_ipv6_peer(self) -> None:
        assert get_client_ip(_request("::ffff:127.0.0.1", "203.0.113.7"), PROXIES) == "203.0.113.7"
