"""Unit tests for client address resolution behind proxies."""

from __future__ import annotations

import pytest

from airesume.core.client_ip import parse_trusted_proxies, resolve_client_ip

PROXIES = parse_trusted_proxies(["10.0.0.0/8", "127.0.0.1"])


def test_untrusted_peer_cannot_choose_its_address() -> None:
    """Forwarding headers from an unknown peer are ignored."""
    assert resolve_client_ip("198.51.100.9", "203.0.113.7", PROXIES) == "198.51.100.9"
    assert resolve_client_ip("198.51.100.9", "203.0.113.7", ()) == "198.51.100.9"


def test_trusted_proxy_reports_forwarded_client() -> None:
    """The address appended by a trusted proxy is the client."""
    assert resolve_client_ip("10.1.2.3", "203.0.113.7", PROXIES) == "203.0.113.7"


def test_chain_is_walked_from_the_nearest_hop() -> None:
    """Spoofed leftmost entries lose to the first untrusted hop seen from the right."""
    chain = "1.2.3.4, 203.0.113.7, 10.0.0.5"
    assert resolve_client_ip("127.0.0.1", chain, PROXIES) == "203.0.113.7"


@pytest.mark.parametrize(
    ("forwarded_for", "expected"),
    [
        (None, "10.1.2.3"),
        ("", "10.1.2.3"),
        ("10.0.0.7, 10.0.0.8", "10.0.0.7"),
    ],
)
def test_trusted_peer_without_untrusted_hop(forwarded_for: str | None, expected: str) -> None:
    """Only proxies in the chain fall back to the outermost entry or the peer."""
    assert resolve_client_ip("10.1.2.3", forwarded_for, PROXIES) == expected


def test_missing_peer_and_unparseable_hops() -> None:
    """No socket peer yields None; garbage hops are treated as untrusted."""
    assert resolve_client_ip(None, "203.0.113.7", PROXIES) is None
    assert resolve_client_ip("10.1.2.3", "unknown", PROXIES) == "unknown"


def test_parse_trusted_proxies_rejects_non_networks() -> None:
    """Configuration errors surface at parse time."""
    with pytest.raises(ValueError):
        parse_trusted_proxies(["not-a-network"])
