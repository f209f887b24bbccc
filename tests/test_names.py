"""Unit tests for forward and reverse name helpers."""

import pytest

from powerdns_manager.names import (
    forward_cidr_for_reverse_zone,
    is_reverse_zone,
    make_canonical,
    reverse_name_for_ip,
    reverse_name_without_zeros,
    reverse_zone_name,
    strip_dot,
)


class TestCanonicalNames:
    """Tests for trailing-dot handling."""

    def test_make_canonical_adds_single_dot(self) -> None:
        assert make_canonical("nmn.example.com") == "nmn.example.com."
        assert make_canonical("nmn.example.com.") == "nmn.example.com."

    def test_strip_dot(self) -> None:
        assert strip_dot("example.com.") == "example.com"
        assert strip_dot("example.com") == "example.com"


class TestReverseZoneName:
    """Tests for octet retention by prefix length."""

    @pytest.mark.parametrize(
        "cidr, expected",
        [
            ("10.252.0.0/17", "252.10.in-addr.arpa."),
            ("10.252.1.0/24", "1.252.10.in-addr.arpa."),
            ("10.101.5.128/26", "5.101.10.in-addr.arpa."),
            ("10.0.0.0/8", "10.in-addr.arpa."),
            ("10.1.0.0/16", "1.10.in-addr.arpa."),
        ],
    )
    def test_prefix_lengths(self, cidr: str, expected: str) -> None:
        assert reverse_zone_name(cidr) == expected

    def test_host_bits_are_masked(self) -> None:
        """A range written with host bits set still maps to its network's zone."""
        assert reverse_zone_name("10.254.1.17/24") == "1.254.10.in-addr.arpa."

    def test_malformed_cidr_raises(self) -> None:
        with pytest.raises(ValueError):
            reverse_zone_name("not-a-cidr")


class TestReverseNames:
    """Tests for PTR owner name encoding."""

    def test_reverse_name_keeps_every_octet(self) -> None:
        assert reverse_name_for_ip("10.252.1.10") == "10.1.252.10.in-addr.arpa."
        assert reverse_name_for_ip("10.0.1.0") == "0.1.0.10.in-addr.arpa."

    def test_without_zeros_drops_zero_octets(self) -> None:
        assert reverse_name_without_zeros("10.92.100.71") == "71.100.92.10.in-addr.arpa."
        assert reverse_name_without_zeros("10.0.1.5") == "5.1.10.in-addr.arpa."


class TestForwardCIDR:
    """Tests for recovering a forward network from a reverse zone."""

    def test_zero_fills_to_four_octets(self) -> None:
        assert forward_cidr_for_reverse_zone("252.10.in-addr.arpa.") == "10.252.0.0"
        assert forward_cidr_for_reverse_zone("1.252.10.in-addr.arpa.") == "10.252.1.0"

    def test_accepts_name_without_trailing_dot(self) -> None:
        assert forward_cidr_for_reverse_zone("1.252.10.in-addr.arpa") == "10.252.1.0"

    def test_forward_zone_raises(self) -> None:
        with pytest.raises(ValueError):
            forward_cidr_for_reverse_zone("nmn.example.com.")

    def test_is_reverse_zone(self) -> None:
        assert is_reverse_zone("1.252.10.in-addr.arpa.")
        assert not is_reverse_zone("nmn.example.com.")
