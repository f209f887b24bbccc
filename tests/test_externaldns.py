"""Unit tests for the external-dns PTR bridge."""

from fakes import FakeDNSServer
from powerdns_manager.externaldns import ExternalDNSBridge, marker_content
from powerdns_manager.models import ChangeType, RRType, Zone, make_rrset

HERITAGE = '"heritage=external-dns,external-dns/owner=default,external-dns/resource=service/x"'


def _forward(*rrsets) -> Zone:
    return Zone(name="cmn.example.com.", rrsets=list(rrsets))


def _reverse(*rrsets) -> Zone:
    return Zone(name="100.92.10.in-addr.arpa.", rrsets=list(rrsets))


class TestExternalRecords:
    """Tests for PTR creation from external-dns records."""

    def test_ptr_and_marker_created(self) -> None:
        server = FakeDNSServer(
            [
                _forward(
                    make_rrset("api.cmn.example.com.", RRType.A, "10.92.100.71"),
                    make_rrset("api.cmn.example.com.", RRType.TXT, HERITAGE),
                ),
                _reverse(),
            ]
        )

        changed = ExternalDNSBridge(server).run_once()

        assert changed == {"100.92.10.in-addr.arpa."}
        ptr = server.rrset("100.92.10.in-addr.arpa.", "71.100.92.10.in-addr.arpa.", RRType.PTR)
        txt = server.rrset("100.92.10.in-addr.arpa.", "71.100.92.10.in-addr.arpa.", RRType.TXT)
        assert ptr.records[0].content == "api.cmn.example.com."
        assert txt.records[0].content == '"externaldns-manager/api.cmn.example.com."'

    def test_shared_address_emits_one_ptr(self) -> None:
        server = FakeDNSServer(
            [
                _forward(
                    make_rrset("a.cmn.example.com.", RRType.A, "10.92.100.71"),
                    make_rrset("a.cmn.example.com.", RRType.TXT, HERITAGE),
                    make_rrset("b.cmn.example.com.", RRType.A, "10.92.100.71"),
                    make_rrset("b.cmn.example.com.", RRType.TXT, HERITAGE),
                ),
                _reverse(),
            ]
        )
        bridge = ExternalDNSBridge(server)

        batches = bridge.plan(bridge.fetch_zones())

        assert [(r.name, r.type) for r in batches["100.92.10.in-addr.arpa."]] == [
            ("71.100.92.10.in-addr.arpa.", RRType.PTR),
            ("71.100.92.10.in-addr.arpa.", RRType.TXT),
        ]

    def test_missing_reverse_zone_skipped(self) -> None:
        server = FakeDNSServer(
            [
                _forward(
                    make_rrset("api.cmn.example.com.", RRType.A, "10.93.1.5"),
                    make_rrset("api.cmn.example.com.", RRType.TXT, HERITAGE),
                ),
                _reverse(),
            ]
        )
        bridge = ExternalDNSBridge(server)

        assert bridge.plan(bridge.fetch_zones()) == {}

    def test_unsigned_txt_ignored(self) -> None:
        server = FakeDNSServer(
            [_forward(make_rrset("x.cmn.example.com.", RRType.TXT, '"v=spf1 -all"')), _reverse()]
        )
        assert ExternalDNSBridge(server).run_once() == set()
        assert server.patch_calls == []


class TestStaleRecords:
    """Tests for cleanup of PTRs this bridge created earlier."""

    def test_marker_with_live_a_record_kept(self) -> None:
        server = FakeDNSServer(
            [
                _forward(make_rrset("api.cmn.example.com.", RRType.A, "10.92.100.71")),
                _reverse(
                    make_rrset("71.100.92.10.in-addr.arpa.", RRType.PTR, "api.cmn.example.com."),
                    make_rrset(
                        "71.100.92.10.in-addr.arpa.",
                        RRType.TXT,
                        marker_content("api.cmn.example.com."),
                    ),
                ),
            ]
        )
        bridge = ExternalDNSBridge(server)

        assert bridge.plan(bridge.fetch_zones()) == {}

    def test_marker_without_a_record_deletes_both(self) -> None:
        server = FakeDNSServer(
            [
                _forward(),
                _reverse(
                    make_rrset("71.100.92.10.in-addr.arpa.", RRType.PTR, "api.cmn.example.com."),
                    make_rrset(
                        "71.100.92.10.in-addr.arpa.",
                        RRType.TXT,
                        marker_content("api.cmn.example.com."),
                    ),
                ),
            ]
        )

        changed = ExternalDNSBridge(server).run_once()

        assert changed == {"100.92.10.in-addr.arpa."}
        (_, rrsets) = server.patch_calls[0]
        assert [(r.type, r.changetype) for r in rrsets] == [
            (RRType.PTR, ChangeType.DELETE),
            (RRType.TXT, ChangeType.DELETE),
        ]
        assert server.zones["100.92.10.in-addr.arpa."].rrsets == []

    def test_orphaned_marker_deleted(self) -> None:
        server = FakeDNSServer(
            [
                _forward(),
                _reverse(
                    make_rrset(
                        "71.100.92.10.in-addr.arpa.",
                        RRType.TXT,
                        marker_content("api.cmn.example.com."),
                    )
                ),
            ]
        )
        bridge = ExternalDNSBridge(server)

        batches = bridge.plan(bridge.fetch_zones())

        assert [(r.type, r.changetype) for r in batches["100.92.10.in-addr.arpa."]] == [
            (RRType.TXT, ChangeType.DELETE)
        ]
