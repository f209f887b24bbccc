"""Unit tests for zone ownership and the reconciler."""

from fakes import FakeDNSServer
from powerdns_manager.models import ChangeType, RRType, Zone, make_rrset
from powerdns_manager.powerdns import PowerDNSError
from powerdns_manager.reconcile import Reconciler, owner_zone


def _zones():
    return [
        Zone(
            name="example.com.",
            rrsets=[
                make_rrset("example.com.", RRType.NS, "primary.example.com."),
                make_rrset("nmn.example.com.", RRType.NS, "primary.example.com."),
            ],
        ),
        Zone(
            name="nmn.example.com.",
            rrsets=[
                make_rrset("nmn.example.com.", RRType.NS, "primary.example.com."),
                make_rrset("x1.nmn.example.com.", RRType.A, "10.252.1.5"),
                make_rrset("old.nmn.example.com.", RRType.A, "10.252.1.99"),
            ],
        ),
        Zone(name="252.10.in-addr.arpa."),
    ]


class TestOwnerZone:
    """Tests for owner_zone."""

    def test_longest_suffix_wins(self) -> None:
        zones = ["example.com.", "nmn.example.com."]
        assert owner_zone("x1.nmn.example.com.", zones) == "nmn.example.com."
        assert owner_zone("primary.example.com.", zones) == "example.com."
        assert owner_zone("nmn.example.com.", zones) == "nmn.example.com."

    def test_most_specific_of_nested_zones(self) -> None:
        assert owner_zone("x.a.b.com.", ["com.", "b.com.", "a.b.com."]) == "a.b.com."

    def test_label_boundary(self) -> None:
        assert owner_zone("x1.xnmn.example.com.", ["nmn.example.com."]) is None

    def test_no_owner(self) -> None:
        assert owner_zone("x1.other.org.", ["example.com."]) is None


class TestPlan:
    """Tests for Reconciler.plan."""

    def test_adds_replaces_and_leaves_matches(self) -> None:
        desired = [
            make_rrset("x1.nmn.example.com.", RRType.A, "10.252.1.5"),
            make_rrset("x2.nmn.example.com.", RRType.A, "10.252.1.6"),
            make_rrset("old.nmn.example.com.", RRType.A, "10.252.1.100"),
            make_rrset("6.1.252.10.in-addr.arpa.", RRType.PTR, "x2.nmn.example.com."),
        ]

        batches = Reconciler(FakeDNSServer()).plan(desired, _zones())

        assert sorted(batches) == ["252.10.in-addr.arpa.", "nmn.example.com."]
        assert [r.name for r in batches["nmn.example.com."]] == [
            "x2.nmn.example.com.",
            "old.nmn.example.com.",
        ]
        assert all(r.changetype is ChangeType.REPLACE for r in batches["nmn.example.com."])

    def test_ttl_difference_is_a_replace(self) -> None:
        desired = [make_rrset("x1.nmn.example.com.", RRType.A, "10.252.1.5", ttl=60)]
        batches = Reconciler(FakeDNSServer()).plan(desired, _zones())
        assert [r.ttl for r in batches["nmn.example.com."]] == [60]

    def test_stale_records_other_than_ns_kept(self) -> None:
        batches = Reconciler(FakeDNSServer()).plan([], _zones())
        assert batches == {}

    def test_unowned_rrset_skipped(self) -> None:
        desired = [make_rrset("x1.other.org.", RRType.A, "10.0.0.1")]
        assert Reconciler(FakeDNSServer()).plan(desired, _zones()) == {}

    def test_last_rrset_for_a_name_wins(self) -> None:
        desired = [
            make_rrset("ncn-m001.nmn.example.com.", RRType.A, "10.252.1.5"),
            make_rrset("ncn-m001.nmn.example.com.", RRType.CNAME, "x1.nmn.example.com."),
        ]

        batches = Reconciler(FakeDNSServer()).plan(desired, _zones())

        (change,) = batches["nmn.example.com."]
        assert change.type is RRType.CNAME
        assert change.changetype is ChangeType.REPLACE

    def test_cname_replacing_live_a_deletes_it_first(self) -> None:
        desired = [make_rrset("old.nmn.example.com.", RRType.CNAME, "x1.nmn.example.com.")]

        batches = Reconciler(FakeDNSServer()).plan(desired, _zones())

        assert [(r.type, r.changetype) for r in batches["nmn.example.com."]] == [
            (RRType.A, ChangeType.DELETE),
            (RRType.CNAME, ChangeType.REPLACE),
        ]

    def test_delegation_for_unmanaged_zone_deleted(self) -> None:
        zones = [z for z in _zones() if z.name != "nmn.example.com."]

        batches = Reconciler(FakeDNSServer()).plan([], zones)

        (deletion,) = batches["example.com."]
        assert deletion.name == "nmn.example.com."
        assert deletion.type is RRType.NS
        assert deletion.changetype is ChangeType.DELETE

    def test_stray_ns_deleted(self) -> None:
        zones = _zones()
        zones[0].rrsets.append(make_rrset("gone.example.com.", RRType.NS, "primary.example.com."))

        batches = Reconciler(FakeDNSServer()).plan([], zones)

        assert list(batches) == ["example.com."]
        (deletion,) = batches["example.com."]
        assert deletion.name == "gone.example.com."
        assert deletion.changetype is ChangeType.DELETE
        assert "records" not in deletion.to_dict()


class TestApply:
    """Tests for Reconciler.apply and end-to-end convergence."""

    def test_one_patch_per_zone_and_idempotent(self) -> None:
        server = FakeDNSServer(_zones())
        reconciler = Reconciler(server)
        desired = [
            make_rrset("x2.nmn.example.com.", RRType.A, "10.252.1.6"),
            make_rrset("x3.nmn.example.com.", RRType.A, "10.252.1.7"),
            make_rrset("6.1.252.10.in-addr.arpa.", RRType.PTR, "x2.nmn.example.com."),
        ]

        changed = reconciler.reconcile(desired, list(server.zones.values()))

        assert changed == {"nmn.example.com.", "252.10.in-addr.arpa."}
        assert len(server.patch_calls) == 2

        zones = [server.get_zone(name) for name in server.zones]
        assert reconciler.reconcile(desired, zones) == set()
        assert len(server.patch_calls) == 2

    def test_failed_zone_does_not_block_others(self) -> None:
        server = FakeDNSServer(_zones())
        server.patch_errors["nmn.example.com."] = PowerDNSError(422, "bad rrset")
        desired = [
            make_rrset("x2.nmn.example.com.", RRType.A, "10.252.1.6"),
            make_rrset("6.1.252.10.in-addr.arpa.", RRType.PTR, "x2.nmn.example.com."),
        ]

        changed = Reconciler(server).reconcile(desired, list(server.zones.values()))

        assert changed == {"252.10.in-addr.arpa."}

    def test_cname_swap_converges(self) -> None:
        server = FakeDNSServer(_zones())
        reconciler = Reconciler(server)
        desired = [make_rrset("old.nmn.example.com.", RRType.CNAME, "x1.nmn.example.com.")]

        assert reconciler.reconcile(desired, list(server.zones.values())) == {"nmn.example.com."}

        zone = server.get_zone("nmn.example.com.")
        assert [r.type for r in zone.rrsets if r.name == "old.nmn.example.com."] == [RRType.CNAME]
        assert reconciler.reconcile(desired, [zone]) == set()
