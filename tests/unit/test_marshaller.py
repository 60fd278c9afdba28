"""
Unit tests for deposit XML rendering.
"""

import xml.etree.ElementTree as ET
from datetime import datetime, timedelta, timezone

import pytest

from escrow_staging.core.errors import MarshalError
from escrow_staging.core.models import DepositKey, DepositMode, ResourceKind, ResourceRef, ResourceSnapshot
from escrow_staging.staging.marshaller import (
    HEADER_NS,
    OBJECT_NS,
    RDE_NS,
    REPORT_NS,
    DepositMarshaller,
    deposit_id,
    format_datetime,
)

W = datetime(2024, 1, 1, tzinfo=timezone.utc)


def snapshot(kind, key, data, tld=None):
    return ResourceSnapshot(ref=ResourceRef(kind=kind, resource_key=key, tld=tld), watermark=W, data=data)


def domain(key="D1", name="test.soy", **extra):
    return snapshot(ResourceKind.DOMAIN, key, {"name": name, "roid": key, "registrar_id": "r1", **extra}, tld="soy")


@pytest.fixture
def marshaller():
    return DepositMarshaller()


class TestMarshal:
    """Tests for DepositMarshaller.marshal"""

    def test_full_domain_fragment(self, marshaller):
        fragment = marshaller.marshal(
            domain(nameservers=["ns1.example.net", "ns2.example.net"], registrant="jd1234"),
            DepositMode.FULL,
        )
        elem = ET.fromstring(fragment.xml)
        uri = OBJECT_NS[ResourceKind.DOMAIN][1]

        assert elem.tag == f"{{{uri}}}domain"
        assert elem.find(f"{{{uri}}}name").text == "test.soy"
        assert elem.find(f"{{{uri}}}clID").text == "r1"
        assert [e.text for e in elem.findall(f"{{{uri}}}ns")] == ["ns1.example.net", "ns2.example.net"]
        assert fragment.resource_key == "D1"

    def test_thin_domain_omits_contacts_and_nameservers(self, marshaller):
        fragment = marshaller.marshal(
            domain(nameservers=["ns1.example.net"], registrant="jd1234"),
            DepositMode.THIN,
        )
        uri = OBJECT_NS[ResourceKind.DOMAIN][1]
        elem = ET.fromstring(fragment.xml)

        assert elem.find(f"{{{uri}}}ns") is None
        assert elem.find(f"{{{uri}}}registrant") is None

    def test_missing_required_field(self, marshaller):
        broken = snapshot(ResourceKind.CONTACT, "C1", {"contact_id": "jd", "roid": "C1", "registrar_id": "r1"})

        with pytest.raises(MarshalError) as exc_info:
            marshaller.marshal(broken, DepositMode.FULL)

        assert exc_info.value.resource_key == "C1"
        assert "email" in str(exc_info.value)
        assert '"key": "C1"' in exc_info.value.lenient

    def test_invalid_domain_name(self, marshaller):
        with pytest.raises(MarshalError, match="invalid name"):
            marshaller.marshal(domain(name="bad_name!.soy"), DepositMode.FULL)

    def test_contacts_do_not_belong_in_thin_deposits(self, marshaller):
        contact = snapshot(ResourceKind.CONTACT, "C1", {"contact_id": "jd"})
        with pytest.raises(ValueError):
            marshaller.marshal(contact, DepositMode.THIN)

    def test_registrar_fragment_in_any_mode(self, marshaller):
        registrar = snapshot(ResourceKind.REGISTRAR, "r1", {"registrar_id": "r1", "name": "One", "status": "ok"})
        for mode in DepositMode:
            fragment = marshaller.marshal(registrar, mode)
            assert fragment.kind == ResourceKind.REGISTRAR

    def test_datetimes_rendered_in_utc(self, marshaller):
        created = datetime(2023, 6, 1, 14, 30, tzinfo=timezone(timedelta(hours=2)))
        fragment = marshaller.marshal(domain(creation_time=created), DepositMode.FULL)
        assert "2023-06-01T12:30:00Z" in fragment.xml


class TestDocuments:
    """Tests for deposit and report assembly"""

    def test_deposit_is_ordered_and_counted(self, marshaller):
        key = DepositKey(tld="soy", mode=DepositMode.FULL, watermark=W)
        fragments = [
            marshaller.marshal(snapshot(ResourceKind.REGISTRAR, "r1", {"registrar_id": "r1", "name": "One"}), key.mode),
            marshaller.marshal(domain("D2", "b.soy"), key.mode),
            marshaller.marshal(domain("D1", "a.soy"), key.mode),
        ]

        root = ET.fromstring(marshaller.build_deposit(key, fragments, timedelta(days=1)))

        assert root.tag == f"{{{RDE_NS}}}deposit"
        assert root.get("id") == deposit_id(W)
        assert root.find(f"{{{RDE_NS}}}watermark").text == "2024-01-01T00:00:00Z"
        assert root.find(f"{{{RDE_NS}}}period").text == "86400"
        contents = list(root.find(f"{{{RDE_NS}}}contents"))
        domain_uri = OBJECT_NS[ResourceKind.DOMAIN][1]
        assert [c.find(f"{{{domain_uri}}}roid").text for c in contents[:2]] == ["D1", "D2"]
        assert contents[2].tag.endswith("registrar")

        header = contents[-1]
        assert header.tag == f"{{{HEADER_NS}}}header"
        counts = {c.get("uri"): c.text for c in header.findall(f"{{{HEADER_NS}}}count")}
        assert counts[domain_uri] == "2"
        assert counts[OBJECT_NS[ResourceKind.CONTACT][1]] == "0"

    def test_fragment_order_does_not_change_document(self, marshaller):
        key = DepositKey(tld="soy", mode=DepositMode.THIN, watermark=W)
        fragments = [marshaller.marshal(domain(f"D{i}", f"n{i}.soy"), key.mode) for i in range(5)]

        forward = marshaller.build_deposit(key, fragments, timedelta(days=1))
        backward = marshaller.build_deposit(key, list(reversed(fragments)), timedelta(days=1))

        assert forward == backward

    def test_thin_menu_lists_domains_and_registrars_only(self, marshaller):
        key = DepositKey(tld="soy", mode=DepositMode.THIN, watermark=W)
        root = ET.fromstring(marshaller.build_deposit(key, [], timedelta(days=1)))

        uris = [e.text for e in root.iter(f"{{{RDE_NS}}}objURI")]
        assert uris == [OBJECT_NS[ResourceKind.DOMAIN][1], OBJECT_NS[ResourceKind.REGISTRAR][1]]

    def test_report(self, marshaller):
        key = DepositKey(tld="soy", mode=DepositMode.THIN, watermark=W)
        root = ET.fromstring(marshaller.build_report(key, [marshaller.marshal(domain(), key.mode)]))

        assert root.tag == f"{{{REPORT_NS}}}report"
        assert root.find(f"{{{REPORT_NS}}}kind").text == "THIN"
        assert root.find(f"{{{REPORT_NS}}}id").text == deposit_id(W)
        assert root.find(f"{{{HEADER_NS}}}header/{{{HEADER_NS}}}tld").text == "soy"


def test_deposit_id_is_base36_epoch_seconds():
    assert deposit_id(datetime(1970, 1, 1, tzinfo=timezone.utc)) == "0"
    assert int(deposit_id(W), 36) == int(W.timestamp())


def test_format_datetime():
    assert format_datetime(W) == "2024-01-01T00:00:00Z"
