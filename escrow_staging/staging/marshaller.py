"""
Deposit XML rendering.

Renders point-in-time snapshots into namespaced XML fragments and assembles
them into a deposit document and a small report. Required-field and name
checks stand in for full schema validation: a snapshot that fails them raises
MarshalError with a lenient rendering of the snapshot for the logs.
"""

import json
import re
import xml.etree.ElementTree as ET
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable

from escrow_staging.core.errors import MarshalError
from escrow_staging.core.models import (
    DepositFragment,
    DepositKey,
    DepositMode,
    ResourceKind,
    ResourceSnapshot,
)

RDE_NS = "urn:ietf:params:xml:ns:rde-1.0"
REPORT_NS = "urn:ietf:params:xml:ns:rdeReport-1.0"
HEADER_NS = "urn:ietf:params:xml:ns:rdeHeader-1.0"

OBJECT_NS = {
    ResourceKind.DOMAIN: ("rdeDomain", "urn:ietf:params:xml:ns:rdeDomain-1.0"),
    ResourceKind.CONTACT: ("rdeContact", "urn:ietf:params:xml:ns:rdeContact-1.0"),
    ResourceKind.HOST: ("rdeHost", "urn:ietf:params:xml:ns:rdeHost-1.0"),
    ResourceKind.REGISTRAR: ("rdeRegistrar", "urn:ietf:params:xml:ns:rdeRegistrar-1.0"),
}

ET.register_namespace("rde", RDE_NS)
ET.register_namespace("rdeReport", REPORT_NS)
ET.register_namespace("rdeHeader", HEADER_NS)
for _prefix, _uri in OBJECT_NS.values():
    ET.register_namespace(_prefix, _uri)

# (snapshot field, element name, required)
FULL_DOMAIN_FIELDS = [
    ("name", "name", True),
    ("roid", "roid", True),
    ("registrar_id", "clID", True),
    ("statuses", "status", False),
    ("registrant", "registrant", False),
    ("contacts", "contact", False),
    ("nameservers", "ns", False),
    ("creation_time", "crDate", False),
    ("expiration_time", "exDate", False),
]

THIN_DOMAIN_FIELDS = [
    ("name", "name", True),
    ("roid", "roid", True),
    ("registrar_id", "clID", True),
    ("statuses", "status", False),
    ("creation_time", "crDate", False),
    ("expiration_time", "exDate", False),
]

FIELDS: dict[tuple[ResourceKind, DepositMode], list[tuple[str, str, bool]]] = {
    (ResourceKind.DOMAIN, DepositMode.FULL): FULL_DOMAIN_FIELDS,
    (ResourceKind.DOMAIN, DepositMode.THIN): THIN_DOMAIN_FIELDS,
    (ResourceKind.CONTACT, DepositMode.FULL): [
        ("contact_id", "id", True),
        ("roid", "roid", True),
        ("registrar_id", "clID", True),
        ("statuses", "status", False),
        ("name", "postalInfo", False),
        ("email", "email", True),
        ("voice", "voice", False),
    ],
    (ResourceKind.HOST, DepositMode.FULL): [
        ("name", "name", True),
        ("roid", "roid", True),
        ("registrar_id", "clID", True),
        ("statuses", "status", False),
        ("addresses", "addr", False),
    ],
}

REGISTRAR_FIELDS = [
    ("registrar_id", "id", True),
    ("name", "name", True),
    ("gurid", "gurid", False),
    ("status", "status", False),
    ("email", "email", False),
    ("url", "url", False),
]

HOSTNAME_RE = re.compile(r"^(?=.{1,253}$)([a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z0-9-]{2,63}$")

KIND_ORDER = [ResourceKind.DOMAIN, ResourceKind.HOST, ResourceKind.CONTACT, ResourceKind.REGISTRAR]


def format_datetime(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def deposit_id(watermark: datetime) -> str:
    """Deposit id derived from the watermark (base-36 epoch seconds)."""
    seconds = int(watermark.timestamp())
    digits = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    out = ""
    while True:
        seconds, rem = divmod(seconds, 36)
        out = digits[rem] + out
        if seconds == 0:
            return out


def _text(value: Any) -> str:
    if isinstance(value, datetime):
        return format_datetime(value)
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _lenient(snapshot: ResourceSnapshot) -> str:
    return json.dumps(
        {"kind": snapshot.kind.value, "key": snapshot.resource_key, "data": snapshot.data},
        default=str,
        sort_keys=True,
    )


class DepositMarshaller:
    """
    Renders snapshots and assembles deposit documents.
    """

    def fields_for(self, kind: ResourceKind, mode: DepositMode) -> list[tuple[str, str, bool]]:
        if kind == ResourceKind.REGISTRAR:
            return REGISTRAR_FIELDS
        try:
            return FIELDS[(kind, mode)]
        except KeyError:
            raise ValueError(f"{kind.value} resources do not belong in {mode.value} deposits") from None

    def marshal(self, snapshot: ResourceSnapshot, mode: DepositMode) -> DepositFragment:
        """
        Render one snapshot.

        Args:
            snapshot: Point-in-time resource state
            mode: Mode of the deposit being built

        Returns:
            The XML fragment

        Raises:
            MarshalError: If the snapshot is missing required fields or has an
                invalid host name
        """
        fields = self.fields_for(snapshot.kind, mode)
        prefix, uri = OBJECT_NS[snapshot.kind]
        data = snapshot.data

        missing = [name for name, _, required in fields if required and data.get(name) in (None, "", [])]
        if missing:
            raise MarshalError(
                f"{snapshot.kind.value} {snapshot.resource_key} is missing {', '.join(missing)}",
                resource_key=snapshot.resource_key,
                lenient=_lenient(snapshot),
            )

        if snapshot.kind in (ResourceKind.DOMAIN, ResourceKind.HOST):
            name = str(data["name"]).lower().rstrip(".")
            if not HOSTNAME_RE.match(name):
                raise MarshalError(
                    f"{snapshot.kind.value} {snapshot.resource_key} has invalid name {data['name']!r}",
                    resource_key=snapshot.resource_key,
                    lenient=_lenient(snapshot),
                )

        elem = ET.Element(f"{{{uri}}}{snapshot.kind.value}")
        for name, tag, _ in fields:
            value = data.get(name)
            if value is None:
                continue
            values = value if isinstance(value, list) else [value]
            for item in values:
                child = ET.SubElement(elem, f"{{{uri}}}{tag}")
                if isinstance(item, dict):
                    for attr, attr_value in sorted(item.items()):
                        child.set(attr, _text(attr_value))
                else:
                    child.text = _text(item)

        return DepositFragment(
            kind=snapshot.kind,
            resource_key=snapshot.resource_key,
            xml=ET.tostring(elem, encoding="unicode"),
        )

    @staticmethod
    def sort_fragments(fragments: Iterable[DepositFragment]) -> list[DepositFragment]:
        return sorted(fragments, key=lambda f: (KIND_ORDER.index(f.kind), f.resource_key))

    def build_deposit(self, key: DepositKey, fragments: list[DepositFragment], interval: timedelta) -> bytes:
        """
        Assemble the deposit document.

        Args:
            key: Deposit being built
            fragments: Rendered snapshots (any order)
            interval: Generation interval, recorded as the deposit period

        Returns:
            UTF-8 encoded XML document
        """
        root = ET.Element(
            f"{{{RDE_NS}}}deposit",
            {"type": "FULL", "id": deposit_id(key.watermark)},
        )
        ET.SubElement(root, f"{{{RDE_NS}}}watermark").text = format_datetime(key.watermark)
        menu = ET.SubElement(root, f"{{{RDE_NS}}}rdeMenu")
        ET.SubElement(menu, f"{{{RDE_NS}}}version").text = "1.0"
        for kind in self.kinds_for(key.mode):
            ET.SubElement(menu, f"{{{RDE_NS}}}objURI").text = OBJECT_NS[kind][1]
        ET.SubElement(root, f"{{{RDE_NS}}}period").text = str(int(interval.total_seconds()))

        contents = ET.SubElement(root, f"{{{RDE_NS}}}contents")
        for fragment in self.sort_fragments(fragments):
            contents.append(ET.fromstring(fragment.xml))

        contents.append(self._header(key, fragments))
        return ET.tostring(root, encoding="utf-8", xml_declaration=True)

    def build_report(self, key: DepositKey, fragments: list[DepositFragment]) -> bytes:
        """
        Assemble the deposit report: identification plus per-kind counts.
        """
        root = ET.Element(f"{{{REPORT_NS}}}report")
        ET.SubElement(root, f"{{{REPORT_NS}}}id").text = deposit_id(key.watermark)
        ET.SubElement(root, f"{{{REPORT_NS}}}version").text = "1"
        ET.SubElement(root, f"{{{REPORT_NS}}}rydeSpecEscrow").text = "draft-arias-noguchi-registry-data-escrow-06"
        ET.SubElement(root, f"{{{REPORT_NS}}}rydeSpecMapping").text = "draft-arias-noguchi-dnrd-objects-mapping-05"
        ET.SubElement(root, f"{{{REPORT_NS}}}resend").text = "0"
        ET.SubElement(root, f"{{{REPORT_NS}}}crDate").text = format_datetime(key.watermark)
        ET.SubElement(root, f"{{{REPORT_NS}}}kind").text = key.mode.value
        ET.SubElement(root, f"{{{REPORT_NS}}}watermark").text = format_datetime(key.watermark)
        root.append(self._header(key, fragments))
        return ET.tostring(root, encoding="utf-8", xml_declaration=True)

    @staticmethod
    def kinds_for(mode: DepositMode) -> list[ResourceKind]:
        if mode == DepositMode.THIN:
            return [ResourceKind.DOMAIN, ResourceKind.REGISTRAR]
        return list(KIND_ORDER)

    def _header(self, key: DepositKey, fragments: list[DepositFragment]) -> ET.Element:
        counts = Counter(f.kind for f in fragments)
        header = ET.Element(f"{{{HEADER_NS}}}header")
        ET.SubElement(header, f"{{{HEADER_NS}}}tld").text = key.tld
        for kind in self.kinds_for(key.mode):
            count = ET.SubElement(header, f"{{{HEADER_NS}}}count", {"uri": OBJECT_NS[kind][1]})
            count.text = str(counts.get(kind, 0))
        return header
