"""
Core data types for diagram sessions.

Diagram mirrors the persistence record schema shared by every storage
backend. SaveTask and the export types are ephemeral and live in the
components that own them.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

# Minimal BPMN 2.0 document the editor surface accepts for a blank sheet
DEFAULT_DIAGRAM_XML = """<?xml version="1.0" encoding="UTF-8"?>
<bpmn:definitions xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance"
  xmlns:bpmn="http://www.omg.org/spec/BPMN/20100524/MODEL"
  xmlns:bpmndi="http://www.omg.org/spec/BPMN/20100524/DI"
  xmlns:dc="http://www.omg.org/spec/DD/20100524/DC"
  id="Definitions_1" targetNamespace="http://bpmn.io/schema/bpmn">
  <bpmn:process id="Process_1" isExecutable="false">
    <bpmn:startEvent id="StartEvent_1"/>
  </bpmn:process>
  <bpmndi:BPMNDiagram id="BPMNDiagram_1">
    <bpmndi:BPMNPlane id="BPMNPlane_1" bpmnElement="Process_1">
      <bpmndi:BPMNShape id="StartEvent_1_di" bpmnElement="StartEvent_1">
        <dc:Bounds x="180" y="160" width="36" height="36"/>
      </bpmndi:BPMNShape>
    </bpmndi:BPMNPlane>
  </bpmndi:BPMNDiagram>
</bpmn:definitions>"""

DEFAULT_SHEET_PREFIX = "Sheet"

# Fields a caller may change through PersistenceGateway.update
UPDATABLE_FIELDS: frozenset[str] = frozenset({"name", "xml_content", "svg_content", "thumbnail"})


def utc_now() -> datetime:
    return datetime.now(UTC)


def new_diagram_id() -> str:
    return str(uuid.uuid4())


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if not value:
        return utc_now()
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


@dataclass
class Diagram:
    """One persisted process diagram ("sheet").

    Attributes:
        id: Unique opaque identifier, immutable once assigned
        name: Non-empty display name
        xml_content: Serialized diagram as understood by the editor surface
        svg_content: Last vector rendering captured with the XML
        thumbnail: Optional PNG data URL preview
        created_at: Creation timestamp (UTC)
        updated_at: Last update timestamp (UTC)
    """

    id: str
    name: str
    xml_content: str = ""
    svg_content: str = ""
    thumbnail: str | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the persistence record schema."""
        return {
            "id": self.id,
            "name": self.name,
            "xml_content": self.xml_content,
            "svg_content": self.svg_content,
            "thumbnail": self.thumbnail,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Diagram:
        """Deserialize from a persistence record."""
        return cls(
            id=data["id"],
            name=data.get("name") or "",
            xml_content=data.get("xml_content") or "",
            svg_content=data.get("svg_content") or "",
            thumbnail=data.get("thumbnail"),
            created_at=_parse_timestamp(data.get("created_at")),
            updated_at=_parse_timestamp(data.get("updated_at")),
        )


@dataclass
class DiagramInput:
    """Fields supplied when persisting a new diagram."""

    name: str
    xml_content: str = DEFAULT_DIAGRAM_XML
    svg_content: str = ""
    thumbnail: str | None = None
    id: str | None = None

    def to_record(self, now: datetime | None = None) -> dict[str, Any]:
        """Build a full record, assigning id and timestamps when missing."""
        timestamp = (now or utc_now()).isoformat()
        return {
            "id": self.id or new_diagram_id(),
            "name": self.name,
            "xml_content": self.xml_content,
            "svg_content": self.svg_content,
            "thumbnail": self.thumbnail,
            "created_at": timestamp,
            "updated_at": timestamp,
        }


def clean_updates(updates: dict[str, Any]) -> dict[str, Any]:
    """Keep only the updatable fields of a partial update."""
    return {k: v for k, v in updates.items() if k in UPDATABLE_FIELDS}


def sort_freshest_first(records: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return sorted(records, key=lambda r: _parse_timestamp(r.get("updated_at")), reverse=True)
