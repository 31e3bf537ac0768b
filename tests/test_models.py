"""Tests for diagram records and payload types."""

from __future__ import annotations

from datetime import UTC, datetime

from process_sheets.advisory import GenerationResult, Suggestion
from process_sheets.models import (
    DEFAULT_DIAGRAM_XML,
    Diagram,
    DiagramInput,
    clean_updates,
    sort_freshest_first,
)


class TestDiagram:
    """Tests for Diagram serialization."""

    def test_round_trip_preserves_fields(self) -> None:
        """A record written by to_dict reads back unchanged."""
        created = datetime(2024, 3, 1, 9, 30, tzinfo=UTC)
        diagram = Diagram(
            id="d-1",
            name="Intake Flow",
            xml_content="<xml/>",
            svg_content="<svg/>",
            thumbnail="data:image/png;base64,AAAA",
            created_at=created,
            updated_at=created,
        )

        restored = Diagram.from_dict(diagram.to_dict())

        assert restored == diagram

    def test_from_dict_accepts_zulu_and_naive_timestamps(self) -> None:
        """Timestamps from other writers are normalized to aware UTC."""
        diagram = Diagram.from_dict(
            {
                "id": "d-1",
                "name": "Sheet 1",
                "created_at": "2024-03-01T09:30:00Z",
                "updated_at": "2024-03-01T10:00:00",
            }
        )

        assert diagram.created_at == datetime(2024, 3, 1, 9, 30, tzinfo=UTC)
        assert diagram.updated_at.tzinfo is not None

    def test_from_dict_null_content_becomes_empty(self) -> None:
        diagram = Diagram.from_dict({"id": "d-1", "name": "Sheet 1", "xml_content": None})

        assert diagram.xml_content == ""
        assert diagram.svg_content == ""
        assert diagram.thumbnail is None


class TestDiagramInput:
    """Tests for DiagramInput."""

    def test_defaults_to_blank_sheet(self) -> None:
        record = DiagramInput(name="Sheet 1").to_record()

        assert record["xml_content"] == DEFAULT_DIAGRAM_XML
        assert record["id"]
        assert record["created_at"] == record["updated_at"]

    def test_keeps_supplied_id(self) -> None:
        record = DiagramInput(name="Sheet 1", id="fixed").to_record()

        assert record["id"] == "fixed"


class TestHelpers:
    """Tests for record helpers."""

    def test_clean_updates_drops_immutable_fields(self) -> None:
        cleaned = clean_updates({"id": "x", "created_at": "y", "name": "n", "svg_content": "s"})

        assert cleaned == {"name": "n", "svg_content": "s"}

    def test_sort_freshest_first(self) -> None:
        records = [
            {"id": "old", "updated_at": "2024-01-01T00:00:00+00:00"},
            {"id": "new", "updated_at": "2024-06-01T00:00:00+00:00"},
            {"id": "mid", "updated_at": "2024-03-01T00:00:00+00:00"},
        ]

        assert [r["id"] for r in sort_freshest_first(records)] == ["new", "mid", "old"]


class TestAdvisoryPayloads:
    """Tests for advisory and generation payload parsing."""

    def test_suggestion_from_camel_case(self) -> None:
        suggestion = Suggestion.from_dict(
            {
                "ruleId": "R-12",
                "severity": "warning",
                "issue": "Task has no label",
                "suggestion": "Name the task",
                "targetElementId": "Task_1",
                "fix": {"newLabel": "Review order"},
            }
        )

        assert suggestion.rule_id == "R-12"
        assert suggestion.target_element_id == "Task_1"
        assert suggestion.fix is not None
        assert suggestion.fix.new_label == "Review order"

    def test_suggestion_without_fix(self) -> None:
        suggestion = Suggestion.from_dict({"rule_id": "R-1", "severity": "info"})

        assert suggestion.fix is None
        assert suggestion.target_element_id is None

    def test_generation_result_from_dict(self) -> None:
        result = GenerationResult.from_dict(
            {
                "diagramContent": "<xml/>",
                "auxiliaryGuideSteps": ["Receive", "Approve"],
                "actorLaneNames": ["Clerk"],
            }
        )

        assert result.diagram_content == "<xml/>"
        assert result.guide_steps == ["Receive", "Approve"]
        assert result.lane_names == ["Clerk"]
