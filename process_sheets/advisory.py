"""
Payloads produced by the external advisory and generation services.

The session core treats them as opaque: a generation result is imported
into the editor surface, a suggestion only drives element selection.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

Severity = Literal["info", "warning", "error"]


@dataclass(frozen=True)
class SuggestionFix:
    new_label: str


@dataclass(frozen=True)
class Suggestion:
    """One finding of the process advisory service."""

    rule_id: str
    severity: Severity
    issue: str
    suggestion: str
    target_element_id: str | None = None
    fix: SuggestionFix | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Suggestion:
        fix = data.get("fix")
        return cls(
            rule_id=data.get("ruleId") or data.get("rule_id", ""),
            severity=data.get("severity", "info"),
            issue=data.get("issue", ""),
            suggestion=data.get("suggestion", ""),
            target_element_id=data.get("targetElementId") or data.get("target_element_id"),
            fix=SuggestionFix(new_label=fix.get("newLabel") or fix.get("new_label", ""))
            if fix
            else None,
        )


@dataclass(frozen=True)
class GenerationResult:
    """A diagram drafted by the generation service."""

    diagram_content: str
    guide_steps: list[str] = field(default_factory=list)
    lane_names: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GenerationResult:
        return cls(
            diagram_content=data.get("diagramContent") or data.get("diagram_content", ""),
            guide_steps=list(data.get("auxiliaryGuideSteps") or data.get("guide_steps") or []),
            lane_names=list(data.get("actorLaneNames") or data.get("lane_names") or []),
        )
