"""Records and field metadata exchanged with the storage layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class FieldDefinition:
    """Metadata for one form field."""

    id: str
    label: str
    type: str = "text"
    weightage: float = 1
    form_id: str | None = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> FieldDefinition:
        """Build a definition from a storage row.

        The weightage lives in the field's config map (``custom_config`` or
        ``config``) and falls back to a top-level ``weightage`` key, then 1.
        """
        config = raw.get("custom_config") or raw.get("config") or {}
        weightage = config.get("weightage", raw.get("weightage", 1))
        try:
            weightage = float(weightage) if weightage not in (None, "") else 1
        except (TypeError, ValueError):
            weightage = 1
        if isinstance(weightage, float) and weightage.is_integer():
            weightage = int(weightage)
        return cls(
            id=raw["id"],
            label=raw.get("label") or raw["id"],
            type=raw.get("field_type") or raw.get("type") or "text",
            weightage=weightage,
            form_id=raw.get("form_id"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "type": self.type,
            "weightage": self.weightage,
            "form_id": self.form_id,
        }


@dataclass
class SubmissionRecord:
    """One form submission: system attributes plus a field-id keyed data map."""

    id: str | None
    form_id: str
    data: dict[str, Any] = field(default_factory=dict)
    stable_ref: str | None = None
    submitted_by: str | None = None
    submitted_at: str | None = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> SubmissionRecord:
        return cls(
            id=raw.get("id"),
            form_id=raw["form_id"],
            data=dict(raw.get("submission_data") or raw.get("data") or {}),
            stable_ref=raw.get("submission_ref_id") or raw.get("stable_ref"),
            submitted_by=raw.get("submitted_by"),
            submitted_at=raw.get("submitted_at") or raw.get("created_at"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "form_id": self.form_id,
            "submission_ref_id": self.stable_ref,
            "submitted_by": self.submitted_by,
            "submitted_at": self.submitted_at,
            "submission_data": self.data,
        }
