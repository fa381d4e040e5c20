"""Storage collaborator: the async interface the executor reads and writes through."""

from __future__ import annotations

import copy
import json
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

from form_query.errors import PersistenceFailure
from form_query.models import FieldDefinition, SubmissionRecord

logger = logging.getLogger(__name__)

# System resource name -> InMemoryDataSource attribute holding its rows
_RESOURCES = {
    "forms": "forms",
    "form_fields": "fields",
    "users": "users",
    "groups": "groups",
    "projects": "projects",
}


class DataSource(Protocol):
    """Everything the executor needs from storage."""

    async def fetch_records(self, form_id: str) -> list[SubmissionRecord]: ...

    async def fetch_field_defs(self, form_id: str) -> list[FieldDefinition]: ...

    async def persist_record(self, record: SubmissionRecord) -> SubmissionRecord: ...

    async def fetch_by_id(self, resource: str, ids: list[str]) -> list[dict[str, Any]]: ...

    async def fetch_resource(self, resource: str) -> list[dict[str, Any]]: ...


class InMemoryDataSource:
    """A DataSource over plain dicts, optionally loaded from a JSON fixture.

    The fixture layout is ``{"forms": [...], "fields": [...],
    "submissions": [...], "users": [...], "groups": [...], "projects": [...]}``.
    Records handed out are copies; only persist_record changes stored state.
    """

    def __init__(
        self,
        forms: list[dict[str, Any]] | None = None,
        fields: list[dict[str, Any]] | None = None,
        submissions: list[dict[str, Any]] | None = None,
        users: list[dict[str, Any]] | None = None,
        groups: list[dict[str, Any]] | None = None,
        projects: list[dict[str, Any]] | None = None,
    ) -> None:
        self.forms = list(forms or [])
        self.fields = list(fields or [])
        self.users = list(users or [])
        self.groups = list(groups or [])
        self.projects = list(projects or [])
        self.records: list[SubmissionRecord] = []
        self.persist_calls = 0
        self._ref_counter = 0
        for raw in submissions or []:
            self._store_new(SubmissionRecord.from_dict(raw))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> InMemoryDataSource:
        return cls(
            forms=data.get("forms"),
            fields=data.get("fields"),
            submissions=data.get("submissions"),
            users=data.get("users"),
            groups=data.get("groups"),
            projects=data.get("projects"),
        )

    @classmethod
    def from_file(cls, path: str | Path) -> InMemoryDataSource:
        with open(path) as f:
            data = json.load(f)
        logger.debug("Loaded fixture %s", path)
        return cls.from_dict(data)

    def to_dict(self) -> dict[str, Any]:
        return {
            "forms": self.forms,
            "fields": self.fields,
            "submissions": [r.to_dict() for r in self.records],
            "users": self.users,
            "groups": self.groups,
            "projects": self.projects,
        }

    def save(self, path: str | Path) -> None:
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)

    # --- Fixture helpers ---

    def add_field(self, form_id: str, field_id: str, label: str, **extra: Any) -> FieldDefinition:
        row = {"id": field_id, "form_id": form_id, "label": label, **extra}
        self.fields.append(row)
        return FieldDefinition.from_dict(row)

    def add_submission(self, form_id: str, data: dict[str, Any], **attrs: Any) -> SubmissionRecord:
        record = SubmissionRecord(id=attrs.pop("id", None), form_id=form_id, data=dict(data), **attrs)
        return copy.deepcopy(self._store_new(record))

    def _store_new(self, record: SubmissionRecord) -> SubmissionRecord:
        self._ref_counter += 1
        if record.id is None:
            record.id = str(uuid.uuid4())
        if record.stable_ref is None:
            record.stable_ref = f"SUB-{self._ref_counter:06d}"
        if record.submitted_at is None:
            record.submitted_at = datetime.now(timezone.utc).isoformat()
        self.records.append(record)
        return record

    # --- DataSource ---

    async def fetch_records(self, form_id: str) -> list[SubmissionRecord]:
        return [copy.deepcopy(r) for r in self.records if r.form_id == form_id]

    async def fetch_field_defs(self, form_id: str) -> list[FieldDefinition]:
        return [FieldDefinition.from_dict(row) for row in self.fields if row.get("form_id") == form_id]

    async def persist_record(self, record: SubmissionRecord) -> SubmissionRecord:
        self.persist_calls += 1
        stored = copy.deepcopy(record)
        if stored.id is None:
            return copy.deepcopy(self._store_new(stored))
        for i, existing in enumerate(self.records):
            if existing.id == stored.id:
                self.records[i] = stored
                return copy.deepcopy(stored)
        raise PersistenceFailure(f"Submission {stored.id} not found")

    async def fetch_by_id(self, resource: str, ids: list[str]) -> list[dict[str, Any]]:
        wanted = set(ids)
        return [copy.deepcopy(row) for row in self._rows(resource) if row.get("id") in wanted]

    async def fetch_resource(self, resource: str) -> list[dict[str, Any]]:
        return [copy.deepcopy(row) for row in self._rows(resource)]

    def _rows(self, resource: str) -> list[dict[str, Any]]:
        attribute = _RESOURCES.get(resource.lower())
        if attribute is None:
            raise PersistenceFailure(f"Unknown resource: {resource}")
        return getattr(self, attribute)
