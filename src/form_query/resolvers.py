"""Post-processing that swaps opaque ids in result cells for display labels.

Both passes are best-effort: a failed lookup is logged and the affected
values are left as they were.
"""

from __future__ import annotations

import logging
from typing import Any

from form_query.datasource import DataSource
from form_query.identifiers import is_uuid

logger = logging.getLogger(__name__)


def _is_cross_reference(cell: Any) -> bool:
    """A list of objects keyed by field ids, as stored by cross-reference fields."""
    return (
        isinstance(cell, list)
        and bool(cell)
        and all(isinstance(item, dict) for item in cell)
        and any(is_uuid(key) for item in cell for key in item)
    )


def _is_access_payload(cell: Any) -> bool:
    return isinstance(cell, dict) and any(
        isinstance(cell.get(key), list) for key in ("users", "groups")
    )


def user_display_name(user: dict[str, Any]) -> str:
    full_name = " ".join(p for p in (user.get("first_name"), user.get("last_name")) if p)
    return full_name or user.get("display_name") or user.get("name") or user.get("email") or user["id"]


async def resolve_field_labels(rows: list[list[Any]], source: DataSource) -> list[list[Any]]:
    """Rewrite UUID keys inside cross-reference cells to field labels."""
    ids = sorted({
        key
        for row in rows
        for cell in row
        if _is_cross_reference(cell)
        for item in cell
        for key in item
        if is_uuid(key)
    })
    if not ids:
        return rows

    try:
        labels = {f["id"]: f.get("label") or f["id"] for f in await source.fetch_by_id("form_fields", ids)}
    except Exception as e:
        logger.warning("Could not resolve field labels for %d id(s): %s", len(ids), e)
        return rows

    def relabel(cell: Any) -> Any:
        if not _is_cross_reference(cell):
            return cell
        return [{labels.get(k, k): v for k, v in item.items()} for item in cell]

    return [[relabel(cell) for cell in row] for row in rows]


async def resolve_users_and_groups(rows: list[list[Any]], source: DataSource) -> list[list[Any]]:
    """Rewrite ``{"users": [...], "groups": [...]}`` id lists to display names."""
    wanted: dict[str, set[str]] = {"users": set(), "groups": set()}
    for row in rows:
        for cell in row:
            if _is_access_payload(cell):
                for resource in wanted:
                    wanted[resource].update(i for i in cell.get(resource) or [] if isinstance(i, str))

    names: dict[str, dict[str, str]] = {"users": {}, "groups": {}}
    for resource, ids in wanted.items():
        if not ids:
            continue
        try:
            fetched = await source.fetch_by_id(resource, sorted(ids))
        except Exception as e:
            logger.warning("Could not resolve %s names for %d id(s): %s", resource, len(ids), e)
            continue
        for entry in fetched:
            if resource == "users":
                names[resource][entry["id"]] = user_display_name(entry)
            else:
                names[resource][entry["id"]] = entry.get("name") or entry["id"]

    if not names["users"] and not names["groups"]:
        return rows

    def rename(cell: Any) -> Any:
        if not _is_access_payload(cell):
            return cell
        renamed = dict(cell)
        for resource in ("users", "groups"):
            if isinstance(cell.get(resource), list):
                renamed[resource] = [names[resource].get(i, i) if isinstance(i, str) else i for i in cell[resource]]
        return renamed

    return [[rename(cell) for cell in row] for row in rows]


async def resolve_labels(rows: list[list[Any]], source: DataSource) -> list[list[Any]]:
    rows = await resolve_field_labels(rows, source)
    return await resolve_users_and_groups(rows, source)
