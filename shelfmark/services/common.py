from __future__ import annotations

from datetime import datetime, timezone

from dateutil import parser as dt_parser


def parse_tags(raw: str) -> list[str]:
    if not raw:
        return []
    return clean_tags(raw.replace(";", ",").split(","))


def clean_tags(values) -> list[str]:
    tags: list[str] = []
    for value in values or []:
        if value is None:
            continue
        tag = str(value).strip()
        if tag and tag not in tags:
            tags.append(tag)
    return tags


def merge_tags(existing, incoming) -> list[str]:
    merged = clean_tags(existing)
    for tag in clean_tags(incoming):
        if tag not in merged:
            merged.append(tag)
    return merged


def parse_timestamp(value) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = dt_parser.isoparse(str(value).strip())
        except (TypeError, ValueError):
            try:
                parsed = dt_parser.parse(str(value))
            except (TypeError, ValueError, OverflowError):
                return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def to_bool(value, default=False):
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}
