"""Row <-> domain adapters for the persisted store.

Rows written by older deployments (or by hand) may miss columns or hold
malformed JSON, so every field is optional here and bad data maps to an empty
value instead of an exception.
"""
import json
import logging
from datetime import datetime, timezone
from typing import Any, NamedTuple

from pydantic import ValidationError

from contribclub.core.models import (
    ActivityCacheEntry,
    BlogEntry,
    CachedPayload,
    ReactionRecord,
    ReactionState,
    utcnow,
)
from .models import Blog

logger = logging.getLogger(__name__)

DEFAULT_AUTHOR = "contributor-club"


class PersistedCache(NamedTuple):
    payload: CachedPayload | None
    timestamp: float
    rate_limit_until: float


def _field(row: Any, name: str) -> Any:
    if row is None:
        return None
    if isinstance(row, dict):
        return row.get(name)
    return getattr(row, name, None)


def _loads(raw: Any) -> Any:
    if raw is None or raw == "":
        return None
    if not isinstance(raw, (str, bytes)):
        return raw
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning("Ignoring malformed JSON in persisted row")
        return None


def _number(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def parse_timestamp(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str) and value.strip():
        try:
            dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def cache_from_row(row: Any) -> PersistedCache | None:
    if row is None:
        return None
    raw = _field(row, "payload")
    payload = None
    if raw:
        try:
            payload = CachedPayload.model_validate_json(raw)
        except (ValidationError, ValueError):
            logger.warning("Persisted payload could not be parsed; treating it as empty")
    return PersistedCache(
        payload=payload,
        timestamp=_number(_field(row, "timestamp")),
        rate_limit_until=_number(_field(row, "rate_limit_until")),
    )


def activity_from_row(row: Any) -> ActivityCacheEntry | None:
    url = _field(row, "repo_url")
    if not url:
        return None
    data = _loads(_field(row, "activity"))
    activity = [int(v) for v in data if isinstance(v, (int, float))] if isinstance(data, list) else []
    return ActivityCacheEntry(repo_url=url, activity=activity, timestamp=_number(_field(row, "timestamp")))


def normalize_reaction_counts(obj: Any) -> dict[str, int]:
    counts: dict[str, int] = {}
    if not isinstance(obj, dict):
        return counts
    for key, value in obj.items():
        emoji = str(key)
        num = _number(value, default=-1)
        if not emoji or num <= 0:
            continue
        counts[emoji] = counts.get(emoji, 0) + int(num)
    return counts


def _reaction_record(value: Any) -> ReactionRecord | None:
    if isinstance(value, str):
        return ReactionRecord(emoji=value)
    if isinstance(value, dict) and value.get("emoji"):
        ip = value.get("ip")
        return ReactionRecord(
            emoji=str(value["emoji"]),
            ts=_number(value.get("ts")),
            ip=str(ip) if ip else None,
        )
    return None


def parse_reaction_state(raw: Any) -> ReactionState:
    """Accepts ``{counts, actorMap}``, the older ``{counts, ipMap}``, a bare
    ``{emoji: count}`` map, or a list of emoji."""
    parsed = _loads(raw)
    if isinstance(parsed, list):
        counts: dict[str, int] = {}
        for emoji in parsed:
            counts[str(emoji)] = counts.get(str(emoji), 0) + 1
        return ReactionState(counts=counts)
    if not isinstance(parsed, dict):
        return ReactionState()
    if "counts" not in parsed:
        return ReactionState(counts=normalize_reaction_counts(parsed))

    actors = parsed.get("actorMap", parsed.get("ipMap"))
    actor_map: dict[str, ReactionRecord] = {}
    if isinstance(actors, dict):
        for key, value in actors.items():
            record = _reaction_record(value)
            if key and record:
                actor_map[str(key)] = record
    return ReactionState(counts=normalize_reaction_counts(parsed.get("counts")), actor_map=actor_map)


def blog_from_row(row: Any) -> BlogEntry | None:
    slug, title = _field(row, "slug"), _field(row, "title")
    if not slug or not title:
        return None
    created = parse_timestamp(_field(row, "created_at")) or utcnow()
    return BlogEntry(
        slug=slug,
        title=title,
        description=_field(row, "description") or "",
        content=_field(row, "content") or "",
        author=_field(row, "author") or DEFAULT_AUTHOR,
        author_url=_field(row, "author_url"),
        created_at=created,
        modified_at=parse_timestamp(_field(row, "modified_at")) or created,
        reactions=parse_reaction_state(_field(row, "reactions")).counts,
    )


def blog_to_row(entry: BlogEntry) -> Blog:
    return Blog(
        slug=entry.slug,
        title=entry.title,
        description=entry.description,
        content=entry.content,
        author=entry.author,
        author_url=entry.author_url,
        created_at=entry.created_at.isoformat(),
        modified_at=entry.modified_at.isoformat(),
        reactions=ReactionState(counts=entry.reactions).to_json(),
    )
