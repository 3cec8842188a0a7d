"""
Conditional responses: entity tags, Last-Modified and 304 decisions.

A work item's tag is derived from ``(id, version, updated_at)`` only; every
state change bumps the version and refreshes ``updated_at``, so the tag
changes with it.
"""

import base64
import hashlib
from datetime import datetime
from email.utils import format_datetime, parsedate_to_datetime
from typing import Any, Iterable, Optional, Sequence, Tuple

from .timestamps import as_utc, truncate_to_second, utc_now

EMPTY_LIST_TAG_SOURCE = "empty"


def _digest(source: str) -> str:
    return base64.b64encode(hashlib.md5(source.encode("utf-8")).digest()).decode("ascii")


def tag_source(entity: Any) -> str:
    updated_at = as_utc(entity.updated_at)
    return "|".join(
        [str(entity.id), str(entity.version), updated_at.isoformat() if updated_at else ""]
    )


def compute(entity: Any) -> Tuple[str, datetime]:
    """Entity tag and last-modified time of a single entity."""
    return _digest(tag_source(entity)), truncate_to_second(entity.updated_at)


def compute_list(entities: Sequence[Any]) -> Tuple[str, datetime]:
    """Entity tag and last-modified time of a list, in response order."""
    if not entities:
        return _digest(EMPTY_LIST_TAG_SOURCE), truncate_to_second(utc_now())
    tag = _digest("\n".join(tag_source(entity) for entity in entities))
    last_modified = max(truncate_to_second(entity.updated_at) for entity in entities)
    return tag, last_modified


def format_etag(tag: str) -> str:
    return f'"{tag}"'


def format_http_date(value: datetime) -> str:
    return format_datetime(truncate_to_second(value), usegmt=True)


def _request_tags(if_none_match: str) -> Iterable[str]:
    for candidate in if_none_match.split(","):
        candidate = candidate.strip()
        if candidate.startswith("W/"):
            candidate = candidate[2:]
        yield candidate.strip('"')


def _parse_http_date(value: str) -> Optional[datetime]:
    try:
        return truncate_to_second(parsedate_to_datetime(value))
    except (TypeError, ValueError, IndexError):
        return None


def is_not_modified(
    if_none_match: Optional[str],
    if_modified_since: Optional[str],
    tag: str,
    last_modified: datetime,
) -> bool:
    """Whether a conditional request can be answered with 304 Not Modified.

    ``If-None-Match`` wins when present; ``If-Modified-Since`` is only
    consulted without it.
    """
    if if_none_match:
        return any(candidate in (tag, "*") for candidate in _request_tags(if_none_match))
    if if_modified_since:
        since = _parse_http_date(if_modified_since)
        if since is None:
            return False
        return since >= truncate_to_second(last_modified)
    return False
