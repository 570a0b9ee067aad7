"""Canonical internal-notes context for the estimator."""

import hashlib
import re
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any, Final
from uuid import UUID

from beartype import beartype

from ..core.database import Database
from ..core.logging_utils import get_logger
from ..models.estimate import NotesContext
from ..models.quote import QuoteNote

logger = get_logger(__name__)

MIN_NOTES_LIMIT: Final = 1
MAX_NOTES_LIMIT: Final = 200
DEFAULT_NOTES_MAX_CHARS: Final = 18_000

_WHITESPACE = re.compile(r"\s+")

RECENT_NOTES_QUERY: Final = """
    SELECT id, quote_id, tenant_id, quote_version_id, created_by, body, created_at
    FROM quote_notes
    WHERE quote_id = $1
      AND tenant_id = $2
    ORDER BY created_at DESC, id DESC
    LIMIT $3
"""


@beartype
def clamp_notes_limit(limit: int | None, default: int) -> int:
    """Clamp a caller-supplied notes limit to [1, 200]."""
    value = default if limit is None else limit
    return max(MIN_NOTES_LIMIT, min(MAX_NOTES_LIMIT, value))


@beartype
def normalize_line(line: str) -> str:
    """Collapse all whitespace runs to one space and trim."""
    return _WHITESPACE.sub(" ", line).strip()


def _iso(value: datetime | None) -> str:
    if value is None:
        return ""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _sort_key(note: QuoteNote) -> tuple[datetime, str]:
    created = note.created_at or datetime.min.replace(tzinfo=timezone.utc)
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return created, str(note.id)


@beartype
def render_notes(
    notes: Iterable[QuoteNote], limit: int, max_chars: int
) -> NotesContext:
    """Render notes into the canonical, truncated and hashed context.

    Notes are ordered ascending by (created_at, id) regardless of input
    order. Truncation is a hard cut at ``max_chars`` so it is reproducible.
    """
    stable = sorted((note for note in notes if note.body.strip()), key=_sort_key)

    lines = [
        normalize_line(
            f"- ({_iso(note.created_at)} / {note.created_by or 'tenant'}) {note.body}"
        )
        for note in stable
    ]
    text = "\n".join(lines)[:max_chars]

    return NotesContext(
        text=text,
        sha256=hashlib.sha256(text.encode("utf-8")).hexdigest(),
        note_ids_used=[str(note.id) for note in stable],
        count=len(stable),
        limit=limit,
        max_chars=max_chars,
    )


def _note_from_record(record: Any) -> QuoteNote:
    data = dict(record)
    return QuoteNote(
        id=data["id"],
        quote_id=data["quote_id"],
        tenant_id=data["tenant_id"],
        quote_version_id=data.get("quote_version_id"),
        created_by=str(data.get("created_by") or "").strip() or "tenant",
        body=str(data.get("body") or ""),
        created_at=data.get("created_at"),
    )


class NotesContextBuilder:
    """Load the most recent notes for a quote and render the context."""

    def __init__(
        self,
        db: Database,
        default_limit: int = 50,
        max_chars: int = DEFAULT_NOTES_MAX_CHARS,
    ) -> None:
        """Initialize builder with an explicit store handle."""
        self._db = db
        self._default_limit = default_limit
        self._max_chars = max_chars

    @beartype
    async def build(
        self,
        tenant_id: UUID,
        quote_id: UUID,
        limit: int | None = None,
        max_chars: int | None = None,
    ) -> NotesContext:
        """Build the notes context for one quote."""
        effective_limit = clamp_notes_limit(limit, self._default_limit)
        budget = max(1, max_chars if max_chars is not None else self._max_chars)

        rows = await self._db.fetch(RECENT_NOTES_QUERY, quote_id, tenant_id, effective_limit)
        notes = [_note_from_record(row) for row in rows]
        context = render_notes(notes, effective_limit, budget)

        logger.info(
            "Notes context for quote %s: %d notes, %d chars (limit=%d)",
            quote_id,
            context.count,
            len(context.text),
            effective_limit,
        )
        return context
