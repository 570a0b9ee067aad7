"""Race-safe quote version creation.

The next version number is assigned by the database inside the insert
statement itself, backed by the unique ``(quote_id, version)`` constraint.
A lost race surfaces as a unique violation and the whole
increment-and-insert transaction is re-run.
"""

from typing import Any, Final
from uuid import UUID

import asyncpg
from beartype import beartype

from ..core.database import Database
from ..core.errors import PipelineError, version_conflict
from ..core.logging_utils import get_logger
from ..core.result_types import Err, Ok
from ..models.estimate import VersionRef
from ..models.quote import DisplayMode, QuoteVersion
from .performance_monitor import performance_monitor

logger = get_logger(__name__)

INSERT_NEXT_VERSION_QUERY: Final = """
    WITH next_version AS (
        SELECT COALESCE(MAX(version), 0) + 1 AS version
        FROM quote_versions
        WHERE tenant_id = $1
          AND quote_id = $2
    )
    INSERT INTO quote_versions (
        tenant_id, quote_id, version, ai_mode, source,
        created_by, reason, output, meta
    )
    SELECT
        $1, $2, next_version.version, $3, $4,
        $5, $6, $7::jsonb, $8::jsonb
    FROM next_version
    RETURNING id, version
"""

# The projection only moves forward, so a slower writer that committed a
# lower version never overwrites a newer one.
ADVANCE_PROJECTION_QUERY: Final = """
    UPDATE quotes
    SET output = $3::jsonb,
        current_version = $4,
        updated_at = now()
    WHERE id = $1
      AND tenant_id = $2
      AND (current_version IS NULL OR current_version < $4)
"""

LIST_VERSIONS_QUERY: Final = """
    SELECT id, tenant_id, quote_id, version, ai_mode, source,
           created_by, reason, output, meta, created_at
    FROM quote_versions
    WHERE tenant_id = $1
      AND quote_id = $2
    ORDER BY version ASC
"""


class VersionWriter:
    """Append immutable quote versions and advance the current projection."""

    def __init__(self, db: Database, max_attempts: int = 3) -> None:
        """Initialize writer with an explicit store handle."""
        self._db = db
        self._max_attempts = max(1, max_attempts)

    @beartype
    @performance_monitor("version_write", max_duration_ms=1000)
    async def write(
        self,
        tenant_id: UUID,
        quote_id: UUID,
        actor: str,
        ai_mode: DisplayMode,
        source: str,
        reason: str | None,
        output: dict[str, Any],
        meta: dict[str, Any],
    ) -> Ok[VersionRef] | Err[PipelineError]:
        """Insert the next version and advance the projection atomically."""
        for attempt in range(1, self._max_attempts + 1):
            try:
                async with self._db.transaction() as conn:
                    row = await conn.fetchrow(
                        INSERT_NEXT_VERSION_QUERY,
                        tenant_id,
                        quote_id,
                        ai_mode.value,
                        source,
                        actor,
                        reason,
                        output,
                        meta,
                    )
                    version = int(row["version"])
                    await conn.execute(
                        ADVANCE_PROJECTION_QUERY,
                        quote_id,
                        tenant_id,
                        output,
                        version,
                    )
            except asyncpg.UniqueViolationError:
                logger.warning(
                    "Version number race on quote %s (attempt %d/%d)",
                    quote_id,
                    attempt,
                    self._max_attempts,
                )
                continue

            logger.info("Wrote version %d for quote %s", version, quote_id)
            return Ok(VersionRef(version_id=row["id"], version_number=version))

        return Err(
            version_conflict(
                "Could not assign a version number after concurrent writes",
                quote_id=str(quote_id),
                attempts=self._max_attempts,
            )
        )

    @beartype
    async def list_versions(
        self, tenant_id: UUID, quote_id: UUID
    ) -> list[QuoteVersion]:
        """All versions of a quote, oldest first."""
        rows = await self._db.fetch(LIST_VERSIONS_QUERY, tenant_id, quote_id)
        return [QuoteVersion(**dict(row)) for row in rows]
