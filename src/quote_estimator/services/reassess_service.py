"""Quote re-estimation pipeline.

Loads a quote, resolves configuration and credential concurrently, composes
the estimator prompt, gathers the notes and vision context, runs the
estimator (or the deterministic placeholder), prices the result and appends
a new version with its audit snapshot. Any failure before the version write
leaves the quote's versions and projection untouched.
"""

import asyncio
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from typing import Any, Final
from uuid import UUID

from beartype import beartype
from pydantic import ValidationError

from ..core.config import Settings, get_settings
from ..core.database import Database
from ..core.errors import PipelineError, invalid_request, quote_not_found
from ..core.logging_utils import get_logger
from ..core.result_types import Err, Ok
from ..models.estimate import (
    AuditSnapshot,
    EstimationResult,
    NotesContext,
    NotesContextSummary,
    PricedEstimate,
    ReassessRequest,
    ReassessResult,
    ResolvedCredential,
)
from ..models.llm_config import EffectiveConfiguration
from ..models.quote import Engine, KeySource, Quote
from .config_resolver import ConfigResolver
from .estimation_invoker import CaseMetadata, EstimationInvoker, deterministic_placeholder
from .key_resolver import KeyResolver
from .notes_context import NotesContextBuilder
from .performance_monitor import performance_monitor
from .pricing import PricingShaper
from .prompt_composer import compose_estimator_prompt, prompt_sha256
from .version_writer import VersionWriter
from .vision_content import VisionContentBuilder

logger = get_logger(__name__)

DEFAULT_CATEGORY: Final = "service"
DEFAULT_SERVICE_TYPE: Final = "general"

QUOTE_QUERY: Final = """
    SELECT id, tenant_id, input, qa, output, current_version, created_at
    FROM quotes
    WHERE id = $1
      AND tenant_id = $2
"""


@beartype
def parse_request(data: Mapping[str, Any]) -> Ok[ReassessRequest] | Err[PipelineError]:
    """Validate a raw caller payload into a request."""
    try:
        return Ok(ReassessRequest.model_validate(dict(data)))
    except ValidationError as e:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
        return Err(invalid_request("Invalid reassess request", fields=fields))


@beartype
def combine_notes(customer_notes: str, internal_notes: str) -> str:
    """Customer notes block followed by the shop's internal notes block."""
    return "\n".join(
        [
            f"Customer notes:\n{customer_notes.strip() or '(none)'}",
            "",
            "Shop internal notes:",
            internal_notes or "(none)",
        ]
    )


class ReassessService:
    """Re-estimate a quote from its accumulated notes."""

    def __init__(
        self,
        db: Database,
        settings: Settings | None = None,
        *,
        config_resolver: ConfigResolver | None = None,
        key_resolver: KeyResolver | None = None,
        notes_builder: NotesContextBuilder | None = None,
        vision_builder: VisionContentBuilder | None = None,
        invoker: EstimationInvoker | None = None,
        pricing_shaper: PricingShaper | None = None,
        version_writer: VersionWriter | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the pipeline; every stage is injectable."""
        if not db or not hasattr(db, "fetchrow"):
            raise ValueError("Database handle required")

        settings = settings or get_settings()
        self._db = db
        self._config_resolver = config_resolver or ConfigResolver(db)
        self._key_resolver = key_resolver or KeyResolver(db, settings)
        self._notes_builder = notes_builder or NotesContextBuilder(
            db,
            default_limit=settings.notes_default_limit,
            max_chars=settings.notes_max_chars,
        )
        self._vision_builder = vision_builder or VisionContentBuilder(settings)
        self._invoker = invoker or EstimationInvoker(settings)
        self._pricing_shaper = pricing_shaper or PricingShaper()
        self._version_writer = version_writer or VersionWriter(
            db, max_attempts=settings.version_write_max_attempts
        )
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @beartype
    @performance_monitor("quote_reassess", max_duration_ms=45000)
    async def reassess(
        self, request: ReassessRequest
    ) -> Ok[ReassessResult] | Err[PipelineError]:
        """Run the full pipeline and append one version."""
        quote_result = await self._load_quote(request.tenant_id, request.quote_id)
        if isinstance(quote_result, Err):
            return quote_result
        quote = quote_result.value

        quote_input = quote.input
        customer = quote_input.customer_context
        category = (
            customer.category or quote_input.industry_key_snapshot or DEFAULT_CATEGORY
        )
        service_type = customer.service_type or DEFAULT_SERVICE_TYPE
        industry_key = quote_input.industry_key_snapshot or category
        policy = quote_input.pricing_policy_snapshot

        logger.info(
            "Reassessing quote %s for tenant %s (engine=%s, actor=%s)",
            quote.id,
            quote.tenant_id,
            request.engine.value,
            request.actor,
        )

        # Configuration and credential have no data dependency.
        credential: ResolvedCredential | None = None
        if request.engine is Engine.FULL:
            config_result, key_result = await asyncio.gather(
                self._config_resolver.resolve(quote.tenant_id, industry_key),
                self._key_resolver.resolve(quote.tenant_id, quote_input.llm_key_source),
            )
            if isinstance(config_result, Err):
                return config_result
            if isinstance(key_result, Err):
                return key_result
            credential = key_result.value
        else:
            config_result = await self._config_resolver.resolve(
                quote.tenant_id, industry_key
            )
            if isinstance(config_result, Err):
                return config_result
        config = config_result.value

        system_prompt = compose_estimator_prompt(config, industry_key, policy)
        system_sha = prompt_sha256(system_prompt)

        notes = await self._notes_builder.build(
            quote.tenant_id, quote.id, limit=request.notes_limit
        )

        if credential is not None:
            vision = await self._vision_builder.build(quote_input.images)
            estimation_result = await self._invoker.invoke(
                credential,
                config.estimator_model,
                system_prompt,
                vision,
                CaseMetadata(
                    category=category,
                    service_type=service_type,
                    notes_text=combine_notes(customer.notes, notes.text),
                ),
                config.guardrails.max_output_tokens,
            )
            if isinstance(estimation_result, Err):
                return estimation_result
            estimation = estimation_result.value
            key_source_used: KeySource | None = credential.key_source
        else:
            estimation = deterministic_placeholder()
            key_source_used = quote_input.llm_key_source

        priced = self._pricing_shaper.shape(
            estimation,
            len(quote_input.images),
            policy,
            quote_input.pricing_config_snapshot,
            quote_input.pricing_rules_snapshot,
        )

        snapshot = self._audit_snapshot(
            quote=quote,
            engine=request.engine,
            config=config,
            system_prompt=system_prompt,
            system_sha=system_sha,
            notes=notes,
            key_source=key_source_used,
        )
        snapshot_data = snapshot.model_dump(mode="json")

        output = self._build_output(quote, estimation, priced, snapshot_data)
        meta = {
            "created_from": request.source,
            "ai_snapshot": snapshot_data,
            "hashes": {
                "estimator_system_sha256": system_sha,
                "notes_context_sha256": notes.sha256,
            },
        }

        written = await self._version_writer.write(
            tenant_id=quote.tenant_id,
            quote_id=quote.id,
            actor=request.actor,
            ai_mode=policy.ai_mode,
            source=request.source,
            reason=request.reason,
            output=output,
            meta=meta,
        )
        if isinstance(written, Err):
            return written

        ref = written.value
        return Ok(
            ReassessResult(
                version_id=ref.version_id,
                version_number=ref.version_number,
                output=output,
            )
        )

    async def _load_quote(
        self, tenant_id: UUID, quote_id: UUID
    ) -> Ok[Quote] | Err[PipelineError]:
        row = await self._db.fetchrow(QUOTE_QUERY, quote_id, tenant_id)
        if row is None:
            return Err(
                quote_not_found(
                    f"Quote {quote_id} not found", quote_id=str(quote_id)
                )
            )
        try:
            return Ok(Quote.model_validate(dict(row)))
        except ValidationError as e:
            logger.error("Stored quote %s is malformed: %d errors", quote_id, e.error_count())
            return Err(
                invalid_request(
                    f"Quote {quote_id} has a malformed stored payload",
                    quote_id=str(quote_id),
                )
            )

    def _audit_snapshot(
        self,
        *,
        quote: Quote,
        engine: Engine,
        config: EffectiveConfiguration,
        system_prompt: str,
        system_sha: str,
        notes: NotesContext,
        key_source: KeySource | None,
    ) -> AuditSnapshot:
        return AuditSnapshot(
            captured_at=self._clock(),
            tenant_id=quote.tenant_id,
            quote_id=quote.id,
            engine=engine,
            estimator_model=config.estimator_model,
            qa_model=config.qa_model,
            render_model=config.render_model,
            prompt_sha256=system_sha,
            prompt_length=len(system_prompt),
            guardrails=config.guardrails,
            pricing_policy_snapshot=quote.input.pricing_policy_snapshot,
            key_source=key_source,
            notes_context=NotesContextSummary(
                limit=notes.limit,
                max_chars=notes.max_chars,
                count=notes.count,
                sha256=notes.sha256,
                note_ids_used=notes.note_ids_used,
            ),
            config_meta=config.meta,
            provenance=config.provenance,
        )

    @staticmethod
    def _build_output(
        quote: Quote,
        estimation: EstimationResult,
        priced: PricedEstimate,
        snapshot_data: dict[str, Any],
    ) -> dict[str, Any]:
        output = estimation.to_output()
        output.update(
            {
                "inspection_required": priced.inspection_required,
                "estimate_low": priced.estimate_low,
                "estimate_high": priced.estimate_high,
                "pricing_basis": priced.basis,
                "qa_context": quote.qa.model_dump(mode="json"),
                "ai_snapshot": snapshot_data,
            }
        )
        if estimation.fallback_reason is not None:
            output["fallback_reason"] = estimation.fallback_reason
        return output
