"""Layered LLM configuration resolution.

Platform defaults, the latest enabled industry pack and tenant overrides are
normalized into ``ConfigLayer`` partials and folded field by field, lowest
precedence first:

- OVERRIDE fields: the last layer with a non-empty value wins.
- TIGHTEN fields: later layers may only lower the value.
- LOCKED fields: only the platform layer contributes.
- INDUSTRY_ONLY fields: only the industry layer contributes.

Nothing here is cached; every call reads the store again.
"""

import json
from collections.abc import Mapping, Sequence
from datetime import datetime
from enum import Enum
from typing import Any, Final
from uuid import UUID

from beartype import beartype

from ..core.database import Database
from ..core.errors import PipelineError, config_unavailable
from ..core.logging_utils import get_logger
from ..core.result_types import Err, Ok
from ..models.llm_config import (
    DEFAULT_MAX_OUTPUT_TOKENS,
    DEFAULT_MAX_QA_QUESTIONS,
    MAX_OUTPUT_TOKENS,
    MAX_QA_QUESTIONS,
    MIN_OUTPUT_TOKENS,
    MIN_QA_QUESTIONS,
    ConfigLayer,
    ConfigLayerName,
    ConfigMeta,
    EffectiveConfiguration,
    Guardrails,
)
from .performance_monitor import performance_monitor

logger = get_logger(__name__)


class MergeStrategy(str, Enum):
    """How later layers may change a field."""

    OVERRIDE = "override"
    TIGHTEN = "tighten"
    LOCKED = "locked"
    INDUSTRY_ONLY = "industry_only"


FIELD_STRATEGIES: Final[dict[str, MergeStrategy]] = {
    "estimator_model": MergeStrategy.OVERRIDE,
    "qa_model": MergeStrategy.OVERRIDE,
    "render_model": MergeStrategy.OVERRIDE,
    "extra_system_preamble": MergeStrategy.OVERRIDE,
    "quote_estimator_system": MergeStrategy.OVERRIDE,
    "qa_question_generator_system": MergeStrategy.OVERRIDE,
    "industry_estimator_addendum": MergeStrategy.INDUSTRY_ONLY,
    "industry_qa_addendum": MergeStrategy.INDUSTRY_ONLY,
    "tenant_style_key": MergeStrategy.OVERRIDE,
    "tenant_render_notes": MergeStrategy.OVERRIDE,
    "blocked_topics": MergeStrategy.LOCKED,
    "max_qa_questions": MergeStrategy.TIGHTEN,
    "max_output_tokens": MergeStrategy.TIGHTEN,
    "guardrail_mode": MergeStrategy.LOCKED,
    "pii_handling": MergeStrategy.LOCKED,
}

_GUARDRAIL_FIELDS: Final = {
    "blocked_topics": "blocked_topics",
    "max_qa_questions": "max_qa_questions",
    "max_output_tokens": "max_output_tokens",
    "guardrail_mode": "mode",
    "pii_handling": "pii_handling",
}

PLATFORM_CONFIG_QUERY: Final = """
    SELECT version, models, prompts, guardrails, updated_at
    FROM platform_llm_config
    ORDER BY version DESC, updated_at DESC
    LIMIT 1
"""

INDUSTRY_PACK_QUERY: Final = """
    SELECT industry_key, version, pack, updated_at
    FROM industry_llm_packs
    WHERE industry_key = $1
      AND enabled = true
    ORDER BY version DESC, updated_at DESC
    LIMIT 1
"""

TENANT_OVERRIDES_QUERY: Final = """
    SELECT models, prompts, guardrails, updated_at
    FROM tenant_llm_overrides
    WHERE tenant_id = $1
"""

TENANT_SETTINGS_QUERY: Final = """
    SELECT industry_key, rendering_style, rendering_notes,
           pricing_enabled, ai_mode, plan_tier
    FROM tenant_settings
    WHERE tenant_id = $1
"""


def _as_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, Mapping):
        return dict(value)
    if isinstance(value, str) and value.strip():
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


def _text(source: Mapping[str, Any], *keys: str) -> str | None:
    """First non-blank string under any of ``keys`` (camelCase or snake_case)."""
    for key in keys:
        value = source.get(key)
        if value is None:
            continue
        text = str(value).strip()
        if text:
            return text
    return None


def _int(
    source: Mapping[str, Any], *keys: str, low: int, high: int
) -> int | None:
    for key in keys:
        value = source.get(key)
        if value is None or isinstance(value, bool):
            continue
        try:
            number = int(float(value))
        except (TypeError, ValueError, OverflowError):
            continue
        return max(low, min(high, number))
    return None


def _topics(source: Mapping[str, Any], *keys: str) -> list[str] | None:
    for key in keys:
        value = source.get(key)
        if isinstance(value, list):
            return [str(item).strip() for item in value if str(item).strip()]
    return None


@beartype
def normalize_industry_key(industry_key: str | None) -> str | None:
    """Lower-case and trim an industry key; blank means none."""
    if industry_key is None:
        return None
    key = industry_key.strip().lower()
    return key or None


@beartype
def platform_layer(row: Mapping[str, Any]) -> ConfigLayer:
    """Normalize the platform configuration row.

    Guardrail numbers fall back to their defaults so the platform always
    seeds the TIGHTEN fields.
    """
    models = _as_dict(row.get("models"))
    prompts = _as_dict(row.get("prompts"))
    guardrails = _as_dict(row.get("guardrails"))

    max_qa = _int(
        guardrails, "maxQaQuestions", "max_qa_questions",
        low=MIN_QA_QUESTIONS, high=MAX_QA_QUESTIONS,
    )
    max_tokens = _int(
        guardrails, "maxOutputTokens", "max_output_tokens",
        low=MIN_OUTPUT_TOKENS, high=MAX_OUTPUT_TOKENS,
    )

    return ConfigLayer(
        name=ConfigLayerName.PLATFORM,
        estimator_model=_text(models, "estimatorModel", "estimator_model"),
        qa_model=_text(models, "qaModel", "qa_model"),
        render_model=_text(models, "renderModel", "render_model"),
        extra_system_preamble=_text(prompts, "extraSystemPreamble", "extra_system_preamble"),
        quote_estimator_system=_text(prompts, "quoteEstimatorSystem", "quote_estimator_system"),
        qa_question_generator_system=_text(
            prompts, "qaQuestionGeneratorSystem", "qa_question_generator_system"
        ),
        blocked_topics=_topics(guardrails, "blockedTopics", "blocked_topics") or [],
        max_qa_questions=max_qa if max_qa is not None else DEFAULT_MAX_QA_QUESTIONS,
        max_output_tokens=(
            max_tokens if max_tokens is not None else DEFAULT_MAX_OUTPUT_TOKENS
        ),
        guardrail_mode=_text(guardrails, "mode"),
        pii_handling=_text(guardrails, "piiHandling", "pii_handling"),
    )


@beartype
def industry_layer(row: Mapping[str, Any]) -> ConfigLayer:
    """Normalize an industry pack row (``pack`` holds models and prompts)."""
    pack = _as_dict(row.get("pack"))
    models = _as_dict(pack.get("models"))
    prompts = _as_dict(pack.get("prompts"))

    return ConfigLayer(
        name=ConfigLayerName.INDUSTRY,
        estimator_model=_text(models, "estimatorModel", "estimator_model"),
        qa_model=_text(models, "qaModel", "qa_model"),
        render_model=_text(models, "renderModel", "render_model"),
        extra_system_preamble=_text(prompts, "extraSystemPreamble", "extra_system_preamble"),
        quote_estimator_system=_text(prompts, "quoteEstimatorSystem", "quote_estimator_system"),
        qa_question_generator_system=_text(
            prompts, "qaQuestionGeneratorSystem", "qa_question_generator_system"
        ),
        industry_estimator_addendum=_text(
            prompts, "estimatorAddendum", "estimator_addendum"
        ),
        industry_qa_addendum=_text(prompts, "qaAddendum", "qa_addendum"),
    )


@beartype
def tenant_layer(
    overrides: Mapping[str, Any] | None, settings: Mapping[str, Any] | None
) -> ConfigLayer:
    """Normalize tenant overrides and presentation settings.

    Tenants cannot choose the render model. Guardrails other than the
    TIGHTEN numbers are read but dropped by the reducer.
    """
    overrides = overrides or {}
    settings = settings or {}
    models = _as_dict(overrides.get("models"))
    prompts = _as_dict(overrides.get("prompts"))
    guardrails = _as_dict(overrides.get("guardrails"))

    return ConfigLayer(
        name=ConfigLayerName.TENANT,
        estimator_model=_text(models, "estimatorModel", "estimator_model"),
        qa_model=_text(models, "qaModel", "qa_model"),
        extra_system_preamble=_text(prompts, "extraSystemPreamble", "extra_system_preamble"),
        quote_estimator_system=_text(prompts, "quoteEstimatorSystem", "quote_estimator_system"),
        qa_question_generator_system=_text(
            prompts, "qaQuestionGeneratorSystem", "qa_question_generator_system"
        ),
        tenant_style_key=_text(settings, "rendering_style"),
        tenant_render_notes=_text(settings, "rendering_notes"),
        blocked_topics=_topics(guardrails, "blockedTopics", "blocked_topics"),
        max_qa_questions=_int(
            guardrails, "maxQaQuestions", "max_qa_questions",
            low=MIN_QA_QUESTIONS, high=MAX_QA_QUESTIONS,
        ),
        max_output_tokens=_int(
            guardrails, "maxOutputTokens", "max_output_tokens",
            low=MIN_OUTPUT_TOKENS, high=MAX_OUTPUT_TOKENS,
        ),
        guardrail_mode=_text(guardrails, "mode"),
        pii_handling=_text(guardrails, "piiHandling", "pii_handling"),
    )


def _is_absent(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


@beartype
def merge_layers(
    layers: Sequence[ConfigLayer], meta: ConfigMeta | None = None
) -> EffectiveConfiguration:
    """Fold ordered layers into an effective configuration with provenance.

    Raises:
        ValueError: when no layer supplies an estimator system prompt
    """
    resolved: dict[str, Any] = {}
    provenance: dict[str, ConfigLayerName] = {}

    for layer in layers:
        for field_name, strategy in FIELD_STRATEGIES.items():
            value = getattr(layer, field_name)
            if _is_absent(value):
                continue
            if strategy is MergeStrategy.LOCKED and layer.name is not ConfigLayerName.PLATFORM:
                continue
            if (
                strategy is MergeStrategy.INDUSTRY_ONLY
                and layer.name is not ConfigLayerName.INDUSTRY
            ):
                continue
            if (
                strategy is MergeStrategy.TIGHTEN
                and field_name in resolved
                and value >= resolved[field_name]
            ):
                continue
            resolved[field_name] = value
            provenance[field_name] = layer.name

    guardrail_values = {
        target: resolved.pop(source)
        for source, target in _GUARDRAIL_FIELDS.items()
        if source in resolved
    }

    return EffectiveConfiguration(
        **resolved,
        guardrails=Guardrails(**guardrail_values),
        provenance=provenance,
        meta=meta or ConfigMeta(),
    )


class ConfigResolver:
    """Resolve the effective LLM configuration for one tenant call."""

    def __init__(self, db: Database) -> None:
        """Initialize resolver with an explicit store handle."""
        self._db = db

    @beartype
    @performance_monitor("config_resolution", max_duration_ms=500)
    async def resolve(
        self, tenant_id: UUID, industry_key: str | None = None
    ) -> Ok[EffectiveConfiguration] | Err[PipelineError]:
        """Resolve configuration; a missing platform row is fatal."""
        platform_row = await self._db.fetchrow(PLATFORM_CONFIG_QUERY)
        if platform_row is None:
            logger.error("No platform LLM configuration row exists")
            return Err(config_unavailable("Platform LLM configuration is missing"))

        platform = platform_layer(dict(platform_row))
        if platform.estimator_model is None or platform.quote_estimator_system is None:
            logger.error("Platform LLM configuration lacks an estimator model or prompt")
            return Err(
                config_unavailable(
                    "Platform LLM configuration lacks an estimator model or prompt",
                    platform_version=platform_row.get("version"),
                )
            )

        settings_row = await self._db.fetchrow(TENANT_SETTINGS_QUERY, tenant_id)
        settings = dict(settings_row) if settings_row is not None else {}

        key = normalize_industry_key(industry_key) or normalize_industry_key(
            _text(settings, "industry_key")
        )

        layers = [platform]
        industry_row = None
        if key is not None:
            industry_row = await self._db.fetchrow(INDUSTRY_PACK_QUERY, key)
            if industry_row is not None:
                layers.append(industry_layer(dict(industry_row)))

        overrides_row = await self._db.fetchrow(TENANT_OVERRIDES_QUERY, tenant_id)
        overrides = dict(overrides_row) if overrides_row is not None else None
        layers.append(tenant_layer(overrides, settings))

        meta = ConfigMeta(
            industry_key=key,
            has_industry_pack=industry_row is not None,
            industry_pack_version=(
                industry_row.get("version") if industry_row is not None else None
            ),
            has_tenant_overrides=overrides is not None,
            tenant_overrides_updated_at=_timestamp(overrides, "updated_at"),
            platform_version=platform_row.get("version"),
            platform_updated_at=_timestamp(dict(platform_row), "updated_at"),
            plan_tier=_text(settings, "plan_tier"),
            tenant_pricing_enabled=settings.get("pricing_enabled") is True,
            tenant_ai_mode=_text(settings, "ai_mode"),
        )

        effective = merge_layers(layers, meta)
        logger.info(
            "Resolved LLM configuration for tenant %s (industry=%s, pack=%s, overrides=%s)",
            tenant_id,
            key,
            meta.has_industry_pack,
            meta.has_tenant_overrides,
        )
        return Ok(effective)


def _timestamp(source: Mapping[str, Any] | None, key: str) -> datetime | None:
    if not source:
        return None
    value = source.get(key)
    return value if isinstance(value, datetime) else None
