"""Layered LLM configuration models.

A ``ConfigLayer`` is one partial source (platform row, industry pack or tenant
overrides). ``EffectiveConfiguration`` is the fold of the ordered layers and is
rebuilt for every call.
"""

from datetime import datetime
from enum import Enum

from beartype import beartype
from pydantic import Field

from .base import BaseModelConfig

DEFAULT_ESTIMATOR_MODEL = "gpt-4o-mini"
DEFAULT_QA_MODEL = "gpt-4o-mini"
DEFAULT_RENDER_MODEL = "gpt-image-1"

DEFAULT_MAX_OUTPUT_TOKENS = 1200
MIN_OUTPUT_TOKENS = 200
MAX_OUTPUT_TOKENS = 4000

DEFAULT_MAX_QA_QUESTIONS = 3
MIN_QA_QUESTIONS = 1
MAX_QA_QUESTIONS = 10


class ConfigLayerName(str, Enum):
    """Configuration sources, lowest precedence first."""

    PLATFORM = "platform"
    INDUSTRY = "industry"
    TENANT = "tenant"


@beartype
class ConfigLayer(BaseModelConfig):
    """Partial configuration contributed by one source.

    ``None`` means the layer is silent on that field.
    """

    name: ConfigLayerName

    # Models
    estimator_model: str | None = None
    qa_model: str | None = None
    render_model: str | None = None

    # Prompt bodies
    extra_system_preamble: str | None = None
    quote_estimator_system: str | None = None
    qa_question_generator_system: str | None = None

    # Industry-only addenda
    industry_estimator_addendum: str | None = None
    industry_qa_addendum: str | None = None

    # Tenant presentation
    tenant_style_key: str | None = None
    tenant_render_notes: str | None = None

    # Guardrails
    blocked_topics: list[str] | None = None
    max_qa_questions: int | None = None
    max_output_tokens: int | None = None
    guardrail_mode: str | None = None
    pii_handling: str | None = None


@beartype
class Guardrails(BaseModelConfig):
    """Guardrails in effect for one call."""

    blocked_topics: list[str] = Field(default_factory=list)
    max_qa_questions: int = Field(
        default=DEFAULT_MAX_QA_QUESTIONS, ge=MIN_QA_QUESTIONS, le=MAX_QA_QUESTIONS
    )
    max_output_tokens: int = Field(
        default=DEFAULT_MAX_OUTPUT_TOKENS, ge=MIN_OUTPUT_TOKENS, le=MAX_OUTPUT_TOKENS
    )
    mode: str = Field(default="balanced")
    pii_handling: str = Field(default="redact")


@beartype
class ConfigMeta(BaseModelConfig):
    """Where the effective configuration came from."""

    industry_key: str | None = None
    has_industry_pack: bool = False
    industry_pack_version: int | None = None
    has_tenant_overrides: bool = False
    tenant_overrides_updated_at: datetime | None = None
    platform_version: int | None = None
    platform_updated_at: datetime | None = None
    plan_tier: str | None = None
    tenant_pricing_enabled: bool = False
    tenant_ai_mode: str | None = None


@beartype
class EffectiveConfiguration(BaseModelConfig):
    """Fully merged model, prompt and guardrail set for one inference call."""

    estimator_model: str = Field(default=DEFAULT_ESTIMATOR_MODEL, min_length=1)
    qa_model: str = Field(default=DEFAULT_QA_MODEL, min_length=1)
    render_model: str = Field(default=DEFAULT_RENDER_MODEL, min_length=1)

    extra_system_preamble: str = ""
    quote_estimator_system: str = Field(..., min_length=1)
    qa_question_generator_system: str = ""
    industry_estimator_addendum: str = ""
    industry_qa_addendum: str = ""

    tenant_style_key: str = ""
    tenant_render_notes: str = ""

    guardrails: Guardrails = Field(default_factory=Guardrails)

    provenance: dict[str, ConfigLayerName] = Field(
        default_factory=dict, description="Resolved field name to contributing layer"
    )
    meta: ConfigMeta = Field(default_factory=ConfigMeta)
