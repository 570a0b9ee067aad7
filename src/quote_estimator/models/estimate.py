"""Estimation pipeline value types."""

from datetime import datetime
from enum import Enum
from typing import Any, Literal
from uuid import UUID

from beartype import beartype
from pydantic import Field, SecretStr, field_validator, model_validator

from .base import BaseModelConfig
from .llm_config import ConfigLayerName, ConfigMeta, Guardrails
from .quote import Engine, KeySource, PricingPolicySnapshot

AUDIT_SNAPSHOT_VERSION = 3
DEFAULT_SOURCE = "admin"
DEFAULT_REASON = "reassess_from_notes"


class Confidence(str, Enum):
    """Estimator confidence."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@beartype
class EstimationResult(BaseModelConfig):
    """Fully typed estimator output after coercion."""

    confidence: Confidence = Confidence.LOW
    inspection_required: bool = True
    estimate_low: int = Field(default=0, ge=0)
    estimate_high: int = Field(default=0, ge=0)
    currency: str = Field(default="USD", min_length=1)
    summary: str = ""
    visible_scope: list[str] = Field(default_factory=list)
    assumptions: list[str] = Field(default_factory=list)
    questions: list[str] = Field(default_factory=list)
    fallback_reason: str | None = Field(
        default=None, description="Set when the provider output could not be used"
    )

    @model_validator(mode="after")
    def check_band_order(self) -> "EstimationResult":
        """Ensure low never exceeds high."""
        if self.estimate_low > self.estimate_high:
            raise ValueError("estimate_low must be <= estimate_high")
        return self

    @beartype
    def to_output(self) -> dict[str, Any]:
        """Provider-facing fields in the stored output shape."""
        return self.model_dump(mode="json", exclude={"fallback_reason"})


@beartype
class NotesContext(BaseModelConfig):
    """Canonical, bounded and hashed internal notes context."""

    text: str = Field(default="")
    sha256: str = Field(..., min_length=64, max_length=64)
    note_ids_used: list[str] = Field(default_factory=list)
    count: int = Field(default=0, ge=0)
    limit: int = Field(..., ge=1)
    max_chars: int = Field(..., ge=1)


@beartype
class VisionContentItem(BaseModelConfig):
    """One image reference for a multimodal request."""

    type: Literal["image_url"] = "image_url"
    url: str = Field(..., min_length=1)
    inlined: bool = Field(
        default=False, description="True when url is a base64 data URL"
    )

    @beartype
    def to_message_part(self) -> dict[str, Any]:
        """Render as a chat completions content part."""
        return {"type": self.type, "image_url": {"url": self.url}}


@beartype
class PricedEstimate(BaseModelConfig):
    """Published estimate after deterministic pricing and display-mode shaping."""

    estimate_low: int = Field(..., ge=0)
    estimate_high: int = Field(..., ge=0)
    inspection_required: bool
    basis: dict[str, Any] = Field(default_factory=dict)
    computed_low: int = Field(..., ge=0, description="Band before display shaping")
    computed_high: int = Field(..., ge=0, description="Band before display shaping")


@beartype
class ResolvedCredential(BaseModelConfig):
    """Inference credential and the tier it came from."""

    api_key: SecretStr
    key_source: KeySource


@beartype
class NotesContextSummary(BaseModelConfig):
    """Notes context fields recorded in the audit snapshot."""

    limit: int
    max_chars: int
    count: int
    sha256: str
    note_ids_used: list[str] = Field(default_factory=list)


@beartype
class AuditSnapshot(BaseModelConfig):
    """Hash and provenance bundle stored with each version."""

    version: int = AUDIT_SNAPSHOT_VERSION
    captured_at: datetime
    phase: str = "reassess"
    tenant_id: UUID
    quote_id: UUID
    engine: Engine
    estimator_model: str
    qa_model: str
    render_model: str
    prompt_sha256: str = Field(..., min_length=64, max_length=64)
    prompt_length: int = Field(..., ge=0)
    guardrails: Guardrails
    pricing_policy_snapshot: PricingPolicySnapshot
    key_source: KeySource | None = None
    notes_context: NotesContextSummary
    config_meta: ConfigMeta
    provenance: dict[str, ConfigLayerName] = Field(default_factory=dict)


@beartype
class ReassessRequest(BaseModelConfig):
    """Caller contract for one re-estimation."""

    tenant_id: UUID
    quote_id: UUID
    actor: str = Field(..., min_length=1, max_length=200)
    engine: Engine = Engine.FULL
    notes_limit: int | None = Field(default=None)
    source: str = Field(default=DEFAULT_SOURCE, max_length=100)
    reason: str = Field(default=DEFAULT_REASON, max_length=200)

    @field_validator("engine", mode="before")
    @classmethod
    def accept_legacy_engine(cls, v: Any) -> Any:
        """The full engine used to be called ``openai_assessment``."""
        if isinstance(v, str) and v.strip() == "openai_assessment":
            return Engine.FULL
        return v

    @field_validator("source", mode="before")
    @classmethod
    def default_source(cls, v: Any) -> Any:
        if v is None or (isinstance(v, str) and not v.strip()):
            return DEFAULT_SOURCE
        return v

    @field_validator("reason", mode="before")
    @classmethod
    def default_reason(cls, v: Any) -> Any:
        if v is None or (isinstance(v, str) and not v.strip()):
            return DEFAULT_REASON
        return v


@beartype
class VersionRef(BaseModelConfig):
    """Identity of a newly written version."""

    version_id: UUID
    version_number: int = Field(..., ge=1)


@beartype
class ReassessResult(BaseModelConfig):
    """Outcome returned to the caller."""

    version_id: UUID
    version_number: int = Field(..., ge=1)
    output: dict[str, Any]
