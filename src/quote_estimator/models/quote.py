"""Quote domain models.

Quote input payloads are stored as JSONB at submission time and read back
here. They are tolerant of missing or malformed keys: every field has a safe
default and is coerced before validation.
"""

import math
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from beartype import beartype
from pydantic import Field, field_validator

from .base import BaseModelConfig, StoredPayloadModel

# Ceiling for any stored or estimated amount, in whole currency units.
MAX_MONEY_AMOUNT = 2_000_000


class DisplayMode(str, Enum):
    """How a tenant publishes estimates to the customer."""

    ASSESSMENT_ONLY = "assessment_only"
    RANGE = "range"
    FIXED = "fixed"


class PricingModel(str, Enum):
    """Tenant pricing models."""

    FLAT_PER_JOB = "flat_per_job"
    HOURLY_PLUS_MATERIALS = "hourly_plus_materials"
    PER_UNIT = "per_unit"
    PACKAGES = "packages"
    LINE_ITEMS = "line_items"
    INSPECTION_ONLY = "inspection_only"
    ASSESSMENT_FEE = "assessment_fee"


class KeySource(str, Enum):
    """Inference credential tier."""

    TENANT = "tenant"
    PLATFORM_GRACE = "platform_grace"


class Engine(str, Enum):
    """Re-estimation engine."""

    FULL = "full"
    DETERMINISTIC_ONLY = "deterministic_only"


def _blank_to_none(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _optional_enum(enum_cls: type[Enum], value: Any) -> Any:
    value = _blank_to_none(value)
    if value is None or isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        return None


def _optional_money(value: Any) -> float | None:
    """Coerce a stored amount into [0, MAX_MONEY_AMOUNT].

    Non-numeric, non-finite or unrepresentable values become None.
    """
    value = _blank_to_none(value)
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return None
    if not math.isfinite(number):
        return None
    return float(max(0, min(MAX_MONEY_AMOUNT, round(number))))


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


@beartype
class QuoteImage(StoredPayloadModel):
    """A customer-uploaded photo reference."""

    url: str = Field(default="", description="Remote image URL")
    shot_type: str | None = Field(default=None, alias="shotType")

    @field_validator("url", mode="before")
    @classmethod
    def coerce_url(cls, v: Any) -> str:
        return _as_text(v)


@beartype
class CustomerContext(StoredPayloadModel):
    """Free text supplied by the customer at submission."""

    notes: str = Field(default="")
    category: str = Field(default="")
    service_type: str = Field(default="")

    @field_validator("notes", "category", "service_type", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> str:
        return _as_text(v)


@beartype
class PricingPolicySnapshot(StoredPayloadModel):
    """Tenant pricing policy frozen at quote submission time.

    Re-estimation always reads this snapshot, never live tenant settings.
    """

    ai_mode: DisplayMode = Field(default=DisplayMode.ASSESSMENT_ONLY)
    pricing_enabled: bool = Field(default=False)
    pricing_model: PricingModel | None = Field(default=None)

    @field_validator("ai_mode", mode="before")
    @classmethod
    def coerce_ai_mode(cls, v: Any) -> DisplayMode:
        """Blank means assessment-only; any other unknown value means range."""
        if _blank_to_none(v) is None:
            return DisplayMode.ASSESSMENT_ONLY
        return _optional_enum(DisplayMode, v) or DisplayMode.RANGE

    @field_validator("pricing_enabled", mode="before")
    @classmethod
    def coerce_pricing_enabled(cls, v: Any) -> bool:
        return v is True or (isinstance(v, str) and v.strip().lower() == "true")

    @field_validator("pricing_model", mode="before")
    @classmethod
    def coerce_pricing_model(cls, v: Any) -> PricingModel | None:
        return _optional_enum(PricingModel, v)

    @property
    def effective_mode(self) -> DisplayMode:
        """Display mode after applying the pricing gate."""
        if not self.pricing_enabled:
            return DisplayMode.ASSESSMENT_ONLY
        return self.ai_mode


@beartype
class PricingConfigSnapshot(StoredPayloadModel):
    """Pricing model parameters frozen at submission time."""

    model: PricingModel | None = Field(default=None)
    flat_rate_default: float | None = Field(default=None, alias="flatRateDefault")
    hourly_labor_rate: float | None = Field(default=None, alias="hourlyLaborRate")
    material_markup_percent: float | None = Field(
        default=None, alias="materialMarkupPercent"
    )
    per_unit_rate: float | None = Field(default=None, alias="perUnitRate")
    per_unit_label: str | None = Field(default=None, alias="perUnitLabel")
    assessment_fee_amount: float | None = Field(
        default=None, alias="assessmentFeeAmount"
    )
    assessment_fee_credit_toward_job: bool = Field(
        default=False, alias="assessmentFeeCreditTowardJob"
    )

    @field_validator("model", mode="before")
    @classmethod
    def coerce_model(cls, v: Any) -> PricingModel | None:
        return _optional_enum(PricingModel, v)

    @field_validator(
        "flat_rate_default",
        "hourly_labor_rate",
        "material_markup_percent",
        "per_unit_rate",
        "assessment_fee_amount",
        mode="before",
    )
    @classmethod
    def coerce_amount(cls, v: Any) -> float | None:
        return _optional_money(v)

    @field_validator("per_unit_label", mode="before")
    @classmethod
    def coerce_label(cls, v: Any) -> str | None:
        return _as_text(v) or None

    @field_validator("assessment_fee_credit_toward_job", mode="before")
    @classmethod
    def coerce_credit_flag(cls, v: Any) -> bool:
        return v is True


@beartype
class PricingRulesSnapshot(StoredPayloadModel):
    """Tenant pricing guardrails frozen at submission time."""

    min_job: float | None = Field(default=None, alias="minJob")
    typical_low: float | None = Field(default=None, alias="typicalLow")
    typical_high: float | None = Field(default=None, alias="typicalHigh")
    max_without_inspection: float | None = Field(
        default=None, alias="maxWithoutInspection"
    )
    tone: str | None = Field(default=None)
    risk_posture: str | None = Field(default=None, alias="riskPosture")
    always_estimate_language: bool | None = Field(
        default=None, alias="alwaysEstimateLanguage"
    )

    @field_validator(
        "min_job", "typical_low", "typical_high", "max_without_inspection", mode="before"
    )
    @classmethod
    def coerce_amount(cls, v: Any) -> float | None:
        return _optional_money(v)


@beartype
class QaContext(StoredPayloadModel):
    """Clarification questions and answers collected before submission."""

    questions: list[Any] = Field(default_factory=list)
    answers: list[Any] = Field(default_factory=list)

    @field_validator("questions", "answers", mode="before")
    @classmethod
    def coerce_list(cls, v: Any) -> list[Any]:
        return list(v) if isinstance(v, list) else []


@beartype
class QuoteInput(StoredPayloadModel):
    """Submission payload stored in ``quotes.input``."""

    images: list[QuoteImage] = Field(default_factory=list)
    customer_context: CustomerContext = Field(default_factory=CustomerContext)
    industry_key_snapshot: str | None = Field(
        default=None, alias="industryKeySnapshot"
    )
    pricing_policy_snapshot: PricingPolicySnapshot = Field(
        default_factory=PricingPolicySnapshot
    )
    pricing_config_snapshot: PricingConfigSnapshot | None = Field(default=None)
    pricing_rules_snapshot: PricingRulesSnapshot | None = Field(default=None)
    llm_key_source: KeySource | None = Field(default=None, alias="llmKeySource")

    @field_validator("images", mode="before")
    @classmethod
    def coerce_images(cls, v: Any) -> list[Any]:
        if not isinstance(v, list):
            return []
        return [item for item in v if isinstance(item, dict | QuoteImage)]

    @field_validator("customer_context", "pricing_policy_snapshot", mode="before")
    @classmethod
    def coerce_object(cls, v: Any) -> Any:
        return v if isinstance(v, dict | BaseModelConfig | StoredPayloadModel) else {}

    @field_validator(
        "pricing_config_snapshot", "pricing_rules_snapshot", mode="before"
    )
    @classmethod
    def coerce_optional_object(cls, v: Any) -> Any:
        return v if isinstance(v, dict | StoredPayloadModel) else None

    @field_validator("industry_key_snapshot", mode="before")
    @classmethod
    def coerce_industry_key(cls, v: Any) -> str | None:
        return _as_text(v) or None

    @field_validator("llm_key_source", mode="before")
    @classmethod
    def coerce_key_source(cls, v: Any) -> KeySource | None:
        return _optional_enum(KeySource, v)


@beartype
class Quote(BaseModelConfig):
    """A customer-submitted quote with its current-output projection."""

    id: UUID = Field(..., description="Quote identifier")
    tenant_id: UUID = Field(..., description="Owning tenant")
    input: QuoteInput = Field(default_factory=QuoteInput)
    qa: QaContext = Field(default_factory=QaContext)
    output: dict[str, Any] = Field(
        default_factory=dict, description="Current output projection"
    )
    current_version: int | None = Field(
        default=None, ge=1, description="Version the projection reflects"
    )
    created_at: datetime | None = Field(default=None)

    @field_validator("input", "qa", mode="before")
    @classmethod
    def coerce_payload(cls, v: Any) -> Any:
        return v if isinstance(v, dict | StoredPayloadModel) else {}

    @field_validator("output", mode="before")
    @classmethod
    def coerce_output(cls, v: Any) -> dict[str, Any]:
        return dict(v) if isinstance(v, dict) else {}


@beartype
class QuoteNote(BaseModelConfig):
    """Tenant-authored internal note attached to a quote."""

    id: UUID
    quote_id: UUID
    tenant_id: UUID
    quote_version_id: UUID | None = None
    created_by: str = Field(default="tenant")
    body: str = Field(default="")
    created_at: datetime | None = None


@beartype
class QuoteVersion(BaseModelConfig):
    """Immutable estimation result for a quote."""

    id: UUID
    tenant_id: UUID
    quote_id: UUID
    version: int = Field(..., ge=1)
    ai_mode: DisplayMode
    source: str
    created_by: str
    reason: str | None = None
    output: dict[str, Any] = Field(default_factory=dict)
    meta: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
