"""Deterministic pricing band calculation.

The estimator supplies scope, an inspection signal and a confidence level.
The band itself is computed here from the tenant's frozen pricing
configuration and rules; the model's own numbers are only a fallback.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from attrs import field, frozen
from beartype import beartype

from ...models.estimate import Confidence, EstimationResult
from ...models.quote import (
    MAX_MONEY_AMOUNT,
    PricingConfigSnapshot,
    PricingModel,
    PricingRulesSnapshot,
)

ZERO = Decimal("0")
ONE = Decimal("1")
MAX_MONEY = Decimal(MAX_MONEY_AMOUNT)

CONFIDENCE_WEIGHTS: dict[Confidence, Decimal] = {
    Confidence.HIGH: Decimal("0.85"),
    Confidence.MEDIUM: Decimal("1.0"),
    Confidence.LOW: Decimal("1.2"),
}

MIN_COMPLEXITY = Decimal("1")
MAX_COMPLEXITY = Decimal("10")
DEFAULT_MATERIAL_MARKUP_PERCENT = Decimal("30")


@beartype
def to_decimal(value: float | int | Decimal | None) -> Decimal:
    """Convert an amount to Decimal; None becomes zero."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


@beartype
def clamp_money(value: float | int | Decimal) -> int:
    """Round to whole currency units (half up) within [0, MAX_MONEY]."""
    amount = to_decimal(value)
    if not amount.is_finite():
        return 0
    amount = max(ZERO, min(MAX_MONEY, amount))
    return int(amount.quantize(ONE, rounding=ROUND_HALF_UP))


@beartype
def ensure_low_high(
    low: float | int | Decimal, high: float | int | Decimal
) -> tuple[int, int]:
    """Clamp both bounds and order them."""
    a = clamp_money(low)
    b = clamp_money(high)
    return (a, b) if a <= b else (b, a)


@beartype
def confidence_weight(confidence: Confidence) -> Decimal:
    """Band widening factor; lower confidence widens."""
    return CONFIDENCE_WEIGHTS.get(confidence, CONFIDENCE_WEIGHTS[Confidence.LOW])


@beartype
def complexity_score(result: EstimationResult, image_count: int) -> Decimal:
    """Industry-agnostic job complexity proxy in [1, 10]."""
    images = max(1, min(12, image_count))
    raw = (
        ONE
        + len(result.visible_scope) * Decimal("0.9")
        + len(result.questions) * Decimal("0.35")
        + len(result.assumptions) * Decimal("0.2")
        + images * Decimal("0.25")
        + (ONE if result.inspection_required else ZERO)
    )
    return max(MIN_COMPLEXITY, min(MAX_COMPLEXITY, raw))


def _num(value: Decimal) -> float:
    return float(value.quantize(Decimal("0.0001"), rounding=ROUND_HALF_UP))


@frozen
class PricingBand:
    """Computed band before display-mode shaping."""

    low: int = field()
    high: int = field()
    inspection_required: bool = field()
    basis: dict[str, Any] = field(factory=dict)


class BandCalculator:
    """Per-pricing-model band formulas.

    Each method returns ``(low, high, basis)`` before rules are applied, or
    ``None`` when the model's parameters are missing.
    """

    @beartype
    @staticmethod
    def flat_per_job(
        config: PricingConfigSnapshot | None,
        rules: PricingRulesSnapshot | None,
        weight: Decimal,
        complexity: Decimal,
    ) -> tuple[Decimal, Decimal, dict[str, Any]]:
        if config is not None and config.flat_rate_default is not None:
            base = to_decimal(config.flat_rate_default)
        else:
            base = to_decimal(rules.typical_low if rules else None)
        spread = base * (Decimal("0.18") * weight) + complexity * 25
        low = max(ZERO, base - spread * Decimal("0.55"))
        high = base + spread
        return low, high, {"method": "flat_per_job", "base": _num(base), "spread": _num(spread)}

    @beartype
    @staticmethod
    def assessment_fee(
        config: PricingConfigSnapshot | None,
        rules: PricingRulesSnapshot | None,
    ) -> tuple[Decimal, Decimal, dict[str, Any]]:
        fee = to_decimal(
            config.assessment_fee_amount
            if config and config.assessment_fee_amount is not None
            else (rules.typical_low if rules else None)
        )
        return (
            fee,
            fee,
            {
                "method": "assessment_fee",
                "fee": _num(fee),
                "credit_toward_job": bool(
                    config and config.assessment_fee_credit_toward_job
                ),
            },
        )

    @beartype
    @staticmethod
    def hourly_plus_materials(
        config: PricingConfigSnapshot | None,
        weight: Decimal,
        complexity: Decimal,
    ) -> tuple[Decimal, Decimal, dict[str, Any]] | None:
        if config is None or not config.hourly_labor_rate:
            return None

        hourly = to_decimal(config.hourly_labor_rate)
        markup = (
            to_decimal(config.material_markup_percent)
            if config.material_markup_percent is not None
            else DEFAULT_MATERIAL_MARKUP_PERCENT
        )

        # Hours scale with complexity; high end widens with low confidence.
        base_hours = Decimal("2.5") + complexity * Decimal("0.85")
        low_hours = max(ONE, base_hours * Decimal("0.85"))
        high_hours = base_hours * Decimal("1.25") * weight

        labor_low = low_hours * hourly
        labor_high = high_hours * hourly

        markup_factor = ONE + markup / 100
        materials_low = labor_low * Decimal("0.22") * markup_factor
        materials_high = labor_high * Decimal("0.35") * markup_factor

        return (
            labor_low + materials_low,
            labor_high + materials_high,
            {
                "method": "hourly_plus_materials",
                "hourly": _num(hourly),
                "markup_percent": _num(markup),
                "hours": {"low": _num(low_hours), "high": _num(high_hours)},
                "labor": {"low": _num(labor_low), "high": _num(labor_high)},
                "materials": {"low": _num(materials_low), "high": _num(materials_high)},
            },
        )

    @beartype
    @staticmethod
    def per_unit(
        config: PricingConfigSnapshot | None,
        weight: Decimal,
        complexity: Decimal,
    ) -> tuple[Decimal, Decimal, dict[str, Any]] | None:
        if config is None or not config.per_unit_rate:
            return None

        rate = to_decimal(config.per_unit_rate)
        base_units = 4 + complexity * Decimal("3.2")
        low_units = max(ONE, base_units * Decimal("0.8"))
        high_units = base_units * Decimal("1.35") * weight

        return (
            low_units * rate,
            high_units * rate,
            {
                "method": "per_unit",
                "per_unit_rate": _num(rate),
                "per_unit_label": config.per_unit_label,
                "units": {"low": _num(low_units), "high": _num(high_units)},
            },
        )

    @beartype
    @staticmethod
    def fallback(
        result: EstimationResult, rules: PricingRulesSnapshot | None
    ) -> tuple[Decimal, Decimal, dict[str, Any]]:
        """Model's raw band, then typical rules, then zero."""
        if result.estimate_high > 0:
            return (
                to_decimal(result.estimate_low),
                to_decimal(result.estimate_high),
                {"method": "model.raw"},
            )
        if rules is not None and rules.typical_low is not None:
            if rules.typical_high is not None:
                return (
                    to_decimal(rules.typical_low),
                    to_decimal(rules.typical_high),
                    {"method": "rules.typical"},
                )
            typical = to_decimal(rules.typical_low)
            return typical, typical, {"method": "rules.typical_low_only"}
        return ZERO, ZERO, {"method": "fallback.zero"}


@beartype
def compute_band(
    result: EstimationResult,
    image_count: int,
    pricing_model: PricingModel | None,
    config: PricingConfigSnapshot | None,
    rules: PricingRulesSnapshot | None,
) -> PricingBand:
    """Compute the deterministic band, independent of display mode."""
    model = pricing_model or (config.model if config else None)
    weight = confidence_weight(result.confidence)
    complexity = complexity_score(result, image_count)
    inspection_required = result.inspection_required

    computed: tuple[Decimal, Decimal, dict[str, Any]] | None
    if model is PricingModel.FLAT_PER_JOB:
        computed = BandCalculator.flat_per_job(config, rules, weight, complexity)
    elif model is PricingModel.ASSESSMENT_FEE:
        computed = BandCalculator.assessment_fee(config, rules)
    elif model is PricingModel.HOURLY_PLUS_MATERIALS:
        computed = BandCalculator.hourly_plus_materials(config, weight, complexity)
    elif model is PricingModel.PER_UNIT:
        computed = BandCalculator.per_unit(config, weight, complexity)
    elif model is PricingModel.INSPECTION_ONLY:
        inspection_required = True
        low, high, fallback_basis = BandCalculator.fallback(result, rules)
        computed = (low, high, {**fallback_basis, "method": "inspection_only"})
    else:
        low, high, fallback_basis = BandCalculator.fallback(result, rules)
        method = f"unsupported.{model.value}" if model else "no_model"
        computed = (low, high, {**fallback_basis, "method": method})

    if computed is None:
        computed = BandCalculator.fallback(result, rules)

    low, high, method_basis = computed
    basis: dict[str, Any] = {
        "model": model.value if model else None,
        "confidence_weight": _num(weight),
        "complexity": _num(complexity),
        **method_basis,
    }

    min_job = to_decimal(rules.min_job) if rules and rules.min_job else ZERO
    if min_job > 0:
        low = max(low, min_job)
        high = max(high, min_job)
        basis["min_job_applied"] = _num(min_job)

    max_without_inspection = (
        to_decimal(rules.max_without_inspection)
        if rules and rules.max_without_inspection
        else ZERO
    )
    if not inspection_required and max_without_inspection > 0 and high > max_without_inspection:
        inspection_required = True
        high = max_without_inspection
        low = min(low, high)
        basis["max_without_inspection_applied"] = _num(max_without_inspection)
        basis["forced_inspection"] = True

    band_low, band_high = ensure_low_high(low, high)
    return PricingBand(
        low=band_low,
        high=band_high,
        inspection_required=inspection_required,
        basis=basis,
    )
