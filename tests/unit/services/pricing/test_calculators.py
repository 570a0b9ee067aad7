"""Unit tests for deterministic pricing bands."""

from decimal import Decimal

import pytest

from quote_estimator.models.estimate import Confidence, EstimationResult
from quote_estimator.models.quote import (
    PricingConfigSnapshot,
    PricingModel,
    PricingRulesSnapshot,
)
from quote_estimator.services.pricing.calculators import (
    clamp_money,
    complexity_score,
    compute_band,
    confidence_weight,
    ensure_low_high,
)


def _result(**fields) -> EstimationResult:
    base = {
        "confidence": Confidence.MEDIUM,
        "inspection_required": False,
        "estimate_low": 0,
        "estimate_high": 0,
        "visible_scope": ["Replace panel", "Refinish trim"],
        "questions": ["Year of vehicle?"],
        "assumptions": ["Standard access"],
    }
    base.update(fields)
    return EstimationResult(**base)


class TestMoneyHelpers:
    """Test rounding and ordering helpers."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            (Decimal("10.5"), 11),
            (Decimal("10.49"), 10),
            (-3, 0),
            (2.5, 3),
            (0, 0),
            (1e30, 2_000_000),
            (-1e30, 0),
            (10**400, 2_000_000),
        ],
    )
    def test_clamp_money_rounds_half_up(self, value, expected):
        """Test whole-unit rounding between zero and the money ceiling."""
        assert clamp_money(value) == expected

    def test_ensure_low_high_orders(self):
        """Test bounds are swapped when reversed."""
        assert ensure_low_high(500, 100) == (100, 500)

    def test_lower_confidence_widens(self):
        """Test low confidence gets the largest weight."""
        assert confidence_weight(Confidence.LOW) > confidence_weight(Confidence.MEDIUM)
        assert confidence_weight(Confidence.MEDIUM) > confidence_weight(Confidence.HIGH)

    def test_complexity_is_bounded(self):
        """Test complexity stays within [1, 10]."""
        busy = _result(visible_scope=["x"] * 30, inspection_required=True)

        assert complexity_score(busy, 50) == Decimal("10")
        assert complexity_score(_result(visible_scope=[], questions=[], assumptions=[]), 0) >= 1


class TestComputeBand:
    """Test per-model band computation and rule application."""

    def test_flat_per_job_brackets_base(self):
        """Test the flat band surrounds the configured flat rate."""
        config = PricingConfigSnapshot(model="flat_per_job", flatRateDefault=400)

        band = compute_band(_result(), 2, PricingModel.FLAT_PER_JOB, config, None)

        assert band.low < 400 < band.high
        assert band.basis["method"] == "flat_per_job"
        assert band.basis["base"] == 400.0

    def test_flat_per_job_uses_typical_low_without_rate(self):
        """Test typical_low is the base when no flat rate is configured."""
        rules = PricingRulesSnapshot(typicalLow=300)

        band = compute_band(_result(), 1, PricingModel.FLAT_PER_JOB, None, rules)

        assert band.basis["base"] == 300.0

    def test_hourly_plus_materials(self):
        """Test hourly pricing produces an ordered positive band."""
        config = PricingConfigSnapshot(
            model="hourly_plus_materials", hourlyLaborRate=90, materialMarkupPercent=20
        )

        band = compute_band(_result(), 3, None, config, None)

        assert 0 < band.low < band.high
        assert band.basis["method"] == "hourly_plus_materials"
        assert band.basis["markup_percent"] == 20.0

    def test_hourly_without_rate_falls_back_to_rules(self):
        """Test a missing hourly rate uses the typical rules band."""
        config = PricingConfigSnapshot(model="hourly_plus_materials")
        rules = PricingRulesSnapshot(typicalLow=200, typicalHigh=800)

        band = compute_band(_result(), 1, None, config, rules)

        assert (band.low, band.high) == (200, 800)
        assert band.basis["method"] == "rules.typical"

    def test_per_unit(self):
        """Test per-unit pricing records its unit label."""
        config = PricingConfigSnapshot(model="per_unit", perUnitRate=12, perUnitLabel="sq ft")

        band = compute_band(_result(), 2, None, config, None)

        assert band.low < band.high
        assert band.basis["per_unit_label"] == "sq ft"

    def test_assessment_fee_is_fixed(self):
        """Test the assessment fee yields a single-value band."""
        config = PricingConfigSnapshot(
            model="assessment_fee", assessmentFeeAmount=125, assessmentFeeCreditTowardJob=True
        )

        band = compute_band(_result(), 1, None, config, None)

        assert (band.low, band.high) == (125, 125)
        assert band.basis["credit_toward_job"] is True

    def test_inspection_only_forces_inspection(self):
        """Test the inspection-only model always requires inspection."""
        band = compute_band(
            _result(estimate_low=100, estimate_high=200),
            1,
            PricingModel.INSPECTION_ONLY,
            None,
            None,
        )

        assert band.inspection_required is True
        assert band.basis["method"] == "inspection_only"

    def test_unsupported_model_uses_model_band(self):
        """Test models without a formula fall back to the estimator's band."""
        band = compute_band(
            _result(estimate_low=150, estimate_high=450), 1, PricingModel.PACKAGES, None, None
        )

        assert (band.low, band.high) == (150, 450)
        assert band.basis["method"] == "unsupported.packages"

    def test_no_model_no_rules_is_zero(self):
        """Test nothing to price from gives a zero band."""
        band = compute_band(_result(), 1, None, None, None)

        assert (band.low, band.high) == (0, 0)

    def test_min_job_raises_band(self):
        """Test both bounds are raised to the minimum job price."""
        config = PricingConfigSnapshot(model="flat_per_job", flatRateDefault=100)
        rules = PricingRulesSnapshot(minJob=1000)

        band = compute_band(_result(), 1, PricingModel.FLAT_PER_JOB, config, rules)

        assert band.low == 1000
        assert band.high == 1000
        assert band.basis["min_job_applied"] == 1000.0

    def test_max_without_inspection_caps_and_forces_inspection(self):
        """Test exceeding the cap forces inspection and caps the high end."""
        config = PricingConfigSnapshot(model="flat_per_job", flatRateDefault=2000)
        rules = PricingRulesSnapshot(maxWithoutInspection=1500)

        band = compute_band(_result(), 1, PricingModel.FLAT_PER_JOB, config, rules)

        assert band.inspection_required is True
        assert band.high == 1500
        assert band.low <= band.high
        assert band.basis["forced_inspection"] is True

    def test_cap_not_applied_when_inspection_already_required(self):
        """Test the cap only applies to jobs not already needing inspection."""
        config = PricingConfigSnapshot(model="flat_per_job", flatRateDefault=2000)
        rules = PricingRulesSnapshot(maxWithoutInspection=1500)

        band = compute_band(
            _result(inspection_required=True), 1, PricingModel.FLAT_PER_JOB, config, rules
        )

        assert band.high > 1500
        assert "forced_inspection" not in band.basis
