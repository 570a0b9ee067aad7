"""Display-mode shaping of the computed pricing band."""

from beartype import beartype

from ...core.logging_utils import get_logger
from ...models.estimate import EstimationResult, PricedEstimate
from ...models.quote import (
    DisplayMode,
    PricingConfigSnapshot,
    PricingPolicySnapshot,
    PricingRulesSnapshot,
)
from .calculators import compute_band, ensure_low_high

logger = get_logger(__name__)


@beartype
def apply_display_mode(
    policy: PricingPolicySnapshot, low: int, high: int
) -> tuple[int, int]:
    """Published (low, high) for the tenant's display mode.

    Pricing disabled behaves as assessment-only regardless of the mode.
    """
    mode = policy.effective_mode
    if mode is DisplayMode.ASSESSMENT_ONLY:
        return 0, 0

    low, high = ensure_low_high(low, high)
    if mode is DisplayMode.FIXED:
        return low, low
    return low, high


class PricingShaper:
    """Deterministic pricing followed by display-mode shaping."""

    @beartype
    def shape(
        self,
        result: EstimationResult,
        image_count: int,
        policy: PricingPolicySnapshot,
        config: PricingConfigSnapshot | None = None,
        rules: PricingRulesSnapshot | None = None,
    ) -> PricedEstimate:
        """Compute the band and publish it according to the display mode.

        The computed band is always kept in ``basis`` and ``computed_*`` for
        audit, even when nothing is shown.
        """
        band = compute_band(result, image_count, policy.pricing_model, config, rules)
        published_low, published_high = apply_display_mode(policy, band.low, band.high)

        mode = policy.effective_mode
        basis = {
            **band.basis,
            "display_mode_applied": mode.value,
            "computed": {"low": band.low, "high": band.high},
        }
        if not policy.pricing_enabled:
            basis["suppressed_reason"] = "pricing_disabled"
        elif mode is DisplayMode.ASSESSMENT_ONLY:
            basis["suppressed_reason"] = "assessment_only"

        logger.debug(
            "Priced estimate: computed=(%d, %d) published=(%d, %d) mode=%s",
            band.low,
            band.high,
            published_low,
            published_high,
            mode.value,
        )
        return PricedEstimate(
            estimate_low=published_low,
            estimate_high=published_high,
            inspection_required=band.inspection_required,
            basis=basis,
            computed_low=band.low,
            computed_high=band.high,
        )
