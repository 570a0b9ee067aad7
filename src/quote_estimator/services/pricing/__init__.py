"""Deterministic pricing and display-mode shaping."""

from .calculators import (
    BandCalculator,
    PricingBand,
    clamp_money,
    complexity_score,
    compute_band,
    confidence_weight,
    ensure_low_high,
)
from .shaper import PricingShaper, apply_display_mode

__all__ = [
    "BandCalculator",
    "PricingBand",
    "PricingShaper",
    "apply_display_mode",
    "clamp_money",
    "complexity_score",
    "compute_band",
    "confidence_weight",
    "ensure_low_high",
]
