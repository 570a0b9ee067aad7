# QuoteCore - Tenant Quote Re-estimation Pipeline
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Domain models for the quote re-estimation pipeline."""

from .base import BaseModelConfig, StoredPayloadModel
from .estimate import (
    AuditSnapshot,
    Confidence,
    EstimationResult,
    NotesContext,
    NotesContextSummary,
    PricedEstimate,
    ReassessRequest,
    ReassessResult,
    ResolvedCredential,
    VersionRef,
    VisionContentItem,
)
from .llm_config import (
    ConfigLayer,
    ConfigLayerName,
    ConfigMeta,
    EffectiveConfiguration,
    Guardrails,
)
from .quote import (
    CustomerContext,
    DisplayMode,
    Engine,
    KeySource,
    PricingConfigSnapshot,
    PricingModel,
    PricingPolicySnapshot,
    PricingRulesSnapshot,
    QaContext,
    Quote,
    QuoteImage,
    QuoteInput,
    QuoteNote,
    QuoteVersion,
)

__all__ = [
    # Base
    "BaseModelConfig",
    "StoredPayloadModel",
    # Quote
    "CustomerContext",
    "DisplayMode",
    "Engine",
    "KeySource",
    "PricingConfigSnapshot",
    "PricingModel",
    "PricingPolicySnapshot",
    "PricingRulesSnapshot",
    "QaContext",
    "Quote",
    "QuoteImage",
    "QuoteInput",
    "QuoteNote",
    "QuoteVersion",
    # Configuration
    "ConfigLayer",
    "ConfigLayerName",
    "ConfigMeta",
    "EffectiveConfiguration",
    "Guardrails",
    # Estimation
    "AuditSnapshot",
    "Confidence",
    "EstimationResult",
    "NotesContext",
    "NotesContextSummary",
    "PricedEstimate",
    "ReassessRequest",
    "ReassessResult",
    "ResolvedCredential",
    "VersionRef",
    "VisionContentItem",
]
