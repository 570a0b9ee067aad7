"""Deterministic system prompt composition.

Every function here is pure. The SHA-256 of the composed estimator prompt is
stored with each version, so identical inputs must produce byte-identical
output.
"""

import hashlib
from typing import Final

from beartype import beartype

from ..models.llm_config import EffectiveConfiguration
from ..models.quote import DisplayMode, PricingPolicySnapshot

FRAGMENT_SEPARATOR: Final = "\n\n"


def _clean(value: str | None) -> str:
    return (value or "").strip()


@beartype
def build_guardrail_block(blocked_topics: list[str]) -> str:
    """Render the platform guardrail block."""
    lines = [
        "### PLATFORM GUARDRAILS (NON-NEGOTIABLE)",
        "- Output MUST be valid JSON and MUST match the server-provided JSON schema exactly.",
        "- Do not fabricate unseen details from photos; if unsure, say so via assumptions/questions.",
        "- If photos/notes are ambiguous, set confidence lower and set inspection_required=true.",
    ]
    topics = [topic.strip() for topic in blocked_topics if topic.strip()]
    if topics:
        lines.append(f"- Never discuss or process these topics: {', '.join(topics)}.")
    return "\n".join(lines)


@beartype
def build_estimator_style_block(policy: PricingPolicySnapshot) -> str:
    """Render the estimator communication-style block for the display mode."""
    mode = policy.effective_mode
    if mode is DisplayMode.ASSESSMENT_ONLY:
        mode_line = (
            "- Pricing is disabled/assessment-only: summary should explain why a site "
            "visit is needed; do not include any pricing language."
        )
    elif mode is DisplayMode.FIXED:
        mode_line = (
            "- Pricing mode is FIXED: summary should explain the single-number "
            "estimate and the main cost drivers."
        )
    else:
        mode_line = (
            "- Pricing mode is RANGE: summary should explain why the estimate is a "
            "range and the key drivers between low/high."
        )

    return "\n".join(
        [
            "### ESTIMATOR COMMUNICATION STYLE (IMPORTANT)",
            "- Write like a seasoned estimator writing notes for a customer + internal lead.",
            "- Avoid generic filler. Be concrete about what you see and what drives cost.",
            "- summary must be 2-4 sentences, plain English, no bullet points in summary.",
            mode_line,
            "- visible_scope: 3-6 short scope bullets max. Make them specific to THIS job; "
            "avoid repeating the prompt.",
            "- assumptions: 3-5 items max. Phrase as true estimator assumptions "
            "(e.g., access, disposal, material grade, dimensions not shown).",
            "- questions: 3-5 items max. Ask only what changes price or feasibility.",
            "- If inspection_required=true, summary should clearly state what needs to "
            "be verified onsite and why.",
        ]
    )


@beartype
def build_qa_style_block(max_questions: int) -> str:
    """Render the clarification-question style block."""
    return "\n".join(
        [
            "### Q&A QUESTION STYLE",
            "- Ask short, practical clarification questions only.",
            f"- Do not ask more than {max_questions} questions.",
            "- Avoid generic questions; ask only what affects scope, materials, "
            "dimensions, access, or pricing certainty.",
            "- Return ONLY valid JSON: { questions: string[] }",
        ]
    )


@beartype
def build_pricing_block(policy: PricingPolicySnapshot) -> str:
    """Render the hard pricing-policy rules."""
    lines = ["### PRICING POLICY (HARD RULES)"]
    mode = policy.effective_mode

    if mode is DisplayMode.ASSESSMENT_ONLY:
        lines.extend(
            [
                "- Pricing is disabled or assessment-only.",
                "- Set estimate_low = 0 and estimate_high = 0.",
                "- Do NOT output monetary values.",
            ]
        )
    elif mode is DisplayMode.FIXED:
        lines.extend(
            ["- Pricing mode is FIXED.", "- Set estimate_low == estimate_high."]
        )
    else:
        lines.extend(
            [
                "- Pricing mode is RANGE.",
                "- Explain the range; estimate_low must not exceed estimate_high.",
            ]
        )

    if policy.pricing_enabled and policy.pricing_model is not None:
        lines.append(f"- Pricing model hint: {policy.pricing_model.value}.")

    return "\n".join(lines)


@beartype
def build_industry_layer(addendum: str, industry_key: str | None) -> str:
    """Render the industry specialization section, or nothing."""
    body = _clean(addendum)
    if not body or not _clean(industry_key):
        return ""
    return FRAGMENT_SEPARATOR.join(["### INDUSTRY SPECIALIZATION", body])


@beartype
def build_tenant_layer(config: EffectiveConfiguration) -> str:
    """Render the tenant context section, or nothing."""
    fragments: list[str] = []
    if _clean(config.tenant_style_key):
        fragments.append(f"Tenant style preference: {_clean(config.tenant_style_key)}.")
    if _clean(config.tenant_render_notes):
        fragments.append(f"Tenant-specific notes: {_clean(config.tenant_render_notes)}.")
    if not fragments:
        return ""
    return FRAGMENT_SEPARATOR.join(["### TENANT CONTEXT", *fragments])


def _join(parts: list[str]) -> str:
    return FRAGMENT_SEPARATOR.join(part for part in map(_clean, parts) if part)


@beartype
def compose_estimator_prompt(
    config: EffectiveConfiguration,
    industry_key: str | None,
    pricing_policy: PricingPolicySnapshot,
) -> str:
    """Compose the estimator system prompt.

    Fragment order: guardrails, preamble, estimator body, industry addendum,
    tenant context, style block, pricing block. Empty fragments are dropped.
    """
    return _join(
        [
            build_guardrail_block(config.guardrails.blocked_topics),
            config.extra_system_preamble,
            config.quote_estimator_system,
            build_industry_layer(config.industry_estimator_addendum, industry_key),
            build_tenant_layer(config),
            build_estimator_style_block(pricing_policy),
            build_pricing_block(pricing_policy),
        ]
    )


@beartype
def compose_qa_prompt(
    config: EffectiveConfiguration,
    industry_key: str | None,
    pricing_policy: PricingPolicySnapshot,
) -> str:
    """Compose the clarification-question system prompt.

    Same layering as the estimator prompt with the QA body and style block.
    The pricing block is kept so some modes can steer questions.
    """
    return _join(
        [
            build_guardrail_block(config.guardrails.blocked_topics),
            config.extra_system_preamble,
            config.qa_question_generator_system,
            build_industry_layer(config.industry_qa_addendum, industry_key),
            build_tenant_layer(config),
            build_qa_style_block(config.guardrails.max_qa_questions),
            build_pricing_block(pricing_policy),
        ]
    )


@beartype
def prompt_sha256(prompt: str) -> str:
    """Hex SHA-256 of a composed prompt."""
    return hashlib.sha256(prompt.encode("utf-8")).hexdigest()
