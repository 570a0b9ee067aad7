"""Strict-schema multimodal estimator call with defensive output coercion.

The provider is asked for a strict JSON schema, but its output is never
trusted: every field is coerced into an ``EstimationResult`` before anything
else reads it. Unusable content yields a zeroed, low-confidence fallback
record; transport, auth and status failures are surfaced as
``INFERENCE_ERROR`` and are not retried.
"""

import json
import math
from collections.abc import Callable, Sequence
from typing import Any, Final

import openai
from attrs import field, frozen
from beartype import beartype
from openai import AsyncOpenAI

from ..core.config import Settings
from ..core.errors import PipelineError, inference_error
from ..core.logging_utils import get_logger
from ..core.result_types import Err, Ok
from ..models.estimate import Confidence, EstimationResult, ResolvedCredential, VisionContentItem
from ..models.llm_config import DEFAULT_MAX_OUTPUT_TOKENS, MAX_OUTPUT_TOKENS, MIN_OUTPUT_TOKENS
from .performance_monitor import performance_monitor
from .pricing.calculators import ensure_low_high

logger = get_logger(__name__)

DETERMINISTIC_SUMMARY: Final = (
    "Deterministic-only reassess: internal notes captured. Enable the full "
    "assessment engine to generate scope + estimate range."
)

QUOTE_ESTIMATE_SCHEMA: Final[dict[str, Any]] = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "confidence": {"type": "string", "enum": ["high", "medium", "low"]},
        "inspection_required": {"type": "boolean"},
        "estimate_low": {"type": "number"},
        "estimate_high": {"type": "number"},
        "currency": {"type": "string"},
        "summary": {"type": "string"},
        "visible_scope": {"type": "array", "items": {"type": "string"}},
        "assumptions": {"type": "array", "items": {"type": "string"}},
        "questions": {"type": "array", "items": {"type": "string"}},
    },
    "required": [
        "confidence",
        "inspection_required",
        "estimate_low",
        "estimate_high",
        "currency",
        "summary",
        "visible_scope",
        "assumptions",
        "questions",
    ],
}

RESPONSE_FORMAT: Final[dict[str, Any]] = {
    "type": "json_schema",
    "json_schema": {
        "name": "quote_estimate",
        "strict": True,
        "schema": QUOTE_ESTIMATE_SCHEMA,
    },
}

_TRUE_STRINGS: Final = frozenset({"true", "yes", "y", "1"})
_FALSE_STRINGS: Final = frozenset({"false", "no", "n", "0"})

ClientFactory = Callable[[ResolvedCredential], AsyncOpenAI]


@frozen
class CaseMetadata:
    """Per-quote facts sent alongside the images."""

    category: str = field()
    service_type: str = field()
    notes_text: str = field(default="")


@beartype
def clamp_max_tokens(value: int | None) -> int:
    """Clamp the output token budget to [200, 4000]."""
    if value is None or value <= 0:
        return DEFAULT_MAX_OUTPUT_TOKENS
    return max(MIN_OUTPUT_TOKENS, min(MAX_OUTPUT_TOKENS, value))


@beartype
def coerce_number(value: Any) -> float:
    """Numeric coercion; NaN, infinities, overflow and non-numbers become 0."""
    if isinstance(value, bool) or value is None:
        return 0.0
    try:
        number = float(value.strip() if isinstance(value, str) else value)
    except (TypeError, ValueError, OverflowError):
        return 0.0
    return number if math.isfinite(number) else 0.0


@beartype
def coerce_string_list(value: Any) -> list[str]:
    """Non-lists become []; items are stringified and trimmed, blanks dropped."""
    if not isinstance(value, list):
        return []
    items = ("" if item is None else str(item).strip() for item in value)
    return [item for item in items if item]


@beartype
def coerce_confidence(value: Any) -> Confidence:
    """Values outside the enum become ``low``."""
    try:
        return Confidence(str(value).strip().lower())
    except ValueError:
        return Confidence.LOW


@beartype
def coerce_inspection_flag(value: Any) -> bool:
    """Coerce the inspection flag; missing or unreadable means inspect."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int | float):
        return value != 0
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _FALSE_STRINGS:
            return False
        if text in _TRUE_STRINGS:
            return True
    return True


@beartype
def fallback_result(reason: str) -> EstimationResult:
    """Zeroed, low-confidence, inspection-required record."""
    return EstimationResult(
        confidence=Confidence.LOW,
        inspection_required=True,
        estimate_low=0,
        estimate_high=0,
        currency="USD",
        summary="",
        fallback_reason=reason,
    )


@beartype
def deterministic_placeholder() -> EstimationResult:
    """Fixed, clearly labelled record used by the deterministic-only engine."""
    return EstimationResult(
        confidence=Confidence.LOW,
        inspection_required=True,
        estimate_low=0,
        estimate_high=0,
        currency="USD",
        summary=DETERMINISTIC_SUMMARY,
    )


@beartype
def coerce_estimation(payload: Any) -> EstimationResult | None:
    """Coerce a decoded provider payload; None when it is not an object."""
    if not isinstance(payload, dict):
        return None

    # Some models echo the schema shape and nest the answer under "properties".
    properties = payload.get("properties")
    if isinstance(properties, dict):
        payload = properties

    low, high = ensure_low_high(
        coerce_number(payload.get("estimate_low")),
        coerce_number(payload.get("estimate_high")),
    )
    currency = str(payload.get("currency") or "").strip().upper() or "USD"
    summary = payload.get("summary")

    return EstimationResult(
        confidence=coerce_confidence(payload.get("confidence")),
        inspection_required=coerce_inspection_flag(
            payload.get("inspection_required")
        ),
        estimate_low=low,
        estimate_high=high,
        currency=currency,
        summary=summary.strip() if isinstance(summary, str) else "",
        visible_scope=coerce_string_list(payload.get("visible_scope")),
        assumptions=coerce_string_list(payload.get("assumptions")),
        questions=coerce_string_list(payload.get("questions")),
    )


@beartype
def parse_estimation(raw: str | None) -> EstimationResult:
    """Decode and coerce raw message content, or return the fallback record."""
    if raw is None or not raw.strip():
        return fallback_result("empty_response")
    try:
        payload = json.loads(raw)
    except ValueError:
        # Also covers integer literals past the interpreter's digit limit.
        return fallback_result("unparseable_json")

    result = coerce_estimation(payload)
    if result is None:
        return fallback_result("non_object_json")
    return result


@beartype
def build_user_text(case: CaseMetadata) -> str:
    """Case description sent as the first user content part."""
    return "\n".join(
        [
            f"Category: {case.category}",
            f"Service type: {case.service_type}",
            f"Notes: {case.notes_text or '(none)'}",
            "",
            "Instructions:",
            "- Use the photos to identify the item, material type, and visible damage/wear.",
            "- Provide estimate_low and estimate_high (whole currency units).",
            "- Provide visible_scope as short bullet-style strings.",
            "- Provide assumptions and questions (3-8 items each is fine).",
        ]
    )


class EstimationInvoker:
    """Issue the estimator call and coerce its output."""

    def __init__(
        self,
        settings: Settings,
        client_factory: ClientFactory | None = None,
    ) -> None:
        """Initialize invoker; ``client_factory`` is injectable for tests."""
        self._settings = settings
        self._client_factory = client_factory or self._default_client

    def _default_client(self, credential: ResolvedCredential) -> AsyncOpenAI:
        # Single attempt: the SDK's own retries are disabled.
        return AsyncOpenAI(
            api_key=credential.api_key.get_secret_value(),
            base_url=self._settings.openai_base_url,
            max_retries=0,
        )

    @beartype
    @performance_monitor("estimation_inference", max_duration_ms=30000)
    async def invoke(
        self,
        credential: ResolvedCredential,
        model: str,
        system_prompt: str,
        vision_content: Sequence[VisionContentItem],
        case: CaseMetadata,
        max_output_tokens: int | None = None,
    ) -> Ok[EstimationResult] | Err[PipelineError]:
        """Run one estimator call.

        Returns:
            Ok with the coerced (or fallback) result, Err on transport failure
        """
        content: list[dict[str, Any]] = [{"type": "text", "text": build_user_text(case)}]
        content.extend(item.to_message_part() for item in vision_content)

        client = self._client_factory(credential)
        try:
            completion = await client.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": content},
                ],
                temperature=self._settings.inference_temperature,
                max_tokens=clamp_max_tokens(max_output_tokens),
                response_format=RESPONSE_FORMAT,
            )
        except openai.APIStatusError as e:
            logger.error(
                "Estimator call rejected (model=%s, key_source=%s, status=%d)",
                model,
                credential.key_source.value,
                e.status_code,
            )
            return Err(
                inference_error(
                    f"Inference provider returned HTTP {e.status_code}",
                    status_code=e.status_code,
                    model=model,
                )
            )
        except openai.OpenAIError as e:
            logger.error(
                "Estimator call failed (model=%s, key_source=%s): %s",
                model,
                credential.key_source.value,
                type(e).__name__,
            )
            return Err(
                inference_error(
                    f"Inference provider request failed: {type(e).__name__}",
                    model=model,
                )
            )

        if not completion.choices:
            logger.warning("Estimator returned no choices (model=%s)", model)
            return Ok(fallback_result("no_choices"))

        message = completion.choices[0].message
        if getattr(message, "refusal", None):
            logger.warning("Estimator refused the request (model=%s)", model)
            return Ok(fallback_result("refusal"))

        result = parse_estimation(message.content)
        if result.fallback_reason is not None:
            logger.warning(
                "Estimator output unusable (model=%s, reason=%s)",
                model,
                result.fallback_reason,
            )
        else:
            logger.info(
                "Estimator returned confidence=%s inspection_required=%s",
                result.confidence.value,
                result.inspection_required,
            )
        return Ok(result)
