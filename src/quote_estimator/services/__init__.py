"""Re-estimation pipeline services."""

from .config_resolver import ConfigResolver, merge_layers
from .estimation_invoker import CaseMetadata, EstimationInvoker, deterministic_placeholder
from .key_resolver import KeyResolver
from .notes_context import NotesContextBuilder
from .pricing import PricingShaper
from .prompt_composer import compose_estimator_prompt, compose_qa_prompt, prompt_sha256
from .reassess_service import ReassessService, parse_request
from .version_writer import VersionWriter
from .vision_content import VisionContentBuilder

__all__ = [
    "CaseMetadata",
    "ConfigResolver",
    "EstimationInvoker",
    "KeyResolver",
    "NotesContextBuilder",
    "PricingShaper",
    "ReassessService",
    "VersionWriter",
    "VisionContentBuilder",
    "compose_estimator_prompt",
    "compose_qa_prompt",
    "deterministic_placeholder",
    "merge_layers",
    "parse_request",
    "prompt_sha256",
]
