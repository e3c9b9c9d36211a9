"""Core orchestration components."""

from polyphony.core.models import (
    ComparisonRecord,
    ModelIdentifier,
    ModelMetadata,
    ModelProvider,
    ModelResult,
    SessionRecord,
    TokenUsage,
)
from polyphony.core.config import Settings, get_settings
from polyphony.core.orchestrator import ComparisonOrchestrator, InvalidSubmissionError

__all__ = [
    "ComparisonOrchestrator",
    "ComparisonRecord",
    "InvalidSubmissionError",
    "ModelIdentifier",
    "ModelMetadata",
    "ModelProvider",
    "ModelResult",
    "SessionRecord",
    "Settings",
    "TokenUsage",
    "get_settings",
]
