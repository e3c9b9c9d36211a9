"""
Polyphony - multi-model prompt playground.

Streams one prompt to several LLM providers side by side, publishes live
progress per session, and keeps a history of every comparison.
"""

__version__ = "1.0.0"
__author__ = "Polyphony Team"

from polyphony.core.orchestrator import ComparisonOrchestrator, InvalidSubmissionError
from polyphony.core.models import (
    ComparisonRecord,
    ModelIdentifier,
    ModelProvider,
    ModelResult,
)

__all__ = [
    "ComparisonOrchestrator",
    "ComparisonRecord",
    "InvalidSubmissionError",
    "ModelIdentifier",
    "ModelProvider",
    "ModelResult",
]
