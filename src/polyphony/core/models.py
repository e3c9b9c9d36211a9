"""
Core data models for the Polyphony playground.

Defines the model catalogue, per-model streaming results, and the
comparison and session records persisted after each submission.
"""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable

from pydantic import BaseModel, ConfigDict, Field, model_validator


def utcnow() -> datetime:
    """Timezone-aware UTC now."""
    return datetime.now(timezone.utc)


class ModelProvider(str, Enum):
    """Supported AI model providers."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    XAI = "xai"
    GOOGLE = "google"

    @property
    def label(self) -> str:
        """Human-readable provider name used in display names."""
        return _PROVIDER_LABELS[self]


_PROVIDER_LABELS = {
    ModelProvider.OPENAI: "OpenAI",
    ModelProvider.ANTHROPIC: "Anthropic",
    ModelProvider.XAI: "xAI",
    ModelProvider.GOOGLE: "Google",
}


class ModelIdentifier(str, Enum):
    """Logical model identifiers accepted by the playground."""

    # OpenAI
    OPENAI_GPT4O = "openai-gpt4o"
    OPENAI_GPT4O_MINI = "openai-gpt4o-mini"

    # Anthropic
    ANTHROPIC_CLAUDE35_SONNET = "anthropic-claude35-sonnet"
    ANTHROPIC_CLAUDE35_HAIKU = "anthropic-claude35-haiku"
    ANTHROPIC_CLAUDE37_SONNET = "anthropic-claude37-sonnet"
    ANTHROPIC_CLAUDE4_SONNET = "anthropic-claude4-sonnet"
    ANTHROPIC_CLAUDE4_OPUS = "anthropic-claude4-opus"

    # xAI
    XAI_GROK2 = "xai-grok2"
    XAI_GROK3_BETA = "xai-grok3-beta"
    XAI_GROK3_MINI_BETA = "xai-grok3-mini-beta"
    XAI_GROK4 = "xai-grok4"

    # Google
    GOOGLE_GEMINI15_PRO = "google-gemini15-pro"
    GOOGLE_GEMINI15_FLASH = "google-gemini15-flash"


@dataclass(frozen=True)
class ModelMetadata:
    """Catalogue entry for a logical model."""

    model_id: ModelIdentifier
    provider: ModelProvider
    name: str
    api_model: str
    description: str
    context_window: int
    cost_per_1k_tokens: float

    @property
    def display_name(self) -> str:
        """Key used for this model in results and events."""
        return f"{self.provider.label}-{self.name}"


MODEL_REGISTRY: dict[ModelIdentifier, ModelMetadata] = {
    ModelIdentifier.OPENAI_GPT4O: ModelMetadata(
        model_id=ModelIdentifier.OPENAI_GPT4O,
        provider=ModelProvider.OPENAI,
        name="GPT-4o",
        api_model="gpt-4o",
        description="Most capable GPT-4 model, great for complex tasks",
        context_window=128_000,
        cost_per_1k_tokens=0.01,
    ),
    ModelIdentifier.OPENAI_GPT4O_MINI: ModelMetadata(
        model_id=ModelIdentifier.OPENAI_GPT4O_MINI,
        provider=ModelProvider.OPENAI,
        name="GPT-4o Mini",
        api_model="gpt-4o-mini",
        description="Faster, cost-effective version of GPT-4o",
        context_window=128_000,
        cost_per_1k_tokens=0.00015,
    ),
    ModelIdentifier.ANTHROPIC_CLAUDE35_SONNET: ModelMetadata(
        model_id=ModelIdentifier.ANTHROPIC_CLAUDE35_SONNET,
        provider=ModelProvider.ANTHROPIC,
        name="Claude 3.5 Sonnet",
        api_model="claude-3-5-sonnet-20241022",
        description="Balanced performance and speed for most tasks",
        context_window=200_000,
        cost_per_1k_tokens=0.003,
    ),
    ModelIdentifier.ANTHROPIC_CLAUDE35_HAIKU: ModelMetadata(
        model_id=ModelIdentifier.ANTHROPIC_CLAUDE35_HAIKU,
        provider=ModelProvider.ANTHROPIC,
        name="Claude 3.5 Haiku",
        api_model="claude-3-5-haiku-20241022",
        description="Fastest Claude model for quick responses",
        context_window=200_000,
        cost_per_1k_tokens=0.00025,
    ),
    ModelIdentifier.ANTHROPIC_CLAUDE37_SONNET: ModelMetadata(
        model_id=ModelIdentifier.ANTHROPIC_CLAUDE37_SONNET,
        provider=ModelProvider.ANTHROPIC,
        name="Claude 3.7 Sonnet",
        api_model="claude-3-7-sonnet-20250219",
        description="Enhanced version with extended thinking capabilities",
        context_window=200_000,
        cost_per_1k_tokens=0.004,
    ),
    ModelIdentifier.ANTHROPIC_CLAUDE4_SONNET: ModelMetadata(
        model_id=ModelIdentifier.ANTHROPIC_CLAUDE4_SONNET,
        provider=ModelProvider.ANTHROPIC,
        name="Claude 4 Sonnet",
        api_model="claude-sonnet-4-20250514",
        description="Latest Claude model with advanced reasoning",
        context_window=200_000,
        cost_per_1k_tokens=0.005,
    ),
    ModelIdentifier.ANTHROPIC_CLAUDE4_OPUS: ModelMetadata(
        model_id=ModelIdentifier.ANTHROPIC_CLAUDE4_OPUS,
        provider=ModelProvider.ANTHROPIC,
        name="Claude 4 Opus",
        api_model="claude-opus-4-20250514",
        description="Most powerful Claude model for complex tasks",
        context_window=200_000,
        cost_per_1k_tokens=0.015,
    ),
    ModelIdentifier.XAI_GROK2: ModelMetadata(
        model_id=ModelIdentifier.XAI_GROK2,
        provider=ModelProvider.XAI,
        name="Grok 2",
        api_model="grok-2-1212",
        description="Previous generation Grok model",
        context_window=131_072,
        cost_per_1k_tokens=0.002,
    ),
    ModelIdentifier.XAI_GROK3_BETA: ModelMetadata(
        model_id=ModelIdentifier.XAI_GROK3_BETA,
        provider=ModelProvider.XAI,
        name="Grok 3 Beta",
        api_model="grok-3-beta",
        description="Advanced reasoning with superior mathematics and coding",
        context_window=131_072,
        cost_per_1k_tokens=0.002,
    ),
    ModelIdentifier.XAI_GROK3_MINI_BETA: ModelMetadata(
        model_id=ModelIdentifier.XAI_GROK3_MINI_BETA,
        provider=ModelProvider.XAI,
        name="Grok 3 Mini Beta",
        api_model="grok-3-mini-beta",
        description="Lightweight real-time language model",
        context_window=131_072,
        cost_per_1k_tokens=0.0002,
    ),
    ModelIdentifier.XAI_GROK4: ModelMetadata(
        model_id=ModelIdentifier.XAI_GROK4,
        provider=ModelProvider.XAI,
        name="Grok 4",
        api_model="grok-4",
        description="Latest Grok model with advanced reasoning",
        context_window=256_000,
        cost_per_1k_tokens=0.002,
    ),
    ModelIdentifier.GOOGLE_GEMINI15_PRO: ModelMetadata(
        model_id=ModelIdentifier.GOOGLE_GEMINI15_PRO,
        provider=ModelProvider.GOOGLE,
        name="Gemini 1.5 Pro",
        api_model="gemini-1.5-pro",
        description="Long-context multimodal Gemini model",
        context_window=2_000_000,
        cost_per_1k_tokens=0.00125,
    ),
    ModelIdentifier.GOOGLE_GEMINI15_FLASH: ModelMetadata(
        model_id=ModelIdentifier.GOOGLE_GEMINI15_FLASH,
        provider=ModelProvider.GOOGLE,
        name="Gemini 1.5 Flash",
        api_model="gemini-1.5-flash",
        description="Fast and efficient Gemini model",
        context_window=1_000_000,
        cost_per_1k_tokens=0.000075,
    ),
}

DEFAULT_MODELS: list[ModelIdentifier] = [
    ModelIdentifier.OPENAI_GPT4O_MINI,
    ModelIdentifier.ANTHROPIC_CLAUDE35_SONNET,
    ModelIdentifier.XAI_GROK3_BETA,
]

# Rough characters-per-token ratio used when a provider omits usage.
CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Approximate token count for text (ceil of length / 4)."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_cost(total_tokens: int, cost_per_1k_tokens: float) -> float:
    """Estimated USD cost for a token count. Not rounded."""
    return total_tokens * (cost_per_1k_tokens / 1000)


class TokenUsage(BaseModel):
    """Token usage statistics."""

    model_config = ConfigDict(frozen=True)

    prompt_tokens: int = Field(default=0, ge=0)
    completion_tokens: int = Field(default=0, ge=0)
    total_tokens: int = Field(default=0, ge=0)

    @classmethod
    def estimate(cls, prompt: str, completion: str) -> "TokenUsage":
        """Character-count estimate for providers that omit usage."""
        prompt_tokens = estimate_tokens(prompt)
        completion_tokens = estimate_tokens(completion)
        return cls(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
        )


class ModelResult(BaseModel):
    """Outcome of one model's stream within a comparison."""

    model_config = ConfigDict(frozen=True)

    model: str
    model_id: ModelIdentifier | None = None
    response: str = ""
    tokens: TokenUsage | None = None
    elapsed_ms: float = Field(default=0.0, ge=0.0)
    estimated_cost_usd: float | None = Field(default=None, ge=0.0)
    error: str | None = None
    synthetic: bool = False

    @model_validator(mode="after")
    def _error_implies_no_content(self) -> "ModelResult":
        if self.error is not None and self.response and not self.synthetic:
            raise ValueError("errored results may only carry synthetic response text")
        return self

    @property
    def success(self) -> bool:
        """True when the model produced a real response."""
        return self.error is None

    @classmethod
    def failure(
        cls,
        model: str,
        error: str,
        model_id: ModelIdentifier | None = None,
        elapsed_ms: float = 0.0,
    ) -> "ModelResult":
        """Create an errored result with no response text."""
        return cls(
            model=model,
            model_id=model_id,
            response="",
            elapsed_ms=max(elapsed_ms, 0.0),
            error=error,
        )


class StreamProgress(BaseModel):
    """Cosmetic progress indicator attached to stream events."""

    model_config = ConfigDict(frozen=True)

    current: int = 0
    total: int = 1000

    @property
    def percentage(self) -> float:
        """Completion percentage, capped at 100."""
        if self.total <= 0:
            return 0.0
        return min(100.0, self.current / self.total * 100)


COMPARISON_SCHEMA_VERSION = 1


class ComparisonRecord(BaseModel):
    """One prompt's results across N models, persisted once."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: f"cmp-{uuid.uuid4().hex[:16]}")
    schema_version: int = COMPARISON_SCHEMA_VERSION
    session_id: str
    prompt: str
    results: dict[str, ModelResult] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime = Field(default_factory=utcnow)
    total_tokens: int = 0
    total_cost_usd: float = 0.0
    average_response_time_ms: float = 0.0
    owner_user_id: str | None = None
    owner_user_email: str | None = None

    @classmethod
    def from_results(
        cls,
        session_id: str,
        prompt: str,
        results: dict[str, ModelResult],
        created_at: datetime,
        completed_at: datetime | None = None,
        owner_user_id: str | None = None,
        owner_user_email: str | None = None,
    ) -> "ComparisonRecord":
        """Build a record and compute its aggregate metrics."""
        total_tokens, total_cost, average_ms = aggregate_metrics(results.values())
        return cls(
            session_id=session_id,
            prompt=prompt,
            results=dict(results),
            created_at=created_at,
            completed_at=completed_at or utcnow(),
            total_tokens=total_tokens,
            total_cost_usd=total_cost,
            average_response_time_ms=average_ms,
            owner_user_id=owner_user_id,
            owner_user_email=owner_user_email,
        )

    @property
    def model_names(self) -> list[str]:
        """Display names in completion order."""
        return list(self.results)

    @property
    def successful_results(self) -> list[ModelResult]:
        """Get only successful results."""
        return [r for r in self.results.values() if r.success]

    @property
    def failed_results(self) -> list[ModelResult]:
        """Get only failed results."""
        return [r for r in self.results.values() if not r.success]


def aggregate_metrics(results: Iterable[ModelResult]) -> tuple[int, float, float]:
    """
    Sum tokens and cost, and average elapsed time, over a comparison's results.

    Results with ``elapsed_ms == 0`` are left out of the average's denominator.

    Returns:
        (total_tokens, total_cost_usd, average_response_time_ms)
    """
    total_tokens = 0
    costs: list[float] = []
    timings: list[float] = []

    for result in results:
        if result.tokens is not None:
            total_tokens += result.tokens.total_tokens
        if result.estimated_cost_usd is not None:
            costs.append(result.estimated_cost_usd)
        if result.elapsed_ms > 0:
            timings.append(result.elapsed_ms)

    # fsum keeps the float sums independent of completion order
    average = math.fsum(timings) / len(timings) if timings else 0.0
    return total_tokens, math.fsum(costs), average


class SessionRecord(BaseModel):
    """A client-chosen session grouping successive comparisons."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    selected_models: list[ModelIdentifier] = Field(default_factory=list)
    name: str | None = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    last_activity_at: datetime = Field(default_factory=utcnow)
