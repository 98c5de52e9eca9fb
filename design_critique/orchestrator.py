"""
Multi-Model Orchestrator

Claude-first orchestration over the configured providers:

- Claude: 70% weight (primary analysis)
- OpenAI: 20% weight (supplementary enhancement, or fallback primary)
- Perplexity: 10% weight (research validation, never raw annotations)

One call to ``orchestrate`` always ends in a SynthesisResult. Provider
failures are recorded as fallback reason tags; the worst case is an
empty result with zero confidence.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

from .models import (
    Annotation,
    Config,
    ImagePayload,
    ModelResponse,
    OrchestrationOptions,
    SynthesisMetadata,
    SynthesisResult,
)
from .providers import (
    AnthropicProvider,
    OpenAIProvider,
    PerplexityProvider,
    ProviderRequest,
    VisionProvider,
)

logger = logging.getLogger(__name__)

DEFAULT_WEIGHTS = {
    "claude": 0.70,
    "openai": 0.20,
    "perplexity": 0.10,
}

PRIMARY_TARGET_RANGE = (16, 19)
PRIMARY_MIN_ANNOTATIONS = 12
SUPPLEMENTARY_MIN_ANNOTATIONS = 8
FALLBACK_MIN_ANNOTATIONS = 12

MAX_MERGED_ANNOTATIONS = 19
# Secondary annotations closer than this on both axes are already covered
COVERAGE_DISTANCE = 10

PRIMARY_SYNTHESIS_DISCOUNT = 0.9
FALLBACK_SYNTHESIS_DISCOUNT = 0.7

WEIGHT_STEP_UP = 1.05
WEIGHT_STEP_DOWN = 0.95
WEIGHT_FAILURE_STEP = 0.90
WEIGHT_CONFIDENCE_THRESHOLD = 0.75
MIN_WEIGHT = 0.01


class OrchestrationState(str, Enum):
    INIT = "init"
    PRIMARY_CALLED = "primary_called"
    PRIMARY_ACCEPTED = "primary_accepted"
    PRIMARY_REJECTED = "primary_rejected"
    SECONDARY_CALLED = "secondary_called"
    RESEARCH_CALLED = "research_called"
    SYNTHESIZED = "synthesized"
    DONE = "done"


class WeightTable:
    """
    Provider weight table shared by every orchestration in the process.

    Adjustments are a read-modify-write with last-writer-wins semantics;
    drift between concurrent runs is tolerated.
    """

    def __init__(self, weights: Optional[dict[str, float]] = None):
        self._weights = dict(weights or DEFAULT_WEIGHTS)

    def snapshot(self) -> dict[str, float]:
        return dict(self._weights)

    def normalized(self, providers: Iterable[str]) -> dict[str, float]:
        """
        Weights renormalized to sum to 1.0 over the given providers.

        Providers missing from the table share equally when none of the
        given providers has a weight.
        """
        names = list(dict.fromkeys(providers))
        if not names:
            return {}

        current = self._weights
        raw = {name: current.get(name, 0.0) for name in names}
        total = sum(raw.values())
        if total <= 0:
            return {name: 1.0 / len(names) for name in names}
        return {name: weight / total for name, weight in raw.items()}

    def adjust(self, model_results: list[ModelResponse]) -> dict[str, float]:
        """
        Nudge weights after a run and renormalize.

        Confident successes gain 5%, weak successes lose 5% and failures
        lose 10%. A stable provider mix settles instead of oscillating.

        Returns:
            The new weights
        """
        weights = dict(self._weights)
        for result in model_results:
            name = result.provider_name
            if name not in weights:
                continue
            if not result.success:
                factor = WEIGHT_FAILURE_STEP
            elif result.confidence >= WEIGHT_CONFIDENCE_THRESHOLD:
                factor = WEIGHT_STEP_UP
            else:
                factor = WEIGHT_STEP_DOWN
            weights[name] = max(MIN_WEIGHT, weights[name] * factor)

        total = sum(weights.values())
        weights = {name: weight / total for name, weight in weights.items()}
        self._weights = weights
        return dict(weights)

    def reset(self) -> None:
        self._weights = dict(DEFAULT_WEIGHTS)


shared_weights = WeightTable()


def primary_confidence(count: int) -> float:
    """Confidence recomputed from the primary's annotation count"""
    low, high = PRIMARY_TARGET_RANGE
    if low <= count <= high:
        return 0.95
    elif count >= PRIMARY_MIN_ANNOTATIONS:
        return 0.80
    return 0.50


def secondary_confidence(count: int, role: str) -> float:
    """Confidence recomputed from the secondary's count and role"""
    if role == "supplementary":
        return 0.75 if count >= SUPPLEMENTARY_MIN_ANNOTATIONS else 0.60
    return 0.80 if count >= FALLBACK_MIN_ANNOTATIONS else 0.65


def secondary_threshold(role: str) -> int:
    if role == "supplementary":
        return SUPPLEMENTARY_MIN_ANNOTATIONS
    return FALLBACK_MIN_ANNOTATIONS


def is_primary_acceptable(response: ModelResponse) -> bool:
    """
    Check whether the primary result can be the synthesis base.

    Fewer than 12 annotations is always rejected, whatever confidence
    the provider reported.
    """
    return response.success and len(response.annotations) >= PRIMARY_MIN_ANNOTATIONS


def is_covered(candidate: Annotation, existing: list[Annotation]) -> bool:
    """True if an existing annotation on the same image sits within 10 units on both axes"""
    return any(
        a.image_index == candidate.image_index
        and abs(a.x - candidate.x) < COVERAGE_DISTANCE
        and abs(a.y - candidate.y) < COVERAGE_DISTANCE
        for a in existing
    )


def merge_annotations(
    primary: list[Annotation],
    secondary: list[Annotation],
    cap: int = MAX_MERGED_ANNOTATIONS
) -> list[Annotation]:
    """
    Merge secondary annotations into the primary set.

    Primary annotations are kept in order; secondary ones fill remaining
    slots only where no primary annotation already covers the spot.

    Args:
        primary: Base annotations
        secondary: Candidates to add
        cap: Maximum size of the merged list

    Returns:
        Merged list of at most ``cap`` annotations with unique ids
    """
    merged = list(primary[:cap])
    used_ids = {a.id for a in merged}

    for candidate in secondary:
        if len(merged) >= cap:
            break
        if is_covered(candidate, primary):
            continue
        if candidate.id in used_ids:
            new_id = f"secondary-{candidate.id}"
            suffix = 2
            while new_id in used_ids:
                new_id = f"secondary-{candidate.id}-{suffix}"
                suffix += 1
            candidate = candidate.model_copy(update={"id": new_id})
        used_ids.add(candidate.id)
        merged.append(candidate)

    return merged


def apply_research_validation(
    annotations: list[Annotation],
    research: ModelResponse
) -> list[Annotation]:
    """Mark annotations as research-validated and attach up to two sources"""
    validation_results = research.metadata.get("validation_results", [])
    if not validation_results:
        return annotations

    sources = [s for r in validation_results for s in r.get("sources", [])][:2]
    if not sources:
        sources = [r.get("content", "")[:160] for r in validation_results[:2]]

    return [
        a.model_copy(update={"research_validated": True, "research_sources": sources})
        for a in annotations
    ]


def overall_quality(results: list[ModelResponse]) -> float:
    """0.7 x mean confidence of successes + 0.3 x completion rate"""
    successes = [r for r in results if r.success]
    if not successes:
        return 0.0
    average_confidence = sum(r.confidence for r in successes) / len(successes)
    completion_rate = len(successes) / len(results)
    return average_confidence * 0.7 + completion_rate * 0.3


@dataclass
class _Run:
    """Mutable bookkeeping for one orchestration"""

    started: float = field(default_factory=time.monotonic)
    states: list[OrchestrationState] = field(default_factory=lambda: [OrchestrationState.INIT])
    model_results: list[ModelResponse] = field(default_factory=list)
    fallbacks: list[str] = field(default_factory=list)

    def advance(self, state: OrchestrationState) -> None:
        logger.debug("Orchestration %s -> %s", self.states[-1].value, state.value)
        self.states.append(state)

    def fallback(self, reason: str) -> None:
        logger.warning("Fallback triggered: %s", reason)
        self.fallbacks.append(reason)

    @property
    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started) * 1000)


class MultiModelOrchestrator:
    """
    Runs the Claude-first multi-model analysis.

    Coordinates:
    1. Primary analysis (Claude) and its acceptance check
    2. Secondary (OpenAI) and research (Perplexity) calls, concurrently
    3. Weighted synthesis into one deduplicated annotation set
    4. Weight adaptation from the run's outcome

    Example:
        orchestrator = MultiModelOrchestrator.from_config(load_config())
        result = await orchestrator.orchestrate(images, prompt)
        print(result.synthesis_metadata.confidence_score)
    """

    def __init__(
        self,
        primary: Optional[VisionProvider],
        secondary: Optional[VisionProvider] = None,
        research: Optional[VisionProvider] = None,
        weights: Optional[WeightTable] = None,
        adapt_weights: bool = True
    ):
        """
        Initialize orchestrator.

        Args:
            primary: Primary provider (Claude); None records a failed primary
            secondary: Secondary provider (OpenAI), skipped when None
            research: Research provider (Perplexity), skipped when None
            weights: Weight table, defaults to the process-wide table
            adapt_weights: Nudge weights after every run
        """
        self.primary = primary
        self.secondary = secondary
        self.research = research
        self.weights = weights if weights is not None else shared_weights
        self.adapt_weights = adapt_weights

    @classmethod
    def from_config(cls, config: Config, **kwargs) -> "MultiModelOrchestrator":
        """Build an orchestrator from whichever providers are configured"""
        primary = None
        if config.has_anthropic():
            primary = AnthropicProvider(
                api_key=config.anthropic_api_key,
                model=config.claude_model,
                timeout_ms=config.claude_timeout_ms
            )

        secondary = None
        if config.has_openai():
            secondary = OpenAIProvider(api_key=config.openai_api_key, model=config.openai_model)

        research = None
        if config.has_perplexity():
            research = PerplexityProvider(api_key=config.perplexity_api_key, model=config.perplexity_model)

        return cls(primary, secondary, research, **kwargs)

    async def orchestrate(
        self,
        images: list[ImagePayload],
        prompt: str,
        options: Optional[OrchestrationOptions] = None
    ) -> SynthesisResult:
        """
        Run one analysis across the providers.

        Never raises for provider problems; always returns a result in the
        DONE state.

        Args:
            images: Screenshots to analyze
            prompt: Analysis prompt (may already include RAG context)
            options: force_primary_only / enable_research_validation

        Returns:
            SynthesisResult with final annotations and synthesis metadata
        """
        options = options or OrchestrationOptions()
        run = _Run()

        logger.info(
            "Starting orchestration: %d image(s), prompt %d chars, primary_only=%s, research=%s",
            len(images), len(prompt), options.force_primary_only, options.enable_research_validation
        )

        try:
            result = await self._run(run, images, prompt, options)
        except Exception:
            logger.exception("Orchestration failed unexpectedly, returning empty result")
            result = self._empty_result(run)

        if self.adapt_weights and run.model_results:
            self.weights.adjust(run.model_results)

        meta = result.synthesis_metadata
        logger.info(
            "Orchestration done: %d annotations, primary=%s, confidence=%.2f, fallbacks=%s, %dms",
            len(result.final_annotations), meta.primary_model_used,
            meta.confidence_score, meta.fallbacks_triggered, meta.processing_time_ms
        )
        return result

    async def _run(
        self,
        run: _Run,
        images: list[ImagePayload],
        prompt: str,
        options: OrchestrationOptions
    ) -> SynthesisResult:
        # Phase 1: primary
        primary = await self._call_primary(images, prompt)
        run.model_results.append(primary)
        run.advance(OrchestrationState.PRIMARY_CALLED)

        accepted = is_primary_acceptable(primary)
        if accepted:
            run.advance(OrchestrationState.PRIMARY_ACCEPTED)
            if options.force_primary_only:
                return self._synthesize(run, primary, None, None)
        else:
            run.advance(OrchestrationState.PRIMARY_REJECTED)
            run.fallback("claude-quality-insufficient")

        # Phase 2 + 3: secondary and research are independent of each other
        role = "supplementary" if primary.success else "primary-fallback"
        calls = []
        if self.secondary is not None:
            calls.append(self._call_secondary(images, prompt, role))
        want_research = options.enable_research_validation and self.research is not None
        if want_research:
            calls.append(self._call_research(images, prompt, primary))

        responses = list(await asyncio.gather(*calls))

        secondary = None
        if self.secondary is not None:
            secondary = responses.pop(0)
            run.model_results.append(secondary)
            run.advance(OrchestrationState.SECONDARY_CALLED)
            if not secondary.success:
                run.fallback("openai-failed")
            elif len(secondary.annotations) < secondary_threshold(role):
                run.fallback("openai-quality-insufficient")

        research = None
        if want_research:
            research = responses.pop(0)
            run.model_results.append(research)
            run.advance(OrchestrationState.RESEARCH_CALLED)
            if not research.success:
                run.fallback("perplexity-failed")

        return self._synthesize(run, primary if accepted else None, secondary, research)

    async def _call_primary(self, images: list[ImagePayload], prompt: str) -> ModelResponse:
        if self.primary is None:
            return ModelResponse.failure(
                provider_name="claude",
                error="Primary provider not configured (ANTHROPIC_API_KEY missing)",
                error_category="authentication",
                role="primary",
            )

        response = await self.primary.call(images, prompt, ProviderRequest(role="primary"))
        if not response.success:
            return response
        # Confidence is recomputed from the count, not trusted from the provider
        return response.model_copy(update={
            "confidence": primary_confidence(len(response.annotations))
        })

    async def _call_secondary(
        self,
        images: list[ImagePayload],
        prompt: str,
        role: str
    ) -> ModelResponse:
        response = await self.secondary.call(images, prompt, ProviderRequest(role=role))
        if not response.success:
            return response
        return response.model_copy(update={
            "confidence": secondary_confidence(len(response.annotations), role)
        })

    async def _call_research(
        self,
        images: list[ImagePayload],
        prompt: str,
        primary: ModelResponse
    ) -> ModelResponse:
        request = ProviderRequest(
            role="research",
            max_tokens=500,
            context_annotations=primary.annotations if primary.success else []
        )
        return await self.research.call(images, prompt, request)

    def _synthesize(
        self,
        run: _Run,
        accepted_primary: Optional[ModelResponse],
        secondary: Optional[ModelResponse],
        research: Optional[ModelResponse]
    ) -> SynthesisResult:
        """
        Combine responses into the final annotation set.

        Strategy:
        - Accepted primary: primary annotations as base, secondary fills
          uncovered slots, confidence x0.9
        - Otherwise: secondary's list as base, confidence x0.7
        - Nothing usable: empty result
        """
        if accepted_primary is not None:
            annotations = list(accepted_primary.annotations[:MAX_MERGED_ANNOTATIONS])
            if secondary is not None and secondary.success and secondary.annotations:
                annotations = merge_annotations(annotations, secondary.annotations)
            confidence = accepted_primary.confidence * PRIMARY_SYNTHESIS_DISCOUNT
            primary_model = accepted_primary.provider_name
        elif secondary is not None and secondary.success and secondary.annotations:
            annotations = list(secondary.annotations[:MAX_MERGED_ANNOTATIONS])
            confidence = secondary.confidence * FALLBACK_SYNTHESIS_DISCOUNT
            primary_model = secondary.provider_name
        else:
            return self._empty_result(run)

        if research is not None and research.success:
            annotations = apply_research_validation(annotations, research)

        run.advance(OrchestrationState.SYNTHESIZED)
        run.advance(OrchestrationState.DONE)

        contributors = [r.provider_name for r in run.model_results if r.success]
        return SynthesisResult(
            final_annotations=annotations,
            model_results=list(run.model_results),
            synthesis_metadata=SynthesisMetadata(
                primary_model_used=primary_model,
                weights=self.weights.normalized(contributors),
                confidence_score=round(confidence, 6),
                fallbacks_triggered=list(run.fallbacks),
                quality_score=overall_quality(run.model_results),
                total_models_used=len(run.model_results),
                state_trail=[s.value for s in run.states],
                processing_time_ms=run.elapsed_ms,
            )
        )

    def _empty_result(self, run: _Run) -> SynthesisResult:
        """Terminal result when no provider produced usable annotations"""
        for result in run.model_results:
            if result.provider_name not in run.fallbacks:
                run.fallbacks.append(result.provider_name)

        if run.states[-1] != OrchestrationState.SYNTHESIZED:
            run.advance(OrchestrationState.SYNTHESIZED)
        run.advance(OrchestrationState.DONE)

        contributors = [r.provider_name for r in run.model_results if r.success]
        return SynthesisResult(
            final_annotations=[],
            model_results=list(run.model_results),
            synthesis_metadata=SynthesisMetadata(
                primary_model_used="none",
                weights=self.weights.normalized(contributors),
                confidence_score=0.0,
                fallbacks_triggered=list(run.fallbacks),
                quality_score=overall_quality(run.model_results),
                total_models_used=len(run.model_results),
                state_trail=[s.value for s in run.states],
                processing_time_ms=run.elapsed_ms,
            )
        )
