"""
Design Analysis Pipeline

Caller-side flow around the core: optional knowledge context, visual
grounding instructions, multi-model orchestration, quality control and
persistence of the finished analysis.
"""

import logging
import uuid
from typing import Optional

from .grounding import build_grounded_prompt
from .models import (
    AnalysisReport,
    Config,
    ImagePayload,
    KnowledgeEntry,
    OrchestrationOptions,
    QualityControlOptions,
    RagInputs,
)
from .orchestrator import MultiModelOrchestrator
from .quality_control import AnalysisQualityController, summarize_failures
from .rag import RagContentValidator
from .storage import AnalysisStore

logger = logging.getLogger(__name__)


class DesignAnalyzer:
    """
    Runs one complete design analysis.

    Coordinates:
    1. Knowledge context validation (when entries are given)
    2. Visual grounding instructions appended to the prompt
    3. Multi-model orchestration
    4. Quality control of the synthesized annotations
    5. Saving the result (when a store is configured)

    Example:
        config = load_config()
        analyzer = DesignAnalyzer.from_config(config, store=JsonFileStore(Path(config.store_dir)))

        report = await analyzer.analyze(
            images=[ImagePayload.from_path(Path("checkout.png"))],
            prompt="Review the checkout flow for conversion issues"
        )

        print(report.summary())
    """

    def __init__(
        self,
        orchestrator: MultiModelOrchestrator,
        controller: Optional[AnalysisQualityController] = None,
        store: Optional[AnalysisStore] = None,
        rag_validator: Optional[RagContentValidator] = None,
        quality_options: Optional[QualityControlOptions] = None
    ):
        """
        Initialize analyzer.

        Args:
            orchestrator: Configured multi-model orchestrator
            controller: Quality controller, default settings when None
            store: Where finished analyses are saved; nothing is saved when None
            rag_validator: Knowledge context validator
            quality_options: Quality control toggles and threshold
        """
        self.orchestrator = orchestrator
        self.controller = controller or AnalysisQualityController()
        self.store = store
        self.rag_validator = rag_validator or RagContentValidator()
        self.quality_options = quality_options or QualityControlOptions()

    @classmethod
    def from_config(cls, config: Config, store: Optional[AnalysisStore] = None) -> "DesignAnalyzer":
        return cls(
            orchestrator=MultiModelOrchestrator.from_config(config),
            store=store,
            quality_options=QualityControlOptions(
                minimum_quality_threshold=config.minimum_quality_threshold
            ),
        )

    async def analyze(
        self,
        images: list[ImagePayload],
        prompt: str,
        options: Optional[OrchestrationOptions] = None,
        knowledge: Optional[list[KnowledgeEntry]] = None,
        analysis_id: Optional[str] = None,
        save: bool = True
    ) -> AnalysisReport:
        """
        Analyze images and quality-check the result.

        Does not retry on its own; inspect ``report.quality.should_retry``
        or use ``analyze_with_retries``.

        Args:
            images: Screenshots to analyze
            prompt: What to look for
            options: Orchestration switches
            knowledge: Retrieved knowledge entries to offer as context
            analysis_id: Id to store the analysis under (generated when None)
            save: Save through the configured store

        Returns:
            AnalysisReport with synthesis and quality results

        Raises:
            ValueError: If no images are given or the prompt is empty
        """
        if not images:
            raise ValueError("At least one image is required")
        if not prompt.strip():
            raise ValueError("Prompt must not be empty")

        analysis_id = analysis_id or uuid.uuid4().hex[:12]
        image_urls = [image.source_url or f"image-{i}" for i, image in enumerate(images)]

        # 1. Knowledge context
        rag_inputs = None
        analysis_prompt = prompt
        if knowledge:
            validation = self.rag_validator.validate_entries(knowledge, prompt)
            impact = self.rag_validator.analyze_impact(validation.validated_entries, prompt)
            rag_inputs = RagInputs(validation=validation, impact=impact)
            analysis_prompt = self.rag_validator.build_safe_prompt(prompt, validation)

        # 2. Grounding instructions
        analysis_prompt = build_grounded_prompt(analysis_prompt, len(images))

        # 3. Orchestration
        synthesis = await self.orchestrator.orchestrate(images, analysis_prompt, options)

        # 4. Quality control
        quality = self.controller.perform_quality_control(
            synthesis.final_annotations,
            image_urls,
            rag_inputs,
            self.quality_options
        )
        if not synthesis.final_annotations:
            quality = quality.model_copy(update={
                "recommendations": summarize_failures(synthesis) + quality.recommendations
            })

        report = AnalysisReport(
            analysis_id=analysis_id,
            prompt=prompt,
            image_urls=image_urls,
            synthesis=synthesis,
            quality=quality,
        )

        # 5. Persistence
        if save and self.store is not None:
            self.store.save_analysis_result(
                analysis_id,
                quality.validated_annotations,
                quality,
                synthesis=synthesis,
                prompt=prompt
            )

        return report

    async def analyze_with_retries(
        self,
        images: list[ImagePayload],
        prompt: str,
        max_retries: Optional[int] = None,
        **kwargs
    ) -> AnalysisReport:
        """
        Re-run the analysis while quality control asks for a retry.

        Only the last attempt is saved.

        Args:
            max_retries: Extra attempts after the first one, defaults to
                ``quality_options.max_retry_attempts``
            **kwargs: Passed to ``analyze``
        """
        if max_retries is None:
            max_retries = self.quality_options.max_retry_attempts
        save = kwargs.pop("save", True)
        attempt = 0
        while True:
            is_last = attempt >= max_retries
            report = await self.analyze(images, prompt, save=False, **kwargs)
            if is_last or not report.quality.should_retry:
                break
            attempt += 1
            logger.warning(
                "Quality %.2f below threshold with critical issues, retrying (%d/%d)",
                report.quality.overall_quality, attempt, max_retries
            )

        if save and self.store is not None:
            self.store.save_analysis_result(
                report.analysis_id,
                report.quality.validated_annotations,
                report.quality,
                synthesis=report.synthesis,
                prompt=prompt
            )
        return report
