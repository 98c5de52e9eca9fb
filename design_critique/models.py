"""
Data Models for Design Critique

Type-safe Pydantic models for every record that crosses a component
boundary: image payloads, annotations, provider responses, synthesis
output and quality-control reports. All models are JSON-serializable
with ``model_dump(mode="json")``.
"""

import base64
import binascii
import mimetypes
from datetime import datetime
from pathlib import Path
from typing import Literal, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


MAX_IMAGE_BYTES = 20 * 1024 * 1024

ProviderName = Literal["claude", "openai", "perplexity", "vision"]

ErrorCategory = Literal[
    "authentication",
    "timeout",
    "rate_limit",
    "image_processing",
    "network",
    "validation",
    "unknown",
]

AnnotationSeverity = Literal["critical", "important", "suggested", "enhancement", "positive"]

IssueType = Literal[
    "visual_grounding",
    "hallucination",
    "coordinate_accuracy",
    "content_specificity",
    "rag_content",
]

IssueSeverity = Literal["low", "medium", "high", "critical"]

ProviderRole = Literal["primary", "supplementary", "primary-fallback", "research"]


class ImagePayload(BaseModel):
    """
    One image handed to the providers.

    Attributes:
        encoded_payload: Base64-encoded image bytes
        mime_type: Image mime type (e.g. image/png)
        source_url: Where the image came from (URL or file path)
    """

    model_config = ConfigDict(frozen=True)

    encoded_payload: str = Field(validation_alias=AliasChoices("encoded_payload", "encodedPayload", "base64Data"))
    mime_type: str = Field(validation_alias=AliasChoices("mime_type", "mimeType"))
    source_url: str = Field(default="", validation_alias=AliasChoices("source_url", "sourceUrl"))

    @field_validator("encoded_payload")
    @classmethod
    def check_payload(cls, v: str) -> str:
        """Payload must decode to 1 byte .. 20 MB"""
        try:
            raw = base64.b64decode(v, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"image payload is not valid base64: {e}") from e
        if not raw:
            raise ValueError("image payload decodes to zero bytes")
        if len(raw) > MAX_IMAGE_BYTES:
            raise ValueError(f"image payload exceeds {MAX_IMAGE_BYTES} bytes")
        return v

    @property
    def data_url(self) -> str:
        """Payload as a data: URL"""
        return f"data:{self.mime_type};base64,{self.encoded_payload}"

    @classmethod
    def from_bytes(cls, data: bytes, mime_type: str, source_url: str = "") -> "ImagePayload":
        return cls(
            encoded_payload=base64.b64encode(data).decode("utf-8"),
            mime_type=mime_type,
            source_url=source_url,
        )

    @classmethod
    def from_path(cls, path: Path) -> "ImagePayload":
        """
        Load an image file from disk.

        Args:
            path: Image file (PNG, JPEG, WebP, GIF)

        Returns:
            ImagePayload with mime type guessed from the extension

        Raises:
            ValueError: If the extension is not a known image type
        """
        mime_type, _ = mimetypes.guess_type(str(path))
        if not mime_type or not mime_type.startswith("image/"):
            raise ValueError(f"Not an image file: {path}")
        return cls.from_bytes(path.read_bytes(), mime_type, source_url=str(path))


class Annotation(BaseModel):
    """
    One located piece of feedback on an image.

    Coordinates are percentages of the image (0-100). They are not range
    checked here: out-of-range values are data the grounding validator
    reports as critical.

    Attributes:
        id: Unique within one analysis run
        image_index: Which image the annotation targets
        x: Horizontal position in percent
        y: Vertical position in percent
        severity: Importance of the feedback
        category: Free-text tag (accessibility, conversion, ...)
        feedback: The feedback text (also accepted as ``description``)
        title: Optional short headline
        research_validated: Set when research validation backed this run
        research_sources: Up to two research snippets supporting it
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(min_length=1)
    image_index: int = Field(
        default=0, ge=0, validation_alias=AliasChoices("image_index", "imageIndex")
    )
    x: float
    y: float
    severity: AnnotationSeverity = "suggested"
    category: str = "ux"
    feedback: str = Field(min_length=1, validation_alias=AliasChoices("feedback", "description"))
    title: Optional[str] = None
    research_validated: bool = False
    research_sources: list[str] = Field(default_factory=list)

    @property
    def text(self) -> str:
        """Title and feedback joined, as the text checks see it"""
        return f"{self.title or ''} {self.feedback}".strip()

    @property
    def in_bounds(self) -> bool:
        return 0 <= self.x <= 100 and 0 <= self.y <= 100


class ModelResponse(BaseModel):
    """
    Uniform result of one provider call.

    A failed call never carries annotations or confidence; use
    ``ModelResponse.failure`` to build one.

    Attributes:
        provider_name: Which provider produced this response
        success: Whether the call produced usable output
        annotations: Parsed annotations (empty on failure)
        confidence: 0-1 confidence in the response
        processing_time_ms: Wall time of the call
        error: Human-readable error message on failure
        error_category: Categorized failure reason (present iff failed)
        role: Role the provider played in the orchestration
        metadata: Provider-specific extras (research sources, raw length, ...)
    """

    model_config = ConfigDict(frozen=True)

    provider_name: ProviderName
    success: bool
    annotations: list[Annotation] = Field(default_factory=list)
    confidence: float = Field(default=0.0, ge=0, le=1)
    processing_time_ms: int = Field(default=0, ge=0)
    error: Optional[str] = None
    error_category: Optional[ErrorCategory] = None
    role: Optional[ProviderRole] = None
    metadata: dict = Field(default_factory=dict)

    @model_validator(mode="after")
    def check_failure_shape(self) -> "ModelResponse":
        """Failed responses are empty with zero confidence"""
        if not self.success:
            if self.annotations or self.confidence != 0:
                raise ValueError("failed ModelResponse must have no annotations and zero confidence")
            if self.error_category is None:
                raise ValueError("failed ModelResponse requires an error_category")
        elif self.error_category is not None:
            raise ValueError("successful ModelResponse cannot carry an error_category")
        return self

    @classmethod
    def ok(
        cls,
        provider_name: str,
        annotations: list[Annotation],
        confidence: float,
        processing_time_ms: int = 0,
        role: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> "ModelResponse":
        return cls(
            provider_name=provider_name,
            success=True,
            annotations=annotations,
            confidence=confidence,
            processing_time_ms=processing_time_ms,
            role=role,
            metadata=metadata or {},
        )

    @classmethod
    def failure(
        cls,
        provider_name: str,
        error: str,
        error_category: str,
        processing_time_ms: int = 0,
        role: Optional[str] = None,
    ) -> "ModelResponse":
        return cls(
            provider_name=provider_name,
            success=False,
            error=error,
            error_category=error_category,
            processing_time_ms=processing_time_ms,
            role=role,
        )


class SynthesisMetadata(BaseModel):
    """
    How a SynthesisResult was produced.

    Attributes:
        primary_model_used: Provider whose annotations formed the base ("none" if all failed)
        weights: Provider weights renormalized over contributing providers
        confidence_score: 0-1 confidence in the synthesized annotations
        fallbacks_triggered: Ordered reason tags for every fallback taken
        quality_score: 0-1 blend of provider confidence and completion rate
        total_models_used: Number of providers invoked
        state_trail: Orchestration states the run passed through
        processing_time_ms: Wall time of the whole orchestration
    """

    primary_model_used: str
    weights: dict[str, float] = Field(default_factory=dict)
    confidence_score: float = Field(ge=0, le=1)
    fallbacks_triggered: list[str] = Field(default_factory=list)
    quality_score: float = Field(ge=0, le=1)
    total_models_used: int = 0
    state_trail: list[str] = Field(default_factory=list)
    processing_time_ms: int = 0


class SynthesisResult(BaseModel):
    """Orchestrator output: deduplicated annotations plus per-provider results"""

    final_annotations: list[Annotation] = Field(default_factory=list)
    model_results: list[ModelResponse] = Field(default_factory=list)
    synthesis_metadata: SynthesisMetadata


class GroundingValidationResult(BaseModel):
    """Visual grounding verdict for one annotation"""

    annotation_id: str
    is_valid: bool
    confidence: float = Field(ge=0, le=1)
    reasons: list[str] = Field(default_factory=list)
    suggested_corrections: list[str] = Field(default_factory=list)
    out_of_range: bool = False


class QualityIssue(BaseModel):
    """
    A quality problem found in an annotation set.

    Attributes:
        type: Which check raised it
        severity: low, medium, high or critical
        description: What is wrong
        affected_annotation_ids: Annotations the issue applies to
        suggested_fix: How the provider output should change
    """

    type: IssueType
    severity: IssueSeverity
    description: str
    affected_annotation_ids: set[str] = Field(default_factory=set)
    suggested_fix: str = ""

    def __str__(self) -> str:
        return f"[{self.severity}] {self.type}: {self.description}"


class QualityControlOptions(BaseModel):
    """Toggles and thresholds for AnalysisQualityController"""

    enable_visual_validation: bool = True
    enable_rag_validation: bool = True
    enable_hallucination_detection: bool = True
    minimum_quality_threshold: float = Field(default=0.7, ge=0, le=1)
    max_retry_attempts: int = Field(default=2, ge=0)


class QualityControlResult(BaseModel):
    """
    Quality controller verdict.

    ``validated_annotations`` is an order-preserving subset of the input.
    ``should_retry`` is only ever true when quality is below threshold
    and at least one issue is critical.
    """

    overall_quality: float = Field(ge=0, le=1)
    visual_grounding_score: float = Field(ge=0, le=1)
    rag_quality_score: float = Field(default=1.0, ge=0, le=1)
    hallucination_risk: float = Field(ge=0, le=1)
    validated_annotations: list[Annotation] = Field(default_factory=list)
    quality_issues: list[QualityIssue] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    should_retry: bool = False

    @property
    def critical_issues(self) -> list[QualityIssue]:
        return [issue for issue in self.quality_issues if issue.severity == "critical"]


class AnalysisQualityMetrics(BaseModel):
    """Per-dimension quality metrics derived from a QualityControlResult"""

    accuracy_score: float
    relevance_score: float
    specificity_score: float
    grounding_score: float
    overall_score: float
    issues: list[QualityIssue] = Field(default_factory=list)


class OrchestrationOptions(BaseModel):
    """Caller switches for one orchestration run"""

    force_primary_only: bool = False
    enable_research_validation: bool = False


class KnowledgeEntry(BaseModel):
    """One retrieved knowledge-base entry offered as prompt context"""

    id: str
    title: str
    content: str
    category: str = "general"
    source: Optional[str] = None
    created_at: Optional[datetime] = None


class RagValidationResult(BaseModel):
    """Filtered knowledge entries plus their relevance scores"""

    validated_entries: list[KnowledgeEntry] = Field(default_factory=list)
    filtered_count: int = 0
    relevance_scores: dict[str, float] = Field(default_factory=dict)
    filtering_reasons: dict[str, list[str]] = Field(default_factory=dict)
    overall_quality: float = Field(default=0.0, ge=0, le=1)


class RagImpactAnalysis(BaseModel):
    """Estimated effect of the knowledge context on hallucination risk"""

    hallucination_risk: float = Field(ge=0, le=1)
    context_alignment: float = Field(ge=0, le=1)
    knowledge_quality: float = Field(ge=0, le=1)
    recommendations: list[str] = Field(default_factory=list)


class RagInputs(BaseModel):
    """Optional RAG outputs handed to quality control"""

    validation: Optional[RagValidationResult] = None
    impact: Optional[RagImpactAnalysis] = None


class AnalysisReport(BaseModel):
    """Everything one analysis produced, as persisted"""

    analysis_id: str
    prompt: str
    image_urls: list[str] = Field(default_factory=list)
    synthesis: SynthesisResult
    quality: QualityControlResult
    created_at: str = Field(default_factory=lambda: datetime.now().isoformat())

    @property
    def annotations(self) -> list[Annotation]:
        return self.quality.validated_annotations

    def summary(self) -> str:
        """Generate a human-readable summary"""
        meta = self.synthesis.synthesis_metadata
        summary = f"Analysis {self.analysis_id}\n"
        summary += f"Primary model: {meta.primary_model_used} (confidence {meta.confidence_score:.2f})\n"
        summary += (
            f"Annotations: {len(self.quality.validated_annotations)} validated "
            f"of {len(self.synthesis.final_annotations)} synthesized\n"
        )
        summary += f"Overall quality: {self.quality.overall_quality:.2f}\n"

        if self.quality.recommendations:
            summary += "\nRecommendations:\n"
            for i, recommendation in enumerate(self.quality.recommendations[:3], 1):
                summary += f"  {i}. {recommendation}\n"

        return summary


class Config(BaseModel):
    """
    Configuration for the design critique pipeline.

    Loaded from a .env file and the environment.

    Attributes:
        anthropic_api_key: Anthropic API key (primary provider)
        openai_api_key: OpenAI API key (secondary provider)
        perplexity_api_key: Perplexity API key (research validation)
        google_vision_api_key: Google Cloud Vision API key
        claude_model: Claude model id
        openai_model: OpenAI model id
        perplexity_model: Perplexity model id
        claude_timeout_ms: Hard timeout for the primary provider
        minimum_quality_threshold: Quality below this (with critical issues) asks for a retry
        store_dir: Directory for saved analyses
        viewport_width: Screenshot viewport width
        viewport_height: Screenshot viewport height
    """

    anthropic_api_key: Optional[str] = None
    openai_api_key: Optional[str] = None
    perplexity_api_key: Optional[str] = None
    google_vision_api_key: Optional[str] = None
    claude_model: str = "claude-sonnet-4-20250514"
    openai_model: str = "gpt-4o"
    perplexity_model: str = "sonar"
    claude_timeout_ms: int = Field(default=35000, ge=1000)
    minimum_quality_threshold: float = Field(default=0.7, ge=0, le=1)
    store_dir: str = "analyses"
    viewport_width: int = Field(default=1920, ge=800, le=3840)
    viewport_height: int = Field(default=1080, ge=600, le=2160)

    def has_anthropic(self) -> bool:
        """Check if Anthropic is configured"""
        return self.anthropic_api_key is not None and len(self.anthropic_api_key) > 0

    def has_openai(self) -> bool:
        """Check if OpenAI is configured"""
        return self.openai_api_key is not None and len(self.openai_api_key) > 0

    def has_perplexity(self) -> bool:
        return self.perplexity_api_key is not None and len(self.perplexity_api_key) > 0

    def has_google_vision(self) -> bool:
        return self.google_vision_api_key is not None and len(self.google_vision_api_key) > 0
