"""
Design Critique - Multi-Model Design Feedback Pipeline

Sends design screenshots to several AI providers, synthesizes their
feedback into one set of located annotations and quality-checks the
result for hallucinations before it reaches a user.

Providers:
- Anthropic Claude (primary)
- OpenAI GPT-4o (supplementary / fallback)
- Perplexity (research validation)
- Google Cloud Vision (element detection)
"""

from .models import (
    AnalysisReport,
    Annotation,
    ImagePayload,
    ModelResponse,
    OrchestrationOptions,
    QualityControlOptions,
    QualityControlResult,
    SynthesisResult,
)
from .orchestrator import MultiModelOrchestrator
from .quality_control import AnalysisQualityController
from .grounding import VisualGroundingValidator
from .pipeline import DesignAnalyzer

__version__ = "0.1.0"
__all__ = [
    "AnalysisReport",
    "Annotation",
    "ImagePayload",
    "ModelResponse",
    "OrchestrationOptions",
    "QualityControlOptions",
    "QualityControlResult",
    "SynthesisResult",
    "MultiModelOrchestrator",
    "AnalysisQualityController",
    "VisualGroundingValidator",
    "DesignAnalyzer",
]
