"""
Analysis Quality Controller

Top-level quality policy over a synthesized annotation set: visual
grounding validation, hallucination heuristics, a strict coordinate
check and content specificity, combined into one overall quality score
and a retry recommendation. Issues are reported as data; nothing here
raises for bad annotations.
"""

import logging
from typing import Optional

from .grounding import (
    VisualGroundingValidator,
    center_cluster,
    detect_out_of_range,
    run_hallucination_detectors,
    visual_grounding_score,
)
from .models import (
    AnalysisQualityMetrics,
    Annotation,
    GroundingValidationResult,
    QualityControlOptions,
    QualityControlResult,
    QualityIssue,
    RagInputs,
    SynthesisResult,
)
from .scoring import score_annotation_quality, specificity_score

logger = logging.getLogger(__name__)

RAG_RISK_LIMIT = 0.7
CRITICAL_PENALTY = 0.2
HIGH_PENALTY = 0.1
MIN_ANNOTATION_QUALITY = 0.25
MIN_SPECIFICITY = 0.2
RELEVANT_TERMS = ("button", "link", "text", "image", "form", "navigation")


def _visual_issue(result: GroundingValidationResult) -> QualityIssue:
    if result.out_of_range:
        return QualityIssue(
            type="coordinate_accuracy",
            severity="critical",
            description=f"Visual grounding validation failed: {', '.join(result.reasons)}",
            affected_annotation_ids={result.annotation_id},
            suggested_fix="; ".join(result.suggested_corrections),
        )

    if result.confidence < 0.3:
        severity = "critical"
    elif result.confidence < 0.5:
        severity = "high"
    else:
        severity = "medium"

    return QualityIssue(
        type="visual_grounding",
        severity=severity,
        description=f"Visual grounding validation failed: {', '.join(result.reasons)}",
        affected_annotation_ids={result.annotation_id},
        suggested_fix="; ".join(result.suggested_corrections),
    )


def overall_quality_score(
    grounding_score: float,
    rag_quality: float,
    hallucination_risk: float,
    issues: list[QualityIssue]
) -> float:
    """
    Weighted quality minus issue penalties, clamped to [0, 1].

    0.4 x grounding + 0.3 x knowledge quality + 0.3 x (1 - risk), then
    0.2 off per critical and 0.1 off per high issue.
    """
    critical = sum(1 for issue in issues if issue.severity == "critical")
    high = sum(1 for issue in issues if issue.severity == "high")

    score = grounding_score * 0.4 + rag_quality * 0.3 + (1 - hallucination_risk) * 0.3
    score -= critical * CRITICAL_PENALTY
    score -= high * HIGH_PENALTY
    return max(0.0, min(1.0, score))


def build_recommendations(
    issues: list[QualityIssue],
    overall_quality: float,
    total: int,
    kept: int
) -> list[str]:
    """Human-readable summary of the issue list"""
    recommendations = []

    if overall_quality < 0.5:
        recommendations.append("Overall quality is low - consider regenerating analysis")

    critical = sum(1 for issue in issues if issue.severity == "critical")
    if critical > 0:
        recommendations.append(f"{critical} critical issues detected - immediate attention required")

    by_type: dict[str, int] = {}
    for issue in issues:
        by_type[issue.type] = by_type.get(issue.type, 0) + 1

    if by_type.get("visual_grounding", 0) > 3:
        recommendations.append("Multiple visual grounding issues - improve image analysis prompts")
    if by_type.get("hallucination", 0) > 2:
        recommendations.append("Potential hallucinations detected - reduce knowledge context or improve filtering")
    if by_type.get("coordinate_accuracy", 0) > 0:
        recommendations.append(
            f"{by_type['coordinate_accuracy']} coordinate accuracy issues - verify annotation placement"
        )
    if by_type.get("content_specificity", 0) > total / 2:
        recommendations.append("Most feedback is generic - ask for more specific observations")

    if kept < total:
        recommendations.append(f"{total - kept} of {total} annotations removed by validation")

    if not recommendations:
        recommendations.append("Analysis quality meets standards")

    return recommendations


def summarize_failures(synthesis: SynthesisResult) -> list[str]:
    """
    Explain which providers failed and why.

    Example:
        ["claude failed (timeout): Request timed out after 35000ms"]
    """
    if not synthesis.model_results:
        return ["No providers were invoked - check API key configuration"]

    lines = []
    for result in synthesis.model_results:
        if not result.success:
            lines.append(f"{result.provider_name} failed ({result.error_category}): {result.error}")
        elif not result.annotations and result.role != "research":
            lines.append(f"{result.provider_name} returned no annotations")
    return lines


class AnalysisQualityController:
    """
    Runs quality control over synthesized annotations.

    Example:
        controller = AnalysisQualityController()
        result = controller.perform_quality_control(annotations, image_urls)
        if result.should_retry:
            ...
    """

    def __init__(self, validator: Optional[VisualGroundingValidator] = None):
        self.validator = validator or VisualGroundingValidator()

    def perform_quality_control(
        self,
        annotations: list[Annotation],
        image_urls: list[str],
        rag_inputs: Optional[RagInputs] = None,
        options: Optional[QualityControlOptions] = None
    ) -> QualityControlResult:
        """
        Validate annotations and score the analysis.

        Stages (each toggleable through options):
        1. Visual grounding validation; invalid annotations are dropped
        2. Hallucination heuristics over the survivors
        3. Strict coordinate check; out-of-range survivors are dropped
        4. Content specificity per annotation

        Args:
            annotations: Synthesized annotations
            image_urls: Images the annotations refer to
            rag_inputs: Knowledge validation and impact, when context was used
            options: Toggles and the retry threshold

        Returns:
            QualityControlResult; validated_annotations is an order-preserving
            subset of the input with every coordinate in [0, 100]
        """
        options = options or QualityControlOptions()
        rag_inputs = rag_inputs or RagInputs()

        if not annotations:
            logger.warning("Quality control received no annotations")
            return QualityControlResult(
                overall_quality=0.0,
                visual_grounding_score=0.0,
                hallucination_risk=0.0,
                recommendations=["No annotations to validate - every provider failed or returned nothing"],
            )

        issues: list[QualityIssue] = []
        working = list(annotations)
        grounding_score = 1.0

        # 1. Visual grounding
        if options.enable_visual_validation:
            results = self.validator.validate(annotations, image_urls)
            issues.extend(_visual_issue(r) for r in results if not r.is_valid)
            grounding_score = visual_grounding_score(results)
            working = [a for a, r in zip(annotations, results) if r.is_valid]

        # 2. Hallucination heuristics
        impact = rag_inputs.impact
        hallucination_risk = impact.hallucination_risk if impact else 0.0
        if options.enable_hallucination_detection:
            issues.extend(run_hallucination_detectors(working))

            cluster = center_cluster(working)
            if cluster:
                hallucination_risk = min(1.0, hallucination_risk + len(cluster) / len(working))

            if impact and impact.hallucination_risk > RAG_RISK_LIMIT:
                issues.append(QualityIssue(
                    type="hallucination",
                    severity="high",
                    description="High hallucination risk detected from knowledge context",
                    suggested_fix="Reduce knowledge context volume or improve filtering",
                ))

        # 3. Strict coordinate check, independent of earlier filtering
        out_of_range = detect_out_of_range(working)
        if out_of_range:
            issues.extend(out_of_range)
            working = [a for a in working if a.in_bounds]

        # 4. Content specificity
        issues.extend(self._specificity_issues(working))

        rag_quality = 1.0
        validation = rag_inputs.validation
        if options.enable_rag_validation and validation is not None:
            if validation.validated_entries:
                rag_quality = validation.overall_quality
            issues.extend(self._rag_issues(rag_inputs))

        overall = overall_quality_score(grounding_score, rag_quality, hallucination_risk, issues)
        has_critical = any(issue.severity == "critical" for issue in issues)
        should_retry = overall < options.minimum_quality_threshold and has_critical

        logger.info(
            "Quality control: %d/%d annotations kept, overall %.2f, %d issues, retry=%s",
            len(working), len(annotations), overall, len(issues), should_retry
        )

        return QualityControlResult(
            overall_quality=overall,
            visual_grounding_score=grounding_score,
            rag_quality_score=rag_quality,
            hallucination_risk=hallucination_risk,
            validated_annotations=working,
            quality_issues=issues,
            recommendations=build_recommendations(issues, overall, len(annotations), len(working)),
            should_retry=should_retry,
        )

    def calculate_analysis_metrics(
        self,
        annotations: list[Annotation],
        result: QualityControlResult
    ) -> AnalysisQualityMetrics:
        """
        Per-dimension metrics for a quality-controlled analysis.

        Weighted 0.3 accuracy, 0.2 relevance, 0.2 specificity and 0.3
        grounding.
        """
        if annotations:
            accuracy = len(result.validated_annotations) / len(annotations)
            relevant = [
                a for a in annotations
                if any(term in a.text.lower() for term in RELEVANT_TERMS)
            ]
            relevance = len(relevant) / len(annotations)
            specificity = sum(specificity_score(a) for a in annotations) / len(annotations)
        else:
            accuracy = relevance = specificity = 1.0

        grounding = result.visual_grounding_score
        overall = accuracy * 0.3 + relevance * 0.2 + specificity * 0.2 + grounding * 0.3

        return AnalysisQualityMetrics(
            accuracy_score=accuracy,
            relevance_score=relevance,
            specificity_score=specificity,
            grounding_score=grounding,
            overall_score=overall,
            issues=result.quality_issues,
        )

    def _specificity_issues(self, annotations: list[Annotation]) -> list[QualityIssue]:
        issues = []
        for annotation in annotations:
            quality = score_annotation_quality([annotation])
            specificity = specificity_score(annotation)
            if quality < MIN_ANNOTATION_QUALITY or specificity < MIN_SPECIFICITY:
                issues.append(QualityIssue(
                    type="content_specificity",
                    severity="low",
                    description=(
                        f"Feedback lacks specific detail "
                        f"(quality {quality:.2f}, specificity {specificity:.2f})"
                    ),
                    affected_annotation_ids={annotation.id},
                    suggested_fix="Name the element and the concrete change to make",
                ))
        return issues

    def _rag_issues(self, rag_inputs: RagInputs) -> list[QualityIssue]:
        validation = rag_inputs.validation
        issues = []
        if validation.filtered_count:
            issues.append(QualityIssue(
                type="rag_content",
                severity="low",
                description=f"{validation.filtered_count} knowledge entries filtered out before analysis",
                suggested_fix="Review filtered entries in the knowledge base",
            ))
        if validation.validated_entries and validation.overall_quality < 0.5:
            issues.append(QualityIssue(
                type="rag_content",
                severity="medium",
                description=f"Knowledge context quality is low ({validation.overall_quality:.2f})",
                suggested_fix="Add more specific, recent entries to the knowledge base",
            ))
        return issues
