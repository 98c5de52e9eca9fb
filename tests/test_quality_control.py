"""Tests for design_critique.quality_control."""

from __future__ import annotations

import pytest

from design_critique.models import (
    KnowledgeEntry,
    ModelResponse,
    QualityControlOptions,
    QualityIssue,
    RagImpactAnalysis,
    RagInputs,
    RagValidationResult,
    SynthesisMetadata,
    SynthesisResult,
)
from design_critique.quality_control import (
    AnalysisQualityController,
    build_recommendations,
    overall_quality_score,
    summarize_failures,
)


@pytest.fixture
def controller() -> AnalysisQualityController:
    return AnalysisQualityController()


def issue(severity: str, type: str = "hallucination") -> QualityIssue:
    return QualityIssue(type=type, severity=severity, description="x")


class TestOverallQualityScore:
    def test_formula(self):
        assert overall_quality_score(1.0, 1.0, 0.0, []) == pytest.approx(1.0)
        assert overall_quality_score(0.5, 1.0, 0.5, []) == pytest.approx(0.2 + 0.3 + 0.15)

    def test_penalties(self):
        issues = [issue("critical"), issue("high"), issue("medium"), issue("low")]
        assert overall_quality_score(1.0, 1.0, 0.0, issues) == pytest.approx(0.7)

    def test_clamped_at_zero(self):
        assert overall_quality_score(0.2, 0.2, 1.0, [issue("critical")] * 5) == 0.0


class TestRecommendations:
    def test_meets_standards(self):
        assert build_recommendations([], 0.9, 5, 5) == ["Analysis quality meets standards"]

    def test_low_quality_and_critical(self):
        recommendations = build_recommendations([issue("critical", "coordinate_accuracy")], 0.3, 5, 4)
        assert recommendations[0].startswith("Overall quality is low")
        assert any("1 critical issues" in r for r in recommendations)
        assert any("1 of 5 annotations removed" in r for r in recommendations)


class TestPerformQualityControl:
    def test_clean_annotations_pass(self, controller, spread_annotations):
        annotations = spread_annotations(12)
        result = controller.perform_quality_control(annotations, ["https://example.com"])

        assert result.validated_annotations == annotations
        assert result.quality_issues == []
        assert result.overall_quality >= 0.7
        assert not result.should_retry
        assert result.recommendations == ["Analysis quality meets standards"]

    def test_out_of_range_removed_and_critical(self, controller, make_annotation, spread_annotations):
        annotations = spread_annotations(5) + [make_annotation("bad", x=150, y=40)]
        result = controller.perform_quality_control(annotations, ["img"])

        assert "bad" not in {a.id for a in result.validated_annotations}
        critical = result.critical_issues
        assert len(critical) == 1
        assert critical[0].type == "coordinate_accuracy"
        assert critical[0].affected_annotation_ids == {"bad"}

    def test_strict_check_without_visual_validation(self, controller, make_annotation, spread_annotations):
        annotations = spread_annotations(3) + [make_annotation("bad", x=-5, y=40)]
        result = controller.perform_quality_control(
            annotations, ["img"], options=QualityControlOptions(enable_visual_validation=False)
        )

        assert all(0 <= a.x <= 100 and 0 <= a.y <= 100 for a in result.validated_annotations)
        assert any(i.severity == "critical" for i in result.quality_issues)

    def test_center_cluster_raises_risk(self, controller, make_annotation):
        annotations = [make_annotation(f"c-{i}", x=45 + i * 2.5, y=45 + i * 2.5) for i in range(5)]
        annotations += [make_annotation(f"e-{i}", x=5 + i * 8, y=85) for i in range(5)]

        result = controller.perform_quality_control(annotations, ["img"])

        assert result.hallucination_risk == pytest.approx(0.5)
        high = [i for i in result.quality_issues if i.severity == "high"]
        assert len(high) == 1
        assert high[0].type == "hallucination"

    def test_generic_phrasing_flagged(self, controller, make_annotation):
        annotation = make_annotation(
            "g",
            feedback="Consider adding more contrast. Could be improved with spacing. Should include icons.",
        )
        result = controller.perform_quality_control([annotation], ["img"])

        generic = [i for i in result.quality_issues if i.description.startswith("Annotation contains too many")]
        assert len(generic) == 1
        assert generic[0].type == "hallucination"
        assert generic[0].severity == "medium"

    def test_retry_needs_low_quality_and_critical(self, controller, make_annotation):
        annotations = [make_annotation(f"bad-{i}", x=120 + i, y=40) for i in range(3)]
        result = controller.perform_quality_control(annotations, ["img"])

        assert result.validated_annotations == []
        assert result.overall_quality < 0.7
        assert result.should_retry

    def test_no_retry_without_critical(self, controller, make_annotation):
        annotations = [make_annotation(f"c-{i}", x=50, y=50 + i * 0.2) for i in range(4)]
        result = controller.perform_quality_control(annotations, ["img"])

        assert not result.critical_issues
        assert not result.should_retry

    def test_retry_threshold_option(self, controller, make_annotation, spread_annotations):
        annotations = spread_annotations(5) + [make_annotation("bad", x=150, y=40)]
        lenient = controller.perform_quality_control(
            annotations, ["img"], options=QualityControlOptions(minimum_quality_threshold=0.0)
        )
        assert not lenient.should_retry

    def test_content_specificity_low(self, controller, make_annotation):
        annotation = make_annotation("short", feedback="Fix the hero image right now please")
        result = controller.perform_quality_control([annotation], ["img"])

        specificity = [i for i in result.quality_issues if i.type == "content_specificity"]
        assert len(specificity) == 1
        assert specificity[0].severity == "low"
        assert result.validated_annotations == [annotation]

    def test_empty_input(self, controller):
        result = controller.perform_quality_control([], ["img"])

        assert result.overall_quality == 0.0
        assert result.validated_annotations == []
        assert not result.should_retry
        assert "No annotations" in result.recommendations[0]

    def test_rag_risk_adds_high_issue(self, controller, spread_annotations):
        impact = RagImpactAnalysis(hallucination_risk=0.8, context_alignment=0.5, knowledge_quality=0.5)
        result = controller.perform_quality_control(
            spread_annotations(6), ["img"], rag_inputs=RagInputs(impact=impact)
        )

        assert result.hallucination_risk == pytest.approx(0.8)
        assert any(
            i.severity == "high" and "knowledge context" in i.description
            for i in result.quality_issues
        )

    def test_rag_quality_used_when_enabled(self, controller, spread_annotations):
        validation = RagValidationResult(
            validated_entries=[KnowledgeEntry(id="k1", title="Contrast", content="WCAG contrast ratio")],
            overall_quality=0.6,
        )
        rag_inputs = RagInputs(validation=validation)

        enabled = controller.perform_quality_control(spread_annotations(6), ["img"], rag_inputs)
        disabled = controller.perform_quality_control(
            spread_annotations(6), ["img"], rag_inputs,
            QualityControlOptions(enable_rag_validation=False)
        )

        assert enabled.rag_quality_score == pytest.approx(0.6)
        assert disabled.rag_quality_score == 1.0
        assert enabled.overall_quality < disabled.overall_quality

    def test_validated_subset_preserves_order(self, controller, make_annotation, spread_annotations):
        good = spread_annotations(4)
        annotations = [good[0], make_annotation("bad", x=101, y=0), good[1], good[2], good[3]]
        result = controller.perform_quality_control(annotations, ["img"])
        assert [a.id for a in result.validated_annotations] == [a.id for a in good]


class TestAnalysisMetrics:
    def test_metrics(self, controller, make_annotation, spread_annotations):
        annotations = spread_annotations(3) + [make_annotation("bad", x=150, y=40)]
        result = controller.perform_quality_control(annotations, ["img"])
        metrics = controller.calculate_analysis_metrics(annotations, result)

        assert metrics.accuracy_score == pytest.approx(0.75)
        assert metrics.relevance_score == pytest.approx(1.0)
        assert metrics.grounding_score == result.visual_grounding_score
        assert metrics.overall_score == pytest.approx(
            metrics.accuracy_score * 0.3 + metrics.relevance_score * 0.2
            + metrics.specificity_score * 0.2 + metrics.grounding_score * 0.3
        )
        assert metrics.issues == result.quality_issues


class TestSummarizeFailures:
    def test_lists_failed_providers(self):
        synthesis = SynthesisResult(
            model_results=[
                ModelResponse.failure("claude", "Request timed out", "timeout"),
                ModelResponse.failure("openai", "Invalid API key", "authentication"),
            ],
            synthesis_metadata=SynthesisMetadata(
                primary_model_used="none", confidence_score=0, quality_score=0
            ),
        )
        assert summarize_failures(synthesis) == [
            "claude failed (timeout): Request timed out",
            "openai failed (authentication): Invalid API key",
        ]

    def test_nothing_invoked(self):
        synthesis = SynthesisResult(
            synthesis_metadata=SynthesisMetadata(primary_model_used="none", confidence_score=0, quality_score=0)
        )
        assert "No providers" in summarize_failures(synthesis)[0]
