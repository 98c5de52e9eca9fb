"""Tests for design_critique.grounding."""

from __future__ import annotations

import pytest

from design_critique.grounding import (
    VisualGroundingValidator,
    build_grounded_prompt,
    center_cluster,
    detect_center_clustering,
    detect_duplicate_coordinates,
    detect_generic_phrasing,
    detect_out_of_range,
    detect_trivial_feedback,
    generic_phrase_count,
    run_hallucination_detectors,
    visual_grounding_score,
)
from design_critique.models import GroundingValidationResult

GENERIC_FEEDBACK = (
    "Consider adding more contrast. Could be improved with spacing. Should include icons."
)


@pytest.fixture
def validator() -> VisualGroundingValidator:
    return VisualGroundingValidator()


class TestDetectors:
    def test_out_of_range_is_critical(self, make_annotation):
        issues = detect_out_of_range([make_annotation("bad", x=150, y=40), make_annotation("ok")])
        assert len(issues) == 1
        assert issues[0].severity == "critical"
        assert issues[0].type == "coordinate_accuracy"
        assert issues[0].affected_annotation_ids == {"bad"}

    def test_center_clustering_fires_above_forty_percent(self, make_annotation):
        annotations = [make_annotation(f"c-{i}", x=45 + i * 2, y=45 + i * 2) for i in range(5)]
        annotations += [make_annotation(f"e-{i}", x=5 + i * 3, y=80) for i in range(5)]

        issues = detect_center_clustering(annotations)

        assert len(issues) == 1
        assert issues[0].severity == "high"
        assert issues[0].type == "hallucination"
        assert issues[0].affected_annotation_ids == {f"c-{i}" for i in range(5)}

    def test_center_clustering_at_exactly_forty_percent(self, make_annotation):
        annotations = [make_annotation(f"c-{i}", x=50, y=48 + i) for i in range(4)]
        annotations += [make_annotation(f"e-{i}", x=5 + i * 3, y=80) for i in range(6)]
        assert detect_center_clustering(annotations) == []

    def test_center_boundary_is_strict(self, make_annotation):
        assert center_cluster([make_annotation(x=60, y=50)]) == []
        assert len(center_cluster([make_annotation(x=59.9, y=50)])) == 1

    def test_duplicates_need_more_than_two(self, make_annotation):
        two = [make_annotation(f"d-{i}", x=30.2, y=30.4) for i in range(2)]
        assert detect_duplicate_coordinates(two) == []

        three = two + [make_annotation("d-3", x=29.6, y=29.8)]
        issues = detect_duplicate_coordinates(three)
        assert len(issues) == 1
        assert issues[0].severity == "medium"
        assert issues[0].type == "coordinate_accuracy"
        assert len(issues[0].affected_annotation_ids) == 3

    def test_generic_phrasing(self, make_annotation):
        annotation = make_annotation("g", feedback=GENERIC_FEEDBACK)
        assert generic_phrase_count(annotation) == 3

        issues = detect_generic_phrasing([annotation])
        assert len(issues) == 1
        assert issues[0].type == "hallucination"
        assert issues[0].severity == "medium"

    def test_single_generic_phrase_allowed(self, make_annotation):
        annotation = make_annotation(feedback="Consider adding a visible focus ring to the search field.")
        assert detect_generic_phrasing([annotation]) == []

    def test_trivial_feedback(self, make_annotation):
        issues = detect_trivial_feedback([make_annotation("t", feedback="Bad button")])
        assert len(issues) == 1
        assert issues[0].type == "hallucination"

    def test_title_counts_towards_words(self, make_annotation):
        annotation = make_annotation(feedback="Low contrast", title="Hero call to action")
        assert detect_trivial_feedback([annotation]) == []

    def test_run_all_is_union(self, make_annotation):
        annotations = [
            make_annotation("g", feedback=GENERIC_FEEDBACK),
            make_annotation("t", x=80, y=80, feedback="Bad button"),
        ]
        issues = run_hallucination_detectors(annotations)
        assert {next(iter(i.affected_annotation_ids)) for i in issues} == {"g", "t"}

    def test_clean_set_has_no_issues(self, spread_annotations):
        assert run_hallucination_detectors(spread_annotations(12)) == []


class TestVisualGroundingValidator:
    def test_one_result_per_annotation(self, validator, spread_annotations):
        annotations = spread_annotations(6)
        results = validator.validate(annotations, ["img"])
        assert [r.annotation_id for r in results] == [a.id for a in annotations]
        assert all(r.is_valid for r in results)
        assert all(r.confidence == pytest.approx(0.8) for r in results)

    def test_out_of_range_invalid(self, validator, make_annotation):
        result = validator.validate([make_annotation("bad", x=150, y=40)], ["img"])[0]
        assert not result.is_valid
        assert result.confidence == 0.0
        assert result.out_of_range
        assert "outside valid range" in result.reasons[0]

    def test_generic_phrasing_lowers_confidence(self, validator, make_annotation):
        result = validator.validate([make_annotation(feedback=GENERIC_FEEDBACK)], ["img"])[0]
        assert result.confidence == pytest.approx(0.6)
        assert result.is_valid
        assert result.reasons

    def test_generic_and_trivial_invalid(self, validator, make_annotation):
        annotation = make_annotation(feedback="Could use. Would help.")
        result = validator.validate([annotation], ["img"])[0]
        assert result.confidence == pytest.approx(0.4)
        assert not result.is_valid

    def test_research_wording_raises_confidence(self, validator, make_annotation):
        annotation = make_annotation(
            feedback="Research shows that the low contrast white text on the green checkout button reduces clicks."
        )
        assert validator.validate([annotation], ["img"])[0].confidence == pytest.approx(0.9)

    def test_image_index_without_image(self, validator, make_annotation):
        result = validator.validate([make_annotation(image_index=2)], ["img-0", "img-1"])[0]
        assert not result.is_valid
        assert any("Image index" in reason for reason in result.reasons)

    def test_image_index_unchecked_without_urls(self, validator, make_annotation):
        assert validator.validate([make_annotation(image_index=2)], [])[0].is_valid

    def test_cluster_members_penalised(self, validator, make_annotation):
        annotations = [make_annotation(f"c-{i}", x=46 + i * 2, y=46 + i * 2) for i in range(5)]
        annotations += [make_annotation(f"e-{i}", x=5 + i * 3, y=80) for i in range(5)]
        results = {r.annotation_id: r for r in validator.validate(annotations, ["img"])}
        assert results["c-0"].confidence == pytest.approx(0.7)
        assert results["e-0"].confidence == pytest.approx(0.8)

    def test_custom_threshold(self, make_annotation):
        strict = VisualGroundingValidator(minimum_confidence=0.85)
        assert not strict.validate([make_annotation()], ["img"])[0].is_valid


class TestGroundingScore:
    def test_empty_is_one(self):
        assert visual_grounding_score([]) == 1.0

    def test_formula(self):
        results = [
            GroundingValidationResult(annotation_id="a", is_valid=True, confidence=0.8),
            GroundingValidationResult(annotation_id="b", is_valid=False, confidence=0.0),
        ]
        assert visual_grounding_score(results) == pytest.approx(0.5 * 0.7 + 0.4 * 0.3)


class TestGroundedPrompt:
    def test_keeps_original_prompt_first(self):
        prompt = build_grounded_prompt("Audit the pricing page", 2)
        assert prompt.startswith("Audit the pricing page")
        assert "You are given 2 images" in prompt
        assert "VISUAL GROUNDING INSTRUCTIONS" in prompt

    def test_evidence_rule_optional(self):
        without = build_grounded_prompt("Audit", 1, require_visual_evidence=False)
        assert "visual evidence description" not in without
        assert "visual evidence description" in build_grounded_prompt("Audit", 1)
