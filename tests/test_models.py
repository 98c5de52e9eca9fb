"""Tests for design_critique.models."""

from __future__ import annotations

import base64

import pytest
from pydantic import ValidationError

from design_critique.models import (
    AnalysisReport,
    Annotation,
    ImagePayload,
    ModelResponse,
    QualityControlResult,
    QualityIssue,
    SynthesisMetadata,
    SynthesisResult,
)

from conftest import PNG_BYTES


class TestImagePayload:
    def test_from_bytes(self):
        image = ImagePayload.from_bytes(PNG_BYTES, "image/png", source_url="shot.png")
        assert base64.b64decode(image.encoded_payload) == PNG_BYTES
        assert image.data_url.startswith("data:image/png;base64,")

    def test_accepts_wire_aliases(self):
        encoded = base64.b64encode(PNG_BYTES).decode()
        image = ImagePayload.model_validate({"base64Data": encoded, "mimeType": "image/jpeg"})
        assert image.mime_type == "image/jpeg"
        assert image.encoded_payload == encoded

    def test_rejects_invalid_base64(self):
        with pytest.raises(ValidationError, match="not valid base64"):
            ImagePayload(encoded_payload="not base64!!", mime_type="image/png")

    def test_rejects_empty_payload(self):
        with pytest.raises(ValidationError, match="zero bytes"):
            ImagePayload(encoded_payload="", mime_type="image/png")

    def test_is_frozen(self, image):
        with pytest.raises(ValidationError):
            image.mime_type = "image/gif"

    def test_from_path(self, tmp_path):
        path = tmp_path / "home.png"
        path.write_bytes(PNG_BYTES)
        image = ImagePayload.from_path(path)
        assert image.mime_type == "image/png"
        assert image.source_url == str(path)

    def test_from_path_rejects_non_images(self, tmp_path):
        path = tmp_path / "notes.txt"
        path.write_text("hello")
        with pytest.raises(ValueError, match="Not an image file"):
            ImagePayload.from_path(path)


class TestAnnotation:
    def test_aliases(self):
        annotation = Annotation.model_validate({
            "id": "a-1", "imageIndex": 1, "x": 10, "y": 20, "description": "Hero text is low contrast",
        })
        assert annotation.image_index == 1
        assert annotation.feedback == "Hero text is low contrast"

    def test_out_of_range_coordinates_are_data(self, make_annotation):
        annotation = make_annotation(x=150, y=-3)
        assert not annotation.in_bounds

    def test_boundaries_are_in_bounds(self, make_annotation):
        assert make_annotation(x=0, y=100).in_bounds

    def test_text_joins_title(self, make_annotation):
        assert make_annotation(title="CTA", feedback="Too small").text == "CTA Too small"
        assert make_annotation(feedback="Too small").text == "Too small"

    def test_requires_feedback(self):
        with pytest.raises(ValidationError):
            Annotation(id="a", x=1, y=1, feedback="")

    def test_negative_image_index_rejected(self):
        with pytest.raises(ValidationError):
            Annotation(id="a", x=1, y=1, feedback="x", image_index=-1)


class TestModelResponse:
    def test_ok(self, make_annotation):
        response = ModelResponse.ok("claude", [make_annotation()], 0.9, role="primary")
        assert response.success
        assert response.error_category is None

    def test_failure(self):
        response = ModelResponse.failure("openai", "Invalid API key", "authentication")
        assert not response.success
        assert response.annotations == []
        assert response.confidence == 0.0

    def test_failure_with_annotations_rejected(self, make_annotation):
        with pytest.raises(ValidationError, match="no annotations"):
            ModelResponse(
                provider_name="claude",
                success=False,
                annotations=[make_annotation()],
                error_category="unknown",
            )

    def test_failure_needs_category(self):
        with pytest.raises(ValidationError, match="error_category"):
            ModelResponse(provider_name="claude", success=False)

    def test_success_cannot_carry_category(self):
        with pytest.raises(ValidationError):
            ModelResponse(provider_name="claude", success=True, error_category="timeout")

    def test_unknown_provider_rejected(self):
        with pytest.raises(ValidationError):
            ModelResponse.ok("gemini", [], 0.5)


class TestReports:
    def test_issue_str(self):
        issue = QualityIssue(type="hallucination", severity="high", description="Centre cluster")
        assert str(issue) == "[high] hallucination: Centre cluster"

    def test_report_summary_and_json(self, make_annotation):
        annotation = make_annotation()
        report = AnalysisReport(
            analysis_id="run-1",
            prompt="Audit",
            synthesis=SynthesisResult(
                final_annotations=[annotation],
                synthesis_metadata=SynthesisMetadata(
                    primary_model_used="claude", confidence_score=0.9, quality_score=0.8
                ),
            ),
            quality=QualityControlResult(
                overall_quality=0.85,
                visual_grounding_score=0.94,
                hallucination_risk=0.0,
                validated_annotations=[annotation],
                recommendations=["Analysis quality meets standards"],
            ),
        )

        summary = report.summary()
        assert "Primary model: claude" in summary
        assert "1 validated of 1 synthesized" in summary
        assert report.annotations == [annotation]

        restored = AnalysisReport.model_validate_json(report.model_dump_json())
        assert restored == report
