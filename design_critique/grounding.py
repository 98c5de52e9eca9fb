"""
Visual Grounding and Hallucination Checks

Heuristics that flag annotations a provider probably did not ground in
the actual image: impossible coordinates, suspicious placement and
generic or trivial wording. Detector functions work on a whole
annotation set; the validator turns them into a per-annotation verdict.
"""

import logging
import math
from collections import defaultdict
from typing import Optional

from .models import Annotation, GroundingValidationResult, QualityIssue

logger = logging.getLogger(__name__)

GENERIC_PHRASES = (
    "consider adding",
    "could be improved",
    "might benefit",
    "should include",
    "would help",
    "may want to",
    "could use",
    "might consider",
)

RESEARCH_INDICATORS = (
    "research shows",
    "studies indicate",
    "according to",
    "data suggests",
    "research-backed",
    "evidence-based",
    "peer-reviewed",
    "industry standard",
    "user research",
    "ux research",
)

CENTER_POINT = (50.0, 50.0)
CENTER_RADIUS = 10.0
CLUSTER_SHARE_LIMIT = 0.4
DUPLICATE_LIMIT = 2
MIN_WORD_COUNT = 5

BASE_CONFIDENCE = 0.8
GENERIC_PENALTY = 0.2
TRIVIAL_PENALTY = 0.2
CLUSTER_PENALTY = 0.1
DUPLICATE_PENALTY = 0.15
RESEARCH_BONUS = 0.1
DEFAULT_VALIDITY_THRESHOLD = 0.5


def generic_phrase_count(annotation: Annotation) -> int:
    text = annotation.text.lower()
    return sum(1 for phrase in GENERIC_PHRASES if phrase in text)


def word_count(annotation: Annotation) -> int:
    return len(annotation.text.split())


def is_trivial(annotation: Annotation) -> bool:
    """Fewer than five words of title and feedback"""
    return word_count(annotation) < MIN_WORD_COUNT


def has_research_backing(annotation: Annotation) -> bool:
    text = annotation.text.lower()
    return any(indicator in text for indicator in RESEARCH_INDICATORS)


def is_near_center(annotation: Annotation) -> bool:
    cx, cy = CENTER_POINT
    return abs(annotation.x - cx) < CENTER_RADIUS and abs(annotation.y - cy) < CENTER_RADIUS


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def center_cluster(annotations: list[Annotation]) -> list[Annotation]:
    """
    Annotations in a suspicious centre cluster.

    Returns the near-centre annotations when they make up more than 40% of
    the set, otherwise an empty list.
    """
    if not annotations:
        return []
    centered = [a for a in annotations if is_near_center(a)]
    if len(centered) > len(annotations) * CLUSTER_SHARE_LIMIT:
        return centered
    return []


def duplicate_groups(annotations: list[Annotation]) -> dict[tuple[int, int], list[Annotation]]:
    """Groups of more than two annotations sharing rounded (x, y)"""
    groups: dict[tuple[int, int], list[Annotation]] = defaultdict(list)
    for annotation in annotations:
        groups[(_round_half_up(annotation.x), _round_half_up(annotation.y))].append(annotation)
    return {key: group for key, group in groups.items() if len(group) > DUPLICATE_LIMIT}


def detect_out_of_range(annotations: list[Annotation]) -> list[QualityIssue]:
    return [
        QualityIssue(
            type="coordinate_accuracy",
            severity="critical",
            description=f"Coordinates outside valid range: ({a.x}, {a.y})",
            affected_annotation_ids={a.id},
            suggested_fix="Correct coordinates to be within 0-100 range",
        )
        for a in annotations
        if not a.in_bounds
    ]


def detect_center_clustering(annotations: list[Annotation]) -> list[QualityIssue]:
    """
    Flag providers that place annotations at the image centre.

    More than 40% of annotations within 10 units of (50, 50) on both axes
    suggests guessed rather than grounded placement.
    """
    cluster = center_cluster(annotations)
    if not cluster:
        return []

    return [QualityIssue(
        type="hallucination",
        severity="high",
        description=(
            f"Suspicious clustering of annotations in center area "
            f"({len(cluster)} of {len(annotations)})"
        ),
        affected_annotation_ids={a.id for a in cluster},
        suggested_fix="Verify that elements actually exist at these center coordinates",
    )]


def detect_duplicate_coordinates(annotations: list[Annotation]) -> list[QualityIssue]:
    return [
        QualityIssue(
            type="coordinate_accuracy",
            severity="medium",
            description=f"Multiple annotations at same coordinates: {x},{y}",
            affected_annotation_ids={a.id for a in group},
            suggested_fix="Verify that multiple elements actually exist at this location",
        )
        for (x, y), group in duplicate_groups(annotations).items()
    ]


def detect_generic_phrasing(annotations: list[Annotation]) -> list[QualityIssue]:
    return [
        QualityIssue(
            type="hallucination",
            severity="medium",
            description="Annotation contains too many generic suggestions",
            affected_annotation_ids={a.id},
            suggested_fix="Provide more specific, visually-grounded feedback",
        )
        for a in annotations
        if generic_phrase_count(a) > 1
    ]


def detect_trivial_feedback(annotations: list[Annotation]) -> list[QualityIssue]:
    return [
        QualityIssue(
            type="hallucination",
            severity="medium",
            description="Annotation content too brief, may lack visual grounding",
            affected_annotation_ids={a.id},
            suggested_fix="Provide more detailed description of observed elements",
        )
        for a in annotations
        if is_trivial(a)
    ]


def run_hallucination_detectors(annotations: list[Annotation]) -> list[QualityIssue]:
    """Union of the clustering, duplicate, generic-phrasing and triviality detectors"""
    return (
        detect_center_clustering(annotations) +
        detect_duplicate_coordinates(annotations) +
        detect_generic_phrasing(annotations) +
        detect_trivial_feedback(annotations)
    )


def visual_grounding_score(results: list[GroundingValidationResult]) -> float:
    """
    Aggregate grounding score: 0.7 x valid fraction + 0.3 x mean confidence.

    An empty result list scores 1.0.
    """
    if not results:
        return 1.0
    valid_fraction = sum(1 for r in results if r.is_valid) / len(results)
    mean_confidence = sum(r.confidence for r in results) / len(results)
    return valid_fraction * 0.7 + mean_confidence * 0.3


class VisualGroundingValidator:
    """
    Per-annotation visual grounding verdicts.

    Each annotation starts at 0.8 confidence. Generic or trivial wording,
    membership of a centre cluster and shared coordinates lower it;
    research-backed wording raises it. Out-of-range coordinates are
    always invalid with zero confidence.

    Example:
        validator = VisualGroundingValidator()
        results = validator.validate(annotations, image_urls)
        valid = [a for a, r in zip(annotations, results) if r.is_valid]
    """

    def __init__(self, minimum_confidence: float = DEFAULT_VALIDITY_THRESHOLD):
        self.minimum_confidence = minimum_confidence

    def validate(
        self,
        annotations: list[Annotation],
        image_urls: Optional[list[str]] = None
    ) -> list[GroundingValidationResult]:
        """
        Validate annotations against the grounding heuristics.

        Args:
            annotations: Annotations to check
            image_urls: Images the annotations refer to; when given, an
                image_index without a matching image is invalid

        Returns:
            One GroundingValidationResult per annotation, in input order
        """
        image_count = len(image_urls) if image_urls else None
        in_range = [a for a in annotations if a.in_bounds]
        clustered = {a.id for a in center_cluster(in_range)}
        duplicated = {a.id for group in duplicate_groups(in_range).values() for a in group}

        results = [
            self._validate_one(annotation, image_count, clustered, duplicated)
            for annotation in annotations
        ]

        if results:
            logger.debug(
                "Visual grounding: %d/%d valid, mean confidence %.2f",
                sum(1 for r in results if r.is_valid), len(results),
                sum(r.confidence for r in results) / len(results)
            )
        return results

    def _validate_one(
        self,
        annotation: Annotation,
        image_count: Optional[int],
        clustered: set[str],
        duplicated: set[str]
    ) -> GroundingValidationResult:
        if not annotation.in_bounds:
            return GroundingValidationResult(
                annotation_id=annotation.id,
                is_valid=False,
                confidence=0.0,
                reasons=[f"Coordinates outside valid range (0-100): ({annotation.x}, {annotation.y})"],
                suggested_corrections=["Correct coordinates to point at a visible element"],
                out_of_range=True,
            )

        reasons: list[str] = []
        corrections: list[str] = []
        confidence = BASE_CONFIDENCE
        index_mismatch = False

        if image_count is not None and annotation.image_index >= image_count:
            index_mismatch = True
            reasons.append(f"Image index {annotation.image_index} has no matching image")
            corrections.append(f"Use an image index below {image_count}")

        if has_research_backing(annotation):
            confidence += RESEARCH_BONUS

        if generic_phrase_count(annotation) > 1:
            confidence -= GENERIC_PENALTY
            reasons.append("Feedback too generic, may indicate hallucination")
            corrections.append("Provide more specific, observable details")

        if is_trivial(annotation):
            confidence -= TRIVIAL_PENALTY
            reasons.append("Feedback too brief to be visually grounded")
            corrections.append("Describe what is visible at this location")

        if annotation.id in clustered:
            confidence -= CLUSTER_PENALTY
            reasons.append("Part of a suspicious cluster around the image center")
            corrections.append("Verify coordinates point to an actual element")

        if annotation.id in duplicated:
            confidence -= DUPLICATE_PENALTY
            reasons.append("Shares coordinates with other annotations")
            corrections.append("Verify that multiple elements exist at this location")

        confidence = max(0.0, min(1.0, confidence))

        return GroundingValidationResult(
            annotation_id=annotation.id,
            is_valid=not index_mismatch and confidence >= self.minimum_confidence,
            confidence=round(confidence, 6),
            reasons=reasons,
            suggested_corrections=corrections,
        )


def build_grounded_prompt(
    prompt: str,
    image_count: int,
    max_annotations_per_image: int = 15,
    minimum_confidence: float = 0.8,
    require_visual_evidence: bool = True
) -> str:
    """
    Append visual grounding instructions to an analysis prompt.

    Args:
        prompt: Original analysis prompt
        image_count: Number of images that will be sent with it
        max_annotations_per_image: Annotation limit stated to the model
        minimum_confidence: Confidence floor stated to the model
        require_visual_evidence: Ask for an evidence description per annotation

    Returns:
        The prompt followed by grounding, coordinate and evidence sections
    """
    rules = [
        "- Element must be clearly visible in the image",
        "- Coordinates must point to the actual element location",
        "- Feedback must reference observable visual characteristics",
        "- No comments on elements that cannot be visually confirmed",
    ]
    if require_visual_evidence:
        rules.append("- Each annotation must include a visual evidence description")

    rules_text = "\n".join(rules)
    plural = "image" if image_count == 1 else "images"

    return f"""{prompt}

=== VISUAL GROUNDING INSTRUCTIONS ===
You are given {image_count} {plural}. Set imageIndex to the 0-based image each annotation refers to.
1. Before commenting on any UI element, confirm it exists in the image.
2. Only provide feedback you hold with confidence >= {minimum_confidence}.
3. Limit yourself to {max_annotations_per_image} annotations per image.
4. For each annotation, first describe what you see at that location, then give the feedback.

=== COORDINATE ACCURACY ===
1. x and y are percentages (0-100) of image width and height.
2. Coordinates must point to the center of the element being discussed.
3. If you cannot see exactly where an element is, do not annotate it.

=== VISUAL EVIDENCE ===
1. Each annotation must reference something actually visible in the image.
2. Cite specific visual details (color, text, position) you observe.
3. Do not rely on common UI patterns for elements you cannot see.

=== VALIDATION RULES ===
{rules_text}

Only provide feedback about elements that are clearly visible in the provided {plural}."""
