"""
Annotation Quality Scoring

Pure scoring functions shared by the orchestrator and the quality
controller. No side effects; safe to call on partial annotation sets.
"""

from .models import Annotation

# Professional audit target; the count score saturates here
TARGET_ANNOTATION_COUNT = 18
TARGET_CATEGORY_COUNT = 5
TARGET_FEEDBACK_LENGTH = 100

COUNT_WEIGHT = 0.4
DIVERSITY_WEIGHT = 0.3
CONTENT_WEIGHT = 0.3

HEDGING_WORDS = {"could", "should", "would", "might", "maybe", "perhaps"}


def count_score(annotations: list[Annotation]) -> float:
    return min(len(annotations) / TARGET_ANNOTATION_COUNT, 1.0)


def diversity_score(annotations: list[Annotation]) -> float:
    categories = {a.category for a in annotations if a.category}
    return min(len(categories) / TARGET_CATEGORY_COUNT, 1.0)


def content_depth_score(annotations: list[Annotation]) -> float:
    if not annotations:
        return 0.0
    average_length = sum(len(a.feedback) for a in annotations) / len(annotations)
    return min(average_length / TARGET_FEEDBACK_LENGTH, 1.0)


def score_annotation_quality(annotations: list[Annotation]) -> float:
    """
    Score an annotation set on volume, diversity and content depth.

    Weighted 0.4 / 0.3 / 0.3:
    - count: approaches 1 at 18 annotations
    - diversity: approaches 1 at 5 distinct categories
    - content depth: approaches 1 at 100 characters of average feedback

    Args:
        annotations: Candidate annotation set (may be empty)

    Returns:
        Score in [0, 1]; 0 for an empty set

    Example:
        score = score_annotation_quality(result.annotations)
    """
    if not annotations:
        return 0.0

    return (
        count_score(annotations) * COUNT_WEIGHT +
        diversity_score(annotations) * DIVERSITY_WEIGHT +
        content_depth_score(annotations) * CONTENT_WEIGHT
    )


def specificity_score(annotation: Annotation) -> float:
    """
    Share of substantive words (longer than 4 characters, not hedging)
    in an annotation's title and feedback.
    """
    words = annotation.text.lower().split()
    if not words:
        return 0.0
    specific = [w for w in words if len(w) > 4 and w.strip(".,;:!?") not in HEDGING_WORDS]
    return len(specific) / len(words)
