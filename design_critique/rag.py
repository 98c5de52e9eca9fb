"""
Knowledge Context Validation

Filters retrieved knowledge-base entries before they are added to an
analysis prompt, estimates how much hallucination risk the context adds,
and builds the context-augmented prompt. Retrieval itself is outside this
module: entries arrive as KnowledgeEntry records (loaded from JSON for the
CLI).
"""

import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import TypeAdapter

from .models import KnowledgeEntry, RagImpactAnalysis, RagValidationResult

logger = logging.getLogger(__name__)

MAX_KNOWLEDGE_ENTRIES = 8
MIN_RELEVANCE_SCORE = 0.75
MAX_CONTENT_LENGTH = 500
CONTEXT_SNIPPET_LENGTH = 300

SPECIFIC_TERMS = (
    "pixel", "color:", "font-size", "margin", "padding", "border",
    "accessibility", "contrast ratio", "wcag", "button text",
    "navigation", "form field", "error message",
)

GENERIC_TERMS = (
    "good practice", "best way", "should consider", "it is important",
    "users like", "generally", "usually", "often",
)

CONFLICT_INDICATORS = (
    "however", "but", "although", "nevertheless", "on the other hand",
    "contrary to", "despite", "in contrast",
)

# Absolute rules stripped from context so they cannot override what is visible
ABSOLUTE_PHRASES = (
    "always add", "never use", "must have", "should always",
    "all websites need", "every design should",
)

_ABSOLUTE_PATTERN = re.compile("|".join(re.escape(p) for p in ABSOLUTE_PHRASES), re.IGNORECASE)

_entries_adapter = TypeAdapter(list[KnowledgeEntry])


def load_knowledge(path: Path) -> list[KnowledgeEntry]:
    """
    Load knowledge entries from a JSON file.

    The file holds a list of entries, or an object with an ``entries`` list.

    Raises:
        ValueError: If the file is not valid JSON or entries are malformed
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ValueError(f"Knowledge file {path} is not valid JSON: {str(e)}") from e

    if isinstance(data, dict):
        data = data.get("entries", [])

    return _entries_adapter.validate_python(data)


def prompt_relevance(entry: KnowledgeEntry, prompt: str) -> float:
    """Share of the entry's longer words that also appear in the prompt"""
    entry_words = entry.content.lower().split()
    prompt_words = prompt.lower().split()
    prompt_vocabulary = set(prompt_words)

    common = [w for w in entry_words if len(w) > 3 and w in prompt_vocabulary]
    return min(1.0, len(common) / max(10, len(prompt_words) * 0.3))


def content_specificity(entry: KnowledgeEntry) -> float:
    content = entry.content.lower()
    specific = sum(1 for term in SPECIFIC_TERMS if term in content)
    generic = sum(1 for term in GENERIC_TERMS if term in content)
    return max(0.0, min(1.0, (specific - generic * 0.5) / 5))


def content_freshness(entry: KnowledgeEntry, now: Optional[datetime] = None) -> float:
    """Step score by entry age; undated entries score 0.5"""
    if entry.created_at is None:
        return 0.5

    now = now or datetime.now(timezone.utc)
    created = entry.created_at
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    age_days = (now - created).total_seconds() / 86400

    if age_days <= 30:
        return 1.0
    elif age_days <= 90:
        return 0.8
    elif age_days <= 365:
        return 0.6
    elif age_days <= 730:
        return 0.4
    return 0.2


def content_conflicts(entry: KnowledgeEntry) -> float:
    content = entry.content.lower()
    words = set(re.findall(r"[a-z]+", content))
    count = 0
    for indicator in CONFLICT_INDICATORS:
        if " " in indicator:
            count += indicator in content
        else:
            count += indicator in words
    return min(1.0, count / 3)


class RagContentValidator:
    """
    Validates and filters knowledge context for an analysis prompt.

    Example:
        validator = RagContentValidator()
        validation = validator.validate_entries(entries, prompt)
        impact = validator.analyze_impact(validation.validated_entries, prompt)
        prompt = validator.build_safe_prompt(prompt, validation)
    """

    def __init__(
        self,
        max_entries: int = MAX_KNOWLEDGE_ENTRIES,
        min_relevance: float = MIN_RELEVANCE_SCORE,
        max_content_length: int = MAX_CONTENT_LENGTH,
        enable_content_filtering: bool = True
    ):
        self.max_entries = max_entries
        self.min_relevance = min_relevance
        self.max_content_length = max_content_length
        self.enable_content_filtering = enable_content_filtering

    def validate_entries(self, entries: list[KnowledgeEntry], prompt: str) -> RagValidationResult:
        """
        Score each entry against the prompt and keep the relevant ones.

        An entry is kept when its relevance is at least the minimum and it
        raised at most one concern. Kept entries are cleaned, sorted by
        relevance and capped.

        Args:
            entries: Retrieved knowledge entries
            prompt: The analysis prompt they would be added to

        Returns:
            RagValidationResult with kept entries, scores and filter reasons
        """
        kept: list[KnowledgeEntry] = []
        relevance_scores: dict[str, float] = {}
        filtering_reasons: dict[str, list[str]] = {}
        filtered_count = 0

        for entry in entries:
            score, reasons = self._score_entry(entry, prompt)
            relevance_scores[entry.id] = score
            if score >= self.min_relevance and len(reasons) <= 1:
                kept.append(self._clean_entry(entry))
            else:
                filtered_count += 1
                filtering_reasons[entry.id] = reasons

        kept.sort(key=lambda e: relevance_scores.get(e.id, 0.0), reverse=True)
        kept = kept[:self.max_entries]

        result = RagValidationResult(
            validated_entries=kept,
            filtered_count=filtered_count,
            relevance_scores=relevance_scores,
            filtering_reasons=filtering_reasons,
            overall_quality=self._overall_quality(kept, relevance_scores),
        )
        logger.info(
            "Knowledge validation: kept %d of %d entries, quality %.2f",
            len(kept), len(entries), result.overall_quality
        )
        return result

    def analyze_impact(self, entries: list[KnowledgeEntry], prompt: str) -> RagImpactAnalysis:
        """Estimate hallucination risk, prompt alignment and quality of a context set"""
        count = max(len(entries), 1)
        avg_specificity = sum(content_specificity(e) for e in entries) / count
        avg_conflict = sum(content_conflicts(e) for e in entries) / count
        avg_freshness = sum(content_freshness(e) for e in entries) / count

        risk = min(0.3, len(entries) / 50)
        risk += (1 - avg_specificity) * 0.4
        risk += avg_conflict * 0.3
        risk = max(0.0, min(1.0, risk))

        alignment = min(1.0, sum(prompt_relevance(e, prompt) for e in entries) / count)
        quality = min(1.0, avg_specificity * 0.6 + avg_freshness * 0.4)

        recommendations = []
        if risk > 0.7:
            recommendations.append("High hallucination risk detected - reduce knowledge volume")
        if alignment < 0.5:
            recommendations.append("Poor context alignment - filter for more relevant knowledge")
        if quality < 0.6:
            recommendations.append("Low knowledge quality - update knowledge base")
        if not recommendations:
            recommendations.append("Knowledge context quality is acceptable")

        return RagImpactAnalysis(
            hallucination_risk=risk,
            context_alignment=alignment,
            knowledge_quality=quality,
            recommendations=recommendations,
        )

    def build_safe_prompt(self, prompt: str, validation: RagValidationResult) -> str:
        """
        Append validated context to the prompt with safety instructions.

        Returns the prompt unchanged when no entry survived validation.
        """
        if not validation.validated_entries:
            return prompt

        context = "\n".join(
            f"{i}. {entry.title}\n   {entry.content[:CONTEXT_SNIPPET_LENGTH]}"
            + (f"\n   Source: {entry.source}" if entry.source else "")
            for i, entry in enumerate(validation.validated_entries, 1)
        )

        return f"""{prompt}

=== RESEARCH CONTEXT SAFETY INSTRUCTIONS ===
1. Use research context as supporting evidence, not primary guidance.
2. What you observe in the images takes precedence over research context.
3. This research context has a quality score of {round(validation.overall_quality * 100)}%.
4. {validation.filtered_count} potentially problematic entries were filtered out.

=== VALIDATED RESEARCH CONTEXT ===
{context}

=== CITATION REQUIREMENTS ===
1. When referencing research context, mention the source.
2. Clearly separate observed issues from research-backed recommendations.

Focus primarily on what you can observe in the provided images."""

    def _score_entry(self, entry: KnowledgeEntry, prompt: str) -> tuple[float, list[str]]:
        reasons = []
        score = 0.5

        if len(entry.content) > self.max_content_length * 2:
            reasons.append("Content too long, may overwhelm analysis")
            score -= 0.2

        relevance = prompt_relevance(entry, prompt)
        score += relevance * 0.4
        if relevance < 0.3:
            reasons.append("Low relevance to analysis prompt")

        specificity = content_specificity(entry)
        score += specificity * 0.3
        if specificity < 0.4:
            reasons.append("Content too generic or vague")

        freshness = content_freshness(entry)
        score += freshness * 0.2
        if freshness < 0.3:
            reasons.append("Content may be outdated")

        conflict = content_conflicts(entry)
        score -= conflict * 0.2
        if conflict > 0.5:
            reasons.append("Content contains conflicting information")

        return max(0.0, min(1.0, score)), reasons

    def _clean_entry(self, entry: KnowledgeEntry) -> KnowledgeEntry:
        if not self.enable_content_filtering:
            return entry

        content = entry.content
        if len(content) > self.max_content_length:
            content = content[:self.max_content_length] + "..."
        content = _ABSOLUTE_PATTERN.sub("", content)
        content = re.sub(r"\s{2,}", " ", content).strip()

        return entry.model_copy(update={"content": content})

    def _overall_quality(self, entries: list[KnowledgeEntry], scores: dict[str, float]) -> float:
        if not entries:
            return 0.0

        avg_relevance = sum(scores.get(e.id, 0.0) for e in entries) / len(entries)
        categories = {e.category for e in entries}
        sources = {e.source for e in entries if e.source}
        diversity = min(1.0, (len(categories) + len(sources)) / 10)
        coverage = min(1.0, len(entries) / self.max_entries)

        return min(1.0, avg_relevance * 0.5 + diversity * 0.3 + coverage * 0.2)
