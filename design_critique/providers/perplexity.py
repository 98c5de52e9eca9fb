"""
Perplexity Research Validation Provider

Lightweight research calls that back existing annotations with sources.
Never contributes annotations of its own: its output is a validation
flag and a source count the orchestrator attaches to the final set.
"""

import asyncio
import logging
from typing import Optional

import requests

from ..models import Annotation, ImagePayload
from .base import ProviderOutput, ProviderRequest, VisionProvider

logger = logging.getLogger(__name__)

PERPLEXITY_URL = "https://api.perplexity.ai/chat/completions"
MAX_RESEARCH_QUERIES = 3
MAX_PROMPT_TOPIC_LENGTH = 80


def extract_research_queries(annotations: list[Annotation], prompt: str) -> list[str]:
    """
    Derive up to three research queries from annotation categories.

    Falls back to a single query on the prompt's first line when no
    annotations are given, or a generic UX query when that is blank too.
    """
    themes = []
    for annotation in annotations:
        category = annotation.category or "ux"
        if category not in themes:
            themes.append(category)
        if len(themes) == MAX_RESEARCH_QUERIES:
            break

    if not themes:
        topic = prompt.strip().split("\n", 1)[0].strip()[:MAX_PROMPT_TOPIC_LENGTH].rstrip()
        if topic:
            return [f"UX best practices for {topic}"]
        themes = ["ux"]

    return [f"UX best practices for {theme} in modern web design" for theme in themes]


class PerplexityProvider(VisionProvider):
    """
    Research provider using Perplexity's online models.

    Queries run concurrently in worker threads; individual query failures
    are tolerated as long as at least one query answers.

    Example:
        provider = PerplexityProvider(api_key="pplx-...")
        response = await provider.call(
            images, prompt, ProviderRequest(role="research", context_annotations=annotations)
        )
        print(response.metadata["sources_found"])
    """

    default_timeout_ms = 15000
    requires_annotations = False

    def __init__(
        self,
        api_key: str,
        model: str = "sonar",
        timeout_ms: Optional[int] = None,
        session: Optional[requests.Session] = None
    ):
        self.model = model
        self.session = session or requests.Session()
        self._api_key = api_key
        if timeout_ms:
            self.default_timeout_ms = timeout_ms

    @property
    def name(self) -> str:
        """Provider name for identification"""
        return "perplexity"

    def is_available(self) -> bool:
        return self._api_key is not None and len(self._api_key) > 0

    async def _analyze(
        self,
        images: list[ImagePayload],
        prompt: str,
        request: ProviderRequest
    ) -> ProviderOutput:
        """
        Run the research queries.

        Raises:
            RuntimeError: If every query failed
        """
        queries = extract_research_queries(request.context_annotations, prompt)
        results = await asyncio.gather(
            *(asyncio.to_thread(self._query, query, request) for query in queries),
            return_exceptions=True
        )

        validation_results = []
        last_error: Optional[BaseException] = None
        for query, result in zip(queries, results):
            if isinstance(result, BaseException):
                logger.warning("Perplexity query failed: %s (%s)", query, result)
                last_error = result
                continue
            validation_results.append(result)

        if not validation_results:
            raise RuntimeError(f"All Perplexity research queries failed: {last_error}")

        return ProviderOutput(
            annotations=[],
            confidence=len(validation_results) / len(queries),
            metadata={
                "validation_results": validation_results,
                "research_queries": queries,
                "sources_found": sum(len(r["sources"]) for r in validation_results)
            }
        )

    def _query(self, query: str, request: ProviderRequest) -> dict:
        """
        Run one research query.

        Returns:
            Dictionary with query, content and sources
        """
        try:
            response = self.session.post(
                PERPLEXITY_URL,
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Content-Type": "application/json"
                },
                json={
                    "model": request.model_hint or self.model,
                    "messages": [{"role": "user", "content": query}],
                    "temperature": 0.2,
                    "max_tokens": min(request.max_tokens, 500)
                },
                timeout=self.default_timeout_ms / 1000
            )
        except requests.RequestException as e:
            raise RuntimeError(f"Perplexity network error: {str(e)}") from e

        if response.status_code != 200:
            raise RuntimeError(f"Perplexity API error: {response.status_code} {response.text[:200]}")

        data = response.json()
        return {
            "query": query,
            "content": data["choices"][0]["message"]["content"],
            "sources": [str(source) for source in data.get("citations", [])]
        }
