"""
Base Vision Provider Interface

Abstract base class defining the contract for AI providers. Every
provider is called through ``VisionProvider.call``, which validates
inputs, enforces the provider timeout and converts every failure into
a ``ModelResponse`` with a categorized error. Retries are the
orchestrator's business, never the provider's.
"""

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from typing import NamedTuple, Optional

from pydantic import BaseModel, Field, ValidationError

from ..models import Annotation, ImagePayload, ModelResponse
from ..scoring import score_annotation_quality

logger = logging.getLogger(__name__)

# Base64 payloads shorter than this are treated as corrupted uploads
MIN_PAYLOAD_LENGTH = 100

# Checked in order; first match wins
ERROR_KEYWORDS = (
    ("authentication", ("api key", "api_key", "authentication", "unauthorized", "401", "403")),
    ("timeout", ("timeout", "timed out")),
    ("rate_limit", ("rate limit", "rate_limit", "429", "too many requests")),
    ("image_processing", ("base64", "image")),
    ("network", ("network", "fetch", "connection", "dns")),
)

SEVERITY_ALIASES = {
    "critical": "critical",
    "high": "critical",
    "important": "important",
    "medium": "important",
    "major": "important",
    "suggested": "suggested",
    "suggestion": "suggested",
    "low": "suggested",
    "minor": "suggested",
    "improvement": "suggested",
    "enhancement": "enhancement",
    "opportunity": "enhancement",
    "positive": "positive",
    "strength": "positive",
}


def categorize_error(message: str) -> str:
    """
    Map a raw error message onto the fixed error taxonomy.

    Deterministic keyword match so callers can branch without parsing
    vendor-specific error shapes.

    Args:
        message: Raw error message

    Returns:
        One of authentication, timeout, rate_limit, image_processing,
        network or unknown
    """
    lowered = message.lower()
    for category, keywords in ERROR_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return category
    return "unknown"


class ProviderInputError(ValueError):
    """Raised when a request fails validation before any network call"""

    def __init__(self, message: str, category: str = "validation"):
        super().__init__(message)
        self.category = category


class ProviderRequest(BaseModel):
    """
    Per-call settings passed to a provider.

    Attributes:
        model_hint: Override the provider's default model
        max_tokens: Completion token limit
        timeout_ms: Override the provider's default timeout
        role: Role in the orchestration (changes the prompt for some providers)
        context_annotations: Annotations a research provider should validate
    """

    model_hint: Optional[str] = None
    max_tokens: int = Field(default=4000, ge=1)
    timeout_ms: Optional[int] = Field(default=None, ge=1)
    role: str = "primary"
    context_annotations: list[Annotation] = Field(default_factory=list)


class ProviderOutput(NamedTuple):
    annotations: list[Annotation]
    confidence: Optional[float] = None
    metadata: Optional[dict] = None


class VisionProvider(ABC):
    """
    Abstract base class for AI providers.

    All providers (Claude, OpenAI, Perplexity, Google Vision) implement
    this interface so the orchestrator can treat them uniformly.

    Subclasses must implement:
    - name: Property returning the provider name
    - is_available(): Check if provider is configured
    - _analyze(): The actual vendor call, allowed to raise

    Providers are stateless apart from their client objects and are
    safe to call concurrently.
    """

    # Hard timeout for one call, overridable per request
    default_timeout_ms: int = 30000

    # Whether an empty annotation list counts as a failed call
    requires_annotations: bool = True

    @property
    @abstractmethod
    def name(self) -> str:
        """
        Provider name for logging and identification.

        Returns:
            Provider name (claude, openai, perplexity or vision)
        """
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """
        Check if provider is configured and ready to use.

        Returns:
            True if provider can be used, False otherwise
        """
        pass

    @abstractmethod
    async def _analyze(
        self,
        images: list[ImagePayload],
        prompt: str,
        request: ProviderRequest
    ) -> ProviderOutput:
        """
        Perform the vendor call and parse its output.

        May raise any exception; ``call`` converts it into a failed
        ModelResponse.
        """
        pass

    async def call(
        self,
        images: list[ImagePayload],
        prompt: str,
        request: Optional[ProviderRequest] = None
    ) -> ModelResponse:
        """
        Run one provider call. Never raises.

        Args:
            images: Images to analyze (at least one)
            prompt: Analysis prompt (non-empty)
            request: Optional per-call settings

        Returns:
            ModelResponse; on any failure success=False with a categorized error

        Example:
            response = await provider.call([image], "Audit this checkout page")
            if not response.success:
                print(response.error_category)
        """
        request = request or ProviderRequest()
        timeout_ms = request.timeout_ms or self.default_timeout_ms
        start = time.monotonic()

        try:
            self.validate_inputs(images, prompt)
            try:
                output = await asyncio.wait_for(
                    self._analyze(images, prompt, request),
                    timeout=timeout_ms / 1000
                )
            except asyncio.TimeoutError as e:
                raise TimeoutError(f"{self.name} call timed out after {timeout_ms}ms") from e

            if self.requires_annotations and not output.annotations:
                raise RuntimeError(f"{self.name} returned no annotations")

        except Exception as e:
            elapsed_ms = int((time.monotonic() - start) * 1000)
            message = str(e) or type(e).__name__
            if isinstance(e, TimeoutError):
                category = "timeout"
            elif isinstance(e, ProviderInputError):
                category = e.category
            else:
                category = categorize_error(message)

            logger.warning(
                "%s call failed after %dms (%s): %s", self.name, elapsed_ms, category, message
            )
            return ModelResponse.failure(
                provider_name=self.name,
                error=message,
                error_category=category,
                processing_time_ms=elapsed_ms,
                role=request.role,
            )

        elapsed_ms = int((time.monotonic() - start) * 1000)
        confidence = output.confidence
        if confidence is None:
            confidence = score_annotation_quality(output.annotations)

        logger.info(
            "%s returned %d annotations in %dms", self.name, len(output.annotations), elapsed_ms
        )
        return ModelResponse.ok(
            provider_name=self.name,
            annotations=output.annotations,
            confidence=max(0.0, min(1.0, confidence)),
            processing_time_ms=elapsed_ms,
            role=request.role,
            metadata=dict(output.metadata or {}),
        )

    def validate_inputs(self, images: list[ImagePayload], prompt: str) -> None:
        """
        Reject requests that cannot succeed before touching the network.

        Raises:
            ProviderInputError: On missing/corrupt images or an empty prompt
        """
        if not images:
            raise ProviderInputError("No images provided for analysis", "image_processing")

        for index, image in enumerate(images):
            if not image.encoded_payload:
                raise ProviderInputError(f"Image {index} is missing base64 data", "image_processing")
            if len(image.encoded_payload) < MIN_PAYLOAD_LENGTH:
                raise ProviderInputError(
                    f"Image {index} base64 data appears corrupted (too short)", "image_processing"
                )
            if not image.mime_type or not image.mime_type.startswith("image/"):
                raise ProviderInputError(
                    f"Invalid image mime type: {image.mime_type}", "image_processing"
                )

        if not prompt or not prompt.strip():
            raise ProviderInputError("Prompt is empty")

    def _build_annotation_prompt(
        self,
        prompt: str,
        min_count: int,
        max_count: int,
        role: str = "primary",
        image_count: int = 1
    ) -> str:
        """
        Build standardized annotation prompt.

        Designed to elicit a JSON array of located, specific insights.
        Can be overridden by subclasses for provider-specific tuning.

        Args:
            prompt: Caller's analysis prompt (may include RAG context)
            min_count: Minimum number of insights requested
            max_count: Maximum number of insights requested
            role: Orchestration role, mentioned to the model
            image_count: Number of images attached

        Returns:
            Prompt text
        """
        role_line = {
            "primary": "You are conducting the primary professional UX audit.",
            "supplementary": "You are providing supplementary analysis to an existing audit; focus on issues it may have missed.",
            "primary-fallback": "You are providing the primary analysis for this audit.",
        }.get(role, "You are conducting a professional UX audit.")

        return f"""You are a professional UX analysis expert. {role_line}

**Your Task:** Generate {min_count}-{max_count} detailed, visually grounded insights about the {image_count} attached screenshot(s).

**Requirements:**
- Only comment on elements you can clearly see in the images
- Include a mix of critical issues, improvements, positive validations and business opportunities
- Cover UX patterns, accessibility, visual design, conversion and mobile experience
- Coordinates are percentages of the image: x and y between 0 and 100, pointing at the element
- Describe what you see at each location before recommending a change

**Output Format:** Return ONLY a JSON array:

```json
[
  {{
    "id": "annotation-1",
    "imageIndex": 0,
    "x": 50,
    "y": 30,
    "severity": "<critical|important|suggested|enhancement|positive>",
    "category": "<accessibility|conversion|visual|ux|mobile|content>",
    "title": "<short headline>",
    "feedback": "<specific insight referencing visible details>"
  }}
]
```

**Analysis Context:**
{prompt}"""


def extract_json_text(response_text: str) -> str:
    """
    Pull the JSON part out of a model response.

    Handles JSON in markdown code blocks and JSON surrounded by prose.
    """
    if "```json" in response_text:
        start = response_text.find("```json") + 7
        end = response_text.find("```", start)
        return response_text[start:end if end != -1 else None].strip()
    elif "```" in response_text:
        start = response_text.find("```") + 3
        end = response_text.find("```", start)
        return response_text[start:end if end != -1 else None].strip()
    elif "[" in response_text and "]" in response_text:
        start = response_text.find("[")
        end = response_text.rfind("]") + 1
        return response_text[start:end].strip()
    return response_text.strip()


def parse_annotations(response_text: str, provider_name: str) -> list[Annotation]:
    """
    Parse annotations from a model response.

    Accepts a JSON array or an object with an ``annotations`` key. When no
    JSON can be found, falls back to one annotation per meaningful line
    (at most 12) laid out on a grid. Malformed items are skipped.

    Args:
        response_text: Raw model output
        provider_name: Used to generate missing ids

    Returns:
        Parsed annotations with unique ids
    """
    try:
        data = json.loads(extract_json_text(response_text))
    except json.JSONDecodeError:
        logger.warning("%s response is not valid JSON, using line parsing", provider_name)
        return _parse_lines(response_text, provider_name)

    if isinstance(data, dict):
        data = data.get("annotations", data.get("insights", []))
    if not isinstance(data, list):
        logger.warning("%s response JSON is not a list", provider_name)
        return []

    annotations = []
    seen_ids = set()
    for index, item in enumerate(data):
        if not isinstance(item, dict):
            continue

        # Nulls fall back to the model defaults
        fields = {key: value for key, value in item.items() if value is not None}
        fields.setdefault("id", f"{provider_name}-{index + 1}")
        base_id = str(fields["id"])
        fields["id"] = base_id
        suffix = index + 1
        while fields["id"] in seen_ids:
            fields["id"] = f"{base_id}-{suffix}"
            suffix += 1
        if "feedback" not in fields and "description" not in fields and "text" in fields:
            fields["feedback"] = fields.pop("text")
        severity = str(fields.get("severity", "suggested")).lower()
        fields["severity"] = SEVERITY_ALIASES.get(severity, "suggested")

        try:
            annotation = Annotation.model_validate(fields)
        except ValidationError as e:
            logger.warning("Skipping malformed %s annotation %s: %s", provider_name, fields["id"], e)
            continue

        seen_ids.add(annotation.id)
        annotations.append(annotation)

    return annotations


def _parse_lines(content: str, provider_name: str) -> list[Annotation]:
    lines = [line.strip() for line in content.split("\n") if len(line.strip()) > 10]
    annotations = []

    for i, line in enumerate(lines[:12]):
        annotations.append(Annotation(
            id=f"{provider_name}-parsed-{i + 1}",
            x=30 + (i % 3) * 30,
            y=20 + (i // 3) * 25,
            severity="critical" if i < 3 else "suggested" if i < 8 else "positive",
            category="ux",
            feedback=line,
        ))

    return annotations
