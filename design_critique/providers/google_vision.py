"""
Google Cloud Vision Provider

Detects objects and short text blocks (likely buttons and labels) with
the Cloud Vision REST API and turns them into located annotations in
percent coordinates. Useful as a grounding reference: every annotation
it produces sits on something the detector actually found.
"""

import asyncio
from typing import Optional

import requests

from ..models import Annotation, ImagePayload
from .base import ProviderOutput, ProviderRequest, VisionProvider

VISION_URL = "https://vision.googleapis.com/v1/images:annotate"
MAX_ANNOTATIONS = 19

# Text blocks with at most this many words are treated as UI labels
LABEL_WORD_LIMIT = 3


class GoogleVisionProvider(VisionProvider):
    """
    Provider backed by Google Cloud Vision object and text detection.

    Example:
        provider = GoogleVisionProvider(api_key="AIza...")
        response = await provider.call(images, "Locate interactive elements")
    """

    default_timeout_ms = 20000

    def __init__(
        self,
        api_key: str,
        timeout_ms: Optional[int] = None,
        session: Optional[requests.Session] = None
    ):
        self.session = session or requests.Session()
        self._api_key = api_key
        if timeout_ms:
            self.default_timeout_ms = timeout_ms

    @property
    def name(self) -> str:
        """Provider name for identification"""
        return "vision"

    def is_available(self) -> bool:
        return self._api_key is not None and len(self._api_key) > 0

    async def _analyze(
        self,
        images: list[ImagePayload],
        prompt: str,
        request: ProviderRequest
    ) -> ProviderOutput:
        data = await asyncio.to_thread(self._annotate, images)

        annotations: list[Annotation] = []
        scores: list[float] = []
        for image_index, result in enumerate(data.get("responses", [])):
            if "error" in result:
                raise RuntimeError(f"Vision API image error: {result['error'].get('message', '')}")
            for annotation, score in self._convert(result, image_index, len(annotations)):
                annotations.append(annotation)
                scores.append(score)

        annotations = annotations[:MAX_ANNOTATIONS]
        scores = scores[:MAX_ANNOTATIONS]
        confidence = sum(scores) / len(scores) if scores else 0.0

        return ProviderOutput(
            annotations=annotations,
            confidence=confidence,
            metadata={"detections": len(annotations)}
        )

    def _annotate(self, images: list[ImagePayload]) -> dict:
        """POST one images:annotate batch"""
        body = {
            "requests": [
                {
                    "image": {"content": image.encoded_payload},
                    "features": [
                        {"type": "OBJECT_LOCALIZATION", "maxResults": 10},
                        {"type": "TEXT_DETECTION", "maxResults": 20}
                    ]
                }
                for image in images
            ]
        }

        try:
            response = self.session.post(
                VISION_URL,
                params={"key": self._api_key},
                json=body,
                timeout=self.default_timeout_ms / 1000
            )
        except requests.RequestException as e:
            raise RuntimeError(f"Vision API network error: {str(e)}") from e

        if response.status_code != 200:
            raise RuntimeError(f"Vision API error: {response.status_code} {response.text[:200]}")

        return response.json()

    def _convert(self, result: dict, image_index: int, offset: int) -> list[tuple[Annotation, float]]:
        """Turn one image's detections into (annotation, score) pairs"""
        converted = []

        for obj in result.get("localizedObjectAnnotations", []):
            vertices = obj.get("boundingPoly", {}).get("normalizedVertices", [])
            if not vertices:
                continue
            x = sum(v.get("x", 0.0) for v in vertices) / len(vertices) * 100
            y = sum(v.get("y", 0.0) for v in vertices) / len(vertices) * 100
            score = float(obj.get("score", 0.0))
            converted.append((Annotation(
                id=f"vision-{offset + len(converted) + 1}",
                image_index=image_index,
                x=round(x, 1),
                y=round(y, 1),
                severity="suggested",
                category="layout",
                title=obj.get("name", "Object"),
                feedback=(
                    f"Detected a {obj.get('name', 'visual element').lower()} at this location "
                    f"with {score:.0%} confidence; check that it is clearly labelled and "
                    f"visually consistent with the surrounding layout."
                ),
            ), score))

        pages = result.get("fullTextAnnotation", {}).get("pages", [])
        if not pages or not pages[0].get("width") or not pages[0].get("height"):
            return converted
        width, height = pages[0]["width"], pages[0]["height"]

        # The first text annotation is the whole-image text block
        for text in result.get("textAnnotations", [])[1:]:
            words = text.get("description", "").split()
            if not words or len(words) > LABEL_WORD_LIMIT:
                continue
            vertices = text.get("boundingPoly", {}).get("vertices", [])
            if not vertices:
                continue
            x = sum(v.get("x", 0) for v in vertices) / len(vertices) / width * 100
            y = sum(v.get("y", 0) for v in vertices) / len(vertices) / height * 100
            label = " ".join(words)
            converted.append((Annotation(
                id=f"vision-{offset + len(converted) + 1}",
                image_index=image_index,
                x=round(min(x, 100.0), 1),
                y=round(min(y, 100.0), 1),
                severity="positive",
                category="content",
                title=label,
                feedback=(
                    f"Visible text label \"{label}\" found here; confirm the wording is "
                    f"actionable and has sufficient contrast against its background."
                ),
            ), 0.7))

        return converted
