"""Shared test fixtures for design_critique."""

from __future__ import annotations

import asyncio
from typing import Callable, Optional

import pytest

from design_critique.models import Annotation, ImagePayload
from design_critique.orchestrator import WeightTable
from design_critique.providers.base import ProviderOutput, ProviderRequest, VisionProvider

# 8-byte PNG signature padded so the base64 payload passes the length check
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + bytes(200)

CATEGORIES = ["accessibility", "conversion", "visual", "ux", "mobile", "content"]


class FakeProvider(VisionProvider):
    """Scripted provider: returns fixed output, raises, or sleeps past its timeout."""

    def __init__(
        self,
        name: str,
        annotations: Optional[list[Annotation]] = None,
        confidence: Optional[float] = 0.9,
        error: Optional[Exception] = None,
        delay: float = 0.0,
        metadata: Optional[dict] = None,
        requires_annotations: bool = True,
        timeout_ms: int = 30000,
    ):
        self._name = name
        self.annotations = annotations or []
        self.confidence = confidence
        self.error = error
        self.delay = delay
        self.metadata = metadata or {}
        self.requires_annotations = requires_annotations
        self.default_timeout_ms = timeout_ms
        self.requests: list[ProviderRequest] = []
        self.prompts: list[str] = []

    @property
    def name(self) -> str:
        return self._name

    def is_available(self) -> bool:
        return True

    async def _analyze(self, images, prompt, request) -> ProviderOutput:
        self.requests.append(request)
        self.prompts.append(prompt)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return ProviderOutput(
            annotations=list(self.annotations),
            confidence=self.confidence,
            metadata=dict(self.metadata),
        )


def build_annotation(
    id: str = "a-1",
    x: float = 20.0,
    y: float = 30.0,
    feedback: str = (
        "The primary checkout button uses low contrast white text on a pale "
        "green background, making the call to action hard to read."
    ),
    **kwargs,
) -> Annotation:
    return Annotation(id=id, x=x, y=y, feedback=feedback, **kwargs)


def build_spread_annotations(count: int, prefix: str = "a", offset: float = 0.0) -> list[Annotation]:
    """Well-formed annotations on a grid away from the image centre."""
    annotations = []
    for i in range(count):
        col, row = i % 4, i // 4
        x = 5 + col * 12 + offset
        y = 5 + row * 18 + offset
        annotations.append(Annotation(
            id=f"{prefix}-{i + 1}",
            x=x,
            y=y,
            severity="important",
            category=CATEGORIES[i % len(CATEGORIES)],
            title=f"Navigation element {i + 1}",
            feedback=(
                f"The navigation label at position {i + 1} renders in light grey "
                f"text below the header, which reduces legibility against the background."
            ),
        ))
    return annotations


@pytest.fixture
def image() -> ImagePayload:
    """A small but valid PNG payload."""
    return ImagePayload.from_bytes(PNG_BYTES, "image/png", source_url="https://example.com/home")


@pytest.fixture
def images(image) -> list[ImagePayload]:
    return [image]


@pytest.fixture
def make_annotation() -> Callable[..., Annotation]:
    return build_annotation


@pytest.fixture
def spread_annotations() -> Callable[..., list[Annotation]]:
    return build_spread_annotations


@pytest.fixture
def fake_provider() -> Callable[..., FakeProvider]:
    return FakeProvider


@pytest.fixture
def weights() -> WeightTable:
    """A private weight table so tests never touch the process-wide one."""
    return WeightTable()
