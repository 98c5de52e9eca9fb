"""
OpenAI GPT-4o Vision Provider

Secondary provider of the orchestration: supplements a successful Claude
audit, or stands in as the primary analysis when Claude fails.
"""

from typing import Optional

import openai

from ..models import ImagePayload
from .base import ProviderOutput, ProviderRequest, VisionProvider, parse_annotations


class OpenAIProvider(VisionProvider):
    """
    Vision provider using OpenAI's GPT-4o.

    The request role ("supplementary" or "primary-fallback") is written
    into the system prompt so the model knows whether it is filling gaps
    or carrying the audit.

    Example:
        provider = OpenAIProvider(api_key="sk-...")
        response = await provider.call(images, prompt, ProviderRequest(role="supplementary"))
    """

    default_timeout_ms = 30000

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o",
        timeout_ms: Optional[int] = None,
        client: Optional[openai.AsyncOpenAI] = None
    ):
        """
        Initialize OpenAI provider.

        Args:
            api_key: OpenAI API key (get from https://platform.openai.com/api-keys)
            model: Vision-capable OpenAI model (default: gpt-4o)
            timeout_ms: Override the 30 s default timeout
            client: Pre-built async client (tests inject a fake here)
        """
        self.client = client or openai.AsyncOpenAI(api_key=api_key, max_retries=0)
        self.model = model
        self._api_key = api_key
        if timeout_ms:
            self.default_timeout_ms = timeout_ms

    @property
    def name(self) -> str:
        """Provider name for identification"""
        return "openai"

    def is_available(self) -> bool:
        """
        Check if OpenAI provider is configured.

        Returns:
            True if API key is set, False otherwise
        """
        return self._api_key is not None and len(self._api_key) > 0

    async def _analyze(
        self,
        images: list[ImagePayload],
        prompt: str,
        request: ProviderRequest
    ) -> ProviderOutput:
        """
        Analyze screenshots using GPT-4o.

        Raises:
            RuntimeError: If the API call fails or returns no content
        """
        role_label = "supplementary" if request.role == "supplementary" else "primary"
        image_content = [
            {
                "type": "image_url",
                "image_url": {
                    "url": image.data_url,
                    "detail": "high"
                }
            }
            for image in images
        ]

        try:
            response = await self.client.chat.completions.create(
                model=request.model_hint or self.model,
                messages=[
                    {
                        "role": "system",
                        "content": (
                            f"You are a UX analysis expert providing {role_label} analysis. "
                            "Generate 12-16 detailed insights in JSON format."
                        )
                    },
                    {
                        "role": "user",
                        "content": [
                            {
                                "type": "text",
                                "text": self._build_annotation_prompt(
                                    prompt, 12, 16, role=request.role, image_count=len(images)
                                )
                            },
                            *image_content
                        ]
                    }
                ],
                max_tokens=request.max_tokens,
                temperature=0.3  # Lower temperature for more consistent output
            )
        except openai.APIError as e:
            raise RuntimeError(f"OpenAI API error: {str(e)}") from e

        response_text = response.choices[0].message.content or ""
        if not response_text:
            raise RuntimeError("OpenAI returned an empty response")

        annotations = parse_annotations(response_text, self.name)

        return ProviderOutput(
            annotations=annotations,
            metadata={
                "model": request.model_hint or self.model,
                "role": request.role,
                "raw_response_length": len(response_text)
            }
        )
