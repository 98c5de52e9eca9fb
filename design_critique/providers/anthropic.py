"""
Anthropic Claude Vision Provider

Primary provider of the orchestration. Sends every screenshot to a
vision-capable Claude model and asks for a 16-19 item annotation audit.
"""

from typing import Optional

import anthropic

from ..models import ImagePayload
from .base import ProviderOutput, ProviderRequest, VisionProvider, parse_annotations


class AnthropicProvider(VisionProvider):
    """
    Vision provider using Anthropic's Claude models.

    The client is created with retries disabled: a failed or slow call is
    reported straight back to the orchestrator, which owns fallback policy.

    Example:
        provider = AnthropicProvider(api_key="sk-ant-...")
        response = await provider.call([image], prompt)
    """

    default_timeout_ms = 35000

    def __init__(
        self,
        api_key: str,
        model: str = "claude-sonnet-4-20250514",
        timeout_ms: Optional[int] = None,
        client: Optional[anthropic.AsyncAnthropic] = None
    ):
        """
        Initialize Anthropic provider.

        Args:
            api_key: Anthropic API key (get from https://console.anthropic.com/)
            model: Claude model to use; must be vision-capable
            timeout_ms: Override the 35 s default timeout
            client: Pre-built async client (tests inject a fake here)
        """
        self.client = client or anthropic.AsyncAnthropic(api_key=api_key, max_retries=0)
        self.model = model
        self._api_key = api_key
        if timeout_ms:
            self.default_timeout_ms = timeout_ms

    @property
    def name(self) -> str:
        """Provider name for identification"""
        return "claude"

    def is_available(self) -> bool:
        """
        Check if Anthropic provider is configured.

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
        Analyze screenshots using Claude.

        Raises:
            RuntimeError: If the API call fails or returns no text
        """
        content = [
            {
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": image.mime_type,
                    "data": image.encoded_payload
                }
            }
            for image in images
        ]
        content.append({
            "type": "text",
            "text": self._build_annotation_prompt(
                prompt, 16, 19, role=request.role, image_count=len(images)
            )
        })

        try:
            response = await self.client.messages.create(
                model=request.model_hint or self.model,
                max_tokens=request.max_tokens,
                messages=[{"role": "user", "content": content}]
            )
        except anthropic.APIError as e:
            raise RuntimeError(f"Anthropic API error: {str(e)}") from e

        # Extract text response
        response_text = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )
        if not response_text:
            raise RuntimeError("Claude returned an empty response")

        annotations = parse_annotations(response_text, self.name)

        return ProviderOutput(
            annotations=annotations,
            metadata={
                "model": request.model_hint or self.model,
                "target_range": [16, 19],
                "raw_response_length": len(response_text)
            }
        )
