"""
Provider Implementations

Pluggable AI providers following a common interface:
Anthropic Claude (primary), OpenAI GPT-4o (secondary),
Perplexity (research validation) and Google Cloud Vision.
"""

from typing import Optional

from pydantic import BaseModel, Field

from ..models import Config, ImagePayload, ModelResponse
from .base import ProviderRequest, VisionProvider, categorize_error
from .anthropic import AnthropicProvider
from .openai import OpenAIProvider
from .perplexity import PerplexityProvider
from .google_vision import GoogleVisionProvider

__all__ = [
    "VisionProvider",
    "ProviderRequest",
    "ProviderInvocation",
    "AnthropicProvider",
    "OpenAIProvider",
    "PerplexityProvider",
    "GoogleVisionProvider",
    "categorize_error",
    "get_provider",
    "invoke",
    "PROVIDER_NAMES",
]

PROVIDER_NAMES = ("claude", "openai", "perplexity", "vision")


class ProviderInvocation(BaseModel):
    """Request shape of the ``invoke`` entry point"""

    images: list[ImagePayload]
    prompt: str
    model_hint: Optional[str] = None
    max_tokens: int = Field(default=4000, ge=1)
    timeout_ms: Optional[int] = Field(default=None, ge=1)


def get_provider(provider_name: str, config: Config) -> VisionProvider:
    """
    Factory function to get configured provider.

    Args:
        provider_name: One of "claude", "openai", "perplexity" or "vision"
        config: Configuration object with API keys

    Returns:
        Configured provider instance

    Raises:
        ValueError: If provider name is unknown or not configured

    Example:
        provider = get_provider("claude", config)
        response = await provider.call(images, prompt)
    """
    if provider_name == "claude":
        if not config.has_anthropic():
            raise ValueError(
                "Anthropic API key not configured. "
                "Set ANTHROPIC_API_KEY in .env file"
            )
        return AnthropicProvider(
            api_key=config.anthropic_api_key,
            model=config.claude_model,
            timeout_ms=config.claude_timeout_ms
        )

    elif provider_name == "openai":
        if not config.has_openai():
            raise ValueError(
                "OpenAI API key not configured. "
                "Set OPENAI_API_KEY in .env file"
            )
        return OpenAIProvider(api_key=config.openai_api_key, model=config.openai_model)

    elif provider_name == "perplexity":
        if not config.has_perplexity():
            raise ValueError(
                "Perplexity API key not configured. "
                "Set PERPLEXITY_API_KEY in .env file"
            )
        return PerplexityProvider(api_key=config.perplexity_api_key, model=config.perplexity_model)

    elif provider_name == "vision":
        if not config.has_google_vision():
            raise ValueError(
                "Google Vision API key not configured. "
                "Set GOOGLE_VISION_API_KEY in .env file"
            )
        return GoogleVisionProvider(api_key=config.google_vision_api_key)

    else:
        raise ValueError(
            f"Unknown provider: {provider_name}. "
            f"Choose from: {', '.join(PROVIDER_NAMES)}"
        )


async def invoke(
    provider_id: str,
    invocation: ProviderInvocation,
    config: Config
) -> ModelResponse:
    """
    Call one provider by id.

    Provider failures, including a missing API key, come back as a failed
    ModelResponse; only an unknown provider id raises.

    Raises:
        ValueError: If provider_id is not a known provider

    Example:
        response = await invoke("claude", ProviderInvocation(images=images, prompt=prompt), config)
    """
    if provider_id not in PROVIDER_NAMES:
        raise ValueError(
            f"Unknown provider: {provider_id}. "
            f"Choose from: {', '.join(PROVIDER_NAMES)}"
        )

    try:
        provider = get_provider(provider_id, config)
    except ValueError as e:
        return ModelResponse.failure(
            provider_name=provider_id,
            error=str(e),
            error_category="authentication",
        )

    return await provider.call(
        invocation.images,
        invocation.prompt,
        ProviderRequest(
            model_hint=invocation.model_hint,
            max_tokens=invocation.max_tokens,
            timeout_ms=invocation.timeout_ms
        )
    )
