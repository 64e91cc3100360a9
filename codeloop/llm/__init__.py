"""Provider adapters behind one streaming step interface."""

from typing import Any, Optional

from ..credentials import BearerCredential
from .anthropic_adapter import AnthropicAdapter
from .base import (
    ProviderAdapter,
    ReasoningBlock,
    StepEvent,
    StepSettings,
    TextDelta,
    ToolCallArgumentDelta,
    ToolCallCompleted,
    ToolCallStarted,
    UsageUpdate,
)
from .models import ALL_MODELS, default_model, provider_for_model, smallest_available_model
from .openai_adapter import OpenAIAdapter


def build_adapter(
    provider_id: str,
    credential: Optional[BearerCredential],
    base_url: Optional[str] = None,
    client: Any = None,
) -> ProviderAdapter:
    """
    Construct the adapter for a provider id.

    Parameters:
        provider_id: anthropic or codex.
        credential: Resolved credential; construction fails without one.
        base_url: Optional endpoint override.
        client: Optional pre-built SDK client.
    """
    if provider_id == "anthropic":
        return AnthropicAdapter(credential, base_url = base_url, client = client)
    if provider_id == "codex":
        return OpenAIAdapter(credential, base_url = base_url, client = client)
    raise ValueError(f"Unknown provider: {provider_id}")


__all__ = [
    "ALL_MODELS",
    "AnthropicAdapter",
    "OpenAIAdapter",
    "ProviderAdapter",
    "ReasoningBlock",
    "StepEvent",
    "StepSettings",
    "TextDelta",
    "ToolCallArgumentDelta",
    "ToolCallCompleted",
    "ToolCallStarted",
    "UsageUpdate",
    "build_adapter",
    "default_model",
    "provider_for_model",
    "smallest_available_model",
]
