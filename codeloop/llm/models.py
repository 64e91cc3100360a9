"""Known models per provider."""

from dataclasses import dataclass
from typing import Iterable, List, Optional


@dataclass(frozen = True)
class ModelEntry:
    id: str
    label: str
    provider: str


ALL_MODELS: List[ModelEntry] = [
    ModelEntry("claude-opus-4-6", "Opus 4.6", "anthropic"),
    ModelEntry("claude-sonnet-4-5", "Sonnet 4.5", "anthropic"),
    ModelEntry("claude-haiku-4-5", "Haiku 4.5", "anthropic"),
    ModelEntry("gpt-5.3-codex", "Codex 5.3", "codex"),
    ModelEntry("gpt-5.2-codex", "Codex 5.2", "codex"),
    ModelEntry("gpt-5.1-codex-mini", "Codex 5.1 Mini", "codex"),
]

DEFAULT_MODELS = {
    "anthropic": "claude-opus-4-6",
    "codex": "gpt-5.3-codex",
}

# Cheapest first.
SMALL_MODEL_PRIORITY = [
    "claude-haiku-4-5",
    "gpt-5.1-codex-mini",
    "claude-sonnet-4-5",
    "gpt-5.2-codex",
    "gpt-5.3-codex",
    "claude-opus-4-6",
]


def provider_for_model(model_id: str) -> Optional[str]:
    for entry in ALL_MODELS:
        if entry.id == model_id:
            return entry.provider
    return None


def default_model(provider_id: str) -> str:
    return DEFAULT_MODELS.get(provider_id, "")


def smallest_available_model(provider_ids: Iterable[str]) -> Optional[str]:
    """Cheapest known model served by one of the given providers."""
    available = set(provider_ids)
    for model_id in SMALL_MODEL_PRIORITY:
        if provider_for_model(model_id) in available:
            return model_id
    return None
