"""Provider lookup for the two LivBridge collaborators.

Maps the ``llm.provider`` and ``tts.provider`` names from the bridge config
onto provider classes. Built-ins are stored as ``module:Class`` strings and
imported on first use, so an unused SDK is never loaded.
"""

from __future__ import annotations

import importlib
from typing import TYPE_CHECKING, Any, Type

from loguru import logger

from livbridge.providers.base import BaseLLM, BaseTTS

if TYPE_CHECKING:
    from livbridge.config import BridgeConfig, ProviderSection

_KINDS: dict[str, type] = {"llm": BaseLLM, "tts": BaseTTS}

_BUILTINS: dict[str, dict[str, str]] = {
    "llm": {
        "openai": "livbridge.providers.llm.openai:OpenAILLM",
        "anthropic": "livbridge.providers.llm.anthropic:AnthropicLLM",
    },
    "tts": {
        "elevenlabs": "livbridge.providers.tts.elevenlabs:ElevenLabsTTS",
        "openai": "livbridge.providers.tts.openai:OpenAITTS",
    },
}


class ProviderRegistry:
    """Resolves collaborator names to configured provider instances.

    Example:
        llm, tts = provider_registry.from_config(bridge_config)
        llm = provider_registry.create_llm("anthropic", api_key="...")
    """

    def __init__(self) -> None:
        self._entries: dict[str, dict[str, Type | str]] = {
            kind: dict(names) for kind, names in _BUILTINS.items()
        }

    def register_llm(self, name: str, cls: Type[BaseLLM]) -> None:
        self._register("llm", name, cls)

    def register_tts(self, name: str, cls: Type[BaseTTS]) -> None:
        self._register("tts", name, cls)

    def create_llm(self, name: str, **kwargs: Any) -> BaseLLM:
        """Create a chat model. Raises ValueError for an unknown name."""
        return self._create("llm", name, kwargs)

    def create_tts(self, name: str, **kwargs: Any) -> BaseTTS:
        """Create a TTS provider. Raises ValueError for an unknown name."""
        return self._create("tts", name, kwargs)

    def from_config(self, config: BridgeConfig) -> tuple[BaseLLM, BaseTTS | None]:
        """Build the chat model and, when ``tts.enabled``, the TTS provider."""
        llm = self._from_section("llm", config.llm)
        tts = self._from_section("tts", config.tts) if config.tts.enabled else None
        return llm, tts

    @property
    def available_llm(self) -> list[str]:
        return list(self._entries["llm"])

    @property
    def available_tts(self) -> list[str]:
        return list(self._entries["tts"])

    def _register(self, kind: str, name: str, cls: type) -> None:
        if not (isinstance(cls, type) and issubclass(cls, _KINDS[kind])):
            raise TypeError(f"{kind} provider '{name}' must subclass {_KINDS[kind].__name__}")
        self._entries[kind][name] = cls
        logger.debug(f"Registered {kind} provider: {name}")

    def _from_section(self, kind: str, section: ProviderSection) -> Any:
        if not section.provider:
            raise ValueError(f"No {kind} provider configured (set {kind}.provider)")
        return self._create(kind, section.provider, dict(section.config))

    def _create(self, kind: str, name: str, kwargs: dict[str, Any]) -> Any:
        ref = self._entries[kind].get(name)
        if ref is None:
            available = ", ".join(self._entries[kind])
            raise ValueError(f"Unknown {kind.upper()} provider '{name}'. Available: {available}")
        if isinstance(ref, str):
            module_path, class_name = ref.rsplit(":", 1)
            ref = getattr(importlib.import_module(module_path), class_name)
        logger.info(f"Creating {kind} provider: {name}")
        return ref(**kwargs)


provider_registry = ProviderRegistry()
