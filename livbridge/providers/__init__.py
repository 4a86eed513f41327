"""LivBridge collaborator providers - chat completion and text-to-speech.

Provides a unified interface for plugging in different AI service providers:
- LLM (chat completion with tool calling): OpenAI GPT, Anthropic Claude
- TTS (Text-to-Speech): ElevenLabs, OpenAI TTS

Usage:
    from livbridge.providers import provider_registry

    llm, tts = provider_registry.from_config(bridge_config)
    llm = provider_registry.create_llm("openai", api_key="...", model="gpt-4o-mini")
    tts = provider_registry.create_tts("elevenlabs", api_key="...", voice_id="...")
"""

from livbridge.providers.base import BaseLLM, BaseTTS, ChatReply
from livbridge.providers.registry import provider_registry

__all__ = [
    "BaseLLM",
    "BaseTTS",
    "ChatReply",
    "provider_registry",
]
