"""OpenAI Text-to-Speech provider."""

from __future__ import annotations

from loguru import logger
from openai import AsyncOpenAI

from livbridge.core.errors import TtsError
from livbridge.providers.base import BaseTTS

OPENAI_VOICES = ("alloy", "echo", "fable", "onyx", "nova", "shimmer")


class OpenAITTS(BaseTTS):
    """OpenAI speech API (tts-1 / tts-1-hd).

    Args:
        api_key: OpenAI API key.
        voice_id: One of the OpenAI voices (default: "nova").
        model: "tts-1" (fast) or "tts-1-hd" (quality).
        speed: Playback speed (0.25 - 4.0).
    """

    def __init__(
        self,
        api_key: str,
        voice_id: str = "nova",
        model: str = "tts-1",
        speed: float = 1.0,
    ):
        self._voice = voice_id if voice_id in OPENAI_VOICES else "nova"
        self._model = model
        self._speed = speed
        self._client = AsyncOpenAI(api_key=api_key, max_retries=0)

    async def synthesize(self, text: str) -> bytes:
        if not text.strip():
            raise TtsError("Nothing to synthesize")
        try:
            response = await self._client.audio.speech.create(
                model=self._model,
                voice=self._voice,
                input=text,
                response_format="mp3",
                speed=self._speed,
            )
        except Exception as e:
            raise TtsError(f"OpenAI TTS failed: {e}") from e

        audio = response.content
        logger.debug(f"TTS OpenAI: {len(text)} chars -> {len(audio)} bytes, voice={self._voice}")
        return audio

    async def close(self) -> None:
        await self._client.close()
