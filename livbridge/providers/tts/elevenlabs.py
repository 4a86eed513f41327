"""ElevenLabs Text-to-Speech provider.

Uses the ElevenLabs REST API to render a whole reply to MP3 in one
request; the clip is then served to Twilio for <Play>.

API key: https://elevenlabs.io/
"""

from __future__ import annotations

import httpx
from loguru import logger

from livbridge.core.errors import TtsError
from livbridge.providers.base import BaseTTS


class ElevenLabsTTS(BaseTTS):
    """ElevenLabs TTS over HTTPS.

    Args:
        api_key: ElevenLabs API key.
        voice_id: Voice identifier.
        model_id: TTS model (default: "eleven_turbo_v2_5").
        output_format: Audio output format (default: "mp3_22050_32").
        stability: Voice stability (0.0-1.0, default: 0.5).
        similarity_boost: Voice similarity (0.0-1.0, default: 0.75).
        style: Style exaggeration (0.0-1.0, default: 0.0).
        timeout: HTTP timeout in seconds (default: 10).
    """

    BASE_URL = "https://api.elevenlabs.io/v1/text-to-speech"

    def __init__(
        self,
        api_key: str,
        voice_id: str = "21m00Tcm4TlvDq8ikWAM",  # Rachel (default)
        model_id: str = "eleven_turbo_v2_5",
        output_format: str = "mp3_22050_32",
        stability: float = 0.5,
        similarity_boost: float = 0.75,
        style: float = 0.0,
        timeout: float = 10.0,
    ):
        self._api_key = api_key
        self._voice_id = voice_id
        self._model_id = model_id
        self._output_format = output_format
        self._stability = stability
        self._similarity_boost = similarity_boost
        self._style = style
        self._client = httpx.AsyncClient(timeout=timeout)

    async def synthesize(self, text: str) -> bytes:
        """Render ``text`` to MP3 bytes."""
        if not text.strip():
            raise TtsError("Nothing to synthesize")

        url = f"{self.BASE_URL}/{self._voice_id}"
        payload = {
            "text": text,
            "model_id": self._model_id,
            "voice_settings": {
                "stability": self._stability,
                "similarity_boost": self._similarity_boost,
                "style": self._style,
            },
        }

        try:
            response = await self._client.post(
                url,
                params={"output_format": self._output_format},
                headers={"xi-api-key": self._api_key, "Accept": "audio/mpeg"},
                json=payload,
            )
        except httpx.HTTPError as e:
            raise TtsError(f"ElevenLabs request failed: {e}") from e

        if not response.is_success:
            raise TtsError(f"ElevenLabs returned HTTP {response.status_code}")
        if not response.content:
            raise TtsError("ElevenLabs returned empty audio")

        logger.debug(
            f"TTS ElevenLabs: {len(text)} chars -> {len(response.content)} bytes, "
            f"voice={self._voice_id}"
        )
        return response.content

    async def close(self) -> None:
        await self._client.aclose()
