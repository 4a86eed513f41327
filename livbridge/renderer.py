"""Reply rendering: TurnOutcome -> Twilio markup.

Voice replies become TwiML with a speech <Gather> (or a <Hangup> when the
call is over); SMS replies become a messaging <Message>. When a TTS
provider is configured, continue/end replies are synthesized and served
back to Twilio as a <Play> clip, falling back to the built-in <Say> voice
on any synthesis failure.
"""

from __future__ import annotations

import asyncio
import uuid
from collections import OrderedDict
from dataclasses import dataclass

from loguru import logger
from twilio.twiml.messaging_response import MessagingResponse
from twilio.twiml.voice_response import Gather, VoiceResponse

from livbridge.core.errors import TtsError
from livbridge.core.turns import Channel, OutcomeKind, TurnOutcome
from livbridge.providers.base import BaseTTS

# Only these kinds are worth a synthesis round-trip
_SYNTHESIZED_KINDS = (OutcomeKind.CONTINUE, OutcomeKind.END)


@dataclass
class AudioClip:
    data: bytes
    content_type: str = "audio/mpeg"


class AudioCache:
    """Bounded in-memory store for synthesized clips, oldest evicted first."""

    def __init__(self, max_items: int = 256) -> None:
        self._max_items = max(1, max_items)
        self._clips: OrderedDict[str, AudioClip] = OrderedDict()

    def put(self, data: bytes, content_type: str = "audio/mpeg") -> str:
        clip_id = uuid.uuid4().hex
        self._clips[clip_id] = AudioClip(data=data, content_type=content_type)
        while len(self._clips) > self._max_items:
            self._clips.popitem(last=False)
        return clip_id

    def get(self, clip_id: str) -> AudioClip | None:
        clip = self._clips.get(clip_id)
        if clip is not None:
            self._clips.move_to_end(clip_id)
        return clip

    def __len__(self) -> int:
        return len(self._clips)


class ReplyRenderer:
    """Turns orchestrator outcomes into Twilio response markup.

    Args:
        gather_url: Absolute (or path) URL Twilio posts speech results to.
        audio_base_url: Public URL prefix for cached clips, e.g.
            ``https://liv.example.com/audio``. Empty disables <Play>.
        tts: Optional TTS provider.
        cache: Clip store shared with the ``/audio`` endpoint.
        tts_timeout: Bound on each synthesis call, in seconds.
        fallback_voice: Twilio <Say> voice used without TTS.
        fallback_language: Language for the <Say> voice.
    """

    def __init__(
        self,
        gather_url: str,
        audio_base_url: str = "",
        tts: BaseTTS | None = None,
        cache: AudioCache | None = None,
        tts_timeout: float = 5.0,
        fallback_voice: str = "Polly.Joanna",
        fallback_language: str = "en-US",
    ):
        self.gather_url = gather_url
        self.audio_base_url = audio_base_url.rstrip("/")
        self.cache = cache or AudioCache()
        self._tts = tts
        self._tts_timeout = tts_timeout
        self._voice = fallback_voice
        self._language = fallback_language

    async def render(self, channel: Channel, outcome: TurnOutcome, session_id: str = "") -> str:
        if channel == Channel.SMS:
            return self.render_sms(outcome.text)

        clip_url = None
        if outcome.kind in _SYNTHESIZED_KINDS:
            clip_url = await self._synthesize(outcome.text, session_id)

        response = VoiceResponse()
        if outcome.kind in (OutcomeKind.END, OutcomeKind.ERROR) or outcome.hangup:
            self._speak(response, outcome.text, clip_url)
            response.hangup()
        else:
            gather = Gather(
                input="speech",
                action=self.gather_url,
                method="POST",
                speech_timeout="auto",
            )
            self._speak(gather, outcome.text, clip_url)
            response.append(gather)
            # No speech: Twilio falls through to here and posts an empty result
            response.redirect(self.gather_url, method="POST")
        return str(response)

    @staticmethod
    def render_sms(text: str) -> str:
        response = MessagingResponse()
        response.message(text)
        return str(response)

    def _speak(self, verb: VoiceResponse | Gather, text: str, clip_url: str | None) -> None:
        if clip_url:
            verb.play(clip_url)
        else:
            verb.say(text, voice=self._voice, language=self._language)

    async def _synthesize(self, text: str, session_id: str) -> str | None:
        """Return a public clip URL, or None to use <Say>."""
        if self._tts is None or not self.audio_base_url or not text.strip():
            return None
        try:
            audio = await asyncio.wait_for(
                self._tts.synthesize(text), timeout=self._tts_timeout
            )
        except asyncio.TimeoutError:
            logger.warning(f"[{session_id}] TTS timed out after {self._tts_timeout}s, using <Say>")
            return None
        except TtsError as e:
            logger.warning(f"[{session_id}] TTS failed ({e}), using <Say>")
            return None
        except Exception as e:
            logger.warning(
                f"[{session_id}] TTS provider {self._tts.name} raised "
                f"{type(e).__name__}: {e}, using <Say>"
            )
            return None

        if not audio:
            logger.warning(f"[{session_id}] TTS returned no audio, using <Say>")
            return None

        clip_id = self.cache.put(audio, self._tts.content_type)
        logger.debug(f"[{session_id}] cached clip {clip_id} ({len(audio)} bytes)")
        return f"{self.audio_base_url}/{clip_id}"
