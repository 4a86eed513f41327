"""Keyword intent tagging for caller messages.

The tag is bookkeeping only: it is stored on the session and attached to
lead/outcome payloads. It never changes what the orchestrator does.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from livbridge.config import DEFAULT_INTENTS

GENERAL = "GENERAL"


@dataclass
class IntentDetector:
    """First-match keyword classifier.

    Intents are checked in insertion order; the first intent with a
    keyword contained in the (lower-cased) text wins.

    Args:
        intents: Mapping of intent name -> keywords.
    """

    intents: dict[str, list[str]] = field(default_factory=lambda: dict(DEFAULT_INTENTS))

    def detect(self, text: str) -> str:
        lower = (text or "").lower()
        if not lower.strip():
            return GENERAL
        for intent, keywords in self.intents.items():
            if any(k.lower() in lower for k in keywords):
                return intent
        return GENERAL
