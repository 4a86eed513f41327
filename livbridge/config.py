"""Configuration system for LivBridge.

Supports loading from YAML files, dicts, or programmatic construction
via Pydantic models. The config carries everything that differs between
assistant deployments: persona text, model selection, tool set, reply
phrasing and collaborator credentials. One orchestrator implementation
serves every deployment.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field


class ServerConfig(BaseModel):
    """HTTP listener and public URL settings."""

    host: str = "0.0.0.0"
    port: int = 10000
    # Public base URL Twilio can reach (used for <Gather action> and <Play> URLs)
    public_base_url: str = ""
    gather_path: str = "/voice/gather"
    audio_path: str = "/audio"

    @property
    def gather_url(self) -> str:
        return f"{self.public_base_url.rstrip('/')}{self.gather_path}"


class PersonaConfig(BaseModel):
    """The assistant's fixed system instructions and greeting."""

    assistant_name: str = "Liv"
    system_prompt: str = ""
    # Directory of .txt prompt modules, concatenated in name order
    brain_dir: str = ""
    first_message: str = "Hi, this is Liv. How can I help you today?"


class ProviderSection(BaseModel):
    """Configuration for a collaborator provider (LLM or TTS)."""

    provider: str = ""
    config: dict[str, Any] = Field(default_factory=dict)


class LLMConfig(ProviderSection):
    provider: str = "openai"
    temperature: float = 0.4
    max_tokens: int = 300
    timeout_seconds: float = 8.0


class TTSConfig(ProviderSection):
    provider: str = "elevenlabs"
    enabled: bool = False
    timeout_seconds: float = 5.0
    # Twilio built-in voice used when TTS is disabled or fails
    fallback_voice: str = "Polly.Joanna"
    fallback_language: str = "en-US"
    cache_size: int = 256


class ToolsConfig(BaseModel):
    """Built-in tool selection and their downstream endpoints."""

    enabled: list[str] = Field(default_factory=lambda: [
        "send_link",
        "log_lead",
        "schedule_callback",
        "tag_outcome",
        "escalate_to_human",
    ])
    timeout_seconds: float = 10.0
    links: dict[str, str] = Field(default_factory=lambda: {
        "marketplace": "https://example.com/marketplace",
        "refinance": "https://example.com/refinance",
        "dscr": "https://example.com/dscr",
    })
    crm_webhook_url: str = ""
    schedule_webhook_url: str = ""
    outcome_webhook_url: str = ""
    escalation_webhook_url: str = ""


class TwilioConfig(BaseModel):
    """Twilio credentials for outbound SMS."""

    account_sid: str = ""
    auth_token: str = ""
    from_number: str = ""


class SessionConfig(BaseModel):
    """Session lifetime policy."""

    idle_timeout_seconds: float = 1800.0
    sweep_interval_seconds: float = 60.0


class RepliesConfig(BaseModel):
    """Fixed caller-facing lines."""

    reprompt: str = "I didn't catch that. Could you repeat that?"
    fallback: str = "I'm here and ready to help. What would you like to do next?"
    apology: str = "I'm sorry, I'm having trouble right now. Please try again later."
    tool_degraded: str = "I had trouble with that, but I've noted it."
    end_call_phrases: list[str] = Field(default_factory=lambda: [
        "goodbye", "bye bye", "that's all", "hang up",
    ])


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"


DEFAULT_INTENTS: dict[str, list[str]] = {
    "PURCHASE": ["buy", "purchase", "new home", "first home"],
    "REFI": ["refi", "refinance", "lower my rate"],
    "CASHOUT": ["cash out", "cash-out", "cashout"],
    "EQUITY": ["equity", "heloc"],
    "JUMBO": ["jumbo"],
    "NONQM": ["non-qm", "nonqm", "bank statement", "self employed", "self-employed"],
    "AFFORDABLE": ["fha", "va loan", "down payment assistance", "affordable"],
    "READY_TO_MOVE": ["ready", "pre-approved", "preapproved", "apply now"],
    "DSCR": ["dscr", "investor", "rental property", "investment property"],
}


class BridgeConfig(BaseModel):
    """Top-level LivBridge configuration.

    Can be constructed programmatically, from a dict, or loaded from YAML.

    Examples:
        # Programmatic
        config = BridgeConfig(
            llm=LLMConfig(provider="openai", config={"api_key": "..."}),
            persona=PersonaConfig(system_prompt="You are Liv..."),
        )

        # From YAML
        config = BridgeConfig.from_yaml("bridge.yaml")

        # Shorthand
        config = BridgeConfig.from_dict({
            "llm_provider": "anthropic",
            "anthropic_api_key": "...",
            "port": 8080,
        })
    """

    server: ServerConfig = Field(default_factory=ServerConfig)
    persona: PersonaConfig = Field(default_factory=PersonaConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    tts: TTSConfig = Field(default_factory=TTSConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    twilio: TwilioConfig = Field(default_factory=TwilioConfig)
    sessions: SessionConfig = Field(default_factory=SessionConfig)
    replies: RepliesConfig = Field(default_factory=RepliesConfig)
    intents: dict[str, list[str]] = Field(default_factory=lambda: dict(DEFAULT_INTENTS))
    # Human notification endpoint for hot leads
    notify_url: str = ""
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_yaml(cls, path: str | Path) -> BridgeConfig:
        """Load configuration from a YAML file.

        ``${VAR}`` references in string values are expanded from the
        environment.
        """
        path = Path(path)
        with path.open() as f:
            data = yaml.safe_load(f) or {}
        return cls._from_raw(_expand_env(data))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BridgeConfig:
        """Load configuration from a dictionary.

        Supports both the full nested format and a flat shorthand format:

        Full format:
            {"llm": {"provider": "openai", "config": {"api_key": "..."}}}

        Shorthand format:
            {"llm_provider": "openai", "openai_api_key": "...", "port": 8080}
        """
        return cls._from_raw(dict(data))

    @classmethod
    def _from_raw(cls, data: dict[str, Any]) -> BridgeConfig:
        """Normalize and construct config from a raw dict."""
        # Map flat keys to nested structure
        flat_mappings = {
            "host": ("server", "host"),
            "port": ("server", "port"),
            "public_base_url": ("server", "public_base_url"),
            "system_prompt": ("persona", "system_prompt"),
            "brain_dir": ("persona", "brain_dir"),
            "first_message": ("persona", "first_message"),
            "llm_provider": ("llm", "provider"),
            "tts_provider": ("tts", "provider"),
            "twilio_account_sid": ("twilio", "account_sid"),
            "twilio_auth_token": ("twilio", "auth_token"),
            "twilio_from_number": ("twilio", "from_number"),
            "log_level": ("logging", "level"),
        }

        for flat_key, (section, nested_key) in flat_mappings.items():
            if flat_key in data:
                data.setdefault(section, {})
                data[section][nested_key] = data.pop(flat_key)

        # Provider API keys go into the provider's kwargs
        key_mappings = {
            "openai_api_key": "openai",
            "anthropic_api_key": "anthropic",
            "elevenlabs_api_key": "elevenlabs",
        }
        for flat_key, provider_name in key_mappings.items():
            if flat_key not in data:
                continue
            api_key = data.pop(flat_key)
            for section in ("llm", "tts"):
                sec = data.setdefault(section, {})
                default = "openai" if section == "llm" else "elevenlabs"
                if sec.get("provider", default) == provider_name:
                    sec.setdefault("config", {})["api_key"] = api_key

        return cls(**data)


_ENV_REF = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


def _expand_env(value: Any) -> Any:
    """Recursively expand ``${VAR}`` references; unset variables become empty."""
    if isinstance(value, str):
        return _ENV_REF.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _expand_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_expand_env(v) for v in value]
    return value


def load_config(source: str | Path | dict[str, Any] | BridgeConfig) -> BridgeConfig:
    """Load a BridgeConfig from any supported source.

    Args:
        source: A YAML file path (str/Path), a dict, or an existing BridgeConfig.

    Returns:
        A BridgeConfig instance.
    """
    if isinstance(source, BridgeConfig):
        return source
    if isinstance(source, dict):
        return BridgeConfig.from_dict(source)
    if isinstance(source, (str, Path)):
        path = Path(source)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        return BridgeConfig.from_yaml(path)
    raise TypeError(f"Cannot load config from {type(source)}")


# Default YAML template for `livbridge init`
DEFAULT_CONFIG_YAML = """\
# LivBridge Configuration

server:
  host: 0.0.0.0
  port: 10000
  public_base_url: ${PUBLIC_BASE_URL}   # e.g. https://liv.example.com

persona:
  assistant_name: Liv
  brain_dir: liv-brain       # .txt prompt modules, loaded in name order
  first_message: "Hi, this is Liv. How can I help you today?"

llm:
  provider: openai           # openai | anthropic
  config:
    api_key: ${OPENAI_API_KEY}
    model: gpt-4o-mini
  temperature: 0.4
  max_tokens: 300
  timeout_seconds: 8

tts:
  enabled: false
  provider: elevenlabs       # elevenlabs | openai
  config:
    api_key: ${ELEVENLABS_API_KEY}
    voice_id: 21m00Tcm4TlvDq8ikWAM
  timeout_seconds: 5
  fallback_voice: Polly.Joanna

tools:
  enabled: [send_link, log_lead, schedule_callback, tag_outcome, escalate_to_human]
  links:
    marketplace: https://example.com/marketplace
    refinance: https://example.com/refinance
    dscr: https://example.com/dscr
  crm_webhook_url: ""
  schedule_webhook_url: ""
  outcome_webhook_url: ""
  escalation_webhook_url: ""

twilio:
  account_sid: ${TWILIO_ACCOUNT_SID}
  auth_token: ${TWILIO_AUTH_TOKEN}
  from_number: ${TWILIO_FROM_NUMBER}

sessions:
  idle_timeout_seconds: 1800
  sweep_interval_seconds: 60

notify_url: ""

logging:
  level: INFO
"""
