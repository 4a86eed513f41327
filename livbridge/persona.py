"""Persona loading.

The assistant's system prompt is either given inline in the config or
assembled from a "brain" directory of ``.txt`` modules, concatenated in
file-name order so deployments can version prompt sections separately.
"""

from __future__ import annotations

from pathlib import Path

from loguru import logger

from livbridge.config import PersonaConfig


def load_brain(brain_dir: str | Path, assistant_name: str = "Liv") -> str:
    """Concatenate every .txt module in ``brain_dir`` (sorted by name).

    Falls back to a one-line persona if the directory is missing or empty,
    so a misconfigured deployment still answers calls.
    """
    path = Path(brain_dir)
    if not path.is_dir():
        logger.error(f"Brain directory not found: {path}")
        return f"You are {assistant_name}, a helpful phone assistant. (Brain directory missing.)"

    files = sorted(p for p in path.iterdir() if p.suffix.lower() == ".txt")
    if not files:
        logger.error(f"No .txt modules found in brain directory: {path}")
        return f"You are {assistant_name}, a helpful phone assistant. (No brain modules found.)"

    logger.info(f"Loading brain modules: {[p.name for p in files]}")
    return "\n\n".join(p.read_text(encoding="utf-8") for p in files)


def resolve_system_prompt(persona: PersonaConfig) -> str:
    """Pick the system prompt: inline text wins over the brain directory."""
    if persona.system_prompt:
        return persona.system_prompt
    if persona.brain_dir:
        return load_brain(persona.brain_dir, persona.assistant_name)
    return (
        f"You are {persona.assistant_name}, a friendly assistant on a phone call. "
        "Keep replies short and conversational."
    )
