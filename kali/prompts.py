from __future__ import annotations

import os
from pathlib import Path


class PromptLoadError(RuntimeError):
    pass


def project_root() -> Path:
    # kali/prompts.py -> kali/ -> project root
    return Path(__file__).resolve().parents[1]


def prompts_dir() -> Path:
    """Repo `prompts/`, unless `KALI_PROMPTS_DIR` points a deployment at its own copy."""

    override = os.environ.get("KALI_PROMPTS_DIR")
    return Path(override).resolve() if override else project_root() / "prompts"


def load_prompt(name: str) -> str:
    """Load the moderator's system prompt (or another prompt) by file name.

    Example:
        load_prompt("moderator.txt")
    """

    base = prompts_dir()
    path = (base / name).resolve()
    if not path.is_relative_to(base.resolve()):
        raise PromptLoadError(f"Prompt name escapes the prompts directory: {name}")
    try:
        text = path.read_text(encoding="utf-8").strip()
    except FileNotFoundError as e:
        raise PromptLoadError(f"Prompt not found: {path}") from e
    if not text:
        raise PromptLoadError(f"Prompt is empty: {path}")
    return text + "\n"
