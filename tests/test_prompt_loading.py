from __future__ import annotations

import pytest

from kali.context import compose_context
from kali.prompts import PromptLoadError, load_prompt


def test_load_moderator_prompt() -> None:
    text = load_prompt("moderator.txt")
    assert "Kali" in text
    assert "PLAYER_ROLLED" in text
    assert "RESET_GAME" in text
    assert "ROLL_DICE" not in text


def test_missing_prompt_raises() -> None:
    with pytest.raises(PromptLoadError):
        load_prompt("nope.txt")


def test_prompts_dir_override(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    (tmp_path / "moderator.txt").write_text("  You are a test moderator.  \n", encoding="utf-8")
    monkeypatch.setenv("KALI_PROMPTS_DIR", str(tmp_path))

    assert load_prompt("moderator.txt") == "You are a test moderator.\n"


def test_prompt_names_cannot_escape_the_directory(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    (tmp_path / "secret.txt").write_text("nope", encoding="utf-8")
    prompts = tmp_path / "prompts"
    prompts.mkdir()
    monkeypatch.setenv("KALI_PROMPTS_DIR", str(prompts))

    with pytest.raises(PromptLoadError, match="escapes"):
        load_prompt("../secret.txt")


def test_empty_prompt_is_an_error(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    (tmp_path / "moderator.txt").write_text("   \n", encoding="utf-8")
    monkeypatch.setenv("KALI_PROMPTS_DIR", str(tmp_path))

    with pytest.raises(PromptLoadError, match="empty"):
        load_prompt("moderator.txt")


def test_compose_context_appends_rules() -> None:
    ctx = compose_context(base_prompt="BASE\n", rules="  Land on 30 to win.  ")

    assert ctx.system_prompt == "BASE\n\nGAME RULES:\nLand on 30 to win."
    assert ctx.as_messages() == [{"role": "system", "content": ctx.system_prompt}]
    assert compose_context(base_prompt="BASE", rules="").system_prompt == "BASE"
