"""Tests for the console prompter, renderer and CLI config assembly."""
from __future__ import annotations

import argparse
import io
from unittest.mock import patch

import pytest
from rich.console import Console

from manu.app import _build_parser, build_config
from manu.cli.display import ConsoleRenderer
from manu.cli.prompts import ConsolePrompter, parse_answer
from manu.engine.errors import ConfigError
from manu.engine.models import ToolInvocation
from manu.engine.permissions import PromptChoice


@pytest.mark.parametrize("answer,choice", [
    ("", PromptChoice.APPROVE_ONCE),
    ("y", PromptChoice.APPROVE_ONCE),
    ("YES", PromptChoice.APPROVE_ONCE),
    ("a", PromptChoice.APPROVE_ALWAYS),
    ("always", PromptChoice.APPROVE_ALWAYS),
    ("v", PromptChoice.VIEW_DETAIL),
    ("n", PromptChoice.DENY),
    ("whatever", PromptChoice.DENY),
])
def test_parse_answer(answer, choice):
    assert parse_answer(answer) == choice


def _console():
    return Console(file=io.StringIO(), force_terminal=False, width=100)


@pytest.mark.asyncio
async def test_prompter_shows_details_and_maps_answer():
    console = _console()
    prompter = ConsolePrompter(console)
    invocation = ToolInvocation("c1", "run_command", {"command": "make"})

    with patch("manu.cli.prompts.Prompt.ask", return_value="a"):
        choice = await prompter(invocation, {"Command": "make"}, False)

    assert choice == PromptChoice.APPROVE_ALWAYS
    output = console.file.getvalue()
    assert "Allow run_command?" in output
    assert "make" in output


@pytest.mark.asyncio
async def test_renderer_output():
    console = _console()
    renderer = ConsoleRenderer(console)

    await renderer({"event": "text", "text": "Looking"})
    await renderer({
        "event": "tool_call_started", "tool_id": "c1",
        "tool_name": "read_file", "arguments": {"path": "a.py"},
    })
    await renderer({
        "event": "tool_call_completed", "tool_id": "c1", "tool_name": "read_file",
        "status": "blocked", "output": "Blocked: nope", "is_error": True,
    })
    await renderer({"event": "turn_error", "error": "openai: boom"})

    output = console.file.getvalue()
    assert output.startswith("Looking\n")
    assert "read_file" in output
    assert "blocked" in output
    assert "Blocked: nope" in output
    assert "Error: openai: boom" in output


def _args(**overrides):
    values = {
        "config": None, "provider": None, "model": None, "yolo": False,
        "verbose": False, "command": None, "prompt": [],
    }
    values.update(overrides)
    return argparse.Namespace(**values)


def test_build_config_flag_precedence(tmp_path, monkeypatch):
    monkeypatch.delenv("MANU_DEFAULT_PROVIDER", raising=False)
    monkeypatch.delenv("MANU_MODEL", raising=False)
    monkeypatch.setenv("MANU_YOLO", "0")
    config_file = tmp_path / "conf.yaml"
    config_file.write_text("provider:\n  default: openai\n")

    config = build_config(_args(
        config=str(config_file), provider="gemini", model="gemini-1.5-pro", yolo=True,
    ))

    assert config.default_provider == "gemini"
    assert config.provider_settings().model == "gemini-1.5-pro"
    assert config.permissions.approve_everything is True


def test_build_config_bad_file(tmp_path):
    with pytest.raises(ConfigError):
        build_config(_args(config=str(tmp_path / "missing.yaml")))


def test_yolo_help_states_dangerous_commands_are_not_blocked():
    parser = _build_parser()
    (yolo,) = [action for action in parser._actions if "--yolo" in action.option_strings]
    assert "dangerous" in yolo.help
    assert "still blocked" not in yolo.help
