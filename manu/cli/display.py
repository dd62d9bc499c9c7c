"""Rich console rendering of agent loop events."""
from __future__ import annotations

import json
from typing import Any

from rich.console import Console
from rich.text import Text

from ..engine.models import TokenUsage

_STATUS_STYLES = {
    "ok": ("✓", "green"),
    "error": ("✗", "red"),
    "skipped": ("–", "yellow"),
    "blocked": ("⊘", "red bold"),
}

_PREVIEW_LINES = 6


def _format_arguments(arguments: dict[str, Any], limit: int = 80) -> str:
    if not arguments:
        return ""
    text = json.dumps(arguments, ensure_ascii=False)
    if len(text) > limit:
        text = text[:limit] + "..."
    return text


def format_usage(usage: TokenUsage) -> str:
    return (
        f"{usage.input_tokens:,} in / {usage.output_tokens:,} out "
        f"({usage.total_tokens:,} total)"
    )


class ConsoleRenderer:
    """Event callback that renders loop events to a rich Console.

    Text fragments are written as they arrive; tool calls get one line
    when they start and a status line (plus a short output preview on
    errors) when they finish.
    """

    def __init__(self, console: Console | None = None, *, show_usage: bool = False) -> None:
        self.console = console or Console()
        self.show_usage = show_usage
        self._mid_line = False

    def _end_text(self) -> None:
        if self._mid_line:
            self.console.print()
            self._mid_line = False

    async def __call__(self, event: dict[str, Any]) -> None:
        kind = event.get("event")
        if kind == "text":
            text = event.get("text", "")
            self.console.print(text, end="", markup=False, highlight=False, soft_wrap=True)
            self._mid_line = not text.endswith("\n")
        elif kind == "tool_call_started":
            self._end_text()
            line = Text("⚙ ", style="cyan")
            line.append(event.get("tool_name", "?"), style="bold cyan")
            args = _format_arguments(event.get("arguments") or {})
            if args:
                line.append(f" {args}", style="dim")
            self.console.print(line)
        elif kind == "tool_call_completed":
            self._render_completed(event)
        elif kind == "usage":
            if self.show_usage:
                self._end_text()
                self.console.print(
                    f"[dim]tokens: {event.get('input_tokens', 0):,} in / "
                    f"{event.get('output_tokens', 0):,} out[/dim]"
                )
        elif kind == "turn_error":
            self._end_text()
            self.console.print(Text(f"Error: {event.get('error', '')}", style="red"))
        elif kind == "turn_complete":
            self._end_text()

    def _render_completed(self, event: dict[str, Any]) -> None:
        status = event.get("status", "ok")
        symbol, style = _STATUS_STYLES.get(status, ("?", "white"))
        line = Text(f"  {symbol} ", style=style)
        line.append(event.get("tool_name", "?"), style=style)
        duration = event.get("duration_seconds")
        if status == "ok" and duration is not None:
            line.append(f" ({duration:.1f}s)", style="dim")
        elif status != "ok":
            line.append(f" {status}", style=style)
        self.console.print(line)
        if status != "ok":
            output = str(event.get("output", ""))
            preview = output.splitlines()[:_PREVIEW_LINES]
            for row in preview:
                self.console.print(Text(f"    {row}", style="dim"))
