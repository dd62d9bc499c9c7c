"""Interactive permission prompt for ask-tier tools."""
from __future__ import annotations

import asyncio
import logging

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from ..engine.models import ToolInvocation
from ..engine.permissions import PromptChoice

logger = logging.getLogger(__name__)

_ANSWERS = {
    "": PromptChoice.APPROVE_ONCE,
    "y": PromptChoice.APPROVE_ONCE,
    "yes": PromptChoice.APPROVE_ONCE,
    "a": PromptChoice.APPROVE_ALWAYS,
    "always": PromptChoice.APPROVE_ALWAYS,
    "v": PromptChoice.VIEW_DETAIL,
    "view": PromptChoice.VIEW_DETAIL,
}


def parse_answer(answer: str) -> PromptChoice:
    """Map a typed answer to a choice. Anything unrecognised denies."""
    return _ANSWERS.get(answer.strip().lower(), PromptChoice.DENY)


class ConsolePrompter:
    """Asks the human through a rich Console.

    The blocking ``Prompt.ask`` runs on a worker thread so the event
    loop stays responsive while waiting.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def _render(self, invocation: ToolInvocation, details: dict[str, str]) -> Panel:
        table = Table.grid(padding=(0, 1))
        table.add_column(style="bold")
        table.add_column()
        for label, value in details.items():
            table.add_row(f"{label}:", value)
        return Panel(
            table,
            title=f"[bold yellow]Allow {invocation.name}?[/bold yellow]",
            border_style="yellow",
            expand=False,
        )

    async def __call__(
        self, invocation: ToolInvocation, details: dict[str, str], full: bool,
    ) -> PromptChoice:
        self.console.print()
        self.console.print(self._render(invocation, details))
        answer = await asyncio.to_thread(
            Prompt.ask,
            "[y]es / [a]lways / [n]o / [v]iew",
            console=self.console,
            default="y",
            show_default=False,
        )
        choice = parse_answer(answer or "")
        logger.debug("Permission answer tool=%s choice=%s", invocation.name, choice.value)
        return choice
