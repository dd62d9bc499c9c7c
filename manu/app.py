"""manu: main application entry point."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console
from rich.table import Table

from . import __version__
from .cli.display import ConsoleRenderer, format_usage
from .cli.prompts import ConsolePrompter
from .engine.agent_loop import AgentLoop, TurnOutcome
from .engine.config import PROVIDER_NAMES, AppConfig
from .engine.errors import ConfigError, ProviderNotAvailableError
from .engine.permissions import PermissionEngine, PermissionPolicy
from .engine.providers import ChatOptions, Provider, build_provider_registry, select_provider
from .engine.tools import ToolContext, build_default_registry
from .engine.yaml_config import find_config_file, load_yaml_config

logger = logging.getLogger(__name__)

LOG_DIR = Path.home() / ".manu" / "logs"

HELP_TEXT = """\
[bold]Commands[/bold]
  /help               Show this help
  /exit, /quit        Leave manu
  /clear              Start a fresh conversation
  /permissions        List remembered "always" approvals
  /reset-permissions  Forget remembered approvals
  /tools              List available tools and their permission tier
  /usage              Show token usage for this session

Ctrl+C during a response cancels it. Ctrl+C at the prompt exits."""


def _configure_logging(level_name: str, verbose: bool) -> Path:
    """Log to a rotating file, and to stderr with --verbose."""
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    log_file = LOG_DIR / "manu.log"

    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else getattr(logging, level_name, logging.INFO))
    root.handlers.clear()
    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s [pid=%(process)d] %(message)s"
    )
    file_handler = RotatingFileHandler(
        log_file, maxBytes=2_000_000, backupCount=5, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)
    if verbose:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(formatter)
        root.addHandler(stream_handler)
    return log_file


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="manu",
        description="manu: coding assistant for your terminal",
    )
    parser.add_argument(
        "prompt", nargs="*",
        help="Run a single prompt and exit",
    )
    parser.add_argument(
        "--command", "-c", metavar="TEXT",
        help="Run a single prompt and exit (alternative to positional)",
    )
    parser.add_argument(
        "--provider", "-p", choices=PROVIDER_NAMES,
        help="Model provider (default: from config)",
    )
    parser.add_argument(
        "--model", "-m",
        help="Model id for the selected provider",
    )
    parser.add_argument(
        "--yolo", action="store_true",
        help="Approve every tool call without asking, including commands that "
             "would otherwise be blocked as dangerous",
    )
    parser.add_argument(
        "--config", metavar="PATH",
        help="YAML config file (default: ./.manu.yaml, ./manu.yaml, ~/.config/manu/config.yaml)",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Enable debug logging to stderr",
    )
    parser.add_argument(
        "--version", action="version", version=f"manu {__version__}",
    )
    return parser


def build_config(args: argparse.Namespace) -> AppConfig:
    """Defaults, then YAML file, then MANU_* env, then CLI flags."""
    config = AppConfig()
    path = Path(args.config) if args.config else find_config_file()
    if path is not None:
        load_yaml_config(path, config)
    config = AppConfig.from_env(config)

    if args.provider:
        config.default_provider = args.provider
    if args.model:
        config.provider_settings().model = args.model
    if args.yolo:
        config.permissions.approve_everything = True
    config.validate()
    return config


class Session:
    """Wires config, provider, tools, permissions and the loop together."""

    def __init__(
        self,
        config: AppConfig,
        provider: Provider,
        console: Console,
        *,
        interactive: bool,
    ) -> None:
        self.config = config
        self.provider = provider
        self.console = console
        context = ToolContext(cwd=os.getcwd(), ignore_patterns=list(config.ignore_patterns))
        self.tools = build_default_registry(context, config.tool_timeout_seconds)
        self.permissions = PermissionEngine(
            self.tools,
            PermissionPolicy(
                approve_everything=config.permissions.approve_everything,
                safe_commands=list(config.permissions.safe_commands),
            ),
            prompter=ConsolePrompter(console) if interactive else None,
        )
        options = ChatOptions(
            model=provider.model,
            max_tokens=provider.settings.max_tokens,
            temperature=provider.settings.temperature,
            system_prompt=config.system_prompt,
            tools=self.tools.definitions(),
        )
        self.loop = AgentLoop(
            provider,
            self.tools,
            self.permissions,
            options,
            event_callback=ConsoleRenderer(console),
            max_iterations=config.max_iterations,
        )


def _run_turn(
    event_loop: asyncio.AbstractEventLoop, agent: AgentLoop, text: str,
) -> TurnOutcome | None:
    """Run one turn. Returns None when the user interrupted it."""
    task = event_loop.create_task(agent.advance(text))
    handler_installed = False
    try:
        event_loop.add_signal_handler(signal.SIGINT, agent.cancel)
        handler_installed = True
    except (NotImplementedError, RuntimeError):
        logger.debug("SIGINT handler unavailable; turns cannot be interrupted")
    try:
        return event_loop.run_until_complete(task)
    except asyncio.CancelledError:
        return None
    finally:
        if handler_installed:
            event_loop.remove_signal_handler(signal.SIGINT)


def _print_tools(session: Session) -> None:
    table = Table(show_header=True, header_style="bold")
    table.add_column("Tool")
    table.add_column("Tier")
    table.add_column("Description")
    for definition in session.tools.definitions():
        table.add_row(definition.name, definition.tier.value, definition.description)
    session.console.print(table)


def _handle_command(session: Session, line: str) -> bool:
    """Run a /command. Returns False when the REPL should exit."""
    console = session.console
    command = line.split()[0].lower()
    if command in ("/exit", "/quit"):
        return False
    if command == "/help":
        console.print(HELP_TEXT)
    elif command == "/clear":
        session.loop.reset()
        console.print("[dim]Conversation cleared.[/dim]")
    elif command == "/permissions":
        keys = session.permissions.approved_keys()
        if not keys:
            console.print("[dim]No remembered approvals.[/dim]")
        for key in keys:
            console.print(f"  {key}")
    elif command == "/reset-permissions":
        session.permissions.reset()
        console.print("[dim]Remembered approvals cleared.[/dim]")
    elif command == "/tools":
        _print_tools(session)
    elif command == "/usage":
        console.print(f"Session usage: {format_usage(session.loop.total_usage)}")
    else:
        console.print(f"[yellow]Unknown command {command}. Type /help.[/yellow]")
    return True


def _repl(event_loop: asyncio.AbstractEventLoop, session: Session) -> None:
    console = session.console
    console.print(
        f"[bold]manu[/bold] {__version__}  "
        f"[dim]{session.provider.name} · {session.loop.options.model}"
        f"{' · yolo' if session.config.permissions.approve_everything else ''}[/dim]"
    )
    console.print("[dim]Type /help for commands.[/dim]")
    while True:
        try:
            line = console.input("\n[bold green]>[/bold green] ").strip()
        except (KeyboardInterrupt, EOFError):
            console.print()
            return
        if not line:
            continue
        if line.startswith("/"):
            if not _handle_command(session, line):
                return
            continue
        outcome = _run_turn(event_loop, session.loop, line)
        if outcome is None:
            console.print("\n[yellow]Interrupted.[/yellow]")


def main() -> None:
    args = _build_parser().parse_args()
    log_file = _configure_logging(os.getenv("MANU_LOG_LEVEL", "INFO").upper(), args.verbose)
    console = Console()

    try:
        config = build_config(args)
    except ConfigError as exc:
        console.print(f"[red]Configuration error:[/red] {exc}")
        sys.exit(2)
    if not args.verbose:
        logging.getLogger().setLevel(getattr(logging, config.log_level, logging.INFO))

    providers = build_provider_registry(config)
    try:
        provider = select_provider(
            providers, config.default_provider, explicit=bool(args.provider),
        )
    except ProviderNotAvailableError as exc:
        console.print(f"[red]{exc}[/red]")
        env_names = ", ".join(
            providers.get_or_raise(name).api_key_env for name in providers.list_names()
        )
        console.print(f"[dim]Set one of: {env_names}[/dim]")
        sys.exit(1)

    single_prompt = args.command or " ".join(args.prompt).strip()
    # Ask-tier tools need a terminal to prompt on; without one they are refused
    interactive = sys.stdin.isatty()
    if not single_prompt and not sys.stdin.isatty():
        single_prompt = sys.stdin.read().strip()
        if not single_prompt:
            console.print("[red]No prompt given on stdin.[/red]")
            sys.exit(2)

    logger.info(
        "Starting manu cwd=%s provider=%s model=%s interactive=%s log=%s",
        Path.cwd(), provider.name, provider.model, interactive, log_file,
    )
    session = Session(config, provider, console, interactive=interactive)

    event_loop = asyncio.new_event_loop()
    exit_code = 0
    try:
        if single_prompt:
            outcome = _run_turn(event_loop, session.loop, single_prompt)
            console.print()
            if outcome is None:
                exit_code = 130
            elif not outcome.ok:
                exit_code = 1
        else:
            _repl(event_loop, session)
    finally:
        event_loop.run_until_complete(providers.shutdown_all())
        event_loop.close()
        logger.info("manu exiting code=%d", exit_code)
    sys.exit(exit_code)
