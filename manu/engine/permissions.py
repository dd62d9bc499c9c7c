"""Permission gating for proposed tool invocations.

Every completed invocation passes through ``PermissionEngine.decide``
before dispatch. Precedence, first match wins:

1. global "approve everything" override
2. dangerous shell command (hard refusal, no prompt)
3. tool tier ``deny``
4. tool tier ``auto``
5. shell command on the safe-command allowlist
6. remembered "always" approval for the same (tool, target)
7. ask the human

Enforcement is advisory. It is not a sandbox against a hostile model.
"""
from __future__ import annotations

import json
import logging
import re
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from .models import PermissionTier, ToolCategory, ToolInvocation
from .tools.base import ToolDefinition

logger = logging.getLogger(__name__)

SKIPPED_BY_USER = "Tool execution skipped by user"

# Chaining or substitution disqualifies a command from the allowlist shortcut
_CHAIN_MARKERS = (";", "&", "|", "`", "$(", ">", "\n")

# Recursive flag as written by rm and chmod
_RECURSIVE = r"(?:-[a-z]*r[a-z]*|--recursive)"
# Root or home, bare or with a trailing glob, optionally quoted
_ROOT_OR_HOME = r"[\"']?(?:/|~|\$home|\$\{home\})/?\*?[\"']?(?=\s|$|[;&|])"
# Modes that make files world-writable
_PERMISSIVE_MODE = r"(?:0?777|a?\+[rwx]*w[rwx]*|[ugo]*o[ugo]*\+[rwx]*w[rwx]*)(?=\s|$)"

# (description, pattern) searched case-insensitively anywhere in the command
_DANGEROUS_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    (
        "recursive delete of root or home",
        re.compile(
            rf"\brm\s+(?:-\S+\s+)*{_RECURSIVE}\s+(?:-\S+\s+)*{_ROOT_OR_HOME}"
        ),
    ),
    ("rm without root protection", re.compile(r"--no-preserve-root\b")),
    (
        "raw write to a block device",
        re.compile(r">\s*/dev/(?:sd[a-z]|nvme\d|hd[a-z]|vd[a-z]|disk\d)"),
    ),
    ("filesystem format", re.compile(r"\bmkfs(?:\.[a-z0-9]+)?\b")),
    ("device-level dd", re.compile(r"\bdd\b[^\n]*\bof=/dev/")),
    (
        "recursive permissive chmod",
        re.compile(
            rf"\bchmod\s+(?:-\S+\s+)*{_RECURSIVE}\s+(?:-\S+\s+)*{_PERMISSIVE_MODE}"
        ),
    ),
    (
        "recursive permissive chmod",
        re.compile(rf"\bchmod\s+{_PERMISSIVE_MODE}\s+(?:\S+\s+)*{_RECURSIVE}(?=\s|$)"),
    ),
    (
        "fork bomb",
        re.compile(r":\s*\(\s*\)\s*\{\s*:\s*\|\s*:\s*&\s*\}\s*;\s*:"),
    ),
    (
        "download piped to shell",
        re.compile(
            r"\b(?:curl|wget)\b[^\n|]*\|\s*(?:sudo\s+(?:-\S+\s+)*)?"
            r"(?:\S*/)?(?:env\s+(?:\S*/)?)?(?:sh|bash|zsh|dash|ksh)\b"
        ),
    ),
    ("write into /etc", re.compile(r">>?\s*/etc/")),
    ("sudo rm", re.compile(r"\bsudo\s+rm\b")),
]


class DecisionReason(str, Enum):
    GLOBAL_OVERRIDE = "global_override"
    DANGEROUS_COMMAND = "dangerous_command"
    TIER_DENY = "tier_deny"
    TIER_AUTO = "tier_auto"
    SAFE_COMMAND = "safe_command"
    CACHED = "cached"
    USER_APPROVED = "user_approved"
    USER_APPROVED_ALWAYS = "user_approved_always"
    USER_DENIED = "user_denied"
    NO_PROMPTER = "no_prompter"
    UNKNOWN_TOOL = "unknown_tool"


class PromptChoice(str, Enum):
    """Answers the human permission prompt may return."""
    APPROVE_ONCE = "approve_once"
    APPROVE_ALWAYS = "approve_always"
    DENY = "deny"
    VIEW_DETAIL = "view_detail"


# Signature: async def prompter(invocation, details, full) -> PromptChoice
# details: human-readable parameters; full=True after a "view" request
Prompter = Callable[[ToolInvocation, dict[str, str], bool], Awaitable[PromptChoice]]

CacheKey = tuple[str, "str | None"]


class ToolLookup(Protocol):
    def get(self, name: str) -> ToolDefinition | None: ...


@dataclass(frozen=True)
class PermissionDecision:
    approved: bool
    remember: bool = False
    reason: DecisionReason = DecisionReason.USER_APPROVED
    message: str = ""

    @property
    def blocked(self) -> bool:
        """True for policy refusals, as opposed to a human "no"."""
        return not self.approved and self.reason != DecisionReason.USER_DENIED


@dataclass
class PermissionPolicy:
    approve_everything: bool = False
    safe_commands: list[str] = field(default_factory=list)


class ApprovalCache:
    """Remembered "always approve" choices for one session.

    Lives as long as the engine that owns it. Cleared only by reset().
    """

    def __init__(self) -> None:
        self._keys: set[CacheKey] = set()

    def __contains__(self, key: object) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)

    def add(self, key: CacheKey) -> None:
        self._keys.add(key)

    def reset(self) -> None:
        self._keys.clear()

    def keys(self) -> list[CacheKey]:
        return sorted(self._keys, key=lambda k: (k[0], k[1] or ""))


def match_dangerous(command: str) -> str | None:
    """Return a description of the destructive pattern *command* matches."""
    lowered = command.lower()
    for description, pattern in _DANGEROUS_PATTERNS:
        if pattern.search(lowered):
            return description
    return None


def is_safe_command(command: str, safe_commands: Iterable[str]) -> bool:
    """Exact or space-delimited prefix match against the allowlist."""
    trimmed = command.strip()
    if not trimmed or any(marker in trimmed for marker in _CHAIN_MARKERS):
        return False
    for entry in safe_commands:
        entry = entry.strip()
        if not entry:
            continue
        if trimmed == entry or trimmed.startswith(entry + " "):
            return True
    return False


def cache_key(invocation: ToolInvocation, category: ToolCategory) -> CacheKey:
    """Key under which an "always" answer for *invocation* is remembered."""
    if category == ToolCategory.FILE:
        return (invocation.name, str(invocation.input.get("path") or "*"))
    if category == ToolCategory.SHELL:
        command = str(invocation.input.get("command") or "")
        tokens = command.split()
        return (invocation.name, tokens[0] if tokens else "")
    return (invocation.name, None)


def format_cache_key(key: CacheKey) -> str:
    name, target = key
    return f"{name}:{target}" if target is not None else name


_DISPLAY_FIELDS: dict[str, tuple[tuple[str, str], ...]] = {
    "read_file": (("path", "Path"),),
    "write_file": (("path", "Path"),),
    "edit_file": (("path", "Path"), ("search", "Search")),
    "run_command": (("command", "Command"), ("cwd", "CWD")),
    "list_directory": (("path", "Path"),),
    "search_files": (("pattern", "Pattern"),),
    "search_content": (("query", "Query"),),
    "fetch_url": (("url", "URL"),),
}


def _shorten(value: Any, limit: int) -> str:
    text = value if isinstance(value, str) else json.dumps(value)
    if len(text) > limit:
        return text[:limit] + "..."
    return text


def render_details(
    invocation: ToolInvocation, full: bool = False,
) -> dict[str, str]:
    """Human-readable parameters for the permission prompt.

    The short form shows the fields that identify the target. The full
    form shows every parameter untruncated.
    """
    params = invocation.input
    if full:
        return {
            key: value if isinstance(value, str) else json.dumps(value, indent=2)
            for key, value in params.items()
        }
    fields = _DISPLAY_FIELDS.get(invocation.name)
    if fields is None:
        return {key: _shorten(value, 60) for key, value in params.items()}
    details: dict[str, str] = {}
    for key, label in fields:
        if params.get(key):
            details[label] = _shorten(params[key], 60)
    if invocation.name == "write_file" and isinstance(params.get("content"), str):
        lines = params["content"].split("\n")
        preview = "\n".join(line[:80] for line in lines[:5])
        if len(lines) > 5:
            preview += "\n..."
        details["Preview"] = preview
    return details


class PermissionEngine:
    """Decides, per invocation, whether to execute, ask, or refuse."""

    def __init__(
        self,
        tools: ToolLookup,
        policy: PermissionPolicy | None = None,
        *,
        prompter: Prompter | None = None,
        cache: ApprovalCache | None = None,
    ) -> None:
        self._tools = tools
        self.policy = policy or PermissionPolicy()
        self.prompter = prompter
        self.cache = cache if cache is not None else ApprovalCache()

    def reset(self) -> None:
        """Forget every remembered "always" approval."""
        logger.info("Permission cache reset (%d entries)", len(self.cache))
        self.cache.reset()

    def approved_keys(self) -> list[str]:
        return [format_cache_key(key) for key in self.cache.keys()]

    async def decide(
        self,
        invocation: ToolInvocation,
        policy: PermissionPolicy | None = None,
    ) -> PermissionDecision:
        policy = policy or self.policy
        definition = self._tools.get(invocation.name)
        if definition is None:
            return PermissionDecision(
                approved=False,
                reason=DecisionReason.UNKNOWN_TOOL,
                message=f"Blocked: unknown tool '{invocation.name}'",
            )

        if policy.approve_everything:
            return PermissionDecision(
                approved=True, reason=DecisionReason.GLOBAL_OVERRIDE,
            )

        command = ""
        if definition.category == ToolCategory.SHELL:
            command = str(invocation.input.get("command") or "")
            danger = match_dangerous(command)
            if danger is not None:
                logger.warning(
                    "Dangerous command blocked tool=%s id=%s pattern=%s",
                    invocation.name, invocation.id, danger,
                )
                return PermissionDecision(
                    approved=False,
                    reason=DecisionReason.DANGEROUS_COMMAND,
                    message=f"Blocked: command matches a dangerous pattern ({danger})",
                )

        if definition.tier == PermissionTier.DENY:
            return PermissionDecision(
                approved=False,
                reason=DecisionReason.TIER_DENY,
                message=f"Blocked: tool '{invocation.name}' is disabled by policy",
            )

        if definition.tier == PermissionTier.AUTO:
            return PermissionDecision(approved=True, reason=DecisionReason.TIER_AUTO)

        if (
            definition.category == ToolCategory.SHELL
            and is_safe_command(command, policy.safe_commands)
        ):
            return PermissionDecision(approved=True, reason=DecisionReason.SAFE_COMMAND)

        key = cache_key(invocation, definition.category)
        if key in self.cache:
            return PermissionDecision(approved=True, reason=DecisionReason.CACHED)

        return await self._ask(invocation, key)

    async def _ask(
        self, invocation: ToolInvocation, key: CacheKey,
    ) -> PermissionDecision:
        if self.prompter is None:
            return PermissionDecision(
                approved=False,
                reason=DecisionReason.NO_PROMPTER,
                message="Blocked: approval required but no one is available to approve",
            )

        full = False
        while True:
            details = render_details(invocation, full=full)
            try:
                choice = await self.prompter(invocation, details, full)
            except Exception as exc:
                logger.exception(
                    "Permission prompt failed tool=%s id=%s",
                    invocation.name, invocation.id,
                )
                return PermissionDecision(
                    approved=False,
                    reason=DecisionReason.NO_PROMPTER,
                    message=f"Blocked: permission prompt failed ({exc})",
                )
            if choice == PromptChoice.VIEW_DETAIL:
                full = True
                continue
            break

        if choice == PromptChoice.APPROVE_ALWAYS:
            self.cache.add(key)
            logger.info("Remembering approval for %s", format_cache_key(key))
            return PermissionDecision(
                approved=True,
                remember=True,
                reason=DecisionReason.USER_APPROVED_ALWAYS,
            )
        if choice == PromptChoice.APPROVE_ONCE:
            return PermissionDecision(approved=True, reason=DecisionReason.USER_APPROVED)
        return PermissionDecision(
            approved=False,
            reason=DecisionReason.USER_DENIED,
            message=SKIPPED_BY_USER,
        )
