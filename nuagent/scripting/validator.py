"""
Nushell Script Validator.

Decides whether a model-generated script may run at all. Validation is
purely lexical: leading command tokens are checked against a blocklist and
the whole script against blocked and warning regex patterns. Obfuscated
scripts can slip past these checks; the sandboxed backend is the second
line of defence.

Usage:
    from nuagent.scripting.validator import try_validate_script

    result = try_validate_script("ls | where size > 1mb")
    if result.valid:
        run(result.sanitized_script)
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from nuagent.errors import ScriptValidationError
from nuagent.scripting.registry import find_command

# 100KB guard against resource exhaustion
MAX_SCRIPT_LENGTH = 100 * 1024
MAX_PIPELINE_DEPTH = 20


class SafetyLevel(str, Enum):
    """Estimated execution safety of a script."""

    SAFE = "safe"
    MODERATE = "moderate"
    RISKY = "risky"


BLOCKED_COMMANDS = frozenset(
    {
        # System modification
        "rm",
        "remove",
        "rmdir",
        "mv",
        "move",
        "cp",
        "copy",
        # Process control
        "kill",
        "pkill",
        "exec",
        "eval",
        # Network egress
        "ssh",
        "scp",
        "sftp",
        "nc",
        "netcat",
        "curl",
        "wget",
        # Package management
        "cargo",
        "npm",
        "pip",
        "apt",
        "brew",
        # Shell escapes
        "bash",
        "sh",
        "cmd",
        "powershell",
        "pwsh",
        # Environment modification
        "export",
        "unset",
        "setenv",
        # System configuration and privilege escalation
        "registry",
        "regedit",
        "chmod",
        "chown",
        "sudo",
        "su",
    }
)

BLOCKED_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\$env\.PATH\s*="), "Modifying PATH environment"),
    (re.compile(r"\$env\.[A-Z]+\s*="), "Modifying environment variables"),
    (re.compile(r"`.*`"), "Backtick command substitution"),
    (re.compile(r"\$\(.*\)"), "Subshell execution"),
    (re.compile(r">\s*/"), "Direct write to root path"),
    (re.compile(r"rm\s+-rf"), "Recursive force delete"),
    (re.compile(r"\|\s*while\s+true"), "Infinite loop"),
)

WARNING_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\|.*http"), "Piping to HTTP endpoint"),
    (re.compile(r"save\s+"), "Attempting to save file"),
    (re.compile(r"open\s+~"), "Accessing home directory"),
    (re.compile(r"glob\s+\*\*"), "Recursive glob pattern"),
)

_STATEMENT_SEPARATORS = re.compile(r"[\n;]")


@dataclass
class ValidationResult:
    """Verdict for a single script."""

    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    safety_level: SafetyLevel = SafetyLevel.SAFE
    sanitized_script: str | None = None
    detected_commands: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "valid": self.valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "safety_level": self.safety_level.value,
            "sanitized_script": self.sanitized_script,
            "detected_commands": list(self.detected_commands),
        }


@dataclass(frozen=True)
class CommandLookup:
    """Result of ``is_known_command``."""

    known: bool
    source: str | None = None  # "blocked", "core" or "extension"


@dataclass(frozen=True)
class OutputFormat:
    """Output shape hint inferred from the tail of a pipeline."""

    format: str  # table, list, text, json, unknown
    columns: tuple[str, ...] | None = None


def try_validate_script(script: str) -> ValidationResult:
    """Validate a script without raising.

    All violations are collected so the caller sees the full error set;
    only the length and empty-script checks stop early.
    """
    if len(script) > MAX_SCRIPT_LENGTH:
        return ValidationResult(
            valid=False,
            errors=[f"Script exceeds maximum length of {MAX_SCRIPT_LENGTH} characters"],
            safety_level=SafetyLevel.RISKY,
        )

    normalized = script.strip()
    if not normalized:
        return ValidationResult(
            valid=False,
            errors=["Empty script"],
            safety_level=SafetyLevel.SAFE,
        )

    errors: list[str] = []
    warnings: list[str] = []
    detected_commands = extract_commands(normalized)

    for command in detected_commands:
        if command.lower() in BLOCKED_COMMANDS:
            errors.append(f"Blocked command: {command}")

    for pattern, message in BLOCKED_PATTERNS:
        if pattern.search(normalized):
            errors.append(f"Dangerous pattern detected: {message}")

    for pattern, message in WARNING_PATTERNS:
        if pattern.search(normalized):
            warnings.append(message)

    pipeline_depth = normalized.count("|")
    if pipeline_depth > MAX_PIPELINE_DEPTH:
        errors.append(
            f"Pipeline too deep: {pipeline_depth} stages (max: {MAX_PIPELINE_DEPTH})"
        )

    if errors:
        safety_level = SafetyLevel.RISKY
    elif warnings:
        safety_level = SafetyLevel.MODERATE
    else:
        safety_level = SafetyLevel.SAFE

    return ValidationResult(
        valid=not errors,
        errors=errors,
        warnings=warnings,
        safety_level=safety_level,
        sanitized_script=None if errors else normalized,
        detected_commands=detected_commands,
    )


def validate_script(script: str) -> ValidationResult:
    """Validate a script, raising ScriptValidationError when it is rejected."""
    result = try_validate_script(script)
    if not result.valid:
        raise ScriptValidationError(
            result.errors[0] if result.errors else "Script validation failed",
            errors=result.errors,
            safety_level=result.safety_level.value,
        )
    return result


def extract_commands(script: str) -> list[str]:
    """Extract the leading token of every statement and pipeline segment."""
    commands: list[str] = []

    for line in _STATEMENT_SEPARATORS.split(script):
        trimmed = line.strip()
        if not trimmed or trimmed.startswith("#"):
            continue

        for segment in trimmed.split("|"):
            tokens = segment.split()
            if tokens:
                commands.append(tokens[0])

    return commands


def is_known_command(command: str) -> CommandLookup:
    """Check whether a command is blocked, in the registry, or unknown."""
    if command.lower() in BLOCKED_COMMANDS:
        return CommandLookup(known=True, source="blocked")

    _, source = find_command(command)
    if source:
        return CommandLookup(known=True, source=source)

    return CommandLookup(known=False)


def wrap_in_safe_context(script: str) -> str:
    """Wrap a script body in a named definition and invoke it."""
    body = "\n".join(f"  {line}" for line in script.split("\n"))
    return (
        "# nuagent safe execution context\n"
        "# Auto-generated wrapper for sandboxed execution\n"
        "\n"
        "def nuagent-safe-run [] {\n"
        f"{body}\n"
        "}\n"
        "\n"
        "nuagent-safe-run"
    )


_SELECT_COLUMNS = re.compile(r"\|\s*select\s+([\w\s,]+)")
_TABLE_OPS = ("| select", "| table", "| grid", "| reject")


def infer_output_format(script: str) -> OutputFormat:
    """Guess the output shape from the pipeline operations in a script."""
    trimmed = script.strip()

    if "| to json" in trimmed or "| to nuon" in trimmed:
        return OutputFormat(format="json")

    if any(op in trimmed for op in _TABLE_OPS):
        match = _SELECT_COLUMNS.search(trimmed)
        if match:
            columns = tuple(c for c in re.split(r"[\s,]+", match.group(1)) if c)
            return OutputFormat(format="table", columns=columns)
        return OutputFormat(format="table")

    if "| flatten" in trimmed or "| each" in trimmed:
        return OutputFormat(format="list")

    return OutputFormat(format="unknown")
