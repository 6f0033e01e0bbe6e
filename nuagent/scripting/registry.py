"""
Nushell Capability Registry.

Compact command reference that is embedded in the system prompt so the
model knows which pipeline commands are available in the sandbox. A short
reference line per command is far cheaper than a JSON-schema tool list.

Usage:
    from nuagent.scripting.registry import generate_command_reference

    reference = generate_command_reference()
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field


@dataclass(frozen=True)
class NushellCommand:
    """A single command exposed to the model."""

    name: str
    description: str
    usage: str
    examples: tuple[str, ...] = ()
    aliases: tuple[str, ...] = field(default_factory=tuple)

    def matches(self, command: str) -> bool:
        """Case-insensitive match on name or alias."""
        lowered = command.lower()
        return self.name.lower() == lowered or lowered in self.aliases


# Curated subset of core Nushell commands available in the sandbox
CORE_COMMANDS: tuple[NushellCommand, ...] = (
    # Data manipulation
    NushellCommand(
        name="ls",
        description="List directory contents as a table",
        usage="ls [path] [--all] [--long]",
        examples=("ls", "ls ~/Documents", "ls -la"),
    ),
    NushellCommand(
        name="open",
        description="Open a file and parse its contents (JSON, YAML, CSV, etc.)",
        usage="open <file>",
        examples=("open data.json", "open config.yaml"),
    ),
    NushellCommand(
        name="where",
        description="Filter rows based on a condition",
        usage="<input> | where <condition>",
        examples=("ls | where size > 1mb", "open data.json | where status == 'active'"),
        aliases=("filter",),
    ),
    NushellCommand(
        name="select",
        description="Select specific columns from a table",
        usage="<input> | select <columns...>",
        examples=("ls | select name size",),
    ),
    NushellCommand(
        name="get",
        description="Get a value at a path from structured data",
        usage="<input> | get <path>",
        examples=("open config.json | get database.host",),
    ),
    NushellCommand(
        name="sort-by",
        description="Sort table by column(s)",
        usage="<input> | sort-by <column> [--reverse]",
        examples=("ls | sort-by size", "ls | sort-by modified -r"),
    ),
    NushellCommand(
        name="group-by",
        description="Group rows by a column value",
        usage="<input> | group-by <column>",
        examples=("ls | group-by type",),
    ),
    NushellCommand(
        name="reduce",
        description="Reduce a list to a single value",
        usage="<input> | reduce { |acc, it| <expression> }",
        examples=("[1 2 3 4] | reduce { |acc, it| $acc + $it }",),
    ),
    NushellCommand(
        name="each",
        description="Run a closure on each row",
        usage="<input> | each { |it| <expression> }",
        examples=("[1 2 3] | each { |it| $it * 2 }",),
    ),
    NushellCommand(
        name="to json",
        description="Convert data to JSON format",
        usage="<input> | to json",
        examples=("ls | to json",),
    ),
    NushellCommand(
        name="from json",
        description="Parse JSON string to structured data",
        usage="<input> | from json",
        examples=("'{\"a\": 1}' | from json",),
    ),
    # String operations
    NushellCommand(
        name="str contains",
        description="Check if string contains a substring",
        usage="<input> | str contains <pattern>",
    ),
    NushellCommand(
        name="str replace",
        description="Replace occurrences in a string",
        usage="<input> | str replace <find> <replace>",
    ),
    NushellCommand(
        name="split row",
        description="Split string into rows",
        usage="<input> | split row <separator>",
    ),
    NushellCommand(
        name="lines",
        description="Split string into lines",
        usage="<input> | lines",
    ),
    # Math
    NushellCommand(
        name="math sum",
        description="Sum numbers in a list or column",
        usage="<input> | math sum",
    ),
    NushellCommand(
        name="math avg",
        description="Calculate average",
        usage="<input> | math avg",
    ),
    # Date/Time
    NushellCommand(
        name="date now",
        description="Get current date and time",
        usage="date now",
        examples=("date now | format date '%Y-%m-%d'",),
    ),
    # HTTP is restricted to allowed endpoints by the sandbox
    NushellCommand(
        name="http get",
        description="Make HTTP GET request (restricted to allowed endpoints)",
        usage="http get <url>",
    ),
)

# Agent extension commands provided by the sandbox image
EXTENSION_COMMANDS: tuple[NushellCommand, ...] = (
    NushellCommand(
        name="nua remember",
        description="Store a fact in persistent memory",
        usage="nua remember <key> <value>",
        examples=("nua remember 'project-deadline' '2026-03-15'",),
    ),
    NushellCommand(
        name="nua recall",
        description="Recall a stored fact",
        usage="nua recall <key>",
    ),
    NushellCommand(
        name="nua files list",
        description="List files in cloud storage",
        usage="nua files list [path] [--drive <name>]",
    ),
    NushellCommand(
        name="nua calendar list",
        description="List calendar events",
        usage="nua calendar list [--days <n>] [--calendar <name>]",
    ),
    NushellCommand(
        name="nua mail search",
        description="Search emails",
        usage="nua mail search <query> [--limit <n>] [--folder <name>]",
    ),
)

# Rough per-tool overhead of a JSON-schema tool definition
_SCHEMA_TOKENS_PER_TOOL = 200


def find_command(command: str) -> tuple[NushellCommand | None, str | None]:
    """Look a command up in the registry.

    Returns:
        Tuple of (command definition, source) where source is "core" or
        "extension"; (None, None) when the command is unknown.
    """
    for cmd in CORE_COMMANDS:
        if cmd.matches(command):
            return cmd, "core"
    for cmd in EXTENSION_COMMANDS:
        if cmd.matches(command):
            return cmd, "extension"
    return None, None


def generate_command_reference() -> str:
    """Generate the compact command reference for the system prompt."""
    lines = [
        "# Available Nushell Commands",
        "",
        "## Core Commands",
        *(f"- `{cmd.usage}` - {cmd.description}" for cmd in CORE_COMMANDS),
        "",
        "## Extension Commands",
        *(f"- `{cmd.usage}` - {cmd.description}" for cmd in EXTENSION_COMMANDS),
        "",
        "## Usage Notes",
        "- Chain commands with pipes: `ls | where size > 1mb | sort-by size`",
        "- Variables: `let x = 5; $x * 2`",
        "- Tables flow through pipelines as structured data",
        "- Output is automatically formatted based on data type",
    ]
    return "\n".join(lines)


def estimate_token_count() -> dict[str, int | str]:
    """Compare the reference size with an equivalent JSON-schema tool list."""
    reference_tokens = math.ceil(len(generate_command_reference()) / 4)
    schema_tokens = (len(CORE_COMMANDS) + len(EXTENSION_COMMANDS)) * _SCHEMA_TOKENS_PER_TOOL
    savings = round((1 - reference_tokens / schema_tokens) * 100)
    return {
        "reference": reference_tokens,
        "schema_equivalent": schema_tokens,
        "savings": f"{savings}%",
    }
