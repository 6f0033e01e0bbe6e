"""Script validation, command registry and fenced-block grammar."""

from nuagent.scripting.blocks import extract_script_block, format_script_block
from nuagent.scripting.registry import (
    CORE_COMMANDS,
    EXTENSION_COMMANDS,
    NushellCommand,
    estimate_token_count,
    generate_command_reference,
)
from nuagent.scripting.validator import (
    BLOCKED_COMMANDS,
    MAX_PIPELINE_DEPTH,
    MAX_SCRIPT_LENGTH,
    CommandLookup,
    OutputFormat,
    SafetyLevel,
    ValidationResult,
    infer_output_format,
    is_known_command,
    try_validate_script,
    validate_script,
    wrap_in_safe_context,
)

__all__ = [
    # Validator
    "BLOCKED_COMMANDS",
    "MAX_PIPELINE_DEPTH",
    "MAX_SCRIPT_LENGTH",
    "CommandLookup",
    "OutputFormat",
    "SafetyLevel",
    "ValidationResult",
    "infer_output_format",
    "is_known_command",
    "try_validate_script",
    "validate_script",
    "wrap_in_safe_context",
    # Registry
    "CORE_COMMANDS",
    "EXTENSION_COMMANDS",
    "NushellCommand",
    "estimate_token_count",
    "generate_command_reference",
    # Blocks
    "extract_script_block",
    "format_script_block",
]
