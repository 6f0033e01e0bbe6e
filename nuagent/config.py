"""
Runtime configuration.

Settings are resolved in this order (first wins):

1. Process environment (including values loaded from ``.env.local`` / ``.env``)
2. Optional YAML file named by ``NUAGENT_CONFIG_FILE``
3. Built-in defaults

Example YAML:

    executor:
      type: remote
      session_pool_endpoint: ${NUSHELL_POOL_URL:-http://localhost:8080}
      timeout_ms: 20000
    agent:
      max_iterations: 4
      enable_reasoning: true
    logging:
      level: DEBUG

Usage:
    from nuagent.config import Settings

    settings = Settings.from_env()
    executor = create_executor(settings.executor)
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog
import yaml
from dotenv import load_dotenv

from nuagent.errors import ConfigurationError
from nuagent.execution import DEFAULT_MAX_OUTPUT_BYTES, DEFAULT_TIMEOUT_MS, ExecutorType

logger = structlog.get_logger(__name__)

DEFAULT_MAX_ITERATIONS = 5
DEFAULT_MAX_CONTEXT_TOKENS = 128_000
DEFAULT_REASONING_EFFORT = "medium"
REASONING_EFFORTS = ("low", "medium", "high")

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}

_VAR_PATTERN = re.compile(r"\$\{([^}:]+)(:-?)?([^}]*)?\}")


def load_environment(base_dir: str | Path | None = None) -> None:
    """Load ``.env.local`` then ``.env`` without overriding the real environment."""
    root = Path(base_dir) if base_dir else Path.cwd()
    for name in (".env.local", ".env"):
        env_file = root / name
        if env_file.exists():
            load_dotenv(env_file, override=False)
            logger.debug("Loaded environment file", path=str(env_file))


def expand_env_vars(value: str) -> str:
    """Expand ``$VAR``, ``${VAR}``, ``${VAR:-default}`` and ``${VAR-default}``."""
    if not value or "$" not in value:
        return value

    def replace_var(match: re.Match) -> str:
        var_name = match.group(1)
        operator = match.group(2)
        default = match.group(3) or ""
        env_value = os.environ.get(var_name)

        if operator == ":-":
            return env_value if env_value else default
        if operator == "-":
            return env_value if env_value is not None else default
        return env_value or ""

    return os.path.expandvars(_VAR_PATTERN.sub(replace_var, value))


def _expand_tree(node: Any) -> Any:
    if isinstance(node, str):
        return expand_env_vars(node)
    if isinstance(node, dict):
        return {key: _expand_tree(value) for key, value in node.items()}
    if isinstance(node, list):
        return [_expand_tree(item) for item in node]
    return node


def load_yaml_config(path: str | Path) -> dict[str, Any]:
    """
    Load a YAML configuration file with environment variable expansion.

    Raises:
        ConfigurationError: If the file is missing, unreadable or not a mapping
    """
    config_path = Path(path).expanduser()
    if not config_path.exists():
        raise ConfigurationError(f"Config file not found: {config_path}")

    try:
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to load config file {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {config_path} must contain a mapping")

    logger.info("Loaded config file", path=str(config_path))
    return _expand_tree(data)


def _to_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    return default


def _to_positive_int(value: Any, default: int, name: str) -> int:
    if value is None or value == "":
        return default
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        logger.warning("Invalid integer setting, using default", setting=name, value=value, default=default)
        return default
    if parsed <= 0:
        logger.warning("Non-positive setting, using default", setting=name, value=parsed, default=default)
        return default
    return parsed


def _pick(env_key: str, section: dict[str, Any], yaml_key: str) -> Any:
    """Environment first, then YAML section, else None."""
    value = os.getenv(env_key)
    if value is not None and value != "":
        return value
    return section.get(yaml_key)


@dataclass
class ExecutorConfig:
    """Execution backend selection and limits."""

    executor_type: ExecutorType = ExecutorType.MOCK
    session_pool_endpoint: str | None = None
    nu_path: str = "nu"
    working_directory: str | None = None
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES

    @classmethod
    def from_env(cls, section: dict[str, Any] | None = None) -> ExecutorConfig:
        section = section or {}
        endpoint = _pick("NUSHELL_SESSION_POOL_ENDPOINT", section, "session_pool_endpoint")
        raw_type = _pick("NUSHELL_EXECUTOR_TYPE", section, "type")

        if raw_type:
            executor_type = ExecutorType.parse(str(raw_type))
        else:
            executor_type = ExecutorType.REMOTE if endpoint else ExecutorType.MOCK

        return cls(
            executor_type=executor_type,
            session_pool_endpoint=endpoint or None,
            nu_path=_pick("NUSHELL_PATH", section, "nu_path") or "nu",
            working_directory=_pick("NUSHELL_WORKING_DIR", section, "working_directory") or None,
            timeout_ms=_to_positive_int(
                _pick("NUSHELL_TIMEOUT_MS", section, "timeout_ms"),
                DEFAULT_TIMEOUT_MS,
                "NUSHELL_TIMEOUT_MS",
            ),
            max_output_bytes=_to_positive_int(
                _pick("NUSHELL_MAX_OUTPUT_BYTES", section, "max_output_bytes"),
                DEFAULT_MAX_OUTPUT_BYTES,
                "NUSHELL_MAX_OUTPUT_BYTES",
            ),
        )


@dataclass
class AgentConfig:
    """Agent loop limits and prompt options."""

    max_iterations: int = DEFAULT_MAX_ITERATIONS
    max_context_tokens: int = DEFAULT_MAX_CONTEXT_TOKENS
    enable_reasoning: bool = False
    reasoning_effort: str = DEFAULT_REASONING_EFFORT
    system_prompt_additions: str | None = None
    execution_timeout_ms: int | None = None

    def __post_init__(self) -> None:
        if self.max_iterations <= 0:
            raise ConfigurationError("max_iterations must be positive")
        if self.max_context_tokens <= 0:
            raise ConfigurationError("max_context_tokens must be positive")

    @classmethod
    def from_env(cls, section: dict[str, Any] | None = None) -> AgentConfig:
        section = section or {}
        effort = str(
            _pick("AGENT_REASONING_EFFORT", section, "reasoning_effort") or DEFAULT_REASONING_EFFORT
        ).lower()
        if effort not in REASONING_EFFORTS:
            logger.warning("Unknown reasoning effort, using default", value=effort)
            effort = DEFAULT_REASONING_EFFORT

        timeout = _pick("AGENT_EXECUTION_TIMEOUT_MS", section, "execution_timeout_ms")

        return cls(
            max_iterations=_to_positive_int(
                _pick("AGENT_MAX_ITERATIONS", section, "max_iterations"),
                DEFAULT_MAX_ITERATIONS,
                "AGENT_MAX_ITERATIONS",
            ),
            max_context_tokens=_to_positive_int(
                _pick("AGENT_MAX_CONTEXT_TOKENS", section, "max_context_tokens"),
                DEFAULT_MAX_CONTEXT_TOKENS,
                "AGENT_MAX_CONTEXT_TOKENS",
            ),
            enable_reasoning=_to_bool(
                _pick("AGENT_ENABLE_REASONING", section, "enable_reasoning"), False
            ),
            reasoning_effort=effort,
            system_prompt_additions=_pick(
                "AGENT_SYSTEM_PROMPT_ADDITIONS", section, "system_prompt_additions"
            ) or None,
            execution_timeout_ms=(
                _to_positive_int(timeout, DEFAULT_TIMEOUT_MS, "AGENT_EXECUTION_TIMEOUT_MS")
                if timeout
                else None
            ),
        )


@dataclass
class Settings:
    """Complete runtime settings."""

    executor: ExecutorConfig = field(default_factory=ExecutorConfig)
    agent: AgentConfig = field(default_factory=AgentConfig)
    log_level: str = "INFO"
    log_json: bool = False
    service_name: str = "nuagent"

    @classmethod
    def from_env(cls, config_file: str | Path | None = None, load_dotenv_files: bool = True) -> Settings:
        """
        Build settings from the environment and an optional YAML file.

        Args:
            config_file: YAML path; defaults to ``NUAGENT_CONFIG_FILE`` when set
            load_dotenv_files: Load ``.env.local`` / ``.env`` from the working directory
        """
        if load_dotenv_files:
            load_environment()

        config_file = config_file or os.getenv("NUAGENT_CONFIG_FILE")
        data = load_yaml_config(config_file) if config_file else {}
        logging_section = data.get("logging") or {}

        return cls(
            executor=ExecutorConfig.from_env(data.get("executor") or {}),
            agent=AgentConfig.from_env(data.get("agent") or {}),
            log_level=str(_pick("NUAGENT_LOG_LEVEL", logging_section, "level") or "INFO").upper(),
            log_json=_to_bool(_pick("NUAGENT_LOG_JSON", logging_section, "json"), False),
            service_name=os.getenv("OTEL_SERVICE_NAME") or "nuagent",
        )
