"""Console and log output format configuration."""

import os
from enum import Enum
from typing import Literal


class OutputFormat(str, Enum):
    """Console output format options."""
    AUTO = "auto"
    RICH = "rich"
    PLAIN = "plain"
    JSON = "json"


LogFormat = Literal["json", "console", "plain"]

ENV_VAR_NAME = "CONSOLE_OUTPUT_FORMAT"
TIMEOUT_ENV_VAR = "COLLECTION_RUNNER_TIMEOUT"


def get_output_format(cli_override: str | None = None) -> OutputFormat:
    """
    Get the output format with priority: CLI parameter > Environment variable > Default (auto).

    Args:
        cli_override: Optional CLI parameter value that takes precedence

    Returns:
        OutputFormat enum value
    """
    # Priority 1: CLI parameter
    if cli_override is not None:
        try:
            return OutputFormat(cli_override.lower())
        except ValueError:
            pass

    # Priority 2: Environment variable
    env_value = os.environ.get(ENV_VAR_NAME)
    if env_value:
        try:
            return OutputFormat(env_value.lower())
        except ValueError:
            pass

    # Priority 3: Default
    return OutputFormat.AUTO


def log_format_for(output_format: OutputFormat) -> LogFormat:
    """Map a console output format onto the matching structlog renderer."""
    if output_format == OutputFormat.JSON:
        return "json"
    if output_format == OutputFormat.PLAIN:
        return "plain"
    return "console"


def get_timeout(cli_override: float | None = None, default: float = 10.0) -> float:
    """Request timeout in seconds: CLI parameter > environment variable > default."""
    if cli_override is not None:
        return cli_override
    env_value = os.environ.get(TIMEOUT_ENV_VAR)
    if env_value:
        try:
            value = float(env_value)
        except ValueError:
            return default
        if value > 0:
            return value
    return default
