"""Process environment scrubbing for environment commands.

Builds the environment handed to start/stop/nuke/logs commands: the daemon's
own control variables are stripped so they cannot leak into user apps, and the
subset forwarded into containers is filtered through an allowlist.
"""

from __future__ import annotations

import os
from collections.abc import Iterable, Mapping

from wtenv.logging import get_logger

logger = get_logger("env")

# Variables that steer the daemon itself and must not reach user processes
DEFAULT_INTERNAL_ENV_VARS = frozenset(
    {
        "NODE_ENV",
        "PORT",
        "UI_PORT",
        "WTENV_CONFIG",
        "WTENV_STORE",
        "WTENV_LOG_LEVEL",
        "WTENV_MASTER_SECRET",
        "CODESPACES",
        "RAILWAY_ENVIRONMENT",
        "RENDER",
    }
)

# Comma-separated list of user-defined keys that should follow commands into containers
USER_ENV_KEYS_VAR = "WTENV_USER_ENV_KEYS"

# API keys forwarded into containers when present on the host
PASSTHROUGH_API_KEYS = (
    "ANTHROPIC_API_KEY",
    "OPENAI_API_KEY",
    "GOOGLE_API_KEY",
    "GEMINI_API_KEY",
    "GITHUB_TOKEN",
)

# Dangerous environment variables that should NEVER be forwarded into a container
DANGEROUS_ENV_VARS = frozenset(
    {
        "LD_PRELOAD",
        "LD_LIBRARY_PATH",
        "DYLD_INSERT_LIBRARIES",
        "DYLD_LIBRARY_PATH",
        "PATH",
        "PYTHONPATH",
        "NODE_PATH",
        "HOME",
        "USER",
        "SHELL",
        "TMPDIR",
    }
)

SHELL_METACHARACTERS = (";", "|", "&", "`", "$", "(", ")", "<", ">")


def build_process_environment(
    base: Mapping[str, str] | None = None,
    additional: Mapping[str, str] | None = None,
    internal_vars: Iterable[str] | None = None,
) -> dict[str, str]:
    """Create a clean environment for environment commands.

    Args:
        base: Starting environment. Defaults to the daemon's os.environ
        additional: Extra variables merged last; empty values are ignored
        internal_vars: Names to strip. Defaults to DEFAULT_INTERNAL_ENV_VARS

    Returns:
        Scrubbed environment mapping
    """
    env = dict(os.environ if base is None else base)
    blocked = DEFAULT_INTERNAL_ENV_VARS if internal_vars is None else frozenset(internal_vars)

    for name in blocked:
        env.pop(name, None)

    if additional:
        for key, value in additional.items():
            if value and value.strip():
                env[key] = value

    return env


def validate_env_vars(env: Mapping[str, str]) -> dict[str, str]:
    """Drop dangerous names and values carrying shell metacharacters.

    Args:
        env: Environment variables to validate

    Returns:
        Validated environment variables
    """
    validated = {}

    for key, value in env.items():
        if key.upper() in DANGEROUS_ENV_VARS:
            logger.warning(f"Blocked dangerous environment variable: {key}")
            continue

        if any(c in value for c in SHELL_METACHARACTERS):
            logger.warning(f"Blocked env var with shell metacharacters: {key}")
            continue

        validated[key] = value

    return validated


def build_container_env(env: Mapping[str, str]) -> dict[str, str]:
    """Select the variables forwarded into a container exec.

    Only user-declared keys (listed in WTENV_USER_ENV_KEYS) and the standard
    API keys cross the container boundary.

    Args:
        env: Scrubbed host environment

    Returns:
        Filtered, validated environment for `exec -e`
    """
    selected: dict[str, str] = {}

    user_keys = [k.strip() for k in env.get(USER_ENV_KEYS_VAR, "").split(",") if k.strip()]
    for key in user_keys:
        if env.get(key):
            selected[key] = env[key]

    for key in PASSTHROUGH_API_KEYS:
        if env.get(key) and key not in selected:
            selected[key] = env[key]

    return validate_env_vars(selected)
