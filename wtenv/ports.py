"""Deterministic container naming and port derivation for worktrees."""

import re
from urllib.parse import urlparse

from wtenv.constants import (
    DEFAULT_APP_BASE_PORT,
    DEFAULT_CONTAINER_PREFIX,
    DEFAULT_SSH_BASE_PORT,
    SHORT_ID_LENGTH,
)

_PORT_FALLBACK = re.compile(r":(\d+)")
_PORT_OUTPUT = re.compile(r":(\d+)\s*$")

SCHEME_DEFAULT_PORTS = {"http": 80, "https": 443}


def short_id(worktree_id: str) -> str:
    """First 8 characters of a worktree ID with dashes removed."""
    return worktree_id.replace("-", "")[:SHORT_ID_LENGTH]


def container_name_for(worktree_id: str, prefix: str = DEFAULT_CONTAINER_PREFIX) -> str:
    """Container name for a worktree, e.g. ``wtenv-wt-0192ab3c``."""
    return f"{prefix}-{short_id(worktree_id)}"


def calculate_ssh_port(unique_id: int, base_port: int = DEFAULT_SSH_BASE_PORT) -> int:
    """Host SSH port for a worktree container."""
    return base_port + unique_id


def calculate_app_port(unique_id: int, base_port: int = DEFAULT_APP_BASE_PORT) -> int:
    """Host port the worktree app is published on."""
    return base_port + unique_id


def extract_port_from_url(url: str | None) -> int | None:
    """Explicit port of a URL, or None when it has none.

    Examples:
        "http://localhost:5003/health" -> 5003
        "http://example.com" -> None
        "localhost:5003" -> 5003 (regex fallback)
    """
    if not url:
        return None

    try:
        parsed = urlparse(url)
        if parsed.hostname:
            return parsed.port
    except ValueError:
        pass

    match = _PORT_FALLBACK.search(url)
    return int(match.group(1)) if match else None


def app_internal_port_from_url(url: str | None) -> int | None:
    """Port the app listens on inside the container.

    Falls back to the scheme default when the URL carries no explicit port.
    """
    port = extract_port_from_url(url)
    if port is not None or not url:
        return port
    return SCHEME_DEFAULT_PORTS.get(urlparse(url).scheme.lower())


def parse_port_output(output: str) -> int | None:
    """Parse `<runtime> port <name> 22` output such as ``0.0.0.0:32768``.

    Multi-line output (IPv4 and IPv6 bindings) uses the first parsable line.
    """
    for line in output.strip().splitlines():
        match = _PORT_OUTPUT.search(line)
        if match:
            return int(match.group(1))
    return None
