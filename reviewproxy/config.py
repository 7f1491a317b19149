"""Loading of the proxy's YAML configuration."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from pathlib import Path

import yaml


class ConfigError(Exception):
    """Raised when the configuration cannot be read or parsed."""


@dataclass
class Config:
    """Settings of the review proxy."""

    domain: str = ""
    compose_template: str = ""
    target_service: str = ""
    target_port: int = 0
    idle_timeout: timedelta = timedelta(0)


_NANOSECONDS = {"ns": 1, "us": 10**3, "µs": 10**3, "μs": 10**3, "ms": 10**6,
                "s": 10**9, "m": 60 * 10**9, "h": 3600 * 10**9}
_COMPONENT = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|h|m|s)")


def parse_duration(text: str) -> timedelta:
    """Parse a duration such as ``5m``, ``1h30m`` or ``1.5s``."""
    sign = -1 if text.startswith("-") else 1
    body = text[1:] if text[:1] in ("-", "+") else text
    if body == "0":
        return timedelta(0)
    if not body:
        raise ValueError(f'invalid duration "{text}"')
    total_ns = Decimal(0)
    pos = 0
    while pos < len(body):
        match = _COMPONENT.match(body, pos)
        if match is None:
            raise ValueError(f'invalid duration "{text}"')
        total_ns += Decimal(match[1]) * _NANOSECONDS[match[2]]
        pos = match.end()
    return timedelta(microseconds=sign * (int(total_ns) // 1000))


def load_config(path: str | Path) -> Config:
    """Read and parse the YAML configuration at ``path``."""
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"reading config: {exc}") from exc
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"parsing config: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError("parsing config: top level must be a mapping")

    port = data.get("target_port") or 0
    if isinstance(port, bool) or not isinstance(port, int):
        raise ConfigError("parsing config: field target_port must be an integer")
    timeout = data.get("idle_timeout")
    if timeout is None:
        idle_timeout = timedelta(0)
    elif not isinstance(timeout, str):
        raise ConfigError("parsing config: field idle_timeout must be a duration string")
    else:
        try:
            idle_timeout = parse_duration(timeout)
        except ValueError as exc:
            raise ConfigError(f"parsing config: {exc}") from exc

    def text_field(name: str) -> str:
        value = data.get(name)
        return "" if value is None else str(value)

    return Config(
        domain=text_field("domain"),
        compose_template=text_field("compose_template"),
        target_service=text_field("target_service"),
        target_port=port,
        idle_timeout=idle_timeout,
    )