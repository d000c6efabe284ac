"""
Relay runtime settings, read from the ``relay`` section of the YAML config.
"""

from dataclasses import dataclass, fields
from typing import Any, Optional


@dataclass(frozen=True)
class RelaySettings:
    buffer_size: int = 8192
    backlog: int = 128
    connect_timeout: float = 10.0
    connect_attempts: int = 1
    connect_backoff: float = 0.5
    idle_timeout: Optional[float] = None
    accept_backoff: float = 0.1
    shutdown_grace: float = 5.0

    def __post_init__(self):
        if self.buffer_size < 1:
            raise ValueError(f"buffer_size must be positive, got {self.buffer_size}")
        if self.backlog < 1:
            raise ValueError(f"backlog must be positive, got {self.backlog}")
        if self.connect_attempts < 1:
            raise ValueError(
                f"connect_attempts must be at least 1, got {self.connect_attempts}"
            )
        if self.connect_timeout <= 0:
            raise ValueError(
                f"connect_timeout must be positive, got {self.connect_timeout}"
            )
        if self.idle_timeout is not None and self.idle_timeout <= 0:
            raise ValueError(f"idle_timeout must be positive, got {self.idle_timeout}")
        for name in ("connect_backoff", "accept_backoff", "shutdown_grace"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative")

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "RelaySettings":
        section = config.get("relay") or {}
        if not isinstance(section, dict):
            raise ValueError("relay: section must be a mapping")

        known = {f.name: f for f in fields(cls)}
        unknown = set(section) - set(known)
        if unknown:
            raise ValueError(f"unknown relay settings: {', '.join(sorted(unknown))}")

        values = {}
        for name, value in section.items():
            if value is None:
                if name != "idle_timeout":
                    raise ValueError(f"relay setting {name} must not be null")
                values[name] = None
                continue
            caster = int if known[name].type in (int, "int") else float
            try:
                values[name] = caster(value)
            except (TypeError, ValueError):
                raise ValueError(f"invalid value for {name}: {value!r}") from None

        return cls(**values)
