"""
Engine configuration.

Settings come from keyword arguments, a mapping, ``BLOCKFLOW_*`` environment
variables or a JSON file, in that order of precedence when combined by the
caller.
"""

import json
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Optional, Union

from blockflow.errors import ConfigError

ENV_PREFIX = "BLOCKFLOW_"

MISSING_LITERAL_POLICIES = ("error", "none")


@dataclass
class EngineConfig:
    """
    Runtime settings for ``Engine``.

    Attributes:
        start_kind: Kind id whose instances ``run`` starts as root triggers
        max_pull_depth: Bound on nested data pulls within one resolution
        min_interval_ms: Smallest period accepted by interval registrations
        missing_literal_policy: "error" raises MissingLiteralError when a
            pulled input has no edge, literal or default; "none" yields None
    """

    start_kind: str = "event.start"
    max_pull_depth: int = 10000
    min_interval_ms: float = 10.0
    missing_literal_policy: str = "error"

    def __post_init__(self) -> None:
        """Validate settings."""
        if not self.start_kind:
            raise ConfigError("start_kind must not be empty")
        if self.max_pull_depth < 1:
            raise ConfigError(f"max_pull_depth must be positive, got {self.max_pull_depth}")
        if self.min_interval_ms < 0:
            raise ConfigError(f"min_interval_ms must not be negative, got {self.min_interval_ms}")
        if self.missing_literal_policy not in MISSING_LITERAL_POLICIES:
            raise ConfigError(
                f"missing_literal_policy must be one of {MISSING_LITERAL_POLICIES}, "
                f"got {self.missing_literal_policy!r}"
            )

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> "EngineConfig":
        """
        Build a config from a mapping, rejecting unknown keys.

        Raises:
            ConfigError: If a key is unknown or a value invalid
        """
        known = {f.name: f for f in fields(cls)}
        unknown = set(data) - set(known)
        if unknown:
            raise ConfigError(f"Unknown config keys: {sorted(unknown)}")

        values: dict[str, Any] = {}
        for key, raw in data.items():
            default = getattr(cls, key)
            try:
                values[key] = type(default)(raw)
            except (TypeError, ValueError) as e:
                raise ConfigError(f"Invalid value for {key}: {raw!r}") from e
        return cls(**values)

    @classmethod
    def from_env(cls, environ: Optional[dict[str, str]] = None) -> "EngineConfig":
        """
        Build a config from ``BLOCKFLOW_*`` variables
        (e.g. ``BLOCKFLOW_MAX_PULL_DEPTH=500``).
        """
        environ = os.environ if environ is None else environ
        data = {}
        for f in fields(cls):
            key = ENV_PREFIX + f.name.upper()
            if key in environ:
                data[f.name] = environ[key]
        return cls.from_mapping(data)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "EngineConfig":
        """
        Build a config from a JSON object file.

        Raises:
            ConfigError: If the file cannot be read or parsed
        """
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Cannot load config from {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a JSON object")
        return cls.from_mapping(data)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
