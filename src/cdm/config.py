"""
Engine configuration.

Values come from a YAML file (``yaml.safe_load``) and may be overridden by
environment variables:

- ``CDM_PROTOCOL``: ``widevine`` or ``playready``
- ``CDM_PRIVACY_MODE``: ``1``/``true``/``yes`` to encrypt the client id
- ``CDM_MAX_SESSIONS``: open-session ceiling
- ``CDM_LOG_LEVEL``: logging level name
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from .codec.messages import LicenseType
from .constants import MAX_SESSIONS, PLAYREADY_CLIENT_VERSION

PROTOCOLS = ("widevine", "playready")
_TRUE = ("1", "true", "yes", "on")
_FALSE = ("0", "false", "no", "off")


@dataclass(frozen=True)
class Config:
    protocol: str = "widevine"
    privacy_mode: bool = False
    max_sessions: int = MAX_SESSIONS
    license_type: str = "STREAMING"
    client_version: str = PLAYREADY_CLIENT_VERSION
    log_level: str = "WARNING"

    def __post_init__(self):
        if self.protocol not in PROTOCOLS:
            raise ValueError(f"protocol must be one of {PROTOCOLS}, got {self.protocol!r}")
        if not isinstance(self.max_sessions, int) or isinstance(self.max_sessions, bool) or self.max_sessions < 1:
            raise ValueError(f"max_sessions must be a positive integer, got {self.max_sessions!r}")
        if not isinstance(self.privacy_mode, bool):
            raise ValueError(f"privacy_mode must be a boolean, got {self.privacy_mode!r}")
        if self.license_type not in LicenseType.__members__:
            raise ValueError(f"license_type must be one of {list(LicenseType.__members__)}")
        if not isinstance(logging.getLevelName(self.log_level), int):
            raise ValueError(f"unknown log level {self.log_level!r}")

    @property
    def log_level_value(self) -> int:
        return logging.getLevelName(self.log_level)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Config":
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"unknown config keys: {sorted(unknown)}")
        values = dict(data)
        if "protocol" in values:
            values["protocol"] = str(values["protocol"]).lower()
        if "license_type" in values:
            values["license_type"] = str(values["license_type"]).upper()
        if "log_level" in values:
            values["log_level"] = str(values["log_level"]).upper()
        return cls(**values)

    def with_env(self, environ: Optional[Mapping[str, str]] = None) -> "Config":
        env = os.environ if environ is None else environ
        overrides: Dict[str, Any] = {}
        if env.get("CDM_PROTOCOL"):
            overrides["protocol"] = env["CDM_PROTOCOL"].lower()
        if env.get("CDM_PRIVACY_MODE"):
            overrides["privacy_mode"] = _parse_bool(env["CDM_PRIVACY_MODE"], "CDM_PRIVACY_MODE")
        if env.get("CDM_MAX_SESSIONS"):
            try:
                overrides["max_sessions"] = int(env["CDM_MAX_SESSIONS"])
            except ValueError as e:
                raise ValueError(f"CDM_MAX_SESSIONS must be an integer: {env['CDM_MAX_SESSIONS']!r}") from e
        if env.get("CDM_LOG_LEVEL"):
            overrides["log_level"] = env["CDM_LOG_LEVEL"].upper()
        return replace(self, **overrides) if overrides else self


def _parse_bool(value: str, name: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ValueError(f"{name} must be a boolean, got {value!r}")


def load_config(path: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None) -> Config:
    """Load configuration from ``path`` (if given) and apply environment overrides.

    Raises:
        ValueError: If the file is missing, is not a YAML mapping, or holds invalid values
    """
    config = Config()
    if path is not None:
        path = Path(path)
        if not path.is_file():
            raise ValueError(f"Missing config file: {path}")
        try:
            data = yaml.safe_load(path.read_text())
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {path}: {e}") from e
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ValueError(f"{path} must contain a mapping")
        config = Config.from_mapping(data)
    return config.with_env(environ)
