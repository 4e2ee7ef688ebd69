"""Configuration models and YAML loader.

The configuration file is YAML with four top-level sections::

    directory:
      host: supplier1.example.com
      bind_dn: "cn=Directory Manager"
      password: secret
    password:
      length: 20
      predefined:
        agreement-to-consumer1: "S3cure!Value"
    monitor:
      enabled: true
      log_paths: [/var/log/dirsrv/slapd-ldap/errors]
    logging:
      level: info

Everything except the directory connection parameters has a default.
"""
from __future__ import annotations

from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from repl_rotator.errors import ConfigError

DEFAULT_LOG_PATHS: list[str] = [
    "/var/log/dirsrv/slapd-ldap/errors",
    "/var/log/dirsrv/slapd-ldap/access",
]


class DirectoryConfig(BaseModel):
    """Connection parameters for the supplier directory server."""

    host: str = Field(min_length=1)
    port: int = Field(default=389, ge=1, le=65535)
    bind_dn: str = Field(min_length=1)
    password: str = Field(min_length=1)
    base_dn: str = "cn=config"
    use_tls: bool = False
    skip_tls_verify: bool = False
    timeout: float = Field(default=30.0, gt=0)
    replication_manager_dn: str = "cn=replication manager,cn=config"


class PasswordPolicy(BaseModel):
    """Credential sources and generation rules.

    ``generate`` defaults to True only when neither ``predefined`` nor
    ``default`` supplies a value, so a file that lists explicit values never
    silently falls back to random ones.
    """

    length: int = Field(default=16, ge=1)
    include_lowercase: bool = True
    include_uppercase: bool = True
    include_digits: bool = True
    include_symbols: bool = True
    exclude_chars: str = "0O1lI"
    predefined: dict[str, str] = Field(default_factory=dict)
    default: Optional[str] = None
    generate: Optional[bool] = None
    max_attempts: int = Field(default=100, ge=1)

    @model_validator(mode="after")
    def _default_generate(self) -> "PasswordPolicy":
        if self.generate is None:
            self.generate = not self.default and not self.predefined
        return self


class MonitorConfig(BaseModel):
    """Failure monitor knobs."""

    enabled: bool = False
    log_paths: list[str] = Field(default_factory=lambda: list(DEFAULT_LOG_PATHS))
    poll_interval: float = Field(default=5.0, gt=0)
    encoding: str = "utf-8"


class LoggingConfig(BaseModel):
    """Process logging and audit trail settings."""

    level: str = "info"
    file: Optional[str] = None
    timestamps: bool = True
    audit_file: Optional[str] = None

    @field_validator("level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        normalized = value.lower()
        if normalized not in {"debug", "info", "warning", "warn", "error"}:
            raise ValueError(f"unknown log level {value!r}")
        return "warning" if normalized == "warn" else normalized


class RotatorConfig(BaseModel):
    """Top-level configuration document."""

    directory: DirectoryConfig
    password: PasswordPolicy = Field(default_factory=PasswordPolicy)
    monitor: MonitorConfig = Field(default_factory=MonitorConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config(path: str | Path) -> RotatorConfig:
    """Read and validate a YAML configuration file.

    Raises
    ------
    ConfigError
        If the file is missing, is not valid YAML, or fails validation.
    """
    config_path = Path(path)
    try:
        text = config_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Cannot read config file {str(config_path)!r}: {exc}") from exc

    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Cannot parse YAML in {str(config_path)!r}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {str(config_path)!r} must contain a mapping")

    try:
        return RotatorConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration in {str(config_path)!r}:\n{exc}") from exc


__all__ = [
    "DEFAULT_LOG_PATHS",
    "DirectoryConfig",
    "LoggingConfig",
    "MonitorConfig",
    "PasswordPolicy",
    "RotatorConfig",
    "load_config",
]
