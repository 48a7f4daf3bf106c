"""YAML configuration for the compatibility harness."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .runner import DEFAULT_DIAGNOSTIC_CHARS, DEFAULT_DIAGNOSTIC_LINES
from .sandbox import DEFAULT_BRANCH_PREFIX
from .versions import DEFAULT_OVERVIEW_LIMIT, DEFAULT_STABLE_PATCH_THRESHOLD

DEFAULT_CONFIG_NAME = "patch-compat.yaml"
DEFAULT_REPOSITORY_ROOT = "~/chromium/src"
DEFAULT_PATCHES_DIRECTORY = "patches"
DEFAULT_PATCH_NAMES: tuple[str, ...] = (
    "user-agent.patch",
    "private-network.patch",
    "omnibox-multiclick.patch",
    "session-restore.patch",
    "tab-search-url.patch",
)


class ConfigError(ValueError):
    """Raised when the configuration file cannot be read or validated."""


class SectionModel(BaseModel):
    """Base Pydantic model with strict field handling."""

    model_config = ConfigDict(extra="forbid")


class RepositorySettings(SectionModel):
    root: str = DEFAULT_REPOSITORY_ROOT


class PatchSettings(SectionModel):
    directory: str = DEFAULT_PATCHES_DIRECTORY
    # ``None`` means every *.patch file in the directory.
    names: Optional[List[str]] = Field(default_factory=lambda: list(DEFAULT_PATCH_NAMES))

    @field_validator("names")
    @classmethod
    def _unique_names(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        if value is None:
            return value
        cleaned = [item.strip() for item in value]
        if any(not item for item in cleaned):
            raise ValueError("patch names must be non-empty")
        if len(set(cleaned)) != len(cleaned):
            raise ValueError("patch names must be unique")
        return cleaned


class ClassifierSettings(SectionModel):
    stable_patch_threshold: int = Field(default=DEFAULT_STABLE_PATCH_THRESHOLD, ge=0)
    newest_major_canary: bool = True
    canary_major: Optional[int] = Field(default=None, ge=0)
    overview_limit: int = Field(default=DEFAULT_OVERVIEW_LIMIT, ge=0)


class SandboxSettings(SectionModel):
    branch_prefix: str = DEFAULT_BRANCH_PREFIX
    include_untracked: bool = False
    commit_applied: bool = True


class ReportSettings(SectionModel):
    diagnostic_lines: int = Field(default=DEFAULT_DIAGNOSTIC_LINES, ge=1)
    diagnostic_chars: int = Field(default=DEFAULT_DIAGNOSTIC_CHARS, ge=80)


class LoggingSettings(SectionModel):
    level: str = "WARNING"

    @field_validator("level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        normalised = value.strip().upper()
        if normalised not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level {value!r}")
        return normalised


class HarnessConfig(SectionModel):
    """Top-level configuration; every section is optional."""

    repository: RepositorySettings = Field(default_factory=RepositorySettings)
    patches: PatchSettings = Field(default_factory=PatchSettings)
    classifier: ClassifierSettings = Field(default_factory=ClassifierSettings)
    sandbox: SandboxSettings = Field(default_factory=SandboxSettings)
    report: ReportSettings = Field(default_factory=ReportSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    # Relative paths resolve against the directory of the config file.
    base_dir: Path = Field(default_factory=Path.cwd, exclude=True)

    def repository_root(self) -> Path:
        return _resolve(self.repository.root, self.base_dir)

    def patches_directory(self) -> Path:
        return _resolve(self.patches.directory, self.base_dir)


def _resolve(value: str, base_dir: Path) -> Path:
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = base_dir / path
    return path.resolve()


def _read_yaml(config_path: Path) -> Dict[str, Any]:
    try:
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        raise ConfigError(f"Failed to parse config {config_path}: {error}") from error
    except OSError as error:
        raise ConfigError(f"Unable to read config {config_path}: {error}") from error
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration {config_path} must be a mapping at the top level.")
    return data


def load_config(config_path: Path | str | None = None, *, required: bool = False) -> HarnessConfig:
    """Load and validate ``config_path``.

    A missing file yields the defaults (repository at ``~/chromium/src``,
    patches next to the config) unless ``required`` is set.
    """

    path = Path(config_path or DEFAULT_CONFIG_NAME).expanduser()
    if not path.is_absolute():
        path = (Path.cwd() / path).resolve()

    if not path.exists():
        if required:
            raise ConfigError(f"Config file not found: {path}")
        return HarnessConfig(base_dir=path.parent)

    data = _read_yaml(path)
    if "base_dir" in data:
        raise ConfigError("'base_dir' is derived from the config location and cannot be set.")
    try:
        return HarnessConfig(**data, base_dir=path.parent)
    except ValidationError as error:
        raise ConfigError(f"Invalid configuration in {path}:\n{error}") from error


def dump_default_config() -> str:
    """Render the default configuration as YAML."""

    payload = HarnessConfig().model_dump(mode="json", exclude={"base_dir"})
    return yaml.safe_dump(payload, sort_keys=False)


__all__ = [
    "ClassifierSettings",
    "ConfigError",
    "DEFAULT_CONFIG_NAME",
    "DEFAULT_PATCH_NAMES",
    "HarnessConfig",
    "LoggingSettings",
    "PatchSettings",
    "ReportSettings",
    "RepositorySettings",
    "SandboxSettings",
    "dump_default_config",
    "load_config",
]
