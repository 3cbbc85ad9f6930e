"""Configuration schema for commit-patch.

Configuration is loaded from .commit-patch.yml in the repository root.
"""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ConfigError

CONFIG_FILENAME = ".commit-patch.yml"


class ToolsConfig(BaseModel):
    """External patch tools."""

    lsdiff: str = "lsdiff"
    interdiff: str = "interdiff"
    patch: str = "patch"
    # Extra arguments passed to every `patch` invocation.
    patch_args: list[str] = Field(
        default_factory=lambda: ["--batch", "--no-backup-if-mismatch"]
    )

    @field_validator("lsdiff", "interdiff", "patch")
    @classmethod
    def validate_executable(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("tool executable must not be empty")
        return v

    def patch_argv(self, strip: int, *, reverse: bool = False) -> list[str]:
        argv = [self.patch, f"-p{strip}", *self.patch_args]
        if reverse:
            argv.append("-R")
        return argv


class EditorConfig(BaseModel):
    """Editor used to author patches in commit-partial mode."""

    default: str = "vi"
    env_vars: list[str] = Field(default_factory=lambda: ["VISUAL", "EDITOR"])

    def resolve(self, environ: dict[str, str] | None = None) -> str:
        environ = dict(os.environ) if environ is None else environ
        for var in self.env_vars:
            if value := environ.get(var, "").strip():
                return value
        return self.default


class HistoryConfig(BaseModel):
    """Retry artifacts left in the working directory."""

    depth: int = 3
    patch_name: str = ".commit-partial.patch"
    message_name: str = ".commit-partial.msg"
    remainder_name: str = ".commit-patch.remainder.patch"

    @field_validator("depth")
    @classmethod
    def validate_depth(cls, v: int) -> int:
        if v < 1:
            raise ValueError("history depth must be at least 1")
        return v


class GitConfig(BaseModel):
    """Git-specific behavior."""

    # Stage straight into the index instead of reconciling the working tree.
    use_index: bool = True


class TelemetryConfig(BaseModel):
    """Telemetry and logging configuration."""

    enabled: bool = False
    log_path: str = "~/.local/state/commit-patch/telemetry.jsonl"
    retention_days: int = 30

    @property
    def path(self) -> Path:
        return Path(self.log_path).expanduser()


class CommitPatchConfig(BaseModel):
    """Complete commit-patch configuration."""

    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    editor: EditorConfig = Field(default_factory=EditorConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    git: GitConfig = Field(default_factory=GitConfig)
    telemetry: TelemetryConfig = Field(default_factory=TelemetryConfig)

    @classmethod
    def load_from_file(cls, config_path: Path | str) -> CommitPatchConfig:
        """Load configuration from YAML file."""
        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(config_path) as f:
            data = yaml.safe_load(f)

        return cls(**(data or {}))

    @classmethod
    def load_from_repo(cls, repo_path: Path | str) -> CommitPatchConfig:
        """Load configuration from the repository's .commit-patch.yml."""
        config_path = Path(repo_path) / CONFIG_FILENAME

        if not config_path.exists():
            return cls()

        return cls.load_from_file(config_path)

    def apply_env_overrides(self) -> None:
        """Apply environment variable overrides to configuration."""
        if v := os.getenv("COMMIT_PATCH_LSDIFF"):
            self.tools.lsdiff = v
        if v := os.getenv("COMMIT_PATCH_INTERDIFF"):
            self.tools.interdiff = v
        if v := os.getenv("COMMIT_PATCH_PATCH"):
            self.tools.patch = v

        if v := os.getenv("COMMIT_PATCH_EDITOR"):
            self.editor.default = v

        if os.getenv("COMMIT_PATCH_GIT_NO_INDEX") == "1":
            self.git.use_index = False

        if os.getenv("COMMIT_PATCH_TELEMETRY") == "1":
            self.telemetry.enabled = True
        if log_path := os.getenv("COMMIT_PATCH_TELEMETRY_PATH"):
            self.telemetry.log_path = log_path


def load_config(repo_path: Path | str, config_file: Path | str | None = None) -> CommitPatchConfig:
    """
    Load configuration for a repository.

    Args:
        repo_path: Repository root
        config_file: Explicit config file, overriding the repository's own

    Returns:
        Loaded and validated configuration with env overrides applied

    Raises:
        ConfigError: The file is unreadable, not YAML, or fails validation
    """
    source = config_file or Path(repo_path) / CONFIG_FILENAME
    try:
        if config_file:
            config = CommitPatchConfig.load_from_file(config_file)
        else:
            config = CommitPatchConfig.load_from_repo(repo_path)
    except (OSError, yaml.YAMLError, ValidationError, TypeError) as exc:
        raise ConfigError(f"Invalid configuration in {source}", str(exc)) from exc
    config.apply_env_overrides()
    return config
