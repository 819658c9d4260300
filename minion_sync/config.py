"""Loading and validation of the application configuration."""
from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from minion_sync.errors import ConfigurationError
from minion_sync.services.conflict import ConflictStrategy
from minion_sync.services.differ import SyncFilter

DEFAULT_ASANA_URL = "https://app.asana.com/api/1.0"


class LocalBackendSettings(BaseModel):
    """Task store kept in a JSON file."""

    path: Path = Field(..., description="Path of the JSON file holding tasks, tags and sections")

    @field_validator("path", mode="before")
    @classmethod
    def _expand_path(cls, value: Path | str) -> Path:
        return Path(value).expanduser()


class AsanaBackendSettings(BaseModel):
    """Connection settings for an Asana project."""

    access_token: str = Field(..., description="Personal access token")
    workspace_id: str = Field(..., description="Workspace gid, used for tags")
    project_id: str = Field(..., description="Project gid holding the tasks and sections")
    base_url: str = Field(DEFAULT_ASANA_URL, description="Base URL of the Asana REST API")
    page_size: int = Field(100, ge=1, le=100, description="Page size when listing tasks")


class BackendSettings(BaseModel):
    """One named backend of the configuration file."""

    type: Literal["local", "asana"]
    description: Optional[str] = None
    local: Optional[LocalBackendSettings] = None
    asana: Optional[AsanaBackendSettings] = None

    @model_validator(mode="after")
    def _settings_for_type(self) -> "BackendSettings":
        if getattr(self, self.type) is None:
            raise ValueError(f"backend of type '{self.type}' needs a '{self.type}' section")
        return self


class FilterOptions(BaseModel):
    """Which source tasks take part in a sync."""

    completed: Optional[bool] = Field(None, description="Only completed (true) or open (false) tasks")
    tags: List[str] = Field(default_factory=list, description="Only tasks carrying one of these tags")
    sections: List[str] = Field(default_factory=list, description="Only tasks in one of these sections")

    def to_filter(self) -> SyncFilter:
        return SyncFilter(completed=self.completed, tags=tuple(self.tags), sections=tuple(self.sections))


class SyncOptions(BaseModel):
    """Defaults for ``sync pull``."""

    conflict_strategy: ConflictStrategy = Field(
        ConflictStrategy.SOURCE_WINS, description="How to treat tasks modified in the target"
    )
    sync_tags: bool = Field(True, description="Synchronize tag membership")
    sync_sections: bool = Field(True, description="Synchronize section membership")
    dry_run: bool = Field(False, description="If true, nothing is written to the target")
    time_budget: Optional[float] = Field(None, gt=0, description="Seconds after which the pass stops")
    filter: Optional[FilterOptions] = None


class AppConfig(BaseModel):
    """Root of the configuration file."""

    backends: Dict[str, BackendSettings] = Field(default_factory=dict)
    sync: SyncOptions = Field(default_factory=SyncOptions)
    state_dir: Path = Field(Path(".minion_sync"), description="Directory of the identity map files")

    @field_validator("state_dir", mode="before")
    @classmethod
    def _state_dir_path(cls, value: Path | str) -> Path:
        return Path(value).expanduser()

    @classmethod
    def load(cls, path: Path | str) -> "AppConfig":
        """Loads the configuration from a YAML file."""
        path = Path(path)
        try:
            raw = yaml.safe_load(path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise ConfigurationError(f"Configuration file {path} not found") from exc
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Configuration {path} is not valid YAML: {exc}") from exc
        try:
            return cls.model_validate(raw or {})
        except ValidationError as exc:
            raise ConfigurationError(f"Configuration {path} is invalid: {exc}") from exc

    def backend(self, name: str) -> BackendSettings:
        try:
            return self.backends[name]
        except KeyError:
            known = ", ".join(sorted(self.backends)) or "none"
            raise ConfigurationError(f"Backend '{name}' not found (configured: {known})") from None

    def ensure_runtime_dirs(self) -> None:
        self.state_dir.mkdir(parents=True, exist_ok=True)


__all__ = [
    "AppConfig",
    "BackendSettings",
    "LocalBackendSettings",
    "AsanaBackendSettings",
    "FilterOptions",
    "SyncOptions",
]
