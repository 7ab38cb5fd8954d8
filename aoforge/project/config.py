"""Project configuration: the read-only view of ao.config.yml.

The file uses camelCase keys (``processName``, ``luaFiles``) because the
scaffolded web projects share it with JavaScript tooling.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from aoforge.config import settings
from aoforge.exceptions import ConfigError
from aoforge.types import AOSFeatures

_logger = logging.getLogger(__name__)


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class PortsConfig(_CamelModel):
    dev: int = 3000
    build: int | None = None


class FeatureFlags(_CamelModel):
    coroutines: bool = True
    bootloader: bool = False
    weavedrive: bool = False


class AOSConfig(_CamelModel):
    version: Literal["1.x", "2.x"] = "2.x"
    features: FeatureFlags = Field(default_factory=FeatureFlags)


class AOConfig(_CamelModel):
    """Everything the supervisor reads from a project."""

    lua_files: list[str] = Field(default_factory=list)
    package_manager: Literal["npm", "yarn", "pnpm"] = "npm"
    framework: Literal["nextjs", "nuxtjs", "svelte", "react", "vue"] = "nextjs"
    process_name: str = "ao-process"
    ports: PortsConfig = Field(default_factory=PortsConfig)
    aos: AOSConfig = Field(default_factory=AOSConfig)
    run_with_ao: bool = Field(default=False, alias="runWithAO")
    tags: dict[str, str] = Field(default_factory=dict)

    def features(self) -> AOSFeatures:
        flags = self.aos.features
        return AOSFeatures(
            coroutines=flags.coroutines,
            bootloader=flags.bootloader,
            weavedrive=flags.weavedrive,
            version=self.aos.version,
        )


def config_path(project_path: str | Path) -> Path:
    return Path(project_path) / settings.config_file_name


def project_exists(project_path: str | Path) -> bool:
    """A directory is a project if it has package.json or a config file."""
    root = Path(project_path)
    return (root / "package.json").exists() or config_path(root).exists()


def load_config(project_path: str | Path) -> AOConfig:
    """Load and validate ao.config.yml, falling back to defaults if absent."""
    path = config_path(project_path)
    if not path.exists():
        _logger.debug("No config file at %s, using defaults", path)
        return AOConfig()

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Could not read {path}: {e}") from e

    if raw is None:
        return AOConfig()
    if not isinstance(raw, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level")

    try:
        config = AOConfig.model_validate(raw)
    except ValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ConfigError(f"Invalid configuration in {path}: {details}") from e

    _logger.debug("Loaded configuration from %s", path)
    return config
