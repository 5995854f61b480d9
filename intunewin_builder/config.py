"""Settings model and loading logic.

Precedence (highest first): explicit keyword arguments, ``INTUNEWIN_*``
environment variables, ``.env``, the YAML settings file.
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

DEFAULT_SETTINGS_FILE = Path("intunewin.yaml")
SETTINGS_FILE_ENV = "INTUNEWIN_SETTINGS_FILE"

GIB = 1024**3

DEFAULT_PATTERNS = [
    "*AutoCAD*",
    "*Revit*",
    "*Civil*3D*",
    "*Inventor*",
    "*Navisworks*",
    "*3ds*Max*",
    "*Maya*",
    "*Vault*",
    "*Advance*Steel*",
    "*Plant*3D*",
    "*Map*3D*",
    "*InfraWorks*",
    "*ReCap*",
    "*Fabrication*",
]


class BuilderSettings(BaseSettings):
    """Top-level settings for a packaging run."""

    source_root: Path = Path("C:/Autodesk/Deployments")
    output_dir: Path = Path("./output")
    log_dir: Path | None = Path("./logs")
    staging_root: Path | None = None

    patterns: list[str] = Field(default_factory=lambda: list(DEFAULT_PATTERNS))

    manifest_name: str = "Summary.txt"
    image_dir: str = "image"
    installer_name: str = "Installer.exe"
    collection_name: str = "Collection.xml"

    enhanced_threshold_bytes: int = Field(default=4 * GIB, gt=0)
    extreme_threshold_bytes: int = Field(default=8 * GIB, gt=0)
    chunk_size: int = Field(default=1000, ge=1)

    tool_path: Path = Path("./tools/IntuneWinAppUtil.exe")
    tool_url: str | None = (
        "https://github.com/microsoft/Microsoft-Win32-Content-Prep-Tool/raw/master/IntuneWinAppUtil.exe"
    )
    tool_sha256: str | None = None

    recent_window_seconds: int = Field(default=300, ge=0)

    model_config = SettingsConfigDict(
        env_prefix="INTUNEWIN_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        yaml_file = settings_cls.model_config.get("yaml_file") or resolve_settings_file()
        yaml_settings = YamlConfigSettingsSource(settings_cls, yaml_file=yaml_file)
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            yaml_settings,
            file_secret_settings,
        )


def resolve_settings_file(override: Path | None = None) -> Path:
    """Resolve settings file from explicit override, env var, or default."""
    chosen = override
    if chosen is None:
        env_value = os.getenv(SETTINGS_FILE_ENV)
        if env_value:
            chosen = Path(env_value)
    return chosen if chosen is not None else DEFAULT_SETTINGS_FILE


def load_settings(config_file: Path | None = None, **overrides: object) -> BuilderSettings:
    """Load settings; a missing YAML file is simply skipped.

    The YAML path is bound to a per-call subclass, so concurrent loads with
    different files never see each other's choice.
    """
    yaml_file = resolve_settings_file(config_file)

    class FileBoundSettings(BuilderSettings):
        model_config = SettingsConfigDict(yaml_file=yaml_file)

    settings = FileBoundSettings(**{k: v for k, v in overrides.items() if v is not None})
    if settings.extreme_threshold_bytes < settings.enhanced_threshold_bytes:
        raise ValueError("extreme_threshold_bytes must be >= enhanced_threshold_bytes")
    return settings
