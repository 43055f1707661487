"""Connection profile configuration loading helpers."""

from __future__ import annotations

import json
import logging
import tomllib
from pathlib import Path
from typing import Mapping, Sequence

from pydantic import BaseModel, Field, ValidationError

from .adapters import DatabaseAdapter, get_adapter
from .errors import InvalidConfigurationError

LOG = logging.getLogger(__name__)

CONFIG_FILE = Path.home() / ".config" / "repokit" / "config.toml"


class ConnectionProfileConfig(BaseModel):
    """Connection profile stored in config.toml."""

    name: str
    adapter: str = "SQLite"
    host: str | None = None
    port: int = 0
    database: str | None = None
    user: str | None = None
    persistence_unit: str | None = None
    packages: list[str] | None = None
    extra_properties: dict[str, str] = Field(default_factory=dict)
    properties: dict[str, str] = Field(default_factory=dict)

    def build_adapter(self) -> DatabaseAdapter:
        """Instantiate and validate the adapter this profile names."""

        adapter = get_adapter(self.adapter, self.extra_properties)
        adapter.validate_extra_properties()
        return adapter


class AppConfig(BaseModel):
    """Shape of the configuration file."""

    profiles: list[ConnectionProfileConfig] = Field(default_factory=lambda: list(_default_profiles()))
    active_profile: str | None = None

    def profile(self, name: str) -> ConnectionProfileConfig:
        for profile in self.profiles:
            if profile.name == name:
                return profile
        raise InvalidConfigurationError(f"Profile '{name}' not found.")

    def active(self) -> ConnectionProfileConfig | None:
        """The active profile, falling back to the first one."""

        if self.active_profile:
            return self.profile(self.active_profile)
        return self.profiles[0] if self.profiles else None

    def with_active_profile(self, name: str) -> AppConfig:
        """Return a copy with the active profile updated."""

        self.profile(name)
        return self.model_copy(update={"active_profile": name})


def load_config(path: Path | None = None) -> AppConfig:
    """Load configuration from disk; fall back to defaults if missing."""

    try:
        data = _read_config_file(path or CONFIG_FILE)
    except FileNotFoundError:
        return AppConfig()
    except (tomllib.TOMLDecodeError, OSError):
        LOG.warning("Ignoring unreadable config file", extra={"path": str(path or CONFIG_FILE)})
        return AppConfig()

    profiles: list[ConnectionProfileConfig] = []
    for entry in data.get("profiles", ()):
        try:
            profiles.append(ConnectionProfileConfig.model_validate(entry))
        except ValidationError as exc:
            LOG.warning("Skipping invalid profile", extra={"profile": entry.get("name"), "error": str(exc)})

    return AppConfig(
        profiles=profiles or list(_default_profiles()),
        active_profile=data.get("active_profile"),
    )


def save_config(config: AppConfig, path: Path | None = None) -> None:
    """Persist configuration to disk."""

    target = path or CONFIG_FILE
    target.parent.mkdir(parents=True, exist_ok=True)
    lines: list[str] = []
    if config.active_profile:
        lines.append(f"active_profile = {_quote(config.active_profile)}")
        lines.append("")
    for profile in config.profiles:
        lines.append("[[profiles]]")
        lines.append(f"name = {_quote(profile.name)}")
        lines.append(f"adapter = {_quote(profile.adapter)}")
        if profile.host:
            lines.append(f"host = {_quote(profile.host)}")
        if profile.port:
            lines.append(f"port = {profile.port}")
        if profile.database:
            lines.append(f"database = {_quote(profile.database)}")
        if profile.user:
            lines.append(f"user = {_quote(profile.user)}")
        if profile.persistence_unit:
            lines.append(f"persistence_unit = {_quote(profile.persistence_unit)}")
        if profile.packages is not None:
            lines.append(f"packages = {_array(profile.packages)}")
        if profile.extra_properties:
            lines.append(f"extra_properties = {_inline_table(profile.extra_properties)}")
        if profile.properties:
            lines.append(f"properties = {_inline_table(profile.properties)}")
        lines.append("")
    target.write_text("\n".join(lines) + "\n")


def _read_config_file(path: Path) -> dict[str, object]:
    with path.open("rb") as handle:
        raw = tomllib.load(handle)
    data: dict[str, object] = {}
    active_profile = raw.get("active_profile")
    if isinstance(active_profile, str):
        data["active_profile"] = active_profile
    profiles = raw.get("profiles")
    if isinstance(profiles, list):
        data["profiles"] = [
            profile for profile in profiles if isinstance(profile, dict) and profile.get("name")
        ]
    return data


def _quote(value: str) -> str:
    # JSON string escapes are a subset of TOML basic-string escapes.
    return json.dumps(value)


def _array(values: Sequence[str]) -> str:
    return "[" + ", ".join(_quote(value) for value in values) + "]"


def _inline_table(values: Mapping[str, str]) -> str:
    items = ", ".join(f"{_quote(key)} = {_quote(values[key])}" for key in sorted(values))
    return "{ " + items + " }"


def _default_profiles() -> tuple[ConnectionProfileConfig, ...]:
    """Default profiles used before the config file is customised."""

    return (
        ConnectionProfileConfig(
            name="Local Memory",
            adapter="SQLite",
            database="repokit",
            extra_properties={"Mode": "memory"},
        ),
        ConnectionProfileConfig(
            name="Local PostgreSQL",
            adapter="PostgreSQL",
            host="localhost",
            port=5432,
            database="postgres",
            user="postgres",
        ),
    )


__all__ = [
    "AppConfig",
    "CONFIG_FILE",
    "ConnectionProfileConfig",
    "load_config",
    "save_config",
]
