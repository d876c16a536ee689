"""Centralized configuration: Pydantic BaseSettings with TOML + dotenv sources.

Settings live in config.toml. Environment variables override it using ``__``
as the nested delimiter (e.g. ``PATHS__HOST_WORKSPACE_PATH``).

Priority (highest wins): init args > env vars > .env > config.toml

Usage::

    from gamedock.config import get_settings

    s = get_settings()
    print(s.engine.socket_path)
    print(s.session.volume_name)
"""

from __future__ import annotations

from functools import cached_property
from pathlib import Path

from pydantic import BaseModel, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

# ---------------------------------------------------------------------------
# Sub-models (each maps to a [section] in config.toml)
# ---------------------------------------------------------------------------


class _StrictModel(BaseModel):
    """Base for all config sub-models: reject unknown keys so typos fail loudly."""

    model_config = {"extra": "forbid"}


class EngineConfig(_StrictModel):
    socket_path: str = "/var/run/docker.sock"
    cli: str = "docker"  # shown in debug attach commands
    api_version: str | None = None  # e.g. "1.43"; None = daemon default
    request_timeout: float = 30.0  # seconds, per API call (wait has none)
    stop_timeout: int = 10  # SIGTERM -> SIGKILL grace period for `stop`

    @field_validator("api_version")
    @classmethod
    def strip_v_prefix(cls, v: str | None) -> str | None:
        if v is None:
            return None
        return v.lstrip("vV") or None


class PathsConfig(_StrictModel):
    library_root: str = "/data/library"  # relative game locations resolve here
    install_root: str = "/data/installed"  # parent of .prefix-<game> directories
    workspace_mount: str = "/workspace"  # our own mount point when containerized
    host_workspace_path: str | None = None  # skip detection and use this source


class SessionConfig(_StrictModel):
    volume_name: str = "gamedock_current_session"
    container_prefix: str = "gamedock-session-"
    debug_prefix: str = "gamedock-debug-"
    install_prefix: str = "gamedock-install-"
    native_image: str = "gamedock/runner-linux-native:latest"
    compat_image: str = "gamedock/runner-wine:latest"
    shared_binds: list[str] = ["gamedock_root:/data:rw"]
    debug_shell: str = "/bin/bash"
    cleanup_stop_timeout: int = 2  # grace period when freeing the session volume
    exit_log_lines: int = 50  # output lines kept for a failed exit
    exit_output_grace: float = 2.0  # seconds to drain captured output after exit

    @field_validator("cleanup_stop_timeout")
    @classmethod
    def clamp_cleanup_timeout(cls, v: int) -> int:
        return max(0, v)


class DisplayConfig(_StrictModel):
    container_home: str = "/home/gameuser"
    container_runtime_dir: str = "/run/user/1000"
    x11_socket_dir: str = "/tmp/.X11-unix"
    gpu_device: str = "/dev/dri"
    sound_device: str = "/dev/snd"
    input_dir: str = "/dev/input"
    uinput_device: str = "/dev/uinput"
    input_info_file: str = "/proc/bus/input/devices"
    udev_dir: str = "/run/udev"
    audio_sink: str | None = None  # PulseAudio sink; None = host PULSE_SINK


class LoggingConfig(_StrictModel):
    level: str = "INFO"

    @field_validator("level")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        return v.upper()


# ---------------------------------------------------------------------------
# Root Settings
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        toml_file="config.toml",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    engine: EngineConfig = EngineConfig()
    paths: PathsConfig = PathsConfig()
    session: SessionConfig = SessionConfig()
    display: DisplayConfig = DisplayConfig()
    logging: LoggingConfig = LoggingConfig()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Priority: init > env vars > .env > config.toml > file secrets."""
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )

    # --- Computed properties ---

    @cached_property
    def library_root(self) -> Path:
        return Path(self.paths.library_root)

    @cached_property
    def install_root(self) -> Path:
        return Path(self.paths.install_root)

    def prefix_dir(self, game_identifier: str) -> Path:
        """Per-game Wine prefix on our side of any path translation."""
        return self.install_root / f".prefix-{game_identifier}"


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_settings: Settings | None = None


def get_settings() -> Settings:
    """Lazy cached singleton."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Clear the cached singleton (for tests)."""
    global _settings
    _settings = None
