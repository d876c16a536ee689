"""Data models for gamedock."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import StrEnum
from typing import Any, Literal

DisplayMode = Literal["x11", "wayland", "none"]


class ExecutionVariant(StrEnum):
    """How a game's binary is executed inside its container."""

    NATIVE = "native"
    COMPAT = "wine"


@dataclass(frozen=True)
class WineDebugFlags:
    """Named WINEDEBUG channels. Field order is the order channels are emitted in."""

    relay: bool = False  # function call relay (very verbose)
    seh: bool = False  # structured exception handling
    tid: bool = False
    timestamp: bool = False
    heap: bool = False
    file: bool = False
    module: bool = False
    win: bool = False  # window messages
    d3d: bool = False
    opengl: bool = False
    all: bool = False  # overrides every other flag

    @classmethod
    def from_dict(cls, raw: dict[str, Any] | None) -> WineDebugFlags:
        if not raw:
            return cls()
        known = {f.name for f in fields(cls)}
        return cls(**{k: bool(v) for k, v in raw.items() if k in known})

    def to_winedebug(self) -> str:
        if self.all:
            return "+all"
        channels = [f"+{f.name}" for f in fields(self) if f.name != "all" and getattr(self, f.name)]
        return ",".join(channels) if channels else "-all"


@dataclass(frozen=True)
class GameDescriptor:
    id: str
    title: str
    slug: str | None = None
    file_path: str | None = None  # relative to the library root, or absolute
    install_path: str | None = None  # takes precedence over file_path
    launch_command: str | None = None  # "./start.sh" or "C:\\Games\\x.exe"
    arguments: tuple[str, ...] = ()
    working_directory: str | None = None  # relative to the game directory
    environment: dict[str, str] = field(default_factory=dict)
    wine_arch: Literal["win32", "win64"] = "win64"
    wine_debug: WineDebugFlags = field(default_factory=WineDebugFlags)
    fullscreen: bool = False
    resolution: str = "1920x1080"

    @property
    def identifier(self) -> str:
        """Stable key for per-game host state (Wine prefix directory)."""
        return self.slug or self.id

    @property
    def location(self) -> str | None:
        return self.install_path or self.file_path

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> GameDescriptor:
        return cls(
            id=raw["id"],
            title=raw.get("title", raw["id"]),
            slug=raw.get("slug"),
            file_path=raw.get("file_path"),
            install_path=raw.get("install_path"),
            launch_command=raw.get("launch_command"),
            arguments=tuple(raw.get("arguments", ())),
            working_directory=raw.get("working_directory"),
            environment=dict(raw.get("environment", {})),
            wine_arch=raw.get("wine_arch", "win64"),
            wine_debug=WineDebugFlags.from_dict(raw.get("wine_debug")),
            fullscreen=bool(raw.get("fullscreen", False)),
            resolution=raw.get("resolution", "1920x1080"),
        )


@dataclass(frozen=True)
class PlatformDescriptor:
    id: str
    variant: ExecutionVariant
    image: str | None = None  # None -> per-variant default from config


@dataclass(frozen=True)
class LaunchRequest:
    game: GameDescriptor
    platform: PlatformDescriptor
    session_id: str  # caller-supplied, unique while the session is active

    @property
    def variant(self) -> ExecutionVariant:
        return self.platform.variant


@dataclass(frozen=True)
class Mount:
    source: str  # host path or engine volume name
    target: str
    readonly: bool = False

    def to_bind(self) -> str:
        return f"{self.source}:{self.target}:{'ro' if self.readonly else 'rw'}"


@dataclass(frozen=True)
class DeviceMapping:
    host_path: str
    container_path: str
    permissions: str = "rwm"

    def to_engine(self) -> dict[str, str]:
        return {
            "PathOnHost": self.host_path,
            "PathInContainer": self.container_path,
            "CgroupPermissions": self.permissions,
        }


@dataclass(frozen=True)
class DisplayConfiguration:
    mode: DisplayMode
    env: tuple[str, ...] = ()
    mounts: tuple[Mount, ...] = ()
    devices: tuple[DeviceMapping, ...] = ()
    ipc_mode: str | None = None
    security_opt: tuple[str, ...] = ()


@dataclass(frozen=True)
class ContainerSpec:
    """Everything needed to create one container. Never touches the engine."""

    name: str
    image: str
    env: tuple[str, ...] = ()
    mounts: tuple[Mount | str, ...] = ()  # str = preformatted bind ("vol:/data:rw")
    devices: tuple[DeviceMapping, ...] = ()
    working_dir: str | None = None
    cmd: tuple[str, ...] | None = None
    entrypoint: tuple[str, ...] | None = None
    ipc_mode: str | None = None
    security_opt: tuple[str, ...] = ()
    auto_remove: bool = True
    labels: dict[str, str] = field(default_factory=dict)

    @property
    def binds(self) -> list[str]:
        return [m.to_bind() if isinstance(m, Mount) else m for m in self.mounts]

    def env_dict(self) -> dict[str, str]:
        """Later assignments win, matching how the engine applies Env."""
        out: dict[str, str] = {}
        for item in self.env:
            key, _, value = item.partition("=")
            out[key] = value
        return out

    def to_create_body(self) -> dict[str, Any]:
        host_config: dict[str, Any] = {
            "AutoRemove": self.auto_remove,
            "Binds": self.binds,
            "Devices": [d.to_engine() for d in self.devices],
        }
        if self.ipc_mode:
            host_config["IpcMode"] = self.ipc_mode
        if self.security_opt:
            host_config["SecurityOpt"] = list(self.security_opt)

        body: dict[str, Any] = {
            "Image": self.image,
            "Env": list(self.env),
            "Labels": dict(self.labels),
            "HostConfig": host_config,
            "Tty": True,
            "OpenStdin": True,
            "AttachStdout": True,
            "AttachStderr": True,
        }
        if self.working_dir:
            body["WorkingDir"] = self.working_dir
        if self.cmd is not None:
            body["Cmd"] = list(self.cmd)
        if self.entrypoint is not None:
            body["Entrypoint"] = list(self.entrypoint)
        return body


@dataclass(frozen=True)
class ContainerInfo:
    container_id: str
    status: str  # snapshot at creation; query the controller for a fresh one
    created_at: str

    @property
    def short_id(self) -> str:
        return self.container_id[:12]


@dataclass(frozen=True)
class DebugContainerInfo(ContainerInfo):
    exec_command: str = ""  # e.g. "docker exec -it 0123456789ab /bin/bash"


@dataclass(frozen=True)
class ShortcutRecord:
    target: str
    arguments: str = ""
    working_directory: str = ""
    description: str = ""


@dataclass(frozen=True)
class AudioSink:
    id: str
    name: str
    description: str


@dataclass(frozen=True)
class InstallResult:
    success: bool
    exit_code: int


@dataclass(frozen=True)
class RegistrySetupResult:
    success: bool
    message: str
