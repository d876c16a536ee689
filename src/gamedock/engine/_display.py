"""Display, audio, GPU and input device forwarding for game containers.

Produces one :class:`DisplayConfiguration` per launch from the host
environment. X11 is preferred when ``DISPLAY`` is set (broadest game and
toolkit compatibility), Wayland is used when only a compositor socket is
available, and anything else runs headless with a warning.
"""

from __future__ import annotations

import asyncio
import os
import posixpath
from collections.abc import Mapping
from pathlib import Path

from gamedock.config import DisplayConfig
from gamedock.logger import logger
from gamedock.types import AudioSink, DeviceMapping, DisplayConfiguration, Mount

INPUT_INFO_TARGET = "/tmp/host-input-devices"
MAX_JOYSTICKS = 10


class DisplayResolver:
    def __init__(self, config: DisplayConfig, environ: Mapping[str, str] | None = None) -> None:
        self._config = config
        self._environ = environ

    @property
    def environ(self) -> Mapping[str, str]:
        # Read lazily so a resolver built at startup sees later env changes.
        return os.environ if self._environ is None else self._environ

    def resolve(self) -> DisplayConfiguration:
        env = self.environ
        display = env.get("DISPLAY")
        wayland_display = env.get("WAYLAND_DISPLAY")
        runtime_dir = env.get("XDG_RUNTIME_DIR")

        if display:
            return self._x11(display)
        if wayland_display and runtime_dir:
            return self._wayland(wayland_display, runtime_dir)

        logger.warning(
            "No display environment detected (DISPLAY / WAYLAND_DISPLAY unset); "
            "graphical output will not be visible",
        )
        return DisplayConfiguration(mode="none")

    # ------------------------------------------------------------------

    def _x11(self, display: str) -> DisplayConfiguration:
        cfg = self._config
        env = self.environ
        home = env.get("HOME", "")
        logger.info("Using X11 display", display=display)

        env_vars = [f"DISPLAY={display}"]
        mounts = [Mount(cfg.x11_socket_dir, cfg.x11_socket_dir)]

        xauthority = env.get("XAUTHORITY") or posixpath.join(home, ".Xauthority")
        if home or env.get("XAUTHORITY"):
            if Path(xauthority).is_file():
                container_xauth = posixpath.join(cfg.container_home, ".Xauthority")
                mounts.append(Mount(xauthority, container_xauth, readonly=True))
                env_vars.append(f"XAUTHORITY={container_xauth}")
            else:
                logger.warning(
                    "No Xauthority file found, X11 may require `xhost +local:`",
                    path=xauthority,
                )
                env_vars.append("XAUTHORITY=")

        audio_env, audio_mounts = self._pulse_audio(home)
        env_vars.extend(audio_env)
        mounts.extend(audio_mounts)

        devices, input_mounts = self._host_devices()
        mounts.extend(input_mounts)

        return DisplayConfiguration(
            mode="x11",
            env=tuple(env_vars),
            mounts=tuple(mounts),
            devices=devices,
            ipc_mode="host",  # MIT-SHM needs a shared IPC namespace
            security_opt=("seccomp=unconfined",),
        )

    def _wayland(self, wayland_display: str, runtime_dir: str) -> DisplayConfiguration:
        cfg = self._config
        logger.info("Using Wayland display", display=wayland_display)
        socket_path = posixpath.join(runtime_dir, wayland_display)
        devices, input_mounts = self._host_devices()
        return DisplayConfiguration(
            mode="wayland",
            env=(
                f"WAYLAND_DISPLAY={wayland_display}",
                f"XDG_RUNTIME_DIR={cfg.container_runtime_dir}",
                "QT_QPA_PLATFORM=wayland",
                "GDK_BACKEND=wayland",
                "SDL_VIDEODRIVER=wayland",
            ),
            mounts=(
                Mount(socket_path, posixpath.join(cfg.container_runtime_dir, wayland_display)),
                *input_mounts,
            ),
            devices=devices,
        )

    def _gpu_devices(self) -> tuple[DeviceMapping, ...]:
        device = self._config.gpu_device
        if Path(device).exists():
            logger.debug("GPU device available", device=device)
            return (DeviceMapping(device, device),)
        logger.info("No GPU device found, software rendering only", device=device)
        return ()

    def _host_devices(self) -> tuple[tuple[DeviceMapping, ...], list[Mount]]:
        """GPU, sound and input devices plus the input metadata games query."""
        cfg = self._config
        devices = list(self._gpu_devices())
        mounts: list[Mount] = []

        if Path(cfg.sound_device).exists():
            devices.append(DeviceMapping(cfg.sound_device, cfg.sound_device))

        if Path(cfg.input_dir).exists():
            devices.append(DeviceMapping(cfg.input_dir, cfg.input_dir))
            # Bind mounts may not target anything under /proc.
            if Path(cfg.input_info_file).exists():
                mounts.append(Mount(cfg.input_info_file, INPUT_INFO_TARGET, readonly=True))
            if Path(cfg.udev_dir).exists():
                mounts.append(Mount(cfg.udev_dir, cfg.udev_dir, readonly=True))

        joysticks = [
            path
            for i in range(MAX_JOYSTICKS)
            if Path(path := posixpath.join(cfg.input_dir, f"js{i}")).exists()
        ]
        devices.extend(DeviceMapping(js, js) for js in joysticks)

        if Path(cfg.uinput_device).exists():
            devices.append(DeviceMapping(cfg.uinput_device, cfg.uinput_device))

        logger.debug(
            "Host devices forwarded",
            devices=[d.host_path for d in devices],
            joysticks=len(joysticks),
        )
        return tuple(devices), mounts

    def _pulse_audio(self, home: str) -> tuple[list[str], list[Mount]]:
        cfg = self._config
        env = self.environ
        runtime_dir = env.get("XDG_RUNTIME_DIR")
        if not runtime_dir or not Path(runtime_dir, "pulse").is_dir():
            logger.info("No PulseAudio socket found, audio disabled", runtime_dir=runtime_dir)
            return [], []

        container_pulse = posixpath.join(cfg.container_runtime_dir, "pulse")
        env_vars = [f"PULSE_SERVER=unix:{container_pulse}/native"]
        mounts = [Mount(posixpath.join(runtime_dir, "pulse"), container_pulse)]

        cookie = posixpath.join(home, ".config", "pulse", "cookie") if home else ""
        if cookie and Path(cookie).is_file():
            container_cookie = posixpath.join(cfg.container_home, ".config", "pulse", "cookie")
            mounts.append(Mount(cookie, container_cookie, readonly=True))
            env_vars.append(f"PULSE_COOKIE={container_cookie}")

        sink = cfg.audio_sink or env.get("PULSE_SINK")
        if sink:
            env_vars.append(f"PULSE_SINK={sink}")
        return env_vars, mounts


# ---------------------------------------------------------------------------
# Audio sink discovery
# ---------------------------------------------------------------------------


def parse_pactl_sinks(output: str) -> list[AudioSink]:
    """Parse ``pactl list sinks`` output into sinks (Name is the sink id)."""
    sinks: list[AudioSink] = []
    current: dict[str, str] = {}

    def flush() -> None:
        if current.get("id"):
            name = current.get("description") or current["id"]
            sinks.append(AudioSink(id=current["id"], name=name, description=name))

    for line in output.splitlines():
        stripped = line.strip()
        if stripped.startswith("Sink #"):
            flush()
            current = {}
        elif stripped.startswith("Name:"):
            current["id"] = stripped[len("Name:") :].strip()
        elif stripped.startswith("Description:"):
            current["description"] = stripped[len("Description:") :].strip()
    flush()
    return sinks


async def list_audio_sinks() -> list[AudioSink]:
    """List PulseAudio sinks on the host; empty when pactl is unavailable."""
    try:
        proc = await asyncio.create_subprocess_exec(
            "pactl",
            "list",
            "sinks",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
        stdout, _ = await proc.communicate()
    except OSError as exc:
        logger.warning("Failed to list audio sinks", err=str(exc))
        return []
    if proc.returncode != 0:
        logger.warning("pactl exited with error", code=proc.returncode)
        return []
    return parse_pactl_sinks(stdout.decode(errors="replace"))
