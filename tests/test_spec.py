"""Tests for launch specification construction."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from conftest import make_request, make_settings

from gamedock.config import PathsConfig, SessionConfig
from gamedock.engine import DisplayResolver, HostPathTranslator, LaunchSpecBuilder
from gamedock.engine._spec import clean_arguments, windows_relative_path, windows_to_prefix_path
from gamedock.types import (
    DeviceMapping,
    DisplayConfiguration,
    ExecutionVariant,
    GameDescriptor,
    Mount,
    PlatformDescriptor,
    WineDebugFlags,
)

HEADLESS = DisplayConfiguration(mode="none")
X11 = DisplayConfiguration(
    mode="x11",
    env=("DISPLAY=:0",),
    mounts=(Mount("/tmp/.X11-unix", "/tmp/.X11-unix"),),
    devices=(DeviceMapping("/dev/dri", "/dev/dri"),),
    ipc_mode="host",
    security_opt=("seccomp=unconfined",),
)


@pytest.fixture
def settings():
    return make_settings(
        paths=PathsConfig(
            library_root="/workspace/library",
            install_root="/workspace/installed",
            host_workspace_path="/host",
        ),
        session=SessionConfig(volume_name="sess_vol", shared_binds=["root_vol:/data:rw"]),
    )


@pytest.fixture
async def builder(settings):
    paths = HostPathTranslator(AsyncMock(), settings.paths)
    await paths.detect()
    return LaunchSpecBuilder(settings, paths, DisplayResolver(settings.display, {}))


class TestHelpers:
    def test_windows_path_example(self):
        assert windows_to_prefix_path(r"C:\Games\Foo\foo.exe", "/prefix") == "/prefix/drive_c/Games/Foo/foo.exe"

    def test_default_prefix_root_and_spaces(self):
        assert (
            windows_to_prefix_path(r"c:\GOG Games\Close Combat 3\cc3.exe")
            == "/wineprefix/drive_c/GOG Games/Close Combat 3/cc3.exe"
        )

    def test_host_path_inside_prefix(self):
        assert (
            windows_to_prefix_path("/mnt/games/cc3/drive_c/GOG Games/CC3.exe")
            == "/wineprefix/drive_c/GOG Games/CC3.exe"
        )
        assert windows_relative_path("/srv/p/drive_c/A/drive_c/b.exe") == "A/drive_c/b.exe"

    def test_forward_slashes_without_drive_letter(self):
        assert windows_to_prefix_path("Games/Foo/foo.exe") == "/wineprefix/drive_c/Games/Foo/foo.exe"

    def test_clean_arguments(self):
        assert clean_arguments(["-a", "", "b\0c", "\0", None, 3, "-z"]) == ["-a", "bc", "-z"]


class TestWineDebug:
    def test_none_is_quiet(self):
        assert WineDebugFlags().to_winedebug() == "-all"

    def test_channels_in_order(self):
        assert WineDebugFlags(seh=True, relay=True).to_winedebug() == "+relay,+seh"

    def test_all_wins(self):
        assert WineDebugFlags(all=True, relay=True, d3d=True).to_winedebug() == "+all"

    def test_from_dict_ignores_unknown(self):
        flags = WineDebugFlags.from_dict({"heap": 1, "bogus": True})
        assert flags.to_winedebug() == "+heap"


class TestNative:
    def test_library_game_uses_session_volume(self, builder):
        request = make_request(file_path="games/doom", arguments=("-fast", ""))
        spec = builder.build(request, HEADLESS)
        env = spec.env_dict()

        assert spec.name == "gamedock-session-sess1"
        assert spec.image == "gamedock/runner-linux-native:latest"
        assert spec.cmd is None
        assert spec.working_dir == "/game"
        assert env["GAME_EXECUTABLE"] == "/game/./start.sh"
        assert env["GAME_ARGS"] == "-fast"
        assert env["GAME_ID"] == "game1"
        assert env["SESSION_ID"] == "sess1"
        assert env["SAVES_PATH"] == "/data/saves/game1"
        assert spec.binds == ["root_vol:/data:rw", "sess_vol:/game:ro"]
        assert builder.uses_session_volume(request)
        assert builder.game_directory(request.game) == "/workspace/library/games/doom"

    def test_absolute_install_binds_directly(self, builder):
        request = make_request(install_path="/workspace/installed/quake", launch_command="bin/quake")
        spec = builder.build(request, HEADLESS)
        assert "/host/installed/quake:/game:ro" in spec.binds
        assert "sess_vol:/game:ro" not in spec.binds
        assert spec.env_dict()["GAME_EXECUTABLE"] == "/game/bin/quake"
        assert not builder.uses_session_volume(request)

    def test_working_directory_and_overrides(self, builder):
        request = make_request(working_directory="bin", environment={"SDL_AUDIODRIVER": "pulse"})
        spec = builder.build(request, HEADLESS)
        assert spec.working_dir == "/game/bin"
        assert spec.env_dict()["SDL_AUDIODRIVER"] == "pulse"

    def test_display_merged(self, builder):
        spec = builder.build(make_request(), X11)
        assert "DISPLAY=:0" in spec.env
        assert "/tmp/.X11-unix:/tmp/.X11-unix:rw" in spec.binds
        assert spec.devices == X11.devices
        body = spec.to_create_body()
        assert body["HostConfig"]["IpcMode"] == "host"
        assert body["HostConfig"]["SecurityOpt"] == ["seccomp=unconfined"]
        assert body["HostConfig"]["AutoRemove"] is True
        assert body["Labels"]["gamedock.variant"] == "native"
        assert "Cmd" not in body

    def test_platform_image_wins(self, builder):
        spec = builder.build(make_request(image="custom:1"), HEADLESS)
        assert spec.image == "custom:1"

    def test_consults_display_resolver_when_not_given(self, builder):
        assert builder.build(make_request()).env_dict().get("DISPLAY") is None


class TestCompat:
    def _request(self, **fields):
        fields.setdefault("launch_command", r"C:\Games\Foo\foo.exe")
        fields.setdefault("slug", "foo")
        return make_request(variant=ExecutionVariant.COMPAT, **fields)

    def test_command_and_prefix(self, builder):
        spec = builder.build(self._request(arguments=("-window", "", "a\0b")), HEADLESS)
        env = spec.env_dict()

        assert spec.cmd == ("wine", "/wineprefix/drive_c/Games/Foo/foo.exe", "-window", "ab")
        assert spec.image == "gamedock/runner-wine:latest"
        assert spec.working_dir == "/wineprefix"
        assert "/host/installed/.prefix-foo:/wineprefix:rw" in spec.binds
        assert not any(b.startswith("sess_vol:") for b in spec.binds)
        assert env["WINEPREFIX"] == "/wineprefix"
        assert env["WINEDEBUG"] == "-all"
        assert env["GAME_ARGS"] == "-window ab"
        assert "WINEARCH" not in env
        assert "WINE_VIRTUAL_DESKTOP" not in env

    def test_command_given_as_prefix_host_path(self, builder):
        request = self._request(launch_command="/mnt/library/foo/drive_c/Foo/foo.exe")
        spec = builder.build(request, HEADLESS)
        assert spec.cmd == ("wine", "/wineprefix/drive_c/Foo/foo.exe")
        assert spec.env_dict()["GAME_EXECUTABLE"] == "/wineprefix/drive_c/Foo/foo.exe"

    def test_compat_never_uses_session_volume(self, builder):
        request = self._request(file_path="games/relative")
        assert not builder.uses_session_volume(request)

    def test_fullscreen_virtual_desktop(self, builder):
        spec = builder.build(self._request(fullscreen=True, resolution="1280x720"), HEADLESS)
        assert spec.env_dict()["WINE_VIRTUAL_DESKTOP"] == "1280x720"

    def test_debug_channels(self, builder):
        flags = WineDebugFlags(relay=True, seh=True)
        spec = builder.build(self._request(wine_debug=flags), HEADLESS)
        assert spec.env_dict()["WINEDEBUG"] == "+relay,+seh"


class TestInstallerAndRegistry:
    def test_wine_installer(self, builder):
        game = GameDescriptor(id="g", title="G", slug="g", wine_arch="win32")
        platform = PlatformDescriptor(id="wine", variant=ExecutionVariant.COMPAT)
        spec = builder.build_installer(
            game, platform, "s9", "/workspace/installers/setup.exe", "/workspace/installed/g", HEADLESS
        )
        env = spec.env_dict()
        assert spec.name == "gamedock-install-s9"
        assert spec.entrypoint == ("wine",)
        assert spec.cmd == ("/installer/setup.exe",)
        assert env["WINEARCH"] == "win32"
        assert env["INSTALL_TARGET"] == "/install"
        assert "/host/installers/setup.exe:/installer/setup.exe:ro" in spec.binds
        assert "/host/installed/g:/install:rw" in spec.binds
        assert "/host/installed/.prefix-g:/wineprefix:rw" in spec.binds

    def test_native_installer(self, builder):
        game = GameDescriptor(id="g", title="G")
        platform = PlatformDescriptor(id="linux", variant=ExecutionVariant.NATIVE)
        spec = builder.build_installer(game, platform, "s1", "/data/i.sh", "/data/out", HEADLESS)
        assert spec.entrypoint == ("/bin/bash", "-c")
        assert "WINEPREFIX" not in spec.env_dict()

    def test_registry_import(self, builder):
        game = GameDescriptor(id="g", title="G", slug="g")
        platform = PlatformDescriptor(id="wine", variant=ExecutionVariant.COMPAT)
        spec = builder.build_registry_import(
            game, platform, "/workspace/installed/.prefix-g/drive_c/Games/G", display=HEADLESS
        )
        assert spec.cmd == ("cd /game && wine regedit /S gamedock_setup.reg",)
        assert spec.binds == [
            "/host/installed/.prefix-g:/wineprefix:rw",
            "/host/installed/.prefix-g/drive_c/Games/G:/game:ro",
        ]
