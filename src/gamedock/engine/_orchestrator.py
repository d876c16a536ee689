"""The orchestrator: one context object owning every engine-facing component.

Everything that used to be process-wide state (engine connection, host path
cache, configured overrides) hangs off an :class:`Orchestrator` instance, so
tests and embedders can run several side by side.

Native launches from the library share one session volume. Rebinding it and
starting the container that reads it happen under ``_native_lock``, so two
concurrent launches can never see each other's game directory.
"""

from __future__ import annotations

import asyncio
import inspect
import os
import posixpath
from collections.abc import Awaitable, Callable, Mapping
from pathlib import Path
from typing import TypeVar

from gamedock.config import Settings, get_settings
from gamedock.engine._client import ContainerWait, EngineClient, EngineError
from gamedock.engine._display import DisplayResolver
from gamedock.engine._lifecycle import ContainerController
from gamedock.engine._monitor import UNKNOWN_EXIT_CODE, ExitCallback, ExitMonitor
from gamedock.engine._paths import HostPathTranslator
from gamedock.engine._spec import (
    REGISTRY_FILE_NAME,
    LaunchSpecBuilder,
    windows_relative_path,
)
from gamedock.engine._volume import SessionVolumeManager
from gamedock.errors import LaunchError
from gamedock.logger import logger, session_context
from gamedock.sessions import SessionLedger
from gamedock.setup.registry import convert_cmd_to_reg, find_registry_scripts
from gamedock.types import (
    ContainerInfo,
    DebugContainerInfo,
    ExecutionVariant,
    GameDescriptor,
    InstallResult,
    LaunchRequest,
    PlatformDescriptor,
    RegistrySetupResult,
)

_T = TypeVar("_T")


class Orchestrator:
    def __init__(
        self,
        settings: Settings | None = None,
        engine: EngineClient | None = None,
        environ: Mapping[str, str] | None = None,
        ledger: SessionLedger | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.engine = engine or EngineClient.from_settings(self.settings)
        self.paths = HostPathTranslator(self.engine, self.settings.paths)
        self.display = DisplayResolver(self.settings.display, environ)
        self.volume = SessionVolumeManager(self.engine, self.paths, self.settings.session)
        self.builder = LaunchSpecBuilder(self.settings, self.paths, self.display)
        self.containers = ContainerController(self.engine, self.settings)
        self.monitor = ExitMonitor(
            self.engine,
            output_lines=self.settings.session.exit_log_lines,
            output_grace=self.settings.session.exit_output_grace,
        )
        self.ledger = ledger or SessionLedger()
        self._native_lock = asyncio.Lock()
        self._install_waits: dict[str, ContainerWait] = {}

    async def __aenter__(self) -> Orchestrator:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self.monitor.close()
        for wait in self._install_waits.values():
            wait.close()
        self._install_waits.clear()
        await self.engine.close()

    # ------------------------------------------------------------------
    # Launching
    # ------------------------------------------------------------------

    def _validate(self, request: LaunchRequest) -> None:
        game = request.game
        if not game.location:
            raise LaunchError(f"Game {game.id} has no file path or installation path configured")
        if request.variant is ExecutionVariant.COMPAT and not game.launch_command:
            raise LaunchError(f"Game {game.id} has no Windows launch command configured")

    async def _start_with_volume(
        self, request: LaunchRequest, start: Callable[[], Awaitable[_T]]
    ) -> _T:
        """Run ``start()`` with the session volume bound if the launch needs it."""
        if not self.builder.uses_session_volume(request):
            return await start()
        directory = self.builder.game_directory(request.game)
        async with self._native_lock:
            await self.volume.bind_to(directory)
            return await start()

    async def launch(
        self,
        request: LaunchRequest,
        on_exit: ExitCallback | None = None,
    ) -> ContainerInfo:
        """Start a game session and watch it until it exits.

        Every log line of the session, including the exit watch's, carries
        its session and game ids.

        Raises:
            LaunchError: the request is unusable or its session id is active.
            VolumeConflictError: the session volume could not be freed.
            EngineError: the engine rejected a call.
        """
        with session_context(session=request.session_id, game=request.game.id):
            return await self._launch(request, on_exit)

    async def _launch(self, request: LaunchRequest, on_exit: ExitCallback | None) -> ContainerInfo:
        self._validate(request)
        session_id = request.session_id
        self.ledger.begin(request.game.id, session_id, request.platform.id)

        try:
            await self.paths.detect()
            spec = self.builder.build(request)
            logger.info(
                "Launching game",
                title=request.game.title,
                variant=request.variant.value,
                image=spec.image,
            )
            started = await self._start_with_volume(
                request, lambda: self.containers.start_watched(spec)
            )
        except Exception:
            self.ledger.end(session_id, UNKNOWN_EXIT_CODE)
            raise

        info = started.info
        self.ledger.mark_running(session_id, info.container_id)

        async def _finished(exit_code: int) -> None:
            record = self.ledger.end(session_id, exit_code)
            logger.info(
                "Game session ended",
                exit_code=exit_code,
                duration=record.duration_seconds,
                status=record.status,
            )
            if on_exit is not None:
                result = on_exit(exit_code)
                if inspect.isawaitable(result):
                    await result

        self.monitor.watch(info.container_id, _finished, wait=started.wait, output=started.output)
        return info

    async def launch_debug(self, request: LaunchRequest) -> DebugContainerInfo:
        """Start the session's container idling so a shell can be attached."""
        with session_context(session=request.session_id, game=request.game.id):
            self._validate(request)
            await self.paths.detect()
            spec = self.builder.build(request)
            logger.info("Launching debug container", title=request.game.title)
            return await self._start_with_volume(
                request, lambda: self.containers.start_debug(spec, request.session_id)
            )

    async def stop(self, container_id: str) -> None:
        await self.containers.stop(container_id)

    async def logs(self, container_id: str, tail: int = 100) -> str:
        return await self.containers.logs(container_id, tail)

    async def status(self, container_id: str) -> str:
        return await self.containers.status(container_id)

    async def list_sessions(self) -> list[ContainerInfo]:
        return await self.containers.list_sessions()

    # ------------------------------------------------------------------
    # Install flow
    # ------------------------------------------------------------------

    def _prepare_prefix(self, game: GameDescriptor) -> Path:
        prefix = self.settings.prefix_dir(game.identifier)
        try:
            prefix.mkdir(parents=True, exist_ok=True)
            # The container user differs from ours.
            os.chmod(prefix, 0o777)
        except OSError as exc:
            logger.warning("Could not prepare Wine prefix", path=str(prefix), err=str(exc))
        return prefix

    async def install(
        self,
        game: GameDescriptor,
        platform: PlatformDescriptor,
        session_id: str,
        installer_path: str,
        install_path: str,
    ) -> ContainerInfo:
        """Run an installer GUI in a container targeting *install_path*."""
        await self.paths.detect()
        if platform.variant is ExecutionVariant.COMPAT:
            self._prepare_prefix(game)
        spec = self.builder.build_installer(game, platform, session_id, installer_path, install_path)
        logger.info(
            "Starting installer",
            game=game.title,
            installer=installer_path,
            target=install_path,
            variant=platform.variant.value,
        )
        started = await self.containers.start_watched(spec, capture_output=False)
        self._install_waits[started.info.container_id] = started.wait
        return started.info

    async def wait_for_install(self, container_id: str) -> InstallResult:
        wait = self._install_waits.pop(container_id, None)
        try:
            if wait is not None:
                exit_code = await wait.result()
            else:
                exit_code = await self.engine.wait_container(container_id)
        except EngineError as exc:
            logger.error("Installer wait failed", id=container_id[:12], err=exc.message)
            return InstallResult(success=False, exit_code=UNKNOWN_EXIT_CODE)
        finally:
            if wait is not None:
                wait.close()
        logger.info("Installer finished", id=container_id[:12], exit_code=exit_code)
        return InstallResult(success=exit_code == 0, exit_code=exit_code)

    async def run_registry_setup(
        self,
        game: GameDescriptor,
        platform: PlatformDescriptor,
    ) -> RegistrySetupResult:
        """Convert the game's registry batch script and import it into its prefix."""
        if platform.variant is not ExecutionVariant.COMPAT:
            return RegistrySetupResult(False, "Registry setup is only for Wine games")

        relative_dir = posixpath.dirname(windows_relative_path(game.launch_command or ""))
        game_dir = self.settings.prefix_dir(game.identifier) / "drive_c" / relative_dir
        logger.info("Looking for registry scripts", path=str(game_dir))

        try:
            scripts = find_registry_scripts(game_dir)
            if not scripts:
                return RegistrySetupResult(
                    False,
                    'No registry setup files found (looking for .cmd/.bat files with "reg" '
                    'or "setup" in name)',
                )
            script = scripts[0]
            reg_text = convert_cmd_to_reg(script.read_text(encoding="utf-8", errors="replace"))
            (game_dir / REGISTRY_FILE_NAME).write_text(reg_text, encoding="utf-8")
        except OSError as exc:
            logger.error("Registry setup failed", path=str(game_dir), err=str(exc))
            return RegistrySetupResult(False, f"Error: {exc}")
        logger.info("Converted registry script", script=script.name, output=REGISTRY_FILE_NAME)

        try:
            await self.paths.detect()
            spec = self.builder.build_registry_import(game, platform, str(game_dir))
            started = await self.containers.start_watched(spec, capture_output=False)
            try:
                exit_code = await started.wait.result()
            finally:
                started.close()
        except EngineError as exc:
            logger.error("Registry import container failed", status=exc.status, err=exc.message)
            return RegistrySetupResult(False, f"Error: {exc.message}")

        if exit_code == 0:
            return RegistrySetupResult(True, f"Registry settings imported from {script.name}")
        return RegistrySetupResult(
            False, f"Failed to import registry settings (exit code: {exit_code})"
        )
