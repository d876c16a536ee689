"""The single reusable session volume for native game launches.

The engine cannot re-point a volume at a new directory, so each bind is a
full delete-and-recreate. Anything still attached to the old volume (a
previous session that never exited, a leftover debug container) is stopped
and removed first. Two binds racing each other corrupt the binding, so
callers must hold the orchestrator's native-launch lock around
``bind_to`` + container start.
"""

from __future__ import annotations

import contextlib

from gamedock.config import SessionConfig
from gamedock.engine._client import (
    ConflictError,
    EngineClient,
    EngineError,
    NotFoundError,
    NotModifiedError,
)
from gamedock.engine._paths import HostPathTranslator
from gamedock.errors import VolumeConflictError
from gamedock.logger import logger


class SessionVolumeManager:
    def __init__(
        self,
        engine: EngineClient,
        paths: HostPathTranslator,
        config: SessionConfig,
    ) -> None:
        self._engine = engine
        self._paths = paths
        self.name = config.volume_name
        self._stop_timeout = config.cleanup_stop_timeout

    async def bind_to(self, directory: str) -> str:
        """Recreate the session volume bound to *directory*; return the volume name.

        Raises:
            VolumeConflictError: the old volume is still attached after forced cleanup.
            EngineError: any other engine failure.
        """
        host_dir = await self._paths.resolve(directory)
        logger.info("Binding session volume", volume=self.name, directory=directory, host_path=host_dir)

        await self._remove_existing()

        await self._engine.create_volume(
            self.name,
            driver="local",
            driver_opts={"type": "none", "device": host_dir, "o": "bind"},
            labels={"gamedock.role": "session"},
        )
        logger.info("Session volume configured", volume=self.name, host_path=host_dir)
        return self.name

    async def current_target(self) -> str | None:
        """Host directory the volume is bound to, or None if it doesn't exist."""
        try:
            info = await self._engine.inspect_volume(self.name)
        except NotFoundError:
            return None
        return (info.get("Options") or {}).get("device")

    async def _remove_existing(self) -> None:
        try:
            await self._engine.inspect_volume(self.name)
        except NotFoundError:
            return

        try:
            await self._engine.remove_volume(self.name)
            return
        except NotFoundError:
            return
        except ConflictError:
            logger.info("Session volume in use, cleaning up containers", volume=self.name)

        await self._cleanup_containers()

        try:
            await self._engine.remove_volume(self.name)
        except NotFoundError:
            return
        except ConflictError as exc:
            raise VolumeConflictError(self.name, exc.message) from exc

    async def _cleanup_containers(self) -> None:
        """Stop and force-remove every container (running or not) using the volume."""
        containers = await self._engine.list_containers(all=True, filters={"volume": [self.name]})
        logger.info("Containers using session volume", volume=self.name, count=len(containers))

        for c in containers:
            container_id = c["Id"]
            names = c.get("Names") or [""]
            try:
                if c.get("State") == "running":
                    with contextlib.suppress(NotModifiedError):
                        await self._engine.stop_container(container_id, timeout=self._stop_timeout)
                await self._engine.remove_container(container_id, force=True)
                logger.info(
                    "Removed container holding session volume",
                    container=names[0].lstrip("/"),
                    id=container_id[:12],
                )
            except NotFoundError:
                continue
            except EngineError as exc:
                # Keep going; the retry of remove_volume decides whether this was fatal.
                logger.error(
                    "Failed to clean up container",
                    id=container_id[:12],
                    status=exc.status,
                    err=exc.message,
                )
