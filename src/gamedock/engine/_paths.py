"""Host path translation for when gamedock itself runs inside a container.

Bind mounts are resolved by the engine on the physical host, so a path that
is valid for us (``/workspace/library/foo``) must be rewritten to the host
directory backing our own workspace mount before it goes into a ``Binds``
entry. Detection happens once per translator: either the configured override
or one inspection of our own container. Any failure degrades to identity.
"""

from __future__ import annotations

import asyncio
import posixpath
import socket

from gamedock.config import PathsConfig
from gamedock.engine._client import EngineClient, EngineError
from gamedock.logger import logger


class HostPathTranslator:
    def __init__(self, engine: EngineClient, paths: PathsConfig) -> None:
        self._engine = engine
        self._mount_point = posixpath.normpath(paths.workspace_mount)
        self._override = paths.host_workspace_path
        self._host_source: str | None = None
        self._detected = False
        self._lock = asyncio.Lock()

    @property
    def detected(self) -> bool:
        return self._detected

    @property
    def host_source(self) -> str | None:
        """Host directory behind our workspace mount, or None for identity."""
        return self._host_source

    async def detect(self) -> None:
        """Determine the host source for the workspace mount (at most once)."""
        if self._detected:
            return
        async with self._lock:
            if self._detected:
                return
            self._host_source = await self._detect_source()
            self._detected = True

    async def _detect_source(self) -> str | None:
        if self._override:
            logger.info("Using configured host workspace path", host_path=self._override)
            return self._override

        # Inside a container the hostname defaults to the short container id.
        hostname = socket.gethostname()
        try:
            info = await self._engine.inspect_container(hostname)
        except EngineError as exc:
            logger.info(
                "Host path detection unavailable, using paths as-is",
                hostname=hostname,
                status=exc.status,
                err=exc.message,
                hint="set PATHS__HOST_WORKSPACE_PATH to override",
            )
            return None

        mounts = info.get("Mounts") or []
        for mount in mounts:
            if posixpath.normpath(mount.get("Destination", "")) == self._mount_point:
                source = mount.get("Source")
                logger.info(
                    "Detected host workspace path",
                    mount_point=self._mount_point,
                    host_path=source,
                )
                return source or None

        logger.info(
            "Workspace mount not found, using container paths directly",
            mount_point=self._mount_point,
            mounts=[m.get("Destination") for m in mounts],
        )
        return None

    def translate(self, path: str) -> str:
        """Rewrite *path* if it lives under the workspace mount; identity otherwise."""
        if not self._host_source:
            return path
        normalized = posixpath.normpath(path)
        if normalized == self._mount_point:
            return self._host_source
        if normalized.startswith(self._mount_point + "/"):
            relative = normalized[len(self._mount_point) + 1 :]
            host_path = posixpath.join(self._host_source, relative)
            logger.debug("Path translation", container_path=path, host_path=host_path)
            return host_path
        return path

    async def resolve(self, path: str) -> str:
        await self.detect()
        return self.translate(path)
