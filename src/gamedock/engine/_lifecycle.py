"""Container create/start/stop, debug sessions and log retrieval."""

from __future__ import annotations

import asyncio
import codecs
import collections
import dataclasses
import struct
from dataclasses import dataclass
from datetime import UTC, datetime

from gamedock.config import Settings
from gamedock.engine._client import (
    ContainerWait,
    EngineClient,
    EngineError,
    NotFoundError,
    NotModifiedError,
)
from gamedock.logger import logger
from gamedock.types import ContainerInfo, ContainerSpec, DebugContainerInfo

IDLE_ENTRYPOINT = ("/bin/bash", "-c", "tail -f /dev/null")

_FRAME_HEADER = struct.Struct(">BxxxL")
_VALID_STREAMS = {0, 1, 2}  # stdin, stdout, stderr


def _is_frame_header(header: bytes) -> bool:
    return header[1:4] == b"\x00\x00\x00" and header[0] in _VALID_STREAMS


class LogDecoder:
    """Incremental decoder for the engine's multiplexed log stream.

    Each frame is ``[stream, 0, 0, 0, size(be32)]`` followed by ``size``
    bytes. Containers created with a TTY return a plain byte stream instead;
    as soon as a header does not look like a frame, everything from there on
    is passed through verbatim.
    """

    def __init__(self) -> None:
        self._buffer = b""
        self._raw = False

    def feed(self, data: bytes) -> bytes:
        if self._raw:
            return data
        self._buffer += data
        out: list[bytes] = []
        while len(self._buffer) >= _FRAME_HEADER.size:
            header = self._buffer[: _FRAME_HEADER.size]
            if not _is_frame_header(header):
                self._raw = True
                out.append(self._buffer)
                self._buffer = b""
                break
            _, size = _FRAME_HEADER.unpack(header)
            end = _FRAME_HEADER.size + size
            if len(self._buffer) < end:
                break
            out.append(self._buffer[_FRAME_HEADER.size : end])
            self._buffer = self._buffer[end:]
        return b"".join(out)

    def flush(self) -> bytes:
        """Return whatever is left, dropping the header of a truncated frame."""
        rest, self._buffer = self._buffer, b""
        if not self._raw and len(rest) >= _FRAME_HEADER.size and _is_frame_header(rest):
            return rest[_FRAME_HEADER.size :]
        return rest


def demux_log_stream(raw: bytes) -> str:
    """Decode a complete multiplexed (or raw TTY) log payload."""
    decoder = LogDecoder()
    return (decoder.feed(raw) + decoder.flush()).decode(errors="replace")


def collapse_lines(text: str) -> str:
    """Drop blank lines and collapse identical consecutive lines."""
    out: list[str] = []
    for line in text.splitlines():
        line = line.rstrip("\r")
        if not line.strip():
            continue
        if out and out[-1] == line:
            continue
        out.append(line)
    return "\n".join(out)


class OutputCapture:
    """Keeps the last lines a container printed while it runs.

    Auto-removed containers take their logs with them, so this is the only
    record of why a game died on startup.
    """

    def __init__(self, engine: EngineClient, container_id: str, max_lines: int) -> None:
        self._engine = engine
        self._container_id = container_id
        self._lines: collections.deque[str] = collections.deque(maxlen=max(1, max_lines))
        self._partial = ""
        self._task = asyncio.create_task(self._read(), name=f"output-{container_id[:12]}")

    async def _read(self) -> None:
        try:
            stream = await self._engine.open_log_stream(self._container_id)
        except EngineError as exc:
            logger.debug("Output capture unavailable", id=self._container_id[:12], err=exc.message)
            return
        decoder = LogDecoder()
        text = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            async for chunk in stream.chunks():
                self._append(text.decode(decoder.feed(chunk)))
            self._append(text.decode(decoder.flush(), final=True))
        except EngineError as exc:
            logger.debug("Output capture interrupted", id=self._container_id[:12], err=exc.message)
        finally:
            stream.close()

    def _append(self, text: str) -> None:
        if not text:
            return
        *complete, self._partial = (self._partial + text).split("\n")
        self._lines.extend(complete)

    def tail(self) -> str:
        lines = [*self._lines, self._partial] if self._partial else list(self._lines)
        return collapse_lines("\n".join(lines[-(self._lines.maxlen or 1) :]))

    async def finish(self, timeout: float) -> str:
        """Give the stream *timeout* seconds to drain, then return the tail."""
        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout)
        except TimeoutError:
            logger.debug("Output capture did not drain", id=self._container_id[:12])
        self.close()
        return self.tail()

    def close(self) -> None:
        self._task.cancel()


@dataclass
class StartedContainer:
    info: ContainerInfo
    wait: ContainerWait
    output: OutputCapture | None = None

    def close(self) -> None:
        self.wait.close()
        if self.output is not None:
            self.output.close()


class ContainerController:
    def __init__(self, engine: EngineClient, settings: Settings) -> None:
        self._engine = engine
        self._settings = settings

    async def _create(self, spec: ContainerSpec) -> str:
        logger.info("Creating container", name=spec.name, image=spec.image)
        return await self._engine.create_container(spec.to_create_body(), name=spec.name)

    async def _run(self, spec: ContainerSpec, container_id: str) -> ContainerInfo:
        try:
            await self._engine.start_container(container_id)
        except NotModifiedError:
            logger.debug("Container already started", id=container_id[:12])

        try:
            info = await self._engine.inspect_container(container_id)
        except NotFoundError:
            # Exited and auto-removed before we could look at it.
            logger.info("Container exited immediately", name=spec.name, id=container_id[:12])
            return ContainerInfo(
                container_id=container_id,
                status="exited",
                created_at=datetime.now(UTC).isoformat(),
            )
        state = info.get("State") or {}
        logger.info(
            "Container started",
            name=spec.name,
            id=container_id[:12],
            status=state.get("Status", "unknown"),
        )
        return ContainerInfo(
            container_id=container_id,
            status=state.get("Status", "unknown"),
            created_at=info.get("Created") or datetime.now(UTC).isoformat(),
        )

    async def start(self, spec: ContainerSpec) -> ContainerInfo:
        """Create and start *spec*; return a snapshot of the running container."""
        container_id = await self._create(spec)
        return await self._run(spec, container_id)

    async def start_watched(
        self, spec: ContainerSpec, *, capture_output: bool = True
    ) -> StartedContainer:
        """Like :meth:`start`, with the exit wait registered before the container runs.

        With *capture_output*, the container's output is followed so it can
        be reported after a failed exit.
        """
        container_id = await self._create(spec)
        wait = await self._engine.open_wait(container_id)
        try:
            info = await self._run(spec, container_id)
        except BaseException:
            wait.close()
            raise
        output = None
        if capture_output and info.status != "exited":
            output = OutputCapture(
                self._engine, container_id, self._settings.session.exit_log_lines
            )
        return StartedContainer(info=info, wait=wait, output=output)

    async def start_debug(self, spec: ContainerSpec, session_id: str) -> DebugContainerInfo:
        """Start *spec* idling instead of running its program, and say how to attach."""
        debug_spec = dataclasses.replace(
            spec,
            name=f"{self._settings.session.debug_prefix}{session_id}",
            entrypoint=IDLE_ENTRYPOINT,
            cmd=None,
            auto_remove=False,
            labels={**spec.labels, "gamedock.debug": "true"},
        )
        info = await self.start(debug_spec)
        exec_command = (
            f"{self._settings.engine.cli} exec -it {info.short_id} {self._settings.session.debug_shell}"
        )
        logger.info("Debug container ready", id=info.short_id, attach=exec_command)
        return DebugContainerInfo(
            container_id=info.container_id,
            status=info.status,
            created_at=info.created_at,
            exec_command=exec_command,
        )

    async def stop(self, container_id: str) -> None:
        """Stop gracefully. Already stopped or already gone counts as success."""
        try:
            await self._engine.stop_container(
                container_id, timeout=self._settings.engine.stop_timeout
            )
        except NotModifiedError:
            logger.info("Container already stopped", id=container_id[:12])
            return
        except NotFoundError:
            logger.info("Container already removed", id=container_id[:12])
            return
        logger.info("Container stopped", id=container_id[:12])

    async def logs(self, container_id: str, tail: int = 100) -> str:
        raw = await self._engine.container_logs(container_id, tail=tail, timestamps=True)
        return collapse_lines(demux_log_stream(raw))

    async def exists(self, container_id: str) -> bool:
        try:
            await self._engine.inspect_container(container_id)
        except NotFoundError:
            return False
        return True

    async def status(self, container_id: str) -> str:
        try:
            info = await self._engine.inspect_container(container_id)
        except NotFoundError:
            return "not-found"
        return (info.get("State") or {}).get("Status", "unknown")

    async def list_sessions(self) -> list[ContainerInfo]:
        """Running containers whose name carries the session prefix."""
        prefix = self._settings.session.container_prefix
        containers = await self._engine.list_containers(filters={"name": [prefix]})
        sessions = []
        for c in containers:
            names = [n.lstrip("/") for n in c.get("Names") or []]
            # The engine's name filter is a substring match.
            if not any(n.startswith(prefix) for n in names):
                continue
            created = c.get("Created")
            sessions.append(
                ContainerInfo(
                    container_id=c["Id"],
                    status=c.get("State", "unknown"),
                    created_at=(
                        datetime.fromtimestamp(created, UTC).isoformat()
                        if isinstance(created, int | float)
                        else str(created or "")
                    ),
                )
            )
        return sessions
