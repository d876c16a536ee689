"""Detached exit watches, one task per container."""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable

from gamedock.engine._client import ContainerWait, EngineClient, EngineError
from gamedock.engine._lifecycle import OutputCapture, collapse_lines, demux_log_stream
from gamedock.logger import logger

ExitCallback = Callable[[int], Awaitable[None] | None]

# Exit code reported when the engine wait itself fails.
UNKNOWN_EXIT_CODE = -1


class ExitMonitor:
    def __init__(
        self,
        engine: EngineClient,
        *,
        output_lines: int = 50,
        output_grace: float = 2.0,
    ) -> None:
        self._engine = engine
        self._output_lines = output_lines
        self._output_grace = output_grace
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def active(self) -> int:
        return len(self._tasks)

    def watch(
        self,
        container_id: str,
        on_exit: ExitCallback,
        *,
        wait: ContainerWait | None = None,
        output: OutputCapture | None = None,
    ) -> asyncio.Task[None]:
        """Invoke ``on_exit(exit_code)`` exactly once when the container stops.

        Pass the *wait* opened before the container started so a fast exit is
        not missed; without one the monitor issues its own wait call. On a
        non-zero exit the container's last output is logged, from *output*
        when given.
        """
        task = asyncio.create_task(
            self._wait(container_id, on_exit, wait, output),
            name=f"exit-watch-{container_id[:12]}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _wait(
        self,
        container_id: str,
        on_exit: ExitCallback,
        wait: ContainerWait | None,
        output: OutputCapture | None,
    ) -> None:
        try:
            exit_code = await self._exit_code(container_id, wait)
            logger.info("Container exited", id=container_id[:12], exit_code=exit_code)
            if exit_code != 0:
                await self._report_output(container_id, exit_code, output)
        finally:
            if wait is not None:
                wait.close()
            if output is not None:
                output.close()

        try:
            result = on_exit(exit_code)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Exit callback failed", id=container_id[:12])

    async def _exit_code(self, container_id: str, wait: ContainerWait | None) -> int:
        try:
            if wait is not None:
                return await wait.result()
            return await self._engine.wait_container(container_id)
        except EngineError as exc:
            logger.warning(
                "Exit wait failed",
                id=container_id[:12],
                status=exc.status,
                err=exc.message,
            )
            return UNKNOWN_EXIT_CODE

    async def _report_output(
        self, container_id: str, exit_code: int, output: OutputCapture | None
    ) -> None:
        if output is not None:
            text = await output.finish(self._output_grace)
        else:
            try:
                raw = await self._engine.container_logs(
                    container_id, tail=self._output_lines, timestamps=False
                )
            except EngineError as exc:
                logger.debug("No output for failed container", id=container_id[:12], err=exc.message)
                return
            text = collapse_lines(demux_log_stream(raw))
        if text:
            logger.warning(
                "Container output before failure",
                id=container_id[:12],
                exit_code=exit_code,
                output=text,
            )

    async def close(self) -> None:
        """Cancel outstanding watches; their callbacks never run."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
