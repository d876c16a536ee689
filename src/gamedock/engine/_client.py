"""Docker Engine API client over the daemon's unix socket.

Thin async wrapper around the REST endpoints the orchestrator needs. Every
call goes through :meth:`EngineClient._request`, which maps the statuses the
orchestrator interprets specially onto exception subclasses:

  304 -> NotModifiedError   (container already started / already stopped)
  404 -> NotFoundError      (container or volume absent)
  409 -> ConflictError      (volume in use, name taken)

Everything else non-2xx is a plain :class:`EngineError`. Transport failures
(socket missing, permission denied, timeouts) become ``EngineError(status=0)``
so callers only need to catch one family.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from typing import Any
from urllib.parse import quote

import aiohttp

from gamedock.config import Settings
from gamedock.logger import logger


class EngineError(Exception):
    """A container engine call failed."""

    def __init__(self, status: int, message: str, *, path: str = "") -> None:
        self.status = status
        self.message = message
        self.path = path
        where = f" {path}" if path else ""
        super().__init__(f"engine{where} returned {status}: {message}")


class NotModifiedError(EngineError):
    """304: the requested state change already holds."""


class NotFoundError(EngineError):
    """404: the target does not exist."""


class ConflictError(EngineError):
    """409: the target is in use or the name is taken."""


_STATUS_ERRORS: dict[int, type[EngineError]] = {
    304: NotModifiedError,
    404: NotFoundError,
    409: ConflictError,
}


def _error_message(raw: bytes) -> str:
    if not raw:
        return ""
    try:
        data = json.loads(raw)
    except ValueError:
        return raw.decode(errors="replace").strip()
    if isinstance(data, dict) and "message" in data:
        return str(data["message"])
    return raw.decode(errors="replace").strip()


def _query(params: dict[str, Any] | None) -> dict[str, str] | None:
    """aiohttp only accepts str/int query values; the engine reads bools as 0/1."""
    if not params:
        return None
    out: dict[str, str] = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            out[key] = "1" if value else "0"
        elif isinstance(value, dict):
            out[key] = json.dumps(value)
        else:
            out[key] = str(value)
    return out


async def _raise_for_status(resp: aiohttp.ClientResponse, path: str) -> None:
    if resp.status < 300:
        return
    message = _error_message(await resp.read())
    error_cls = _STATUS_ERRORS.get(resp.status, EngineError)
    raise error_cls(resp.status, message, path=path)


def _exit_code(container_id: str, data: Any) -> int:
    data = data or {}
    error = data.get("Error") or {}
    if error.get("Message"):
        logger.warning("Engine reported wait error", container=container_id, err=error["Message"])
    return int(data.get("StatusCode", -1))


class EngineStream:
    """A streaming response whose headers have already arrived.

    The engine sends headers for ``/wait`` only once the waiter is registered,
    and for followed logs as soon as the stream is attached. Holding one of
    these therefore means the engine is already listening.
    """

    def __init__(self, response: aiohttp.ClientResponse, path: str) -> None:
        self._response = response
        self.path = path

    async def read(self) -> bytes:
        try:
            return await self._response.read()
        except (aiohttp.ClientError, OSError, TimeoutError) as exc:
            raise EngineError(0, str(exc) or type(exc).__name__, path=self.path) from exc
        finally:
            self._response.release()

    async def chunks(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self._response.content.iter_any():
                yield chunk
        except (aiohttp.ClientError, OSError, TimeoutError) as exc:
            raise EngineError(0, str(exc) or type(exc).__name__, path=self.path) from exc
        finally:
            self._response.release()

    def close(self) -> None:
        self._response.close()


class ContainerWait:
    """An exit wait the engine registered before the container was started."""

    def __init__(self, container_id: str, stream: EngineStream) -> None:
        self.container_id = container_id
        self._stream = stream

    async def result(self) -> int:
        """Block until the container exits and return its exit code."""
        raw = await self._stream.read()
        return _exit_code(self.container_id, json.loads(raw) if raw.strip() else None)

    def close(self) -> None:
        self._stream.close()


class EngineClient:
    """Async Docker Engine API client bound to one unix socket."""

    def __init__(
        self,
        socket_path: str = "/var/run/docker.sock",
        *,
        api_version: str | None = None,
        request_timeout: float = 30.0,
    ) -> None:
        self.socket_path = socket_path
        self.api_version = api_version
        self.request_timeout = request_timeout
        self._session: aiohttp.ClientSession | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> EngineClient:
        return cls(
            settings.engine.socket_path,
            api_version=settings.engine.api_version,
            request_timeout=settings.engine.request_timeout,
        )

    async def __aenter__(self) -> EngineClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                connector=aiohttp.UnixConnector(path=self.socket_path),
            )
        return self._session

    def _url(self, path: str) -> str:
        # Host part is ignored by the unix connector but required by yarl.
        prefix = f"/v{self.api_version}" if self.api_version else ""
        return f"http://docker{prefix}{path}"

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        body: Any = None,
        timeout: float | None = -1.0,
        expect: str = "json",
    ) -> Any:
        """Issue one API call. ``timeout=None`` disables the deadline entirely."""
        total = self.request_timeout if timeout == -1.0 else timeout
        client_timeout = aiohttp.ClientTimeout(total=total, sock_read=total)
        session = self._get_session()
        try:
            async with session.request(
                method,
                self._url(path),
                params=_query(params),
                json=body,
                timeout=client_timeout,
            ) as resp:
                await _raise_for_status(resp, path)
                if expect == "bytes":
                    return await resp.read()
                if expect == "json" and resp.status != 204:
                    raw = await resp.read()
                    return json.loads(raw) if raw else None
                return None
        except (aiohttp.ClientError, OSError, TimeoutError) as exc:
            logger.debug("Engine transport failure", path=path, err=str(exc))
            raise EngineError(0, str(exc) or type(exc).__name__, path=path) from exc

    async def _open_stream(
        self, method: str, path: str, *, params: dict[str, Any] | None = None
    ) -> EngineStream:
        """Issue a call and return once the response headers are in.

        Only connecting is bounded by ``request_timeout``; the body may take
        as long as the container runs.
        """
        timeout = aiohttp.ClientTimeout(total=None, sock_connect=self.request_timeout)
        session = self._get_session()
        try:
            resp = await session.request(
                method, self._url(path), params=_query(params), timeout=timeout
            )
        except (aiohttp.ClientError, OSError, TimeoutError) as exc:
            logger.debug("Engine transport failure", path=path, err=str(exc))
            raise EngineError(0, str(exc) or type(exc).__name__, path=path) from exc
        try:
            await _raise_for_status(resp, path)
        except BaseException:
            resp.release()
            raise
        return EngineStream(resp, path)

    # ------------------------------------------------------------------
    # System
    # ------------------------------------------------------------------

    async def ping(self) -> bool:
        try:
            await self._request("GET", "/_ping", expect="bytes")
        except EngineError:
            return False
        return True

    # ------------------------------------------------------------------
    # Containers
    # ------------------------------------------------------------------

    async def inspect_container(self, container_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/containers/{quote(container_id, safe='')}/json")

    async def create_container(self, body: dict[str, Any], *, name: str | None = None) -> str:
        data = await self._request("POST", "/containers/create", params={"name": name}, body=body)
        for warning in data.get("Warnings") or []:
            logger.warning("Engine warning on create", container=name, warning=warning)
        return data["Id"]

    async def start_container(self, container_id: str) -> None:
        await self._request("POST", f"/containers/{quote(container_id, safe='')}/start")

    async def stop_container(self, container_id: str, *, timeout: int | None = None) -> None:
        # The HTTP call blocks for the whole grace period, so extend our deadline.
        deadline = self.request_timeout + (timeout or 0)
        await self._request(
            "POST",
            f"/containers/{quote(container_id, safe='')}/stop",
            params={"t": timeout},
            timeout=deadline,
        )

    async def remove_container(self, container_id: str, *, force: bool = False) -> None:
        await self._request(
            "DELETE",
            f"/containers/{quote(container_id, safe='')}",
            params={"force": force},
        )

    async def wait_container(self, container_id: str, *, condition: str | None = None) -> int:
        """Block until the container stops and return its exit code."""
        wait = await self.open_wait(container_id, condition=condition)
        return await wait.result()

    async def open_wait(
        self, container_id: str, *, condition: str | None = "next-exit"
    ) -> ContainerWait:
        """Register an exit wait without blocking on it.

        Opened before ``start_container``, the wait catches the exit of a
        container that stops (and is auto-removed) straight away.
        """
        stream = await self._open_stream(
            "POST",
            f"/containers/{quote(container_id, safe='')}/wait",
            params={"condition": condition},
        )
        return ContainerWait(container_id, stream)

    async def open_log_stream(self, container_id: str) -> EngineStream:
        """Follow a container's stdout and stderr from the beginning until it stops."""
        return await self._open_stream(
            "GET",
            f"/containers/{quote(container_id, safe='')}/logs",
            params={"stdout": True, "stderr": True, "follow": True, "timestamps": False},
        )

    async def container_logs(
        self,
        container_id: str,
        *,
        tail: int = 100,
        timestamps: bool = True,
    ) -> bytes:
        return await self._request(
            "GET",
            f"/containers/{quote(container_id, safe='')}/logs",
            params={
                "stdout": True,
                "stderr": True,
                "tail": tail,
                "timestamps": timestamps,
                "follow": False,
            },
            expect="bytes",
        )

    async def list_containers(
        self,
        *,
        all: bool = False,  # noqa: A002
        filters: dict[str, list[str]] | None = None,
    ) -> list[dict[str, Any]]:
        return await self._request(
            "GET",
            "/containers/json",
            params={"all": all, "filters": filters or None},
        )

    # ------------------------------------------------------------------
    # Volumes
    # ------------------------------------------------------------------

    async def inspect_volume(self, name: str) -> dict[str, Any]:
        return await self._request("GET", f"/volumes/{quote(name, safe='')}")

    async def create_volume(
        self,
        name: str,
        *,
        driver: str = "local",
        driver_opts: dict[str, str] | None = None,
        labels: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        return await self._request(
            "POST",
            "/volumes/create",
            body={
                "Name": name,
                "Driver": driver,
                "DriverOpts": driver_opts or {},
                "Labels": labels or {},
            },
        )

    async def remove_volume(self, name: str, *, force: bool = False) -> None:
        await self._request("DELETE", f"/volumes/{quote(name, safe='')}", params={"force": force})
