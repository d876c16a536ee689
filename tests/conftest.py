"""Shared test fixtures for gamedock."""

from __future__ import annotations

import asyncio
import json
import shutil
import tempfile
import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest
from aiohttp import web

from gamedock.types import ExecutionVariant, GameDescriptor, LaunchRequest, PlatformDescriptor

# ---------------------------------------------------------------------------
# Shared helpers (plain functions, not fixtures: importable by test files)
# ---------------------------------------------------------------------------

# Cached property names that must be set via __dict__ (not model_construct).
_CACHED_PROPERTY_NAMES = frozenset({"library_root", "install_root"})


def make_settings(**overrides):
    """Create a Settings object with sensible defaults for testing.

    Accepts both model fields (engine, paths, session, ...) and cached
    property overrides (library_root, install_root).

    Usage::

        s = make_settings(paths=PathsConfig(install_root=str(tmp_path)))
        s = make_settings(session=SessionConfig(volume_name="vol"))
    """
    from gamedock.config import (
        DisplayConfig,
        EngineConfig,
        LoggingConfig,
        PathsConfig,
        SessionConfig,
        Settings,
    )

    cached = {k: overrides.pop(k) for k in list(overrides) if k in _CACHED_PROPERTY_NAMES}

    defaults = {
        "engine": EngineConfig(),
        "paths": PathsConfig(),
        "session": SessionConfig(),
        "display": DisplayConfig(),
        "logging": LoggingConfig(),
    }
    defaults.update(overrides)
    s = Settings.model_construct(**defaults)

    for key, value in cached.items():
        s.__dict__[key] = value

    return s


def make_request(
    *,
    variant: ExecutionVariant = ExecutionVariant.NATIVE,
    session_id: str = "sess1",
    image: str | None = None,
    **game_fields: Any,
) -> LaunchRequest:
    game_fields.setdefault("id", "game1")
    game_fields.setdefault("title", "Test Game")
    if "file_path" not in game_fields and "install_path" not in game_fields:
        game_fields["file_path"] = "games/test"
    return LaunchRequest(
        game=GameDescriptor(**game_fields),
        platform=PlatformDescriptor(id=variant.value, variant=variant, image=image),
        session_id=session_id,
    )


# ---------------------------------------------------------------------------
# Autouse fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def reset_settings(monkeypatch):
    """Ensure each test starts with a clean Settings singleton.

    Uses ``make_settings()`` to build from pure defaults: no config.toml,
    no .env, no file I/O.
    """
    safe = make_settings()
    monkeypatch.setattr("gamedock.config._settings", safe)


# ---------------------------------------------------------------------------
# Fake container engine
# ---------------------------------------------------------------------------


def _error(status: int, message: str) -> web.Response:
    if status == 304:
        return web.Response(status=304)
    return web.json_response({"message": message}, status=status)


class FakeEngine:
    """Just enough of the Docker Engine API for the client and orchestrator.

    Containers never run anything: ``finish(id, code)`` simulates an exit.
    """

    def __init__(self) -> None:
        self.containers: dict[str, dict[str, Any]] = {}
        self.volumes: dict[str, dict[str, Any]] = {}
        self.logs: dict[str, bytes] = {}
        self.requests: list[tuple[str, str, dict[str, str]]] = []
        self._exit_events: dict[str, asyncio.Event] = {}
        # Exit code every started container exits with straight away (crash on startup).
        self.exit_on_start: int | None = None

    # --- helpers for tests ---

    def add_container(
        self,
        name: str,
        *,
        status: str = "running",
        binds: list[str] | None = None,
        mounts: list[dict[str, str]] | None = None,
    ) -> str:
        container_id = uuid.uuid4().hex + uuid.uuid4().hex[:32]
        self.containers[container_id] = {
            "Id": container_id,
            "Name": f"/{name}",
            "Created": datetime.now(UTC).isoformat(),
            "State": {"Status": status, "ExitCode": 0},
            "HostConfig": {"Binds": binds or [], "AutoRemove": False},
            "Mounts": mounts or [],
            "Config": {},
        }
        return container_id

    def add_volume(self, name: str, device: str = "/old") -> None:
        self.volumes[name] = {
            "Name": name,
            "Driver": "local",
            "Options": {"type": "none", "device": device, "o": "bind"},
        }

    def finish(self, container_id: str, exit_code: int) -> None:
        container = self.containers[container_id]
        container["State"] = {"Status": "exited", "ExitCode": exit_code}
        self._event(container_id).set()
        if container["HostConfig"].get("AutoRemove"):
            del self.containers[container_id]

    def find(self, ref: str) -> dict[str, Any] | None:
        for c in self.containers.values():
            if c["Id"] == ref or c["Id"].startswith(ref) or c["Name"] == f"/{ref}":
                return c
        return None

    def calls(self, method: str, fragment: str) -> list[tuple[str, str, dict[str, str]]]:
        return [r for r in self.requests if r[0] == method and fragment in r[1]]

    def release_waiters(self) -> None:
        for event in self._exit_events.values():
            event.set()

    def _event(self, container_id: str) -> asyncio.Event:
        return self._exit_events.setdefault(container_id, asyncio.Event())

    def _volume_users(self, name: str) -> list[dict[str, Any]]:
        return [
            c
            for c in self.containers.values()
            if any(b.split(":", 1)[0] == name for b in c["HostConfig"].get("Binds") or [])
        ]

    # --- handlers ---

    @web.middleware
    async def record(self, request: web.Request, handler):
        self.requests.append((request.method, request.path, dict(request.query)))
        return await handler(request)

    async def ping(self, request: web.Request) -> web.Response:
        return web.Response(text="OK")

    async def create_container(self, request: web.Request) -> web.Response:
        body = await request.json()
        name = request.query.get("name") or uuid.uuid4().hex[:8]
        if self.find(name):
            return _error(409, f'Conflict. The container name "/{name}" is already in use')
        container_id = self.add_container(name, status="created", binds=body["HostConfig"]["Binds"])
        container = self.containers[container_id]
        container["HostConfig"] = body["HostConfig"]
        container["Config"] = body
        return web.json_response({"Id": container_id, "Warnings": []}, status=201)

    async def start_container(self, request: web.Request) -> web.Response:
        c = self.find(request.match_info["id"])
        if c is None:
            return _error(404, "No such container")
        if c["State"]["Status"] == "running":
            return _error(304, "")
        c["State"]["Status"] = "running"
        if self.exit_on_start is not None:
            self.finish(c["Id"], self.exit_on_start)
        return web.Response(status=204)

    async def stop_container(self, request: web.Request) -> web.Response:
        c = self.find(request.match_info["id"])
        if c is None:
            return _error(404, "No such container")
        if c["State"]["Status"] != "running":
            return _error(304, "")
        self.finish(c["Id"], 143)
        return web.Response(status=204)

    async def remove_container(self, request: web.Request) -> web.Response:
        c = self.find(request.match_info["id"])
        if c is None:
            return _error(404, "No such container")
        if c["State"]["Status"] == "running" and request.query.get("force") != "1":
            return _error(409, "You cannot remove a running container")
        del self.containers[c["Id"]]
        return web.Response(status=204)

    async def wait_container(self, request: web.Request) -> web.StreamResponse:
        c = self.find(request.match_info["id"])
        if c is None:
            return _error(404, "No such container")
        container_id = c["Id"]
        event = self._event(container_id)
        # Like the real engine: headers go out once the waiter is registered.
        resp = web.StreamResponse(headers={"Content-Type": "application/json"})
        await resp.prepare(request)
        await resp.write(b"\n")
        await event.wait()
        await resp.write(json.dumps({"StatusCode": c["State"]["ExitCode"]}).encode())
        await resp.write_eof()
        return resp

    async def inspect_container(self, request: web.Request) -> web.Response:
        c = self.find(request.match_info["id"])
        if c is None:
            return _error(404, "No such container")
        return web.json_response(c)

    async def container_logs(self, request: web.Request) -> web.StreamResponse:
        c = self.find(request.match_info["id"])
        if c is None:
            return _error(404, "No such container")
        container_id = c["Id"]
        if request.query.get("follow") != "1":
            return web.Response(body=self.logs.get(container_id, b""))
        # Followed output is delivered when the container stops.
        resp = web.StreamResponse()
        await resp.prepare(request)
        await self._event(container_id).wait()
        await resp.write(self.logs.get(container_id, b""))
        await resp.write_eof()
        return resp

    async def list_containers(self, request: web.Request) -> web.Response:
        filters = json.loads(request.query.get("filters", "{}"))
        show_all = request.query.get("all") == "1"
        out = []
        for c in self.containers.values():
            if not show_all and c["State"]["Status"] != "running":
                continue
            if "volume" in filters and c not in self._volume_users(filters["volume"][0]):
                continue
            if "name" in filters and filters["name"][0] not in c["Name"]:
                continue
            out.append(
                {"Id": c["Id"], "Names": [c["Name"]], "State": c["State"]["Status"], "Created": 1700000000}
            )
        return web.json_response(out)

    async def inspect_volume(self, request: web.Request) -> web.Response:
        volume = self.volumes.get(request.match_info["name"])
        if volume is None:
            return _error(404, "no such volume")
        return web.json_response(volume)

    async def create_volume(self, request: web.Request) -> web.Response:
        body = await request.json()
        self.volumes[body["Name"]] = {
            "Name": body["Name"],
            "Driver": body["Driver"],
            "Options": body["DriverOpts"],
            "Labels": body["Labels"],
        }
        return web.json_response(self.volumes[body["Name"]], status=201)

    async def remove_volume(self, request: web.Request) -> web.Response:
        name = request.match_info["name"]
        if name not in self.volumes:
            return _error(404, "no such volume")
        if self._volume_users(name):
            return _error(409, "volume is in use")
        del self.volumes[name]
        return web.Response(status=204)

    def app(self) -> web.Application:
        app = web.Application(middlewares=[self.record])
        r = app.router
        r.add_get("/_ping", self.ping)
        r.add_post("/containers/create", self.create_container)
        r.add_get("/containers/json", self.list_containers)
        r.add_post("/containers/{id}/start", self.start_container)
        r.add_post("/containers/{id}/stop", self.stop_container)
        r.add_post("/containers/{id}/wait", self.wait_container)
        r.add_get("/containers/{id}/json", self.inspect_container)
        r.add_get("/containers/{id}/logs", self.container_logs)
        r.add_delete("/containers/{id}", self.remove_container)
        r.add_post("/volumes/create", self.create_volume)
        r.add_get("/volumes/{name}", self.inspect_volume)
        r.add_delete("/volumes/{name}", self.remove_volume)
        return app


@pytest.fixture
async def fake_engine():
    """Serve a FakeEngine on a unix socket; yields (engine, socket_path).

    The socket lives in a short mkdtemp directory because AF_UNIX paths are
    limited to ~108 bytes and pytest's tmp_path can exceed that.
    """
    sock_dir = tempfile.mkdtemp(prefix="gd")
    socket_path = str(Path(sock_dir) / "engine.sock")
    engine = FakeEngine()
    runner = web.AppRunner(engine.app())
    await runner.setup()
    site = web.UnixSite(runner, socket_path)
    await site.start()
    try:
        yield engine, socket_path
    finally:
        engine.release_waiters()
        await runner.cleanup()
        shutil.rmtree(sock_dir, ignore_errors=True)
