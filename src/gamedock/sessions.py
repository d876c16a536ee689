"""In-memory play-session bookkeeping.

One record per launch: begun before the container exists, marked running once
it has an id, ended by the exit watch. Persistence belongs to whatever catalog
layer embeds gamedock; this ledger only enforces that a session id is never
reused while it is still active, and derives play-time totals.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Literal

from gamedock.errors import LaunchError

SessionStatus = Literal["starting", "running", "stopped", "error"]


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class SessionRecord:
    session_id: str
    game_id: str
    platform_id: str
    started_at: datetime
    status: SessionStatus = "starting"
    container_id: str | None = None
    ended_at: datetime | None = None
    duration_seconds: int | None = None
    exit_code: int | None = None

    @property
    def active(self) -> bool:
        return self.status in ("starting", "running")


@dataclass(frozen=True)
class PlayStats:
    game_id: str
    session_count: int
    total_play_time: int  # seconds
    last_played: datetime | None


class SessionLedger:
    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock
        self._sessions: dict[str, SessionRecord] = {}

    def begin(self, game_id: str, session_id: str, platform_id: str) -> SessionRecord:
        existing = self._sessions.get(session_id)
        if existing is not None and existing.active:
            raise LaunchError(f"Session {session_id} is already active for game {existing.game_id}")
        record = SessionRecord(
            session_id=session_id,
            game_id=game_id,
            platform_id=platform_id,
            started_at=self._clock(),
        )
        self._sessions[session_id] = record
        return record

    def mark_running(self, session_id: str, container_id: str) -> SessionRecord:
        record = self._require(session_id)
        record.status = "running"
        record.container_id = container_id
        return record

    def end(self, session_id: str, exit_code: int) -> SessionRecord:
        """Close the session. Ending twice keeps the first result."""
        record = self._require(session_id)
        if not record.active:
            return record
        record.ended_at = self._clock()
        record.duration_seconds = max(0, int((record.ended_at - record.started_at).total_seconds()))
        record.exit_code = exit_code
        record.status = "stopped" if exit_code == 0 else "error"
        return record

    def get(self, session_id: str) -> SessionRecord | None:
        return self._sessions.get(session_id)

    def active(self) -> list[SessionRecord]:
        return [r for r in self._sessions.values() if r.active]

    def sessions_for(self, game_id: str) -> list[SessionRecord]:
        """Newest first."""
        records = [r for r in self._sessions.values() if r.game_id == game_id]
        return sorted(records, key=lambda r: r.started_at, reverse=True)

    def total_play_time(self, game_id: str) -> int:
        return sum(r.duration_seconds or 0 for r in self._sessions.values() if r.game_id == game_id)

    def stats(self, game_id: str) -> PlayStats:
        records = self.sessions_for(game_id)
        return PlayStats(
            game_id=game_id,
            session_count=len(records),
            total_play_time=sum(r.duration_seconds or 0 for r in records),
            last_played=records[0].started_at if records else None,
        )

    def _require(self, session_id: str) -> SessionRecord:
        record = self._sessions.get(session_id)
        if record is None:
            raise KeyError(f"Unknown session: {session_id}")
        return record
