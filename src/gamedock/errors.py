"""Exceptions that surface to callers as user-visible launch failures.

Engine status errors live with the engine client
(:mod:`gamedock.engine._client`).
"""

from __future__ import annotations


class GamedockError(Exception):
    """Base class for gamedock failures."""


class LaunchError(GamedockError):
    """The launch request cannot be turned into a running session."""


class VolumeConflictError(GamedockError):
    """The session volume is still attached after forced cleanup."""

    def __init__(self, volume: str, detail: str = "") -> None:
        self.volume = volume
        msg = f"Session volume {volume} is still in use after cleanup"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)
