"""Scan an install tree for launchable files and shortcuts."""

from __future__ import annotations

from pathlib import Path

from gamedock.logger import logger

EXECUTABLE_SUFFIXES = {".exe", ".bat", ".cmd"}
SKIP_DIRS = {"temp", "tmp", "cache", "logs", "uninstall", "_redist"}
PREFERRED_WORDS = ("game", "main", "start", "launcher", "run")
EXCLUDED_WORDS = ("uninstall", "setup", "install", "config", "settings")
SHORTCUT_DIR_WORDS = ("start menu", "desktop", "menu", "shortcuts")

MAX_EXECUTABLE_DEPTH = 3
MAX_SHORTCUT_DEPTH = 10
SHORTCUT_FREE_DEPTH = 5  # below this, descend into every directory


def _children(directory: Path) -> list[Path]:
    try:
        return sorted(directory.iterdir())
    except OSError as exc:
        logger.warning("Could not scan directory", path=str(directory), err=str(exc))
        return []


def _looks_like_game(name: str) -> bool:
    lowered = name.lower()
    if any(word in lowered for word in PREFERRED_WORDS):
        return True
    return not any(word in lowered for word in EXCLUDED_WORDS)


def _executable_rank(relative: str) -> tuple[int, int]:
    name = relative.rsplit("/", 1)[-1].lower()
    score = (10 if "game" in name else 0) + (8 if "main" in name else 0)
    return relative.count("/"), -score


def scan_for_executables(root: str | Path) -> list[str]:
    """Likely game executables under *root*, best candidates first.

    Paths are relative to *root*. Ordering: shallower first, then names
    containing "game" or "main"; ties keep directory order.
    """
    base = Path(root)
    found: list[str] = []

    def walk(directory: Path, depth: int) -> None:
        if depth > MAX_EXECUTABLE_DEPTH:
            return
        for entry in _children(directory):
            if entry.is_dir():
                if entry.name.lower() not in SKIP_DIRS:
                    walk(entry, depth + 1)
            elif entry.suffix.lower() in EXECUTABLE_SUFFIXES and _looks_like_game(entry.name):
                found.append(entry.relative_to(base).as_posix())

    walk(base, 0)
    found.sort(key=_executable_rank)
    logger.info("Scanned for executables", root=str(base), count=len(found))
    return found


def scan_for_shortcuts(root: str | Path) -> list[str]:
    """``.lnk`` files under *root*, relative to it."""
    base = Path(root)
    found: list[str] = []

    def walk(directory: Path, depth: int) -> None:
        if depth > MAX_SHORTCUT_DEPTH:
            return
        for entry in _children(directory):
            if entry.is_dir():
                name = entry.name.lower()
                if depth < SHORTCUT_FREE_DEPTH or any(w in name for w in SHORTCUT_DIR_WORDS):
                    walk(entry, depth + 1)
            elif entry.suffix.lower() == ".lnk":
                found.append(entry.relative_to(base).as_posix())

    walk(base, 0)
    logger.info("Scanned for shortcuts", root=str(base), count=len(found))
    return found
