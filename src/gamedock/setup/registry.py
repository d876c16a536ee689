"""Batch-file ``REG ADD`` scripts to ``.reg`` import files.

GOG-style installers ship a ``*reg*.cmd`` that a Windows installer would run
once to seed the registry. Wine's ``regedit /S`` cannot execute batch files,
so the handful of forms those scripts use are rewritten into a registry file.
This is a pattern match over one dialect, not a batch interpreter: anything
that doesn't look like ``REG ADD "<key>" /v "<name>" /t <type> /d <data>`` is
dropped.
"""

from __future__ import annotations

import re
from pathlib import Path

from gamedock.logger import logger

REG_HEADER = "Windows Registry Editor Version 5.00\n\n"

_REGPATH_RE = re.compile(r"""SET\s+regpath=["']([^"']+)["']""", re.IGNORECASE)
_REGPATH_REF_RE = re.compile(r"%regpath%", re.IGNORECASE)
_REG_ADD_RE = re.compile(
    r'REG\s+ADD\s+"([^"]+)"\s+/v\s+"([^"]+)"\s+/t\s+(\S+)\s+/d\s+(.+?)(?:\s+/f\b.*|\s*)$',
    re.IGNORECASE,
)
_QUOTED_RE = re.compile(r'"([^"]*)"')


def _is_skipped(line: str) -> bool:
    lowered = line.lower()
    return (
        not line
        or line.startswith(("::", "@"))
        or lowered == "rem"
        or lowered.startswith(("rem ", "set "))
        or lowered == "exit"
    )


def _unquote(data: str) -> str:
    if data.startswith('"'):
        match = _QUOTED_RE.match(data)
        if match:
            return match.group(1)
    return data


def _parse_dword(data: str) -> int | None:
    text = data.strip()
    try:
        if text.lower().startswith("0x"):
            return int(text, 16)
        return int(text, 10)
    except ValueError:
        return None


def _encode_value(name: str, value_type: str, data: str) -> str | None:
    match value_type.upper():
        case "REG_SZ":
            return f'"{name}"="{data}"'
        case "REG_DWORD":
            number = _parse_dword(data)
            if number is None:
                return None
            return f'"{name}"=dword:{number & 0xFFFFFFFF:08x}'
        case "REG_BINARY":
            pairs = [data[i : i + 2] for i in range(0, len(data), 2)]
            return f'"{name}"=hex:{",".join(pairs)}'
    return None


def convert_cmd_to_reg(text: str) -> str:
    """Translate the ``REG ADD`` lines of a batch script into ``.reg`` text."""
    out = [REG_HEADER]
    regpath = ""
    for line in text.splitlines():
        match = _REGPATH_RE.search(line)
        if match:
            regpath = match.group(1)
            break

    current_key = ""
    matched = skipped = 0
    for raw in text.splitlines():
        line = raw.strip()
        if _is_skipped(line):
            continue
        if regpath:
            line = _REGPATH_REF_RE.sub(lambda _: f'"{regpath}"', line)

        match = _REG_ADD_RE.search(line)
        if not match:
            skipped += 1
            continue
        key, name, value_type, data = match.groups()
        encoded = _encode_value(name, value_type, _unquote(data.strip()))
        if encoded is None:
            skipped += 1
            continue

        if key != current_key:
            current_key = key
            out.append(f"\n[{key}]\n")
        out.append(encoded + "\n")
        matched += 1

    logger.debug("Converted registry script", regpath=regpath or None, values=matched, skipped=skipped)
    return "".join(out)


def find_registry_scripts(directory: str | Path) -> list[Path]:
    """``.cmd`` / ``.bat`` files whose name mentions ``reg`` or ``setup``."""
    root = Path(directory)
    scripts = []
    for entry in root.iterdir():
        name = entry.name.lower()
        if not entry.is_file() or not name.endswith((".cmd", ".bat")):
            continue
        if "reg" in name or "setup" in name:
            scripts.append(entry)
    return sorted(scripts, key=lambda p: p.name.lower())
