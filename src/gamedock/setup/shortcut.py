"""Windows shell-link (.lnk) parsing.

Only the parts needed to turn an installer-created shortcut into a launch
command are read: the local base path from LinkInfo, then the optional
StringData entries (name, relative path, working dir, arguments). Wine writes
these files too, so no Windows API is involved; everything is little-endian
and every read is bounds-checked first.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from pathlib import Path

from gamedock.logger import logger
from gamedock.types import ShortcutRecord

HEADER_SIZE = 0x4C
LINK_FLAGS_OFFSET = 0x14

HAS_TARGET_ID_LIST = 0x01
HAS_LINK_INFO = 0x02
HAS_NAME = 0x04
HAS_RELATIVE_PATH = 0x08
HAS_WORKING_DIR = 0x10
HAS_ARGUMENTS = 0x20

_LINK_INFO_MIN_HEADER = 0x1C
_LOCAL_BASE_PATH_FIELD = 0x10

_U16 = struct.Struct("<H")
_U32 = struct.Struct("<I")


def _clean(text: str) -> str:
    """Drop embedded NUL terminators and surrounding whitespace."""
    return text.replace("\x00", "").strip()


class _Truncated(Exception):
    pass


@dataclass
class _Reader:
    data: bytes

    def u16(self, offset: int) -> int:
        if offset < 0 or offset + 2 > len(self.data):
            raise _Truncated
        return _U16.unpack_from(self.data, offset)[0]

    def u32(self, offset: int) -> int:
        if offset < 0 or offset + 4 > len(self.data):
            raise _Truncated
        return _U32.unpack_from(self.data, offset)[0]

    def c_string(self, offset: int) -> str:
        end = self.data.find(b"\x00", offset)
        if end == -1:
            end = len(self.data)
        return _clean(self.data[offset:end].decode("ascii", errors="replace"))

    def string_data(self, offset: int) -> tuple[str, int]:
        """Read a counted UTF-16LE string; return it and the next offset."""
        count = self.u16(offset)
        start = offset + 2
        end = start + count * 2
        if end > len(self.data):
            raise _Truncated
        return _clean(self.data[start:end].decode("utf-16-le", errors="replace")), end


def parse_shortcut(data: bytes) -> ShortcutRecord | None:
    """Extract target, arguments, working dir and description from .lnk bytes.

    Returns None when the header is invalid or no target could be found.
    Truncated optional sections end extraction early but keep what was
    already read.
    """
    if len(data) < HEADER_SIZE:
        return None
    reader = _Reader(data)
    if reader.u32(0) != HEADER_SIZE:
        return None

    flags = reader.u32(LINK_FLAGS_OFFSET)
    fields = {"target": "", "arguments": "", "working_directory": "", "description": ""}
    offset = HEADER_SIZE

    try:
        if flags & HAS_TARGET_ID_LIST:
            offset += 2 + reader.u16(offset)

        if flags & HAS_LINK_INFO:
            info_start = offset
            info_size = reader.u32(info_start)
            if info_start + info_size > len(data):
                raise _Truncated
            if reader.u32(info_start + 4) >= _LINK_INFO_MIN_HEADER:
                base_offset = reader.u32(info_start + _LOCAL_BASE_PATH_FIELD)
                if base_offset and info_start + base_offset < len(data):
                    fields["target"] = reader.c_string(info_start + base_offset)
            offset = info_start + info_size

        if flags & HAS_NAME:
            fields["description"], offset = reader.string_data(offset)
        if flags & HAS_RELATIVE_PATH:
            relative, offset = reader.string_data(offset)
            if not fields["target"]:
                fields["target"] = relative
        if flags & HAS_WORKING_DIR:
            fields["working_directory"], offset = reader.string_data(offset)
        if flags & HAS_ARGUMENTS:
            fields["arguments"], offset = reader.string_data(offset)
    except _Truncated:
        logger.debug("Shortcut truncated, using fields read so far", offset=offset)

    if not fields["target"]:
        return None
    return ShortcutRecord(**{key: _clean(value) for key, value in fields.items()})


def read_shortcut(path: str | Path) -> ShortcutRecord | None:
    try:
        data = Path(path).read_bytes()
    except OSError as exc:
        logger.warning("Could not read shortcut", path=str(path), err=str(exc))
        return None
    record = parse_shortcut(data)
    if record is None:
        logger.warning("Invalid or targetless shortcut", path=str(path))
    else:
        logger.info("Parsed shortcut", path=str(path), target=record.target)
    return record
