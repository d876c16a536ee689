"""Install-time helpers: shortcut parsing, registry scripts, install-tree scans."""

from gamedock.setup.discovery import scan_for_executables, scan_for_shortcuts
from gamedock.setup.registry import convert_cmd_to_reg, find_registry_scripts
from gamedock.setup.shortcut import parse_shortcut, read_shortcut

__all__ = [
    "convert_cmd_to_reg",
    "find_registry_scripts",
    "parse_shortcut",
    "read_shortcut",
    "scan_for_executables",
    "scan_for_shortcuts",
]
