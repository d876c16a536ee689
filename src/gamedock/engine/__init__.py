"""Container engine layer: runs games in isolated containers and watches them.

This package is split into focused submodules:
  _client      : Docker Engine API over the unix socket, status-typed errors
  _paths       : Host path translation when gamedock itself is containerized
  _display     : X11 / Wayland / PulseAudio / GPU forwarding
  _volume      : The shared session volume (delete-and-recreate binding)
  _spec        : Pure ContainerSpec construction, one handler per variant
  _lifecycle   : Create / start / stop / debug / logs
  _monitor     : Detached exit watches and failure output reporting
  _orchestrator: The Orchestrator context object tying it all together
"""

# Re-export public API so that `from gamedock.engine import X` works.
# Private helpers (_xxx) should be imported from their submodules directly.

from gamedock.engine._client import (
    ConflictError,
    ContainerWait,
    EngineClient,
    EngineError,
    EngineStream,
    NotFoundError,
    NotModifiedError,
)
from gamedock.engine._display import DisplayResolver, list_audio_sinks, parse_pactl_sinks
from gamedock.engine._lifecycle import (
    ContainerController,
    LogDecoder,
    OutputCapture,
    StartedContainer,
    collapse_lines,
    demux_log_stream,
)
from gamedock.engine._monitor import ExitMonitor
from gamedock.engine._orchestrator import Orchestrator
from gamedock.engine._paths import HostPathTranslator
from gamedock.engine._spec import LaunchSpecBuilder, clean_arguments, windows_to_prefix_path
from gamedock.engine._volume import SessionVolumeManager

__all__ = [
    "ConflictError",
    "ContainerController",
    "ContainerWait",
    "DisplayResolver",
    "EngineClient",
    "EngineError",
    "EngineStream",
    "ExitMonitor",
    "HostPathTranslator",
    "LaunchSpecBuilder",
    "LogDecoder",
    "NotFoundError",
    "NotModifiedError",
    "Orchestrator",
    "OutputCapture",
    "SessionVolumeManager",
    "StartedContainer",
    "clean_arguments",
    "collapse_lines",
    "demux_log_stream",
    "list_audio_sinks",
    "parse_pactl_sinks",
    "windows_to_prefix_path",
]
