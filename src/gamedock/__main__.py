"""Entry point for `python -m gamedock` / `gamedock`.

Subcommands:
    gamedock display                 Show the display/audio/GPU forwarding that would be used
    gamedock sinks                   List PulseAudio sinks
    gamedock shortcut FILE           Parse a Windows .lnk shortcut
    gamedock convert-reg SCRIPT      Convert a REG ADD batch script to .reg text
    gamedock scan DIR                Find likely game executables (or --shortcuts)
    gamedock launch ...              Launch a game session
    gamedock debug ...               Start an idle debug container for a game
    gamedock stop ID                 Stop a container
    gamedock logs ID                 Show container logs
    gamedock status ID               Show container status
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import sys
import uuid
from pathlib import Path
from typing import Any

from gamedock.config import get_settings
from gamedock.logger import set_level
from gamedock.types import ExecutionVariant, GameDescriptor, LaunchRequest, PlatformDescriptor


def _print_json(value: Any) -> None:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        value = dataclasses.asdict(value)
    print(json.dumps(value, indent=2, default=str))


def _game_from_args(args: argparse.Namespace) -> GameDescriptor:
    if args.game_json:
        raw = json.loads(Path(args.game_json).read_text())
        return GameDescriptor.from_dict(raw)
    if not args.id or not args.path:
        print("Error: --id and --path are required without --game-json", file=sys.stderr)
        sys.exit(2)
    return GameDescriptor(
        id=args.id,
        title=args.title or args.id,
        file_path=args.path,
        launch_command=args.command,
        arguments=tuple(args.arg or ()),
        fullscreen=args.fullscreen,
    )


def _request_from_args(args: argparse.Namespace) -> LaunchRequest:
    variant = ExecutionVariant(args.variant)
    return LaunchRequest(
        game=_game_from_args(args),
        platform=PlatformDescriptor(id=args.platform or variant.value, variant=variant, image=args.image),
        session_id=args.session or uuid.uuid4().hex[:12],
    )


# ---------------------------------------------------------------------------
# Subcommand handlers
# ---------------------------------------------------------------------------


def _display() -> None:
    from gamedock.engine import DisplayResolver

    _print_json(DisplayResolver(get_settings().display).resolve())


async def _sinks() -> None:
    from gamedock.engine import list_audio_sinks

    for sink in await list_audio_sinks():
        print(f"{sink.id}\t{sink.description}")


def _shortcut(path: str) -> int:
    from gamedock.setup import read_shortcut

    record = read_shortcut(path)
    if record is None:
        print(f"Error: could not parse shortcut {path}", file=sys.stderr)
        return 1
    _print_json(record)
    return 0


def _convert_reg(script: str, output: str | None) -> None:
    from gamedock.setup import convert_cmd_to_reg

    text = convert_cmd_to_reg(Path(script).read_text(encoding="utf-8", errors="replace"))
    if output:
        Path(output).write_text(text, encoding="utf-8")
    else:
        sys.stdout.write(text)


def _scan(directory: str, shortcuts: bool) -> None:
    from gamedock.setup import scan_for_executables, scan_for_shortcuts

    found = scan_for_shortcuts(directory) if shortcuts else scan_for_executables(directory)
    for path in found:
        print(path)


async def _launch(args: argparse.Namespace) -> int:
    from gamedock.engine import Orchestrator

    request = _request_from_args(args)
    async with Orchestrator() as orch:
        exited: asyncio.Future[int] = asyncio.get_running_loop().create_future()
        info = await orch.launch(request, on_exit=lambda code: exited.set_result(code))
        print(f"session {request.session_id} container {info.short_id} ({info.status})")
        if not args.wait:
            return 0
        exit_code = await exited
        print(f"exited with code {exit_code}")
        return exit_code


async def _debug(args: argparse.Namespace) -> None:
    from gamedock.engine import Orchestrator

    async with Orchestrator() as orch:
        info = await orch.launch_debug(_request_from_args(args))
        print(info.exec_command)


async def _container_command(command: str, container_id: str, tail: int = 100) -> None:
    from gamedock.engine import Orchestrator

    async with Orchestrator() as orch:
        match command:
            case "stop":
                await orch.stop(container_id)
            case "logs":
                print(await orch.logs(container_id, tail))
            case "status":
                print(await orch.status(container_id))


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def _add_launch_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--game-json", help="JSON file describing the game")
    parser.add_argument("--id", help="Game id")
    parser.add_argument("--title", help="Game title (default: id)")
    parser.add_argument("--path", help="Game directory (library-relative or absolute)")
    parser.add_argument("--command", help="Launch command (./start.sh or C:\\path\\game.exe)")
    parser.add_argument("--arg", action="append", help="Argument for the game (repeatable)")
    parser.add_argument("--fullscreen", action="store_true", help="Wine virtual desktop")
    parser.add_argument(
        "--variant",
        choices=[v.value for v in ExecutionVariant],
        default=ExecutionVariant.NATIVE.value,
    )
    parser.add_argument("--platform", help="Platform id (default: the variant)")
    parser.add_argument("--image", help="Runner image (default: per-variant from config)")
    parser.add_argument("--session", help="Session id (default: random)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gamedock",
        description="Run games in isolated containers",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("display", help="Show display/audio/GPU forwarding")
    sub.add_parser("sinks", help="List PulseAudio sinks")

    p = sub.add_parser("shortcut", help="Parse a .lnk shortcut")
    p.add_argument("file")

    p = sub.add_parser("convert-reg", help="Convert a REG ADD batch script to .reg")
    p.add_argument("script")
    p.add_argument("-o", "--output", help="Write to this file instead of stdout")

    p = sub.add_parser("scan", help="Find game executables in an install tree")
    p.add_argument("directory")
    p.add_argument("--shortcuts", action="store_true", help="Find .lnk files instead")

    p = sub.add_parser("launch", help="Launch a game session")
    _add_launch_args(p)
    p.add_argument("--wait", action="store_true", help="Block until the game exits")

    p = sub.add_parser("debug", help="Start an idle debug container")
    _add_launch_args(p)

    for name, help_text in (
        ("stop", "Stop a container"),
        ("logs", "Show container logs"),
        ("status", "Show container status"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("container_id")
        if name == "logs":
            p.add_argument("--tail", type=int, default=100)

    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    set_level(get_settings().logging.level)

    code = 0
    match args.command:
        case "display":
            _display()
        case "sinks":
            asyncio.run(_sinks())
        case "shortcut":
            code = _shortcut(args.file)
        case "convert-reg":
            _convert_reg(args.script, args.output)
        case "scan":
            _scan(args.directory, args.shortcuts)
        case "launch":
            code = asyncio.run(_launch(args))
        case "debug":
            asyncio.run(_debug(args))
        case "stop" | "logs" | "status":
            asyncio.run(_container_command(args.command, args.container_id, getattr(args, "tail", 100)))
    if code:
        sys.exit(code)


if __name__ == "__main__":
    main()
