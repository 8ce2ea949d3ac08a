"""回合追踪命令行客户端

    turn-tracker --server ws://localhost:8080/ws --name Ann --join AB12CD

玩家列表和回合变化到达时即时输出; 操作失败只显示提示，命令行保持可用。
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import re
import shlex
import sys
import time
from collections.abc import Awaitable, Callable

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import handlers
from .config import ClientConfig
from .exceptions import TrackerError
from .health import check_health
from .models import BroadcastReceivedData
from .profile import JsonProfileStore, MemoryProfileStore, ProfileStore
from .session import Peer, TurnState
from .tracker import TurnTracker

logger = logging.getLogger(__name__)

HELP_TEXT = (
    "turn <client_id>  give the turn to a peer\n"
    "end               end the current turn\n"
    "name <name>       change display name\n"
    "color <#rrggbb>   change color\n"
    "say <text>        broadcast to the room\n"
    "who               show the roster\n"
    "leave             leave the room and quit\n"
    "quit              quit"
)

_HEX_COLOR = re.compile(r"^#[0-9a-fA-F]{6}$")


def _format_duration(ms: int) -> str:
    seconds = ms // 1000
    return f"{seconds // 60}:{seconds % 60:02d}"


class TrackerCLI:
    """用 rich 渲染追踪状态并执行输入的命令"""

    def __init__(self, tracker: TurnTracker, console: Console | None = None) -> None:
        self.tracker = tracker
        self.console = console or Console(highlight=False)
        self._unsubscribes = [
            tracker.subscribe_peers(self.show_peers),
            tracker.subscribe_turn(self.show_turn),
            tracker.subscribe_errors(self.toast_error),
            tracker.subscribe_broadcasts(self.show_broadcast),
        ]

    # ==================== 渲染 ====================

    def show_peers(self, peers: tuple[Peer, ...]) -> None:
        if not peers:
            return
        current = self.tracker.current_turn
        table = Table(box=box.ROUNDED, title=f"Room {self.tracker.session.room_id}")
        table.add_column("", width=2)
        table.add_column("Client", style="dim")
        table.add_column("Name")
        table.add_column("Turn time", justify="right")
        for peer in peers:
            marker = "▶" if current and current.client_id == peer.client_id else ""
            me = " (you)" if peer.client_id == self.tracker.client_id else ""
            name_style = peer.color if _HEX_COLOR.match(peer.color) else "white"
            table.add_row(
                marker,
                peer.client_id,
                f"[{name_style}]{escape(peer.display_name)}[/]{me}",
                _format_duration(peer.total_turn_time),
            )
        self.console.print(table)

    def show_turn(self, turn: TurnState) -> None:
        if turn.sequence == 0 and not turn.active:
            return
        if turn.peer is None:
            self.console.print("[yellow]No one's turn[/yellow]")
            return
        since = ""
        if turn.started_at:
            since = time.strftime(" since %H:%M:%S", time.localtime(turn.started_at / 1000))
        self.console.print(f"[bold green]{escape(turn.peer.display_name)}'s turn[/bold green]{since}")

    def show_broadcast(self, data: BroadcastReceivedData) -> None:
        self.console.print(f"[cyan]{escape(str(data.sender))}[/cyan]: {escape(str(data.payload))}")

    def toast_error(self, message: str) -> None:
        self.console.print(f"[red]✗ {escape(message)}[/red]")

    # ==================== 命令 ====================

    async def _guard(self, operation: Awaitable[object]) -> None:
        try:
            await operation
        except TrackerError as e:
            logger.warning("操作失败: %s", e)
            self.toast_error(str(e))

    async def execute(self, line: str) -> bool:
        """执行一行命令，需要退出时返回 False"""
        try:
            parts = shlex.split(line)
        except ValueError as e:
            self.toast_error(f"Bad input: {e}")
            return True
        if not parts:
            return True
        command, args = parts[0].lower(), parts[1:]
        arg = " ".join(args)

        commands: dict[str, Callable[[], Awaitable[object]]] = {
            "turn": lambda: handlers.start_turn(self.tracker, arg or None),
            "end": lambda: handlers.end_turn(self.tracker),
            "name": lambda: handlers.update_profile(self.tracker, display_name=arg or None),
            "color": lambda: handlers.update_profile(self.tracker, color=arg or None),
            "say": lambda: handlers.broadcast(self.tracker, arg),
        }

        if command in ("quit", "exit"):
            return False
        if command == "leave":
            await self._guard(handlers.leave_room(self.tracker))
            return False
        if command == "who":
            self.show_peers(self.tracker.peers)
            return True
        if command == "help":
            self.console.print(HELP_TEXT)
            return True
        action = commands.get(command)
        if action is None:
            self.toast_error(f"Unknown command: {command} (try 'help')")
            return True
        await self._guard(action())
        return True

    async def run(self) -> None:
        while True:
            try:
                line = await asyncio.to_thread(input, "> ")
            except EOFError:
                break
            if not await self.execute(line):
                break

    def close(self) -> None:
        for unsubscribe in self._unsubscribes:
            unsubscribe()
        self._unsubscribes.clear()


async def cli_client_main(args: argparse.Namespace) -> int:
    overrides = {"ws_url": args.server} if args.server else {}
    config = ClientConfig(**overrides)
    console = Console(highlight=False)

    if not args.skip_health and not await check_health(config.ws_url, config.health_timeout):
        console.print(f"[red]Backend unavailable at {config.ws_url}[/red]")
        return 1

    store: ProfileStore = JsonProfileStore(args.profile) if args.profile else MemoryProfileStore()
    if args.name or args.color:
        defaults = store.get_default_profile()
        store.save_default_profile(args.name or defaults.display_name,
                                   args.color or defaults.color)

    tracker = TurnTracker(config=config, profile_store=store)
    cli = TrackerCLI(tracker, console)
    try:
        if args.join:
            await handlers.join_room(tracker, args.join)
        else:
            await handlers.create_room(tracker)
        console.print(f"✓ In room [bold]{tracker.room_id}[/bold] as {tracker.client_id}")
        await cli.run()
    except TrackerError as e:
        logger.error("无法进入房间: %s", e)
        console.print(f"[red]✗ {e}[/red]")
        return 1
    finally:
        cli.close()
        await tracker.destroy()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="turn-tracker", description="回合追踪客户端")
    parser.add_argument("--server", default=None, help="WebSocket 地址")
    parser.add_argument("--name", default=None, help="昵称")
    parser.add_argument("--color", default=None, help="显示颜色，如 #ff8800")
    parser.add_argument("--join", default=None, metavar="ROOM", help="加入房间 (不指定则创建新房间)")
    parser.add_argument("--profile", default=None, metavar="PATH", help="JSON 资料文件")
    parser.add_argument("--log-level", default=None, help="DEBUG|INFO|WARNING|ERROR")
    parser.add_argument("--skip-health", action="store_true", help="跳过健康检查")
    return parser


def main(argv: list[str] | None = None) -> None:
    from logging_config import setup_logging

    args = build_parser().parse_args(argv)
    setup_logging(level=args.log_level or ClientConfig().log_level)
    try:
        sys.exit(asyncio.run(cli_client_main(args)))
    except KeyboardInterrupt:
        logger.info("用户中断，退出")
        sys.exit(0)


if __name__ == "__main__":
    main()
