"""房间与回合操作

每个操作根据参数和本地缓存的默认资料构造一条请求，然后直接发送，
或发送后等待匹配的应答。未设置的可选字段不会出现在消息中。
"""

from __future__ import annotations

import json
import logging
from typing import Any

from .correlator import WaitSpec
from .exceptions import InvalidRoomIdError, NotInRoomError, ProtocolError
from .protocol import ClientMsg, MsgType, ServerMsg, is_valid_room_id, normalize_room_id
from .tracker import TurnTracker

logger = logging.getLogger(__name__)


def _profile_defaults(tracker: TurnTracker, display_name: str | None,
                      color: str | None) -> tuple[str | None, str | None]:
    defaults = tracker.profile_store.get_default_profile()
    return display_name or defaults.display_name, color or defaults.color


async def create_room(tracker: TurnTracker, display_name: str | None = None,
                      color: str | None = None) -> ServerMsg:
    """创建房间; 房间号 (以及缺省的资料) 由服务端生成"""
    display_name, color = _profile_defaults(tracker, display_name, color)
    logger.info("创建房间")
    return await tracker.correlator.send_and_wait(
        ClientMsg.create_room(display_name, color),
        WaitSpec(MsgType.ROOM_CREATED, lambda data: bool(data.get("room_id"))),
    )


async def join_room(tracker: TurnTracker, room_id: str, display_name: str | None = None,
                    color: str | None = None) -> ServerMsg:
    """按房间号加入已有房间 (不区分大小写)"""
    normalized = normalize_room_id(room_id or "")
    length = tracker.config.room_id_length
    if not is_valid_room_id(normalized, length):
        raise InvalidRoomIdError(room_id, length)

    display_name, color = _profile_defaults(tracker, display_name, color)
    logger.info("加入房间 %s", normalized)
    return await tracker.correlator.send_and_wait(
        ClientMsg.join_room(normalized, display_name, color),
        WaitSpec(
            MsgType.ROOM_JOINED,
            lambda data: isinstance(data.get("room_id"), str)
            and data["room_id"].upper() == normalized,
        ),
    )


async def leave_room(tracker: TurnTracker) -> None:
    """离开当前房间并清空本地房间状态"""
    room_id = tracker.room_id
    await tracker.channel.send(ClientMsg.leave_room(room_id))
    logger.info("已离开房间 %s", room_id)
    tracker.session.clear()


async def start_turn(tracker: TurnTracker, new_turn: str | None = None) -> None:
    """把回合交给 `new_turn`; 不指定目标即结束当前回合

    current_turn 取自本地缓存，是否仍然准确由服务端判断。
    """
    current = tracker.current_turn
    await tracker.channel.send(ClientMsg.start_turn(
        current_turn=current.client_id if current else "",
        new_turn=new_turn or "",
    ))


async def end_turn(tracker: TurnTracker) -> None:
    await start_turn(tracker)


async def update_profile(tracker: TurnTracker, display_name: str | None = None,
                         color: str | None = None) -> None:
    await tracker.channel.send(ClientMsg.update_profile(display_name, color))


async def broadcast(tracker: TurnTracker, payload: Any) -> None:
    """向房间转发任意载荷; 非字符串载荷按 JSON 发送"""
    if not tracker.in_room:
        raise NotInRoomError("Cannot broadcast: not in a room")
    if not isinstance(payload, str):
        try:
            payload = json.dumps(payload, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise ProtocolError(f"Cannot encode broadcast payload: {e}") from e
    await tracker.channel.send(ClientMsg.broadcast(tracker.room_id, payload))
