"""通信协议

每一帧都是固定信封格式的 JSON 对象:

    {"type": "join_room", "data": {...}}

启用 request id 时，出站帧还会在顶层携带 "request_id";
不认识该字段的服务端会直接忽略。
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .exceptions import ProtocolError

# ==================== 消息类型 ====================


class MsgType(Enum):
    """协议消息类型"""

    # ---- Client → Server ----
    CREATE_ROOM = "create_room"
    JOIN_ROOM = "join_room"
    LEAVE_ROOM = "leave_room"
    START_TURN = "start_turn"
    UPDATE_PROFILE = "update_profile"

    # ---- 双向 ----
    BROADCAST = "broadcast"

    # ---- Server → Client ----
    ROOM_CREATED = "room_created"
    ROOM_JOINED = "room_joined"
    PLAYER_JOINED = "player_joined"
    PLAYER_LEFT = "player_left"
    PROFILE_UPDATED = "profile_updated"
    TURN_CHANGED = "turn_changed"
    ERROR = "error"


# ==================== 消息信封 ====================


@dataclass
class ServerMsg:
    """服务端 → 客户端消息

    type 保留原始字符串，未知类型的消息也能解码并送达订阅者。
    """

    type: str
    data: dict[str, Any] = field(default_factory=dict)
    request_id: str | None = None

    @property
    def msg_type(self) -> MsgType | None:
        try:
            return MsgType(self.type)
        except ValueError:
            return None

    def to_json(self) -> str:
        obj: dict[str, Any] = {"type": self.type, "data": self.data}
        if self.request_id:
            obj["request_id"] = self.request_id
        return json.dumps(obj, ensure_ascii=False)

    @classmethod
    def from_json(cls, raw: str | bytes) -> ServerMsg:
        """解码一条入站帧

        Raises:
            ProtocolError: 不是 JSON、不是对象，或缺少字符串 "type"
        """
        try:
            obj = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise ProtocolError(f"Malformed frame: {e}") from e
        if not isinstance(obj, dict):
            raise ProtocolError("Frame is not a JSON object")
        msg_type = obj.get("type")
        if not isinstance(msg_type, str) or not msg_type:
            raise ProtocolError("Frame has no type")
        data = obj.get("data")
        if not isinstance(data, dict):
            # data 为 null 或缺失时都解码为空 dict
            data = {}
        request_id = obj.get("request_id")
        return cls(
            type=msg_type,
            data=data,
            request_id=request_id if isinstance(request_id, str) else None,
        )

    # ---------- 工厂方法 (供测试与模拟服务端使用) ----------

    @classmethod
    def error(cls, message: str) -> ServerMsg:
        return cls(type=MsgType.ERROR.value, data={"message": message})

    @classmethod
    def room_created(cls, room_id: str, your_client_id: str,
                     peers: list[dict[str, Any]],
                     current_turn: dict[str, Any] | None = None) -> ServerMsg:
        return cls(type=MsgType.ROOM_CREATED.value, data={
            "room_id": room_id,
            "your_client_id": your_client_id,
            "peers": peers,
            "current_turn": current_turn,
        })

    @classmethod
    def room_joined(cls, room_id: str, your_client_id: str,
                    peers: list[dict[str, Any]],
                    current_turn: dict[str, Any] | None = None) -> ServerMsg:
        return cls(type=MsgType.ROOM_JOINED.value, data={
            "room_id": room_id,
            "your_client_id": your_client_id,
            "peers": peers,
            "current_turn": current_turn,
        })

    @classmethod
    def player_joined(cls, room_id: str, peer_id: str, display_name: str,
                      color: str) -> ServerMsg:
        return cls(type=MsgType.PLAYER_JOINED.value, data={
            "room_id": room_id,
            "peer_id": peer_id,
            "display_name": display_name,
            "color": color,
        })

    @classmethod
    def player_left(cls, room_id: str, peer_id: str) -> ServerMsg:
        return cls(type=MsgType.PLAYER_LEFT.value, data={
            "room_id": room_id,
            "peer_id": peer_id,
        })

    @classmethod
    def profile_updated(cls, room_id: str, peer_id: str, display_name: str,
                        color: str, total_turn_time: int | None = None) -> ServerMsg:
        data: dict[str, Any] = {
            "room_id": room_id,
            "peer_id": peer_id,
            "display_name": display_name,
            "color": color,
        }
        if total_turn_time is not None:
            data["total_turn_time"] = total_turn_time
        return cls(type=MsgType.PROFILE_UPDATED.value, data=data)

    @classmethod
    def turn_changed(cls, room_id: str, current_turn: dict[str, Any] | None,
                     turn_start_time: int | None, sequence: int) -> ServerMsg:
        return cls(type=MsgType.TURN_CHANGED.value, data={
            "room_id": room_id,
            "current_turn": current_turn,
            "turn_start_time": turn_start_time,
            "sequence": sequence,
        })


@dataclass
class ClientMsg:
    """客户端 → 服务端消息"""

    type: MsgType
    data: dict[str, Any] = field(default_factory=dict)
    request_id: str | None = None

    def to_json(self) -> str:
        """序列化为 JSON 字符串

        Raises:
            ProtocolError: data 无法 JSON 序列化
        """
        obj: dict[str, Any] = {"type": self.type.value, "data": self.data}
        if self.request_id:
            obj["request_id"] = self.request_id
        try:
            return json.dumps(obj, ensure_ascii=False, allow_nan=False)
        except (TypeError, ValueError) as e:
            raise ProtocolError(f"Cannot encode {self.type.value}: {e}") from e

    # ---------- 工厂方法 ----------

    @classmethod
    def create_room(cls, display_name: str | None = None,
                    color: str | None = None) -> ClientMsg:
        return cls(type=MsgType.CREATE_ROOM, data=_profile_fields(display_name, color))

    @classmethod
    def join_room(cls, room_id: str, display_name: str | None = None,
                  color: str | None = None) -> ClientMsg:
        return cls(type=MsgType.JOIN_ROOM, data={
            "room_id": room_id,
            **_profile_fields(display_name, color),
        })

    @classmethod
    def leave_room(cls, room_id: str) -> ClientMsg:
        return cls(type=MsgType.LEAVE_ROOM, data={"room_id": room_id})

    @classmethod
    def start_turn(cls, current_turn: str, new_turn: str) -> ClientMsg:
        """两个字段为空字符串均表示 "无人" """
        return cls(type=MsgType.START_TURN, data={
            "current_turn": current_turn,
            "new_turn": new_turn,
        })

    @classmethod
    def update_profile(cls, display_name: str | None = None,
                       color: str | None = None) -> ClientMsg:
        return cls(type=MsgType.UPDATE_PROFILE, data=_profile_fields(display_name, color))

    @classmethod
    def broadcast(cls, room_id: str, payload: str) -> ClientMsg:
        return cls(type=MsgType.BROADCAST, data={"room_id": room_id, "payload": payload})


def _profile_fields(display_name: str | None, color: str | None) -> dict[str, str]:
    # 未设置的字段直接省略，不发送 ""
    data = {}
    if display_name:
        data["display_name"] = display_name
    if color:
        data["color"] = color
    return data


# ==================== 房间号 ====================

_ROOM_ID_CHARS = re.compile(r"^[A-Z0-9]+$")


def normalize_room_id(room_id: str) -> str:
    return room_id.strip().upper()


def is_valid_room_id(room_id: str | None, length: int = 6) -> bool:
    """房间号不区分大小写: 恰好 `length` 个 [A-Z0-9] 字符"""
    if not room_id:
        return False
    normalized = room_id.upper()
    return len(normalized) == length and bool(_ROOM_ID_CHARS.match(normalized))
