"""服务端 → 客户端消息的 Pydantic 模型

每种已知消息类型都有独立的数据模型，外层信封是以 "type" 为判别字段的
联合类型，状态同步只需处理封闭的事件集合，而不是直接读取无类型的 dict。

设计原则:
  - 全部使用 extra="ignore": 新版服务端可能增加字段
  - 状态同步可以缺省的字段默认为 None，None 表示 "保持该字段不变"
  - 玩家条目只要求 client_id; 缺少 client_id 的条目被丢弃，
    房间的其余部分照常应用
  - 已知类型的数据不合法时抛出 pydantic.ValidationError;
    未知类型不算错误 (parse_server_event 返回 None)
"""

from __future__ import annotations

import logging
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from .protocol import MsgType, ServerMsg

logger = logging.getLogger(__name__)


class _Model(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)


# ====================================================================== #
#  消息数据                                                                #
# ====================================================================== #


class PeerInfo(_Model):
    """服务端描述的房间玩家

    只有 client_id 必填; 名称、颜色、时长为 null 时按未设置处理。
    """

    client_id: str
    display_name: str = ""
    color: str = ""
    total_turn_time: int = 0  # 毫秒

    @field_validator("display_name", "color", mode="before")
    @classmethod
    def _null_text(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("total_turn_time", mode="before")
    @classmethod
    def _null_duration(cls, v: Any) -> Any:
        return 0 if v is None else v


def _has_client_id(entry: Any) -> bool:
    return isinstance(entry, dict) and isinstance(entry.get("client_id"), str) and bool(entry["client_id"])


def _peer_or_none(v: Any) -> Any:
    # 没有 client_id 的回合持有者等同于无人持有回合
    if isinstance(v, dict) and not isinstance(v.get("client_id"), str):
        return None
    return v


class RoomStateData(_Model):
    """room_created / room_joined"""

    room_id: str | None = None
    your_client_id: str | None = None
    peers: list[PeerInfo] = Field(default_factory=list)
    current_turn: PeerInfo | None = None

    @field_validator("peers", mode="before")
    @classmethod
    def _drop_anonymous_peers(cls, v: Any) -> Any:
        if v is None:
            return []
        if not isinstance(v, list):
            return v
        kept = [entry for entry in v if _has_client_id(entry)]
        if len(kept) != len(v):
            logger.warning("丢弃 %d 条缺少 client_id 的玩家条目", len(v) - len(kept))
        return kept

    @field_validator("current_turn", mode="before")
    @classmethod
    def _anonymous_turn(cls, v: Any) -> Any:
        return _peer_or_none(v)


class PlayerJoinedData(_Model):
    room_id: str | None = None
    peer_id: str | None = None
    display_name: str | None = None
    color: str | None = None


class PlayerLeftData(_Model):
    room_id: str | None = None
    peer_id: str | None = None


class ProfileUpdatedData(_Model):
    room_id: str | None = None
    peer_id: str | None = None
    display_name: str | None = None
    color: str | None = None
    total_turn_time: int | None = None


class TurnChangedData(_Model):
    room_id: str | None = None
    current_turn: PeerInfo | None = None
    turn_start_time: int | None = None  # unix 毫秒
    sequence: int | None = Field(default=None, ge=0)

    @field_validator("current_turn", mode="before")
    @classmethod
    def _anonymous_turn(cls, v: Any) -> Any:
        return _peer_or_none(v)


class BroadcastReceivedData(_Model):
    room_id: str | None = None
    sender: str | None = Field(default=None, alias="from")
    payload: Any = None


class ErrorData(_Model):
    message: str | None = None


# ====================================================================== #
#  消息信封                                                                #
# ====================================================================== #


class RoomCreated(_Model):
    type: Literal["room_created"]
    data: RoomStateData


class RoomJoined(_Model):
    type: Literal["room_joined"]
    data: RoomStateData


class PlayerJoined(_Model):
    type: Literal["player_joined"]
    data: PlayerJoinedData


class PlayerLeft(_Model):
    type: Literal["player_left"]
    data: PlayerLeftData


class ProfileUpdated(_Model):
    type: Literal["profile_updated"]
    data: ProfileUpdatedData


class TurnChanged(_Model):
    type: Literal["turn_changed"]
    data: TurnChangedData


class BroadcastReceived(_Model):
    type: Literal["broadcast"]
    data: BroadcastReceivedData


class ServerErrorEvent(_Model):
    type: Literal["error"]
    data: ErrorData


ServerEvent = Annotated[
    Union[
        RoomCreated,
        RoomJoined,
        PlayerJoined,
        PlayerLeft,
        ProfileUpdated,
        TurnChanged,
        BroadcastReceived,
        ServerErrorEvent,
    ],
    Field(discriminator="type"),
]

_EVENT_ADAPTER: TypeAdapter[ServerEvent] = TypeAdapter(ServerEvent)

SERVER_EVENT_TYPES: frozenset[str] = frozenset({
    MsgType.ROOM_CREATED.value,
    MsgType.ROOM_JOINED.value,
    MsgType.PLAYER_JOINED.value,
    MsgType.PLAYER_LEFT.value,
    MsgType.PROFILE_UPDATED.value,
    MsgType.TURN_CHANGED.value,
    MsgType.BROADCAST.value,
    MsgType.ERROR.value,
})


def parse_server_event(msg: ServerMsg) -> ServerEvent | None:
    """把解码后的帧校验为对应的类型化事件

    本客户端不认识的消息类型返回 None。

    Raises:
        pydantic.ValidationError: 已知类型但数据不合法
    """
    if msg.type not in SERVER_EVENT_TYPES:
        return None
    return _EVENT_ADAPTER.validate_python({"type": msg.type, "data": msg.data})
