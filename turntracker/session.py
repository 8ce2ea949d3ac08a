"""会话状态同步

维护客户端本地的房间镜像 (身份、玩家列表、当前回合)，使其与服务端
推送保持一致。turn_changed 推送携带单调递增的序号; 序号不大于已应用
序号的推送视为过期 (重复投递或被更新的推送超越)，直接丢弃。

观察者只会收到不可变快照，不会拿到可变镜像本身; 新注册的观察者会
立即以当前状态被调用一次。
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from .models import (
    BroadcastReceived,
    BroadcastReceivedData,
    PeerInfo,
    PlayerJoined,
    PlayerLeft,
    ProfileUpdated,
    RoomCreated,
    RoomJoined,
    ServerErrorEvent,
    TurnChanged,
    parse_server_event,
)
from .profile import ProfileStore
from .protocol import ServerMsg, normalize_room_id
from .registry import Subscribers, Unsubscribe

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Peer:
    """房间内的一名玩家"""

    client_id: str
    display_name: str = ""
    color: str = ""
    total_turn_time: int = 0  # 毫秒

    @classmethod
    def from_info(cls, info: PeerInfo) -> Peer:
        return cls(
            client_id=info.client_id,
            display_name=info.display_name,
            color=info.color,
            total_turn_time=info.total_turn_time,
        )


@dataclass(frozen=True)
class TurnState:
    """当前回合持有者、开始时间 (unix 毫秒) 及已应用的序号"""

    peer: Peer | None = None
    started_at: int | None = None
    sequence: int = 0

    @property
    def active(self) -> bool:
        return self.peer is not None


@dataclass
class SessionMirror:
    """可变镜像; 只由 SessionReconciler 持有和修改"""

    room_id: str | None = None
    client_id: str | None = None
    display_name: str | None = None
    color: str | None = None
    peers: list[Peer] = field(default_factory=list)
    current_turn: Peer | None = None
    turn_start_time: int | None = None
    last_sequence: int = 0


PeersObserver = Callable[[tuple[Peer, ...]], Any]
TurnObserver = Callable[[TurnState], Any]


class SessionReconciler:
    """将服务端推送应用到会话镜像并通知观察者

    Args:
        profile_store: 进入房间后保存自身 client id 的位置 (可选)
    """

    def __init__(self, profile_store: ProfileStore | None = None) -> None:
        self._mirror = SessionMirror()
        self._profile_store = profile_store

        self._peer_observers = Subscribers("peers")
        self._turn_observers = Subscribers("turn")
        self._error_observers = Subscribers("error")
        self._broadcast_observers = Subscribers("broadcast")

        self._handlers: dict[type, Callable[[Any], bool]] = {
            RoomCreated: self._apply_room_established,
            RoomJoined: self._apply_room_established,
            PlayerJoined: self._apply_player_joined,
            PlayerLeft: self._apply_player_left,
            ProfileUpdated: self._apply_profile_updated,
            TurnChanged: self._apply_turn_changed,
            BroadcastReceived: self._apply_broadcast,
            ServerErrorEvent: self._apply_error,
        }

    # ==================== 只读视图 ====================

    @property
    def room_id(self) -> str | None:
        return self._mirror.room_id

    @property
    def client_id(self) -> str | None:
        return self._mirror.client_id

    @property
    def display_name(self) -> str | None:
        return self._mirror.display_name

    @property
    def color(self) -> str | None:
        return self._mirror.color

    @property
    def last_sequence(self) -> int:
        return self._mirror.last_sequence

    @property
    def peers(self) -> tuple[Peer, ...]:
        return tuple(self._mirror.peers)

    @property
    def turn(self) -> TurnState:
        m = self._mirror
        return TurnState(peer=m.current_turn, started_at=m.turn_start_time,
                         sequence=m.last_sequence)

    @property
    def current_turn(self) -> Peer | None:
        return self._mirror.current_turn

    def get_peer(self, client_id: str) -> Peer | None:
        for peer in self._mirror.peers:
            if peer.client_id == client_id:
                return peer
        return None

    # ==================== 观察者 ====================

    def subscribe_peers(self, observer: PeersObserver) -> Unsubscribe:
        """订阅玩家列表; 注册时立即以当前列表调用一次"""
        unsubscribe = self._peer_observers.add(observer)
        observer(self.peers)
        return unsubscribe

    def subscribe_turn(self, observer: TurnObserver) -> Unsubscribe:
        """订阅当前回合; 注册时立即以当前回合调用一次"""
        unsubscribe = self._turn_observers.add(observer)
        observer(self.turn)
        return unsubscribe

    def subscribe_errors(self, observer: Callable[[str], Any]) -> Unsubscribe:
        """服务端 "error" 推送的用户提示通道"""
        return self._error_observers.add(observer)

    def subscribe_broadcasts(
        self, observer: Callable[[BroadcastReceivedData], Any]
    ) -> Unsubscribe:
        return self._broadcast_observers.add(observer)

    def _notify(self) -> None:
        self._peer_observers.publish(self.peers)
        self._turn_observers.publish(self.turn)

    # ==================== 应用推送 ====================

    def apply(self, msg: ServerMsg) -> bool:
        """应用一条入站消息，镜像发生变化时返回 True"""
        try:
            event = parse_server_event(msg)
        except ValidationError as e:
            logger.warning("忽略格式错误的 %s: %s", msg.type, e)
            return False
        if event is None:
            logger.debug("忽略未知消息类型: %s", msg.type)
            return False

        changed = self._handlers[type(event)](event)
        if changed:
            self._notify()
        return changed

    def clear(self) -> None:
        """清空房间状态 (退出或销毁时)"""
        self._mirror = SessionMirror()
        self._notify()

    def _in_room(self, room_id: str | None, msg_type: str) -> bool:
        current = self._mirror.room_id
        if current is None:
            logger.debug("忽略 %s: 尚未进入房间", msg_type)
            return False
        if room_id is not None and normalize_room_id(room_id) != current:
            logger.debug("忽略房间 %s 的 %s (当前房间 %s)", room_id, msg_type, current)
            return False
        return True

    def _apply_room_established(self, event: RoomCreated | RoomJoined) -> bool:
        data = event.data
        if not data.room_id:
            logger.warning("忽略缺少 room_id 的 %s", event.type)
            return False

        peers = [Peer.from_info(p) for p in data.peers]
        current = data.current_turn
        mirror = SessionMirror(
            room_id=normalize_room_id(data.room_id),
            client_id=data.your_client_id or self._mirror.client_id,
            peers=peers,
            current_turn=Peer.from_info(current) if current and current.client_id else None,
            last_sequence=0,
        )
        for peer in peers:
            if peer.client_id == mirror.client_id:
                mirror.display_name = peer.display_name
                mirror.color = peer.color
                break
        self._mirror = mirror

        if mirror.client_id and self._profile_store is not None:
            self._profile_store.save_client_id(mirror.client_id)
        logger.info("已进入房间 %s，身份 %s (%d 名玩家)",
                    mirror.room_id, mirror.client_id, len(peers))
        return True

    def _apply_player_joined(self, event: PlayerJoined) -> bool:
        data = event.data
        if not self._in_room(data.room_id, event.type):
            return False
        if not data.peer_id or data.display_name is None or data.color is None:
            logger.warning("忽略字段不全的 player_joined: %s", data)
            return False
        self._mirror.peers.append(Peer(
            client_id=data.peer_id,
            display_name=data.display_name,
            color=data.color,
        ))
        return True

    def _apply_player_left(self, event: PlayerLeft) -> bool:
        data = event.data
        if not self._in_room(data.room_id, event.type):
            return False
        if not data.peer_id:
            logger.warning("忽略缺少 peer_id 的 player_left")
            return False

        mirror = self._mirror
        remaining = [p for p in mirror.peers if p.client_id != data.peer_id]
        changed = len(remaining) != len(mirror.peers)
        mirror.peers = remaining
        if mirror.current_turn is not None and mirror.current_turn.client_id == data.peer_id:
            mirror.current_turn = None
            mirror.turn_start_time = None
            changed = True
        return changed

    def _apply_profile_updated(self, event: ProfileUpdated) -> bool:
        data = event.data
        if not self._in_room(data.room_id, event.type):
            return False
        if not data.peer_id:
            logger.warning("忽略缺少 peer_id 的 profile_updated")
            return False

        changes = {
            key: value
            for key, value in (
                ("display_name", data.display_name),
                ("color", data.color),
                ("total_turn_time", data.total_turn_time),
            )
            if value is not None
        }
        mirror = self._mirror
        for i, peer in enumerate(mirror.peers):
            if peer.client_id == data.peer_id:
                updated = dataclasses.replace(peer, **changes)
                mirror.peers[i] = updated
                break
        else:
            logger.debug("profile_updated 指向未知玩家 %s", data.peer_id)
            return False

        if mirror.current_turn is not None and mirror.current_turn.client_id == data.peer_id:
            mirror.current_turn = dataclasses.replace(mirror.current_turn, **changes)
        if data.peer_id == mirror.client_id:
            if data.display_name is not None:
                mirror.display_name = data.display_name
            if data.color is not None:
                mirror.color = data.color
        return True

    def _apply_turn_changed(self, event: TurnChanged) -> bool:
        data = event.data
        if not self._in_room(data.room_id, event.type):
            return False
        if data.sequence is None:
            logger.warning("忽略缺少 sequence 的 turn_changed")
            return False

        mirror = self._mirror
        if data.sequence <= mirror.last_sequence:
            logger.warning("丢弃过期的 turn_changed: 序号 %d <= %d",
                           data.sequence, mirror.last_sequence)
            return False

        mirror.last_sequence = data.sequence
        current = data.current_turn
        if current is None or not current.client_id:
            mirror.current_turn = None
            mirror.turn_start_time = None
        else:
            mirror.current_turn = Peer.from_info(current)
            mirror.turn_start_time = data.turn_start_time
        return True

    def _apply_broadcast(self, event: BroadcastReceived) -> bool:
        if self._in_room(event.data.room_id, event.type):
            self._broadcast_observers.publish(event.data)
        return False

    def _apply_error(self, event: ServerErrorEvent) -> bool:
        message = event.data.message or "Server error"
        logger.error("服务端错误: %s", message)
        self._error_observers.publish(message)
        return False
