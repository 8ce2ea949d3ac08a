"""回合追踪客户端: 持有一条通道及其上的全部状态

TurnTracker 独占自己的 Channel、Correlator 和 SessionReconciler，
不与其他实例共享。TrackerHolder 提供 "取得或创建" 的访问方式，
无需模块级全局状态。
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from .channel import Channel, Connector
from .config import ClientConfig, get_config
from .correlator import Correlator
from .exceptions import NotInRoomError
from .models import BroadcastReceivedData
from .profile import MemoryProfileStore, ProfileStore
from .protocol import ServerMsg
from .registry import Unsubscribe
from .session import Peer, SessionReconciler, TurnState

logger = logging.getLogger(__name__)


class TurnTracker:
    """单个共享房间的客户端

    Args:
        config: 客户端配置，默认 get_config()
        profile_store: 默认资料及持久化的 client id
        url: WebSocket 地址，默认 config.ws_url
        connector: 传给 Channel 的连接函数 (测试用)
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        profile_store: ProfileStore | None = None,
        url: str | None = None,
        connector: Connector | None = None,
    ) -> None:
        self.config = config or get_config()
        self.profile_store: ProfileStore = profile_store or MemoryProfileStore()

        self._channel = Channel(url, self.config, connector)
        self._correlator = Correlator(self._channel)
        self._session = SessionReconciler(self.profile_store)

        # (重)连时绑定回之前的玩家身份
        self._channel.client_id = self.profile_store.get_client_id()
        self._channel.on_message(self._on_message)

    def _on_message(self, msg: ServerMsg) -> None:
        self._session.apply(msg)
        client_id = self._session.client_id
        if client_id and client_id != self._channel.client_id:
            self._channel.client_id = client_id

    # ==================== 组件 ====================

    @property
    def channel(self) -> Channel:
        return self._channel

    @property
    def correlator(self) -> Correlator:
        return self._correlator

    @property
    def session(self) -> SessionReconciler:
        return self._session

    # ==================== 房间状态 ====================

    @property
    def in_room(self) -> bool:
        return self._session.room_id is not None

    @property
    def room_id(self) -> str:
        room_id = self._session.room_id
        if room_id is None:
            raise NotInRoomError("Room ID not set")
        return room_id

    @property
    def client_id(self) -> str | None:
        return self._session.client_id or self.profile_store.get_client_id()

    @property
    def current_turn(self) -> Peer | None:
        return self._session.current_turn

    @property
    def peers(self) -> tuple[Peer, ...]:
        return self._session.peers

    @property
    def turn(self) -> TurnState:
        return self._session.turn

    # ==================== 观察者 ====================

    def subscribe_peers(self, observer: Callable[[tuple[Peer, ...]], Any]) -> Unsubscribe:
        return self._session.subscribe_peers(observer)

    def subscribe_turn(self, observer: Callable[[TurnState], Any]) -> Unsubscribe:
        return self._session.subscribe_turn(observer)

    def subscribe_errors(self, observer: Callable[[str], Any]) -> Unsubscribe:
        return self._session.subscribe_errors(observer)

    def subscribe_broadcasts(
        self, observer: Callable[[BroadcastReceivedData], Any]
    ) -> Unsubscribe:
        return self._session.subscribe_broadcasts(observer)

    def on_message(self, callback: Callable[[ServerMsg], Any]) -> Unsubscribe:
        return self._channel.on_message(callback)

    # ==================== 销毁 ====================

    async def destroy(self) -> None:
        """关闭通道并清空房间状态; client id 保留"""
        logger.info("销毁回合追踪客户端")
        await self._channel.destroy()
        self._session.clear()


class TrackerHolder:
    """至多持有一个存活的 TurnTracker

    Args:
        factory: 创建新实例的工厂，默认 TurnTracker()
    """

    def __init__(self, factory: Callable[[], TurnTracker] | None = None) -> None:
        self._factory = factory or TurnTracker
        self._tracker: TurnTracker | None = None

    @property
    def current(self) -> TurnTracker | None:
        return self._tracker

    def get_or_create(self) -> TurnTracker:
        if self._tracker is None:
            logger.debug("创建新的回合追踪客户端")
            self._tracker = self._factory()
        return self._tracker

    async def destroy(self) -> None:
        tracker, self._tracker = self._tracker, None
        if tracker is not None:
            await tracker.destroy()


def get_persistent_tracker(holder: TrackerHolder) -> TurnTracker:
    """返回 holder 持有的实例，首次使用时创建"""
    return holder.get_or_create()
