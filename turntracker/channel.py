"""WebSocket 传输通道

同一时刻只持有一条 WebSocket 连接，并负责维持它:
- connect() 幂等，并发调用共享同一次连接尝试
- send() 按需自动连接
- 每条解码成功的入站消息分发给所有 on_message() 订阅者;
  格式错误的帧记录日志后丢弃
- 意外断开或连接失败都会触发有上限的自动重连;
  连接失败时调用方仍会收到异常
- destroy() 不可逆，销毁后的通道不再重连
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from .config import ClientConfig, get_config
from .exceptions import (
    ChannelDestroyedError,
    ChannelNotOpenError,
    ProtocolError,
    TransportError,
)
from .protocol import ClientMsg, ServerMsg
from .registry import Subscribers, Unsubscribe

if TYPE_CHECKING:
    from websockets.asyncio.client import ClientConnection

logger = logging.getLogger(__name__)

Connector = Callable[..., Awaitable["ClientConnection"]]


class ChannelState(Enum):
    """通道连接状态"""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"


class Channel:
    """到单个服务端端点的持久双工消息通道

    Args:
        url: WebSocket 地址，默认取 config.ws_url
        config: 客户端配置，默认 get_config()
        connector: 建立连接的协程函数，默认
            websockets.asyncio.client.connect (测试中可替换)
    """

    def __init__(
        self,
        url: str | None = None,
        config: ClientConfig | None = None,
        connector: Connector | None = None,
    ) -> None:
        self.config = config or get_config()
        self.url = url or self.config.ws_url
        # 以 ?client_id= 发送，服务端据此把重连的客户端绑定回原身份
        self.client_id: str | None = None

        self._connector: Connector = connector or connect
        self._ws: ClientConnection | None = None
        self._state = ChannelState.DISCONNECTED
        self._destroyed = False

        self._connect_task: asyncio.Task[None] | None = None
        self._reader_task: asyncio.Task[None] | None = None

        # 重连策略状态
        self.reconnect_attempts: int = 0
        self._reconnect_handle: asyncio.TimerHandle | None = None
        self._reconnect_task: asyncio.Task[None] | None = None

        self._message_subscribers = Subscribers("message")
        self._destroy_subscribers = Subscribers("destroy")

    # ==================== 状态 ====================

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is ChannelState.OPEN and self._ws is not None

    @property
    def is_destroyed(self) -> bool:
        return self._destroyed

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_handle is not None

    def connection_url(self) -> str:
        if not self.client_id:
            return self.url
        parts = urlsplit(self.url)
        query = [(k, v) for k, v in parse_qsl(parts.query) if k != "client_id"]
        query.append(("client_id", self.client_id))
        return urlunsplit(parts._replace(query=urlencode(query)))

    # ==================== 订阅 ====================

    def on_message(self, callback: Callable[[ServerMsg], Any]) -> Unsubscribe:
        """注册入站消息订阅者"""
        return self._message_subscribers.add(callback)

    def on_destroy(self, callback: Callable[[Exception], Any]) -> Unsubscribe:
        """注册销毁回调 (仅在 destroy() 时调用一次)"""
        return self._destroy_subscribers.add(callback)

    # ==================== 连接管理 ====================

    async def connect(self) -> None:
        """若尚未连接则建立连接

        Raises:
            ChannelDestroyedError: 通道已被 destroy()
            TransportError: 无法建立连接
        """
        if self._destroyed:
            raise ChannelDestroyedError()
        if self.is_open:
            return

        task = self._connect_task
        if task is None:
            task = asyncio.ensure_future(self._open())
            task.add_done_callback(self._on_connect_done)
            self._connect_task = task

        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled() and self._destroyed:
                raise ChannelDestroyedError() from None
            raise

    async def _open(self) -> None:
        url = self.connection_url()
        self._state = ChannelState.CONNECTING
        logger.info("正在连接 %s", url)
        try:
            ws = await self._connector(url, open_timeout=self.config.open_timeout)
        except asyncio.CancelledError:
            self._state = ChannelState.DISCONNECTED
            raise
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            self._state = ChannelState.DISCONNECTED
            logger.error("连接 %s 失败: %s", url, e)
            # 连接失败等同于断开: 调用方收到异常，后台继续重连
            if not self._destroyed:
                self._schedule_reconnect()
            raise TransportError(f"WebSocket connection failed: {e}", url=url) from e

        if self._destroyed:
            await ws.close()
            raise ChannelDestroyedError()

        self._ws = ws
        self._state = ChannelState.OPEN
        self.reconnect_attempts = 0
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None
        logger.info("已连接到 %s", url)
        self._reader_task = asyncio.ensure_future(self._receive_loop(ws))

    def _on_connect_done(self, task: asyncio.Task[None]) -> None:
        if self._connect_task is task:
            self._connect_task = None
        if not task.cancelled():
            # 标记异常已读取; 等待方已通过 shield 收到
            task.exception()

    # ==================== 消息收发 ====================

    async def send(self, msg: ClientMsg) -> None:
        """按需连接后发送一帧

        Raises:
            ChannelDestroyedError / TransportError: 来自 connect()
            ChannelNotOpenError: 发送前连接已关闭
            ProtocolError: 消息无法序列化
        """
        await self.connect()
        ws = self._ws
        if ws is None or self._state is not ChannelState.OPEN:
            raise ChannelNotOpenError()
        raw = msg.to_json()
        try:
            await ws.send(raw)
        except ConnectionClosed as e:
            raise ChannelNotOpenError(f"WebSocket closed while sending: {e}") from e

    async def _receive_loop(self, ws: ClientConnection) -> None:
        try:
            async for raw in ws:
                self._dispatch(raw)
        except ConnectionClosed as e:
            logger.warning("接收循环中断: %s", e)
        finally:
            self._handle_closed(ws)

    def _dispatch(self, raw: str | bytes) -> None:
        try:
            msg = ServerMsg.from_json(raw)
        except ProtocolError as e:
            logger.warning("丢弃格式错误的帧: %s", e)
            return
        self._message_subscribers.publish(msg)

    def _handle_closed(self, ws: ClientConnection) -> None:
        if ws is not self._ws:
            return
        self._ws = None
        self._state = ChannelState.DISCONNECTED
        logger.info("连接已关闭")
        if not self._destroyed:
            self._schedule_reconnect()

    # ==================== 断线重连 ====================

    def _schedule_reconnect(self) -> None:
        max_attempts = self.config.max_reconnect_attempts
        if self.reconnect_attempts >= max_attempts:
            logger.error("已达最大重连次数 (%d)", max_attempts)
            return

        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()

        self.reconnect_attempts += 1
        logger.info(
            "%.1f 秒后重连尝试 %d/%d...",
            self.config.reconnect_delay,
            self.reconnect_attempts, max_attempts,
        )
        loop = asyncio.get_running_loop()
        self._reconnect_handle = loop.call_later(
            self.config.reconnect_delay, self._fire_reconnect
        )

    def _fire_reconnect(self) -> None:
        self._reconnect_handle = None
        if self._destroyed:
            return
        task = asyncio.ensure_future(self.connect())
        task.add_done_callback(self._on_reconnect_done)
        self._reconnect_task = task

    def _on_reconnect_done(self, task: asyncio.Task[None]) -> None:
        if self._reconnect_task is task:
            self._reconnect_task = None
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            # 失败的连接已安排下一次重连
            logger.warning("重连失败: %s", exc)

    # ==================== 销毁 ====================

    async def destroy(self) -> None:
        """永久关闭通道

        取消已安排的重连，通知 on_destroy() 订阅者 (用于拒绝挂起的
        请求等待)，关闭连接并清空所有订阅者。
        """
        if self._destroyed:
            return
        self._destroyed = True
        self._state = ChannelState.CLOSING

        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None
        for task in (self._connect_task, self._reconnect_task):
            if task is not None and not task.done():
                task.cancel()

        self._destroy_subscribers.publish(ChannelDestroyedError())

        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                await ws.close()
            except (OSError, WebSocketException) as e:
                logger.debug("关闭连接时出错: %s", e)
        if self._reader_task is not None and not self._reader_task.done():
            self._reader_task.cancel()
        self._reader_task = None

        self._message_subscribers.clear()
        self._destroy_subscribers.clear()
        self._state = ChannelState.DISCONNECTED
        logger.info("通道已销毁")
