"""请求/应答关联 (基于 Channel)

send_and_wait() 先登记等待再发送，保证快速到达的应答不会被漏掉;
之后由第一条类型匹配且通过谓词检查的入站消息完成等待。
任何 "error" 推送都会拒绝全部挂起的等待。每个等待有独立的超时。
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from .channel import Channel
from .exceptions import RequestTimeoutError, ServerError
from .protocol import ClientMsg, MsgType, ServerMsg

logger = logging.getLogger(__name__)

Predicate = Callable[[dict[str, Any]], bool]


@dataclass(frozen=True)
class WaitSpec:
    """要等待的应答"""

    type: MsgType
    predicate: Predicate | None = None


@dataclass(eq=False)
class PendingWait:
    """一个挂起的等待"""

    reply_type: str
    predicate: Predicate | None
    future: asyncio.Future[ServerMsg]
    timeout: float
    request_id: str | None = None
    timer: asyncio.TimerHandle | None = field(default=None, repr=False)

    def accepts(self, msg: ServerMsg) -> bool:
        if msg.type != self.reply_type:
            return False
        if msg.request_id and self.request_id and msg.request_id != self.request_id:
            return False
        if self.predicate is None:
            return True
        try:
            return bool(self.predicate(msg.data))
        except Exception:
            logger.exception("%s 的谓词抛出异常，继续等待", self.reply_type)
            return False


class Correlator:
    """把出站请求与入站应答配对

    Args:
        channel: 发送与监听所用的通道
        timeout: 默认应答等待秒数
        send_request_ids: 为每个关联请求附加 request_id，
            回显了不同 request_id 的应答不予接受
    """

    def __init__(
        self,
        channel: Channel,
        timeout: float | None = None,
        send_request_ids: bool | None = None,
    ) -> None:
        self.channel = channel
        self.timeout = channel.config.request_timeout if timeout is None else timeout
        self.send_request_ids = (
            channel.config.send_request_ids if send_request_ids is None else send_request_ids
        )
        self._waits: list[PendingWait] = []
        channel.on_message(self._on_message)
        channel.on_destroy(self.cancel_all)

    @property
    def pending_count(self) -> int:
        return len(self._waits)

    # ==================== 等待 ====================

    def wait_for(
        self,
        reply_type: MsgType,
        predicate: Predicate | None = None,
        timeout: float | None = None,
        request_id: str | None = None,
    ) -> PendingWait:
        """登记一个等待并启动超时计时，调用方 await ``wait.future``"""
        loop = asyncio.get_running_loop()
        timeout = self.timeout if timeout is None else timeout
        wait = PendingWait(
            reply_type=reply_type.value,
            predicate=predicate,
            future=loop.create_future(),
            timeout=timeout,
            request_id=request_id,
        )
        wait.timer = loop.call_later(timeout, self._expire, wait)
        self._waits.append(wait)
        return wait

    async def send_and_wait(
        self,
        send: ClientMsg,
        wait: WaitSpec,
        timeout: float | None = None,
    ) -> ServerMsg:
        """发送请求并返回第一条匹配的应答

        Raises:
            RequestTimeoutError: 超时前没有匹配的应答
            ServerError: 等待期间服务端推送了错误
            ChannelDestroyedError: 等待期间通道被销毁
            TransportError / ChannelNotOpenError / ProtocolError: 发送失败
        """
        if self.send_request_ids and send.request_id is None:
            send.request_id = uuid.uuid4().hex

        pending = self.wait_for(wait.type, wait.predicate, timeout, send.request_id)
        try:
            await self.channel.send(send)
            return await pending.future
        finally:
            self._discard(pending)
            if pending.future.done() and not pending.future.cancelled():
                # 发送失败前已被拒绝; 标记异常已读取
                pending.future.exception()

    # ==================== 应答处理 ====================

    def _on_message(self, msg: ServerMsg) -> None:
        if msg.type == MsgType.ERROR.value:
            message = msg.data.get("message") if isinstance(msg.data, dict) else None
            if self._waits:
                logger.warning("服务端错误，拒绝 %d 个挂起的等待: %s",
                               len(self._waits), message)
            for wait in list(self._waits):
                self._reject(wait, ServerError(message))
            return

        for wait in list(self._waits):
            if wait.future.done():
                self._discard(wait)
                continue
            if wait.accepts(msg):
                self._discard(wait)
                wait.future.set_result(msg)
                # 一条应答至多完成一个等待
                return

    def _expire(self, wait: PendingWait) -> None:
        wait.timer = None
        if wait in self._waits:
            logger.warning("等待 %s 超时 (%gs)", wait.reply_type, wait.timeout)
            self._reject(wait, RequestTimeoutError(wait.reply_type, wait.timeout))

    def _reject(self, wait: PendingWait, exc: Exception) -> None:
        self._discard(wait)
        if not wait.future.done():
            wait.future.set_exception(exc)

    def _discard(self, wait: PendingWait) -> None:
        if wait.timer is not None:
            wait.timer.cancel()
            wait.timer = None
        if wait in self._waits:
            self._waits.remove(wait)

    def cancel_all(self, exc: Exception) -> None:
        """以 ``exc`` 拒绝全部挂起的等待"""
        for wait in list(self._waits):
            self._reject(wait, exc)
