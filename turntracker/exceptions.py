"""客户端异常模块

客户端抛出的所有异常都继承 TrackerError，调用方用一个 except 子句
即可把失败统一显示为临时提示。
"""

from __future__ import annotations


class TrackerError(Exception):
    """客户端异常基类"""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# ==================== 传输 ====================


class TransportError(TrackerError):
    """无法建立连接，或连接过程中失败"""

    def __init__(self, message: str = "WebSocket connection failed", url: str | None = None):
        details = {"url": url} if url else {}
        super().__init__(message, details)
        self.url = url


class ChannelNotOpenError(TrackerError):
    """准备发送时连接未打开"""

    def __init__(self, message: str = "WebSocket not connected"):
        super().__init__(message)


class ChannelDestroyedError(TrackerError):
    """通道已被 destroy() 销毁"""

    def __init__(self, message: str = "Connection destroyed"):
        super().__init__(message)


class ProtocolError(TrackerError):
    """消息无法编码或解码"""


# ==================== 请求/应答 ====================


class CorrelationError(TrackerError):
    """请求/应答失败的基类"""


class RequestTimeoutError(CorrelationError):
    """超时前没有收到匹配的应答"""

    def __init__(self, reply_type: str, timeout: float):
        super().__init__(
            f"{reply_type} timeout after {timeout:g}s",
            {"reply_type": reply_type, "timeout": timeout},
        )
        self.reply_type = reply_type
        self.timeout = timeout


class ServerError(CorrelationError):
    """等待应答期间服务端推送了错误"""

    def __init__(self, message: str | None = None):
        super().__init__(message or "Server error")


# ==================== 应用 ====================


class InvalidRoomIdError(TrackerError):
    def __init__(self, room_id: str, length: int):
        super().__init__("Invalid room ID", {"room_id": room_id, "length": length})
        self.room_id = room_id


class NotInRoomError(TrackerError):
    def __init__(self, message: str = "Not in a room"):
        super().__init__(message)
