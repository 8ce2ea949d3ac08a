"""客户端配置中心

所有可调参数在此定义，支持从环境变量覆盖。
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field


def _get_env_float(key: str, default: float) -> float:
    value = os.environ.get(key)
    if value is not None:
        try:
            return float(value)
        except ValueError:
            pass
    return default


def _get_env_int(key: str, default: int) -> int:
    value = os.environ.get(key)
    if value is not None:
        try:
            return int(value)
        except ValueError:
            pass
    return default


def _get_env_bool(key: str, default: bool) -> bool:
    value = os.environ.get(key, "").lower()
    if value in ("true", "1", "yes", "on"):
        return True
    elif value in ("false", "0", "no", "off"):
        return False
    return default


@dataclass(frozen=True)
class ClientConfig:
    """不可变的客户端配置

    环境变量覆盖:
    - TURN_TRACKER_WS_URL: WebSocket 地址
    - TURN_TRACKER_RECONNECT_DELAY: 重连间隔 (秒)
    - TURN_TRACKER_MAX_RECONNECT: 放弃前的最大重连次数
    - TURN_TRACKER_REQUEST_TIMEOUT: 等待关联应答的秒数
    - TURN_TRACKER_ROOM_ID_LENGTH: 房间号长度
    - TURN_TRACKER_REQUEST_IDS: 为关联请求附加 request_id
    """

    # ==================== 端点 ====================
    ws_url: str = field(
        default_factory=lambda: os.environ.get("TURN_TRACKER_WS_URL", "ws://localhost:8080/ws")
    )
    open_timeout: float = field(
        default_factory=lambda: _get_env_float("TURN_TRACKER_OPEN_TIMEOUT", 10.0)
    )
    health_timeout: float = field(
        default_factory=lambda: _get_env_float("TURN_TRACKER_HEALTH_TIMEOUT", 5.0)
    )

    # ==================== 重连 ====================
    reconnect_delay: float = field(
        default_factory=lambda: _get_env_float("TURN_TRACKER_RECONNECT_DELAY", 2.0)
    )
    max_reconnect_attempts: int = field(
        default_factory=lambda: _get_env_int("TURN_TRACKER_MAX_RECONNECT", 5)
    )

    # ==================== 请求/应答 ====================
    request_timeout: float = field(
        default_factory=lambda: _get_env_float("TURN_TRACKER_REQUEST_TIMEOUT", 10.0)
    )
    send_request_ids: bool = field(
        default_factory=lambda: _get_env_bool("TURN_TRACKER_REQUEST_IDS", False)
    )

    # ==================== 房间 ====================
    room_id_length: int = field(
        default_factory=lambda: _get_env_int("TURN_TRACKER_ROOM_ID_LENGTH", 6)
    )

    # ==================== 日志 ====================
    log_level: str = field(
        default_factory=lambda: os.environ.get("TURN_TRACKER_LOG_LEVEL", "INFO")
    )

    @classmethod
    def from_env(cls) -> ClientConfig:
        return cls()


_config: ClientConfig | None = None


def get_config() -> ClientConfig:
    """获取进程默认配置 (惰性创建)"""
    global _config
    if _config is None:
        _config = ClientConfig.from_env()
    return _config


def reset_config() -> None:
    """清除缓存的默认配置 (测试用)"""
    global _config
    _config = None
