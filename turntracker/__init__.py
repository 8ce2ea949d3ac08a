"""实时回合追踪客户端
基于 WebSocket 的单通道客户端: 请求/应答关联 + 房间状态镜像 (玩家与当前回合)
"""

from .channel import Channel, ChannelState
from .config import ClientConfig, get_config
from .correlator import Correlator, WaitSpec
from .protocol import ClientMsg, MsgType, ServerMsg
from .session import Peer, SessionReconciler, TurnState
from .tracker import TrackerHolder, TurnTracker, get_persistent_tracker

__all__ = [
    "MsgType", "ClientMsg", "ServerMsg",
    "Channel", "ChannelState", "Correlator", "WaitSpec",
    "SessionReconciler", "Peer", "TurnState",
    "TurnTracker", "TrackerHolder", "get_persistent_tracker",
    "ClientConfig", "get_config",
]
