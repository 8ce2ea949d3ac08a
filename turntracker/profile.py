"""本地资料存储

保存创建或加入房间时使用的默认昵称/颜色，以及跨销毁保留的 client id，
服务端据此把重连的客户端绑定回原来的玩家身份。空字符串视为未设置。
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UserProfile:
    display_name: str | None = None
    color: str | None = None


class ProfileStore(Protocol):
    def get_default_profile(self) -> UserProfile: ...

    def save_default_profile(self, display_name: str | None = None,
                             color: str | None = None) -> None: ...

    def get_client_id(self) -> str | None: ...

    def save_client_id(self, client_id: str) -> None: ...

    def clear_client_id(self) -> None: ...


class MemoryProfileStore:
    """进程内存储 (测试、临时会话)"""

    def __init__(self, display_name: str | None = None, color: str | None = None,
                 client_id: str | None = None) -> None:
        self._display_name = display_name or None
        self._color = color or None
        self._client_id = client_id or None

    def get_default_profile(self) -> UserProfile:
        return UserProfile(self._display_name, self._color)

    def save_default_profile(self, display_name: str | None = None,
                             color: str | None = None) -> None:
        self._display_name = display_name or None
        self._color = color or None

    def get_client_id(self) -> str | None:
        return self._client_id

    def save_client_id(self, client_id: str) -> None:
        self._client_id = client_id or None

    def clear_client_id(self) -> None:
        self._client_id = None


class JsonProfileStore:
    """持久化到 UTF-8 JSON 文件的资料

    文件不存在或无法读取时视为空资料; 写入失败记录日志，
    内存中的值仍会更新。
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._data: dict[str, str] = self._load()

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("读取资料文件失败 %s: %s", self.path, e)
            return {}
        if not isinstance(data, dict):
            return {}
        return {k: v for k, v in data.items() if isinstance(v, str) and v}

    def _save(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(self._data, f, ensure_ascii=False, indent=2)
        except OSError as e:
            logger.warning("写入资料文件失败 %s: %s", self.path, e)

    def _set(self, key: str, value: str | None) -> None:
        if value:
            self._data[key] = value
        else:
            self._data.pop(key, None)

    def get_default_profile(self) -> UserProfile:
        return UserProfile(self._data.get("display_name"), self._data.get("color"))

    def save_default_profile(self, display_name: str | None = None,
                             color: str | None = None) -> None:
        self._set("display_name", display_name)
        self._set("color", color)
        self._save()

    def get_client_id(self) -> str | None:
        return self._data.get("client_id")

    def save_client_id(self, client_id: str) -> None:
        self._set("client_id", client_id)
        self._save()

    def clear_client_id(self) -> None:
        self._set("client_id", None)
        self._save()
