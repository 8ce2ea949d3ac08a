"""后端健康检查

由上层在决定是否建立通道之前调用; 通道本身不会调用。
"""

from __future__ import annotations

import logging
import re

import httpx

logger = logging.getLogger(__name__)


def health_url(ws_url: str, secure: bool | None = None) -> str:
    """由 WebSocket 地址推导 HTTP 健康检查地址

    ws:// 变为 http://，wss:// 变为 https:// (可用 `secure` 强制指定)，
    末尾的 /ws 路径替换为 /health。
    """
    match = re.match(r"^(wss?)://", ws_url)
    if match:
        if secure is None:
            secure = match.group(1) == "wss"
        ws_url = ws_url[match.end():]
        ws_url = ("https://" if secure else "http://") + ws_url
    return re.sub(r"/ws/?$", "/health", ws_url)


async def check_health(
    ws_url: str,
    timeout: float = 5.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> bool:
    """请求健康检查地址; 仅 2xx 响应返回 True"""
    url = health_url(ws_url)
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            response = await client.get(url, headers={"Cache-Control": "no-cache"})
    except httpx.HTTPError as e:
        logger.warning("健康检查 %s 失败: %s", url, e)
        return False
    if response.is_success:
        return True
    logger.warning("健康检查 %s 返回 %d", url, response.status_code)
    return False
