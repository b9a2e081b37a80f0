"""Copilot chat API 适配器。

本模块负责：

1. 创建会话：POST {base}/conversations。
2. 发送一轮对话：POST {base}/conversations/{id}/chat。
3. 处理网络/API 异常，把非 2xx 响应转换为带状态码与详情的业务异常。

这里只做 HTTP 往返，返回原始 JSON；消息去重、回显匹配等逻辑在 engine 层完成。
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

import httpx

from copilot_chat.config.settings import settings
from copilot_chat.domain.exceptions import (
    ChatRequestError,
    MalformedResponseError,
    NetworkError,
    SessionCreationError,
)
from copilot_chat.domain.models import pick_conversation_id
from copilot_chat.infrastructure.logging.logger import logger


SUBSCRIPTION_KEY_HEADER = "Ocp-Apim-Subscription-Key"
DEFAULT_TIME_ZONE = "UTC"
_ZONEINFO_MARKER = "zoneinfo/"


def resolve_time_zone(configured: Optional[str] = None) -> str:
    """解析 locationHint 使用的 IANA 时区名。

    顺序：配置项 → TZ 环境变量 → /etc/localtime 链接目标 → "UTC"。
    """

    if configured:
        return configured
    env_tz = (os.environ.get("TZ") or "").strip().lstrip(":")
    if env_tz and ("/" in env_tz or env_tz == "UTC"):
        return env_tz
    localtime = Path("/etc/localtime")
    if localtime.is_symlink():
        target = str(localtime.resolve())
        if _ZONEINFO_MARKER in target:
            return target.split(_ZONEINFO_MARKER, 1)[1]
    return DEFAULT_TIME_ZONE


def _error_detail(resp: httpx.Response) -> str:
    """尽力解析错误详情：优先 JSON（重新序列化），否则原始文本。"""

    try:
        return json.dumps(resp.json(), ensure_ascii=False)
    except ValueError:
        return resp.text


class CopilotClient:
    """Copilot 会话接口客户端。

    - create_conversation: 新建会话，返回会话 ID。
    - chat: 在指定会话中发送一条用户消息，返回原始响应 JSON。
    """

    name = "copilot"

    def __init__(self, cfg=settings):
        # Settings 里包含 endpoint、subscription key、超时等配置
        self._settings = cfg

    @property
    def base_url(self) -> str:
        return (getattr(self._settings, "copilot_endpoint", "") or "").rstrip("/")

    def _headers(self, access_token: str) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {access_token}",
        }
        key = getattr(self._settings, "copilot_subscription_key", None)
        if key:
            headers[SUBSCRIPTION_KEY_HEADER] = key
        return headers

    async def _post(self, url: str, access_token: str, payload: Dict[str, Any]) -> httpx.Response:
        try:
            async with httpx.AsyncClient(timeout=self._settings.http_timeout, trust_env=False) as client:
                return await client.post(url, json=payload, headers=self._headers(access_token))
        except httpx.RequestError as e:
            # 网络错误：DNS 失败、连接超时等
            raise NetworkError(code="NETWORK_ERROR", message=f"Could not reach Copilot: {e}", url=url)

    async def create_conversation(self, access_token: str) -> str:
        """创建新会话并返回会话 ID（响应中的 id 或 conversationId）。"""

        url = f"{self.base_url}/conversations"
        resp = await self._post(url, access_token, {})
        if not 200 <= resp.status_code < 300:
            detail = _error_detail(resp)
            raise SessionCreationError(
                code="SESSION_CREATE_FAILED",
                message=f"Copilot conversation creation failed ({resp.status_code} {resp.reason_phrase}): {detail}",
                http_status=resp.status_code,
                detail=detail,
            )
        try:
            data = resp.json()
        except ValueError:
            raise MalformedResponseError(
                code="MALFORMED_RESPONSE",
                message="Copilot conversation creation returned a non-JSON body.",
                http_status=resp.status_code,
            )
        conversation_id = pick_conversation_id(data)
        if not conversation_id:
            raise SessionCreationError(
                code="SESSION_CREATE_FAILED",
                message="Copilot conversation creation succeeded but no conversation ID was returned.",
                http_status=resp.status_code,
            )
        logger.info("Created Copilot conversation", extra={"extra": {"conversation_id": conversation_id}})
        return conversation_id

    async def chat(
        self,
        access_token: str,
        conversation_id: str,
        text: str,
        time_zone: Optional[str] = None,
    ) -> Dict[str, Any]:
        """发送一轮对话，返回原始响应 JSON（非 JSON body 视为空响应）。"""

        url = f"{self.base_url}/conversations/{conversation_id}/chat"
        payload = {
            "message": {"text": text},
            "locationHint": {"timeZone": time_zone or resolve_time_zone(getattr(self._settings, "time_zone", None))},
        }
        resp = await self._post(url, access_token, payload)
        if not 200 <= resp.status_code < 300:
            raise ChatRequestError(
                status=resp.status_code,
                detail=_error_detail(resp),
                reason=resp.reason_phrase,
                conversation_id=conversation_id,
            )
        try:
            data = resp.json()
        except ValueError:
            logger.warning(
                "Copilot chat returned a non-JSON body",
                extra={"extra": {"conversation_id": conversation_id, "status": resp.status_code}},
            )
            return {}
        return data if isinstance(data, dict) else {}
