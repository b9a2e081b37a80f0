"""统一的对话与响应数据模型。

本模块定义了本地 transcript 与 Copilot 响应之间共享的标准数据结构：

- ChatMessage: 本地 transcript 中的一条消息（user/assistant/system）。
- Attribution: 一条被引用来源的元数据（标题 + 链接）。
- ResponseContent: 响应内容的统一表示（TextContent | PartsContent）。
- RemoteMessage / TurnResponse: chat 端点原始 JSON 解析后的结构。

原始 JSON 的形状差异（content 可能是字符串，也可能是 part 列表）只在
这里的 from_payload 中处理一次，Reconciler 只面对 ResponseContent。
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

from copilot_chat.domain.exceptions import MalformedResponseError


# 本地消息角色类型
Role = Literal["user", "assistant", "system"]


@dataclass
class ChatMessage:
    """transcript 中的一条消息。

    - id: 本地唯一 ID，不会复用。
    - role: 消息角色。
    - content: 规范化后的纯文本内容。
    - created_at: 带时区的创建时间。
    - remote_message_id: Copilot 侧的消息 ID，可以事后回填，但一旦设置不再覆盖。
    """

    id: str
    role: Role
    content: str
    created_at: datetime
    remote_message_id: Optional[str] = None


@dataclass(frozen=True)
class Attribution:
    """被引用来源的元数据。"""

    title: str
    url: str

    @property
    def fingerprint(self) -> str:
        # 去重键：大小写不敏感的 (title, url)
        return f"{self.title.lower()}|{self.url.lower()}"

    @classmethod
    def from_payload(cls, payload: Any) -> "Attribution":
        if not isinstance(payload, dict):
            raise MalformedResponseError(code="MALFORMED_RESPONSE", message="attribution is not an object")
        title = payload.get("providerDisplayName")
        url = payload.get("seeMoreWebUrl")
        return cls(
            title=title.strip() if isinstance(title, str) else "",
            url=url.strip() if isinstance(url, str) else "",
        )


@dataclass(frozen=True)
class TextContent:
    """单一字符串形式的响应内容。"""

    text: str

    def as_text(self) -> str:
        return self.text


@dataclass(frozen=True)
class PartsContent:
    """由多个 part 组成的响应内容，按换行拼接，空白 part 被过滤。"""

    parts: Tuple[str, ...]

    def as_text(self) -> str:
        return "\n".join(part for part in self.parts if part)


ResponseContent = Union[TextContent, PartsContent]

EMPTY_CONTENT = TextContent("")


def _part_text(part: Any) -> str:
    if isinstance(part, str):
        return part
    if not isinstance(part, dict):
        return ""
    # 依次取 text / value / content 中第一个存在的字段
    for key in ("text", "value", "content"):
        value = part.get(key)
        if value is not None:
            return value if isinstance(value, str) else ""
    return ""


def parse_content(payload: Dict[str, Any]) -> ResponseContent:
    """把单条响应消息的文本字段解析为 ResponseContent。

    优先级：非空白的 text 字段 > 字符串 content > content part 列表。
    两者都缺失时返回空文本；content 为其他类型时抛出 MalformedResponseError。
    """

    text = payload.get("text")
    if isinstance(text, str) and text.strip():
        return TextContent(text)
    content = payload.get("content")
    if isinstance(content, str):
        return TextContent(content)
    if isinstance(content, list):
        return PartsContent(tuple(_part_text(part) for part in content))
    if content is None:
        return EMPTY_CONTENT
    raise MalformedResponseError(
        code="MALFORMED_RESPONSE",
        message=f"unsupported content type: {type(content).__name__}",
    )


@dataclass
class RemoteMessage:
    """chat 端点返回的单条消息。"""

    id: Optional[str]
    content: ResponseContent
    created_at: Optional[str] = None
    attributions: List[Attribution] = field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: Any) -> "RemoteMessage":
        if not isinstance(payload, dict):
            raise MalformedResponseError(code="MALFORMED_RESPONSE", message="message entry is not an object")
        remote_id = payload.get("id")
        created = payload.get("createdDateTime")
        raw_attributions = payload.get("attributions")
        attributions: List[Attribution] = []
        if isinstance(raw_attributions, list):
            for item in raw_attributions:
                if isinstance(item, dict):
                    attributions.append(Attribution.from_payload(item))
        return cls(
            id=remote_id if isinstance(remote_id, str) and remote_id else None,
            content=parse_content(payload),
            created_at=created if isinstance(created, str) else None,
            attributions=attributions,
        )


def pick_conversation_id(payload: Any) -> Optional[str]:
    """从响应中取出会话 ID：优先 id，其次 conversationId。"""

    if not isinstance(payload, dict):
        return None
    for key in ("id", "conversationId"):
        value = payload.get(key)
        if isinstance(value, str) and value:
            return value
    return None


@dataclass
class TurnResponse:
    """一次 chat 调用的响应。

    messages 保留原始条目（dict），逐条解析由 Reconciler 完成，
    这样单条坏数据只影响它自己。
    """

    conversation_id: Optional[str]
    entries: List[Any]

    @classmethod
    def from_payload(cls, payload: Any) -> "TurnResponse":
        if not isinstance(payload, dict):
            return cls(conversation_id=None, entries=[])
        messages = payload.get("messages")
        return cls(
            conversation_id=pick_conversation_id(payload),
            entries=list(messages) if isinstance(messages, list) else [],
        )


_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """解析服务端的 ISO-8601 时间；Z 后缀与超过 6 位的小数秒都能处理。"""

    if not value:
        return None
    text = _FRACTION_RE.sub(r"\1", value.strip())
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
