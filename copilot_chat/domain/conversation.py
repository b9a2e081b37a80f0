"""会话状态：transcript、待匹配队列与已处理 ID 集合。

这些对象都由 ChatController 持有并串行访问，本身不做任何加锁。
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Set, Tuple

from copilot_chat.domain.exceptions import ValidationError
from copilot_chat.domain.models import ChatMessage
from copilot_chat.infrastructure.logging.logger import logger


@dataclass(frozen=True)
class PendingEntry:
    local_id: str
    raw_content: str


class PendingQueue:
    """已经提交、等待服务端回显的用户消息。

    每个 entry 只会被移除一次：要么被 match_and_consume 消费，
    要么在发送失败后 rollback。
    """

    def __init__(self) -> None:
        self._entries: List[PendingEntry] = []

    def enqueue(self, local_id: str, content: str) -> PendingEntry:
        if any(entry.local_id == local_id for entry in self._entries):
            raise ValidationError(code="DUPLICATE_PENDING", message=f"{local_id} is already pending")
        entry = PendingEntry(local_id=local_id, raw_content=content)
        self._entries.append(entry)
        return entry

    def match_and_consume(self, normalized_text: str) -> Optional[PendingEntry]:
        """取出第一个 trim 后与 normalized_text 完全相同的 entry。

        多个 entry 文本相同时总是取最早的那个。
        """

        for index, entry in enumerate(self._entries):
            if entry.raw_content.strip() == normalized_text:
                return self._entries.pop(index)
        return None

    def rollback(self, local_id: str) -> bool:
        before = len(self._entries)
        self._entries = [entry for entry in self._entries if entry.local_id != local_id]
        return len(self._entries) != before

    def clear(self) -> None:
        self._entries = []

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[PendingEntry]:
        return iter(list(self._entries))


class ProcessedIdSet:
    """已转换为本地消息的 Copilot 消息 ID，只增不减（reset 除外）。"""

    def __init__(self) -> None:
        self._ids: Set[str] = set()

    def add(self, remote_id: str) -> None:
        self._ids.add(remote_id)

    def clear(self) -> None:
        self._ids.clear()

    def __contains__(self, remote_id: object) -> bool:
        return remote_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)


@dataclass
class ReconcileBatch:
    """一次 reconcile 的结果，由 ConversationSession.apply 一次性落到 transcript。"""

    backfills: List[Tuple[str, str]] = field(default_factory=list)  # (local_id, remote_id)
    appended: List[ChatMessage] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.backfills or self.appended)


class ConversationSession:
    """有序 transcript + 当前会话 ID。"""

    def __init__(self) -> None:
        self.session_id: Optional[str] = None
        self._messages: List[ChatMessage] = []

    @property
    def messages(self) -> List[ChatMessage]:
        return list(self._messages)

    def append(self, message: ChatMessage) -> None:
        self._messages.append(message)

    def get(self, local_id: str) -> Optional[ChatMessage]:
        for message in self._messages:
            if message.id == local_id:
                return message
        return None

    def apply(self, batch: ReconcileBatch) -> None:
        if not batch:
            return
        matches: Dict[str, str] = dict(batch.backfills)
        for message in self._messages:
            remote_id = matches.get(message.id)
            if remote_id is None:
                continue
            if message.remote_message_id:
                logger.log(
                    logging.WARNING,
                    "Remote id already set, keeping original",
                    extra={"extra": {"message_id": message.id, "remote_message_id": message.remote_message_id}},
                )
                continue
            message.remote_message_id = remote_id
        self._messages.extend(batch.appended)

    def reset(self) -> None:
        self.session_id = None
        self._messages = []
