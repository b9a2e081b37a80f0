"""把 chat 端点的原始响应合并进本地 transcript。

逐条处理响应消息（按到达顺序）：

1. 没有 ID 或 ID 已处理过的条目直接跳过，保证重复/重试的响应是幂等的。
2. 解析文本并规范化（引用改写、伪标签清理、来源附录）。
3. 无论规范化结果是否为空，都把 ID 记为已处理。
4. 空文本丢弃；否则先尝试匹配 PendingQueue 中的用户消息（服务端回显），
   匹配成功只回填 remote_message_id，否则追加一条 assistant 消息。

所有回填与追加汇总到一个 ReconcileBatch，由 ConversationSession 一次性应用。
"""

from datetime import datetime, timezone
from typing import Any, Optional

from copilot_chat.domain.conversation import PendingQueue, ProcessedIdSet, ReconcileBatch
from copilot_chat.domain.exceptions import MalformedResponseError
from copilot_chat.domain.models import (
    EMPTY_CONTENT,
    ChatMessage,
    RemoteMessage,
    TurnResponse,
    parse_timestamp,
)
from copilot_chat.infrastructure.logging.logger import logger
from copilot_chat.text.normalizer import format_response_text


class ResponseReconciler:
    def __init__(self, pending: PendingQueue, processed: ProcessedIdSet):
        self._pending = pending
        self._processed = processed

    def reconcile(self, response: TurnResponse, now: Optional[datetime] = None) -> ReconcileBatch:
        batch = ReconcileBatch()
        for entry in response.entries:
            message = self._ingest(entry)
            if message is None or message.id is None or message.id in self._processed:
                continue

            normalized = format_response_text(message.content.as_text(), message.attributions)
            self._processed.add(message.id)
            if not normalized:
                continue

            pending = self._pending.match_and_consume(normalized)
            if pending is not None:
                batch.backfills.append((pending.local_id, message.id))
                continue

            created_at = parse_timestamp(message.created_at) or now or datetime.now(timezone.utc)
            batch.appended.append(
                ChatMessage(
                    id=f"assistant-{message.id}",
                    role="assistant",
                    content=normalized,
                    created_at=created_at,
                    remote_message_id=message.id,
                )
            )

        logger.info(
            "Reconciled Copilot response",
            extra={"extra": {
                "entries": len(response.entries),
                "matched": len(batch.backfills),
                "appended": len(batch.appended),
            }},
        )
        return batch

    @staticmethod
    def _ingest(entry: Any) -> Optional[RemoteMessage]:
        """把单条原始消息解析为 RemoteMessage；内容形状异常时按空文本处理。"""

        if not isinstance(entry, dict):
            return None
        try:
            return RemoteMessage.from_payload(entry)
        except MalformedResponseError as exc:
            remote_id = entry.get("id")
            logger.warning(
                "Malformed Copilot message content, treating as empty",
                extra={"extra": {"remote_message_id": remote_id, "error": exc.message}},
            )
            return RemoteMessage(
                id=remote_id if isinstance(remote_id, str) and remote_id else None,
                content=EMPTY_CONTENT,
            )
