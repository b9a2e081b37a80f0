"""对话引擎核心模块。

ChatController 持有一个会话的全部可变状态（transcript、会话 ID、
PendingQueue、ProcessedIdSet），并串行执行每一轮提交：

    提交 → 追加 user 消息 + 入队 → 获取 token → 确保会话存在
         → 发送 chat 请求 → ResponseReconciler 合并响应

同一时刻只允许一轮请求在途，后续提交会在锁上等待。
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from copilot_chat.config.settings import settings
from copilot_chat.domain.conversation import ConversationSession, PendingQueue, ProcessedIdSet
from copilot_chat.domain.exceptions import AuthError, BusinessError
from copilot_chat.domain.models import ChatMessage, TurnResponse
from copilot_chat.engine.reconciler import ResponseReconciler
from copilot_chat.infrastructure.logging.logger import logger
from copilot_chat.providers.auth import TokenProvider
from copilot_chat.providers.copilot_client import CopilotClient


UNEXPECTED_ERROR_MESSAGE = "Unexpected error contacting Copilot."


@dataclass
class TurnResult:
    """一轮提交的结果。

    - user_message: 本轮追加的用户消息（空白输入时为 None）。
    - assistant_messages: 本轮新追加的 assistant 消息。
    - matched_remote_ids: 被服务端回显并回填到用户消息上的 remote ID。
    - conversation_id: 本轮结束后的会话 ID。
    - error: 失败时的用户可读错误信息。
    """

    user_message: Optional[ChatMessage]
    conversation_id: Optional[str]
    assistant_messages: List[ChatMessage] = field(default_factory=list)
    matched_remote_ids: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ChatController:
    def __init__(
        self,
        token_provider: TokenProvider,
        client: Optional[CopilotClient] = None,
        time_zone: Optional[str] = None,
    ):
        self._token_provider = token_provider
        self._client = client or CopilotClient(settings)
        self._time_zone = time_zone
        self._session = ConversationSession()
        self._pending = PendingQueue()
        self._processed = ProcessedIdSet()
        self._reconciler = ResponseReconciler(self._pending, self._processed)
        self._lock = asyncio.Lock()
        # reset 时递增，用来识别 reset 之前发出、之后才返回的请求
        self._generation = 0
        self._sending = False
        self.error: Optional[str] = None

    @property
    def messages(self) -> List[ChatMessage]:
        return self._session.messages

    @property
    def session_id(self) -> Optional[str]:
        return self._session.session_id

    @property
    def pending(self) -> PendingQueue:
        return self._pending

    @property
    def processed(self) -> ProcessedIdSet:
        return self._processed

    @property
    def is_sending(self) -> bool:
        return self._sending

    async def send_message(self, content: str) -> TurnResult:
        """提交一条用户消息并等待本轮结束。

        失败不会抛出：错误信息写入 self.error 与返回值，
        对应的 pending entry 被回滚，已显示的用户消息保留。
        """

        if not content or not content.strip():
            return TurnResult(user_message=None, conversation_id=self.session_id)

        async with self._lock:
            self._sending = True
            try:
                return await self._run_turn(content)
            finally:
                self._sending = False

    def reset(self) -> None:
        """清空 transcript、会话 ID、待匹配队列与已处理 ID，下一次提交将新建会话。"""

        self._generation += 1
        self._session.reset()
        self._pending.clear()
        self._processed.clear()
        self.error = None
        logger.info("Conversation reset", extra={"extra": {"generation": self._generation}})

    async def _run_turn(self, content: str) -> TurnResult:
        start_time = time.time()
        generation = self._generation
        user_message = ChatMessage(
            id=f"user-{uuid4().hex}",
            role="user",
            content=content,
            created_at=datetime.now(timezone.utc),
        )
        self._session.append(user_message)
        self._pending.enqueue(user_message.id, content)
        self.error = None
        log_ctx: Dict[str, Any] = {
            "turn_id": f"turn-{uuid4().hex}",
            "message_id": user_message.id,
            "conversation_id": self.session_id,
        }

        try:
            access_token = await self._acquire_token()

            conversation_id = self.session_id
            if not conversation_id:
                conversation_id = await self._client.create_conversation(access_token)
                if generation == self._generation:
                    self._session.session_id = conversation_id
                log_ctx["conversation_id"] = conversation_id

            raw = await self._client.chat(access_token, conversation_id, content, time_zone=self._time_zone)
            if generation != self._generation:
                self._log(logging.INFO, "Discarded response received after reset", log_ctx)
                return TurnResult(user_message=user_message, conversation_id=self.session_id)

            response = TurnResponse.from_payload(raw)
            next_id = response.conversation_id or conversation_id
            if next_id != self._session.session_id:
                self._log(logging.INFO, "Conversation id changed", log_ctx, new_conversation_id=next_id)
                self._session.session_id = next_id

            batch = self._reconciler.reconcile(response)
            self._session.apply(batch)
        except asyncio.CancelledError:
            self._pending.rollback(user_message.id)
            self._log(logging.WARNING, "Turn cancelled", log_ctx)
            raise
        except BusinessError as exc:
            return self._fail(user_message, exc.message, generation, log_ctx, code=exc.code)
        except Exception:
            logger.exception("Unexpected error during Copilot turn", extra={"extra": log_ctx})
            return self._fail(user_message, UNEXPECTED_ERROR_MESSAGE, generation, log_ctx, code="UNEXPECTED")

        self._log(
            logging.INFO,
            "Completed Copilot turn",
            log_ctx,
            elapsed_seconds=round(time.time() - start_time, 2),
            matched=len(batch.backfills),
            appended=len(batch.appended),
        )
        return TurnResult(
            user_message=user_message,
            conversation_id=self.session_id,
            assistant_messages=list(batch.appended),
            matched_remote_ids=[remote_id for _, remote_id in batch.backfills],
        )

    async def _acquire_token(self) -> str:
        try:
            token = await self._token_provider.acquire_token()
        except AuthError:
            raise
        except Exception as exc:
            raise AuthError(code="AUTH_ERROR", message=f"Failed to acquire access token: {exc}") from exc
        if not token:
            raise AuthError(code="AUTH_ERROR", message="Failed to acquire access token.")
        return token

    def _fail(
        self,
        user_message: ChatMessage,
        message: str,
        generation: int,
        log_ctx: Dict[str, Any],
        code: str,
    ) -> TurnResult:
        self._pending.rollback(user_message.id)
        if generation == self._generation:
            self.error = message
        self._log(logging.ERROR, "Copilot turn failed", log_ctx, code=code, error=message)
        return TurnResult(user_message=user_message, conversation_id=self.session_id, error=message)

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
