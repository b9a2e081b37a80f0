"""对外 API 服务模块。

提供简化的同步函数接口供脚本或上层应用调用。
"""

import asyncio
from typing import Optional, Dict, Any

from copilot_chat.config.settings import settings
from copilot_chat.domain.models import ChatMessage
from copilot_chat.engine.pipeline import ChatController
from copilot_chat.infrastructure.logging.logger import logger
from copilot_chat.providers.auth import StaticTokenProvider, TokenProvider
from copilot_chat.providers.copilot_client import CopilotClient


_controller: Optional[ChatController] = None


def get_default_controller(token_provider: Optional[TokenProvider] = None) -> ChatController:
    """获取默认的 ChatController 实例（单例）。

    未提供 token_provider 时使用配置中的 copilot_access_token。
    """
    global _controller
    if _controller is None:
        provider = token_provider or StaticTokenProvider(settings.copilot_access_token)
        _controller = ChatController(
            token_provider=provider,
            client=CopilotClient(settings),
            time_zone=settings.time_zone,
        )
    return _controller


def _message_to_dict(message: ChatMessage) -> Dict[str, Any]:
    return {
        "id": message.id,
        "role": message.role,
        "content": message.content,
        "created_at": message.created_at.isoformat(),
        "remote_message_id": message.remote_message_id,
    }


def run_copilot_chat(user_input: str) -> Dict[str, Any]:
    """发送一条消息并返回本轮结果。

    Args:
        user_input: 用户输入内容

    Returns:
        包含会话ID、用户消息、新增助手消息与错误信息的字典
    """
    controller = get_default_controller()
    result = asyncio.run(controller.send_message(user_input))
    if result.error:
        logger.error(f"Chat failed: {result.error}", extra={"extra": {
            "conversation_id": result.conversation_id,
        }})
    return {
        "conversation_id": result.conversation_id,
        "user_message": _message_to_dict(result.user_message) if result.user_message else None,
        "assistant_messages": [_message_to_dict(m) for m in result.assistant_messages],
        "error": result.error,
    }


def reset_conversation() -> None:
    """清空默认会话。"""
    get_default_controller().reset()


def get_transcript() -> list[Dict[str, Any]]:
    """获取默认会话的全部消息。"""
    return [_message_to_dict(m) for m in get_default_controller().messages]
