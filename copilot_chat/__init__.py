"""Copilot Chat 顶层包。

该包实现与 Copilot 会话接口进行多轮对话的客户端引擎，
包括配置加载、领域模型、token 获取、HTTP 适配、
响应文本规范化以及响应与本地 transcript 的合并。
"""

from copilot_chat.engine import ChatController, TurnResult

__all__ = ["ChatController", "TurnResult"]
