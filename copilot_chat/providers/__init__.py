"""外部协作方集成层。

该包下的模块负责：
- 定义 token 获取协议与常用实现 (auth)。
- 与 Copilot 会话接口进行 HTTP 往返 (copilot_client)。
"""

from copilot_chat.providers.auth import InteractiveTokenProvider, StaticTokenProvider, TokenProvider
from copilot_chat.providers.copilot_client import CopilotClient

__all__ = ["CopilotClient", "InteractiveTokenProvider", "StaticTokenProvider", "TokenProvider"]
