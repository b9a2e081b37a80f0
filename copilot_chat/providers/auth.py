"""Access token 获取能力。

ChatController 只依赖 TokenProvider 协议：一个可等待的 acquire_token()，
返回 bearer token 或 None。它不关心 token 是静默拿到的，还是弹窗/跳转后拿到的；
交互步骤可能无限期挂起，调用方只需 await。
"""

from typing import Awaitable, Callable, Optional, Protocol

from copilot_chat.domain.exceptions import InteractionRequiredError
from copilot_chat.infrastructure.logging.logger import logger


TokenFactory = Callable[[], Awaitable[Optional[str]]]


class TokenProvider(Protocol):
    async def acquire_token(self) -> Optional[str]:
        ...


class StaticTokenProvider:
    """直接返回预先签发好的 token（命令行、脚本或测试场景）。"""

    def __init__(self, token: Optional[str]):
        self._token = token

    async def acquire_token(self) -> Optional[str]:
        return self._token


class InteractiveTokenProvider:
    """两阶段获取 token：先静默获取，失败且需要交互时再走交互流程。

    - silent: 静默获取，需要用户交互时应抛出 InteractionRequiredError。
    - interactive: 交互式获取（弹窗、设备码等），可能长时间挂起。

    其它异常原样向上抛出，由 ChatController 统一转换为 AuthError。
    """

    def __init__(self, silent: TokenFactory, interactive: TokenFactory):
        self._silent = silent
        self._interactive = interactive

    async def acquire_token(self) -> Optional[str]:
        try:
            return await self._silent()
        except InteractionRequiredError as exc:
            logger.info(
                "Silent token acquisition requires interaction",
                extra={"extra": {"reason": exc.message}},
            )
        return await self._interactive()
