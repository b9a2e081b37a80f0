"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在 ChatController 的提交边界做统一捕获，并转换成一条用户可读的错误信息。
"""

from typing import Any, Optional


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "AUTH_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 conversation_id、endpoint 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra: Any):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class NetworkError(BusinessError):
    """网络层错误，例如连接失败、超时等。"""


class ValidationError(BusinessError):
    """参数或配置校验失败。"""


class AuthError(BusinessError):
    """获取 access token 失败，或 token provider 返回了空值。"""


class InteractionRequiredError(AuthError):
    """静默获取 token 失败，需要用户交互确认后才能继续。"""


class SessionCreationError(BusinessError):
    """创建 Copilot 会话失败：接口非 2xx，或响应中没有会话 ID。"""


class ChatRequestError(BusinessError):
    """对话请求（chat 端点）返回非 2xx。

    status / detail 分别保存 HTTP 状态码与尽力解析出来的错误详情
    （JSON body 重新序列化，否则为原始文本）。
    """

    def __init__(self, status: int, detail: str, reason: Optional[str] = None, **extra: Any):
        self.status = status
        self.detail = detail
        label = f"{status} {reason}" if reason else str(status)
        super().__init__(
            code="CHAT_REQUEST_FAILED",
            message=f"Copilot chat request failed ({label}): {detail}",
            http_status=status,
            **extra,
        )


class MalformedResponseError(BusinessError):
    """响应结构不符合预期。

    对话消息的解析会宽松处理这类错误（默认按空文本处理），
    只有在无法继续时（如创建会话的响应不是 JSON）才会向上抛出。
    """
