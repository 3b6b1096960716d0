"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在编排层统一捕获，再交给错误分类器映射成面向用户的提示。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "STORE_READ_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 trace_id、provider 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class NetworkError(BusinessError):
    """网络层错误，例如连接失败、超时等。"""


class ApiError(BusinessError):
    """第三方 API 返回非 2xx/429 错误时抛出。"""


class RateLimitError(BusinessError):
    """Provider 限流错误。"""


class ValidationError(BusinessError):
    """参数或配置校验失败。"""


class MissingCredentialError(ValidationError):
    """需要 API Key 的 Provider 未配置密钥。

    在发请求之前抛出，保证不会触达网络。
    """

    def __init__(self, provider_id: str):
        super().__init__(
            code="MISSING_API_KEY",
            message=f"API key is required for {provider_id}. Please configure it in Settings.",
            http_status=401,
            provider=provider_id,
        )


class AttachmentError(BusinessError):
    """单个附件无法处理（格式不支持、解析失败等）。"""


class RetrievalError(BusinessError):
    """知识库检索失败。"""


class AgentNotFoundError(BusinessError):
    """按 id 查找 Agent 配置失败。"""


class TurnCancelled(BusinessError):
    """用户取消了正在进行的一轮对话。"""

    def __init__(self, message: str = "Turn cancelled by user"):
        super().__init__(code="TURN_CANCELLED", message=message, http_status=499)
