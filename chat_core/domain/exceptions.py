"""统一业务异常模型。

所有跨模块抛出的业务级错误都继承自 BusinessError。Provider 适配器在内部
抛出这些异常，并在 call() 边界处统一转换为 ProviderReply；编排层负责兜底，
任何异常都不会穿透到传输层。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "MISSING_API_KEY"）。
        message: 用户可读错误信息，可以直接展示给聊天用户。
        http_status: 关联的 HTTP 状态码（若有）。
        extra: 其他补充字段（例如 provider、原始响应摘要等），只写日志。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class ConfigurationError(BusinessError):
    """缺少密钥/端点等配置，不做重试。"""


class TransportError(BusinessError):
    """网络层错误，例如连接失败、超时、被中断。"""


class ProviderError(BusinessError):
    """Provider 返回非 2xx 或结构化错误体。"""


class ParseError(BusinessError):
    """响应格式无法识别。"""


class SessionError(BusinessError):
    """会话处理过程中的意外错误。"""


class NotFoundError(BusinessError):
    """请求的模型/人设不存在。"""
