"""统一业务异常模型。

所有跨模块抛出的业务级错误都继承自 BusinessError，
API 层据此统一映射为 HTTP 状态码与 JSON 错误体。
"""

from typing import Optional


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "NETWORK_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时使用的状态码，未指定时取 default_status。
        extra: 其他补充字段（例如 provider、upstream_status 等）。
    """

    default_status = 400

    def __init__(self, code: str, message: str, http_status: Optional[int] = None, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status or self.default_status
        self.extra = extra
        super().__init__(message)


class UpstreamUnavailable(BusinessError):
    """与上游聊天 API 通信失败：网络错误、鉴权失败、非 2xx 响应等。"""

    default_status = 502


class UpstreamTimeout(UpstreamUnavailable):
    """上游调用超时。"""

    default_status = 504


class RateLimitError(UpstreamUnavailable):
    """上游限流（HTTP 429）。本服务不做重试。"""

    default_status = 503


class MalformedUpstreamResponse(BusinessError):
    """上游响应缺少预期的 result/content 结构，或根本不是 JSON。"""

    default_status = 502


class InvalidInput(BusinessError):
    """请求参数不合法（例如超长）。"""


class ValidationError(BusinessError):
    """参数或配置校验失败。"""
