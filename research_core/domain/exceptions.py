"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在 API 层或 UI 层做统一捕获与用户提示。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "STORE_READ_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 conversation_id、request_id 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class TransportError(BusinessError):
    """发起查询或事件流连接失败。不可重试，对当前会话是终止性的。"""


class ProtocolError(BusinessError):
    """单个帧无法解析或不匹配任何已知结构。记录后跳过，会话继续。"""


class StateError(BusinessError):
    """对处于非法状态的会话执行操作，例如向已完成的会话提交问题。"""


class ValidationError(BusinessError):
    """参数或配置校验失败。"""
