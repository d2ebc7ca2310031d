"""统一的消息、事件与会话状态模型。

本模块定义了客户端内部共享的标准数据结构：

- UserMessage / BotMessage: 写入会话日志的两类消息，追加后不可变。
- ProgressEvent / AnswerEvent / ErrorEvent: 归一化后的流事件，
  由 normalizer 从原始帧生成，下游只依赖这三种类型。
- NormalizationError: 无法归一化的帧（非致命，会话继续）。
- ProgressStep: 仅在一次活动会话内存在的进度步骤，不持久化。
- SessionStatus: 单次提交的生命周期状态。

远端协议的 JSON 结构只允许出现在 normalizer 与 provider 中，
其余模块只使用这里的类型。
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Literal, Optional, Tuple, Union


DEFAULT_REFERENCE_URL = "#"
DEFAULT_REFERENCE_QUOTE = "No quote available"

Role = Literal["user", "bot"]


@dataclass(frozen=True)
class Reference:
    """答案引用的来源；缺失字段使用占位值。"""

    url: str = DEFAULT_REFERENCE_URL
    exact_quote: str = DEFAULT_REFERENCE_QUOTE


@dataclass(frozen=True)
class Evaluation:
    """服务端对答案的自评：理由与是否为确定性结论。"""

    reason: str = ""
    definitive: bool = False


@dataclass(frozen=True)
class UserMessage:
    id: str
    text: str
    timestamp: datetime
    role: Role = field(default="user", init=False)


@dataclass(frozen=True)
class BotMessage:
    """一条终止性的机器人消息（最终答案或错误提示）。

    - references: 有序引用列表，可能为空。
    - evaluation: 可选自评。
    - thoughts: 服务端附带的推理内容，原样保存（字符串或 JSON 结构）。
    """

    id: str
    text: str
    timestamp: datetime
    references: Tuple[Reference, ...] = ()
    evaluation: Optional[Evaluation] = None
    thoughts: Optional[Any] = None
    role: Role = field(default="bot", init=False)


Message = Union[UserMessage, BotMessage]


@dataclass(frozen=True)
class ProgressStep:
    """会话内的单个进度步骤，仅用于界面展示。"""

    step_label: str
    action_summary: str
    timestamp: datetime
    thoughts_summary: Optional[str] = None


@dataclass(frozen=True)
class ProgressEvent:
    step_label: str
    action_summary: str
    thoughts_summary: Optional[str] = None
    kind: Literal["progress"] = field(default="progress", init=False)


@dataclass(frozen=True)
class AnswerEvent:
    text: str
    references: Tuple[Reference, ...] = ()
    evaluation: Optional[Evaluation] = None
    thoughts: Optional[Any] = None
    kind: Literal["answer"] = field(default="answer", init=False)


@dataclass(frozen=True)
class ErrorEvent:
    message: str
    kind: Literal["error"] = field(default="error", init=False)


NormalizedEvent = Union[ProgressEvent, AnswerEvent, ErrorEvent]


class NormalizationErrorKind(str, Enum):
    MALFORMED = "malformed"  # 不是合法 JSON
    UNRECOGNIZED = "unrecognized"  # JSON 合法但不匹配任何已知结构


@dataclass(frozen=True)
class NormalizationError:
    """一个无法归一化的帧。由 normalizer 返回而不是抛出。"""

    kind: NormalizationErrorKind
    raw_frame: str
    detail: str = ""


class SessionStatus(str, Enum):
    IDLE = "idle"
    SUBMITTED = "submitted"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ERRORED = "errored"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.ERRORED)
