"""事件归一化：原始帧 -> 领域事件。

远端服务在不同版本中用三种结构发送“最终答案”：

1. ``type == "progress"``，同时带有 ``answer`` 以及 ``references`` 或 ``evaluation``；
2. ``type == "answer"``，答案内容嵌套在 ``data`` 字段下；
3. ``type == "final"``，答案字段直接位于顶层。

这里一次性完成结构识别，下游只会看到 ProgressEvent / AnswerEvent /
ErrorEvent 三种类型。无法识别的帧以 NormalizationError 返回，不抛异常。
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Union

from research_core.domain.exceptions import ProtocolError
from research_core.domain.models import (
    DEFAULT_REFERENCE_QUOTE,
    DEFAULT_REFERENCE_URL,
    AnswerEvent,
    ErrorEvent,
    Evaluation,
    NormalizationError,
    NormalizationErrorKind,
    NormalizedEvent,
    ProgressEvent,
    Reference,
)


DEFAULT_ERROR_MESSAGE = "Unknown error"
GENERIC_STEP_LABEL = "Progress update:"


def normalize(raw_frame: str) -> Union[NormalizedEvent, NormalizationError]:
    """把一个传输帧解析为归一化事件；失败时返回 NormalizationError。"""

    try:
        return parse_frame(raw_frame)
    except ProtocolError as e:
        return NormalizationError(kind=e.extra["kind"], raw_frame=raw_frame, detail=e.message)


def parse_frame(raw_frame: str) -> NormalizedEvent:
    """严格版本：无法识别的帧抛出 ProtocolError。"""

    try:
        payload = json.loads(raw_frame)
    except (TypeError, ValueError, RecursionError) as e:
        # 嵌套过深的 JSON 在解码器里触发 RecursionError
        raise ProtocolError(code="MALFORMED_FRAME", message=str(e), kind=NormalizationErrorKind.MALFORMED)
    if not isinstance(payload, dict):
        raise _unrecognized("payload is not an object")

    event_type = payload.get("type")
    if event_type == "progress":
        if _carries_answer(payload):
            return _answer_from(payload)
        return _progress_from(payload)
    if event_type == "answer":
        data = payload.get("data")
        if not isinstance(data, dict):
            raise _unrecognized("answer event without data object")
        return _answer_from(data)
    if event_type == "final":
        return _answer_from(payload)
    if event_type == "error":
        return ErrorEvent(message=_error_message(payload.get("message")))
    raise _unrecognized(f"unknown event type {event_type!r}")


def normalize_references(raw: Any) -> tuple[Reference, ...]:
    """引用可以是单个对象、对象数组或缺失，统一输出有序元组。"""

    if raw is None:
        return ()
    items: List[Any] = raw if isinstance(raw, list) else [raw]
    refs: List[Reference] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        refs.append(
            Reference(
                url=_text_or(item.get("url"), DEFAULT_REFERENCE_URL),
                exact_quote=_text_or(item.get("exactQuote"), DEFAULT_REFERENCE_QUOTE),
            )
        )
    return tuple(refs)


def step_label(step: Any) -> str:
    """数字 -> "Step N:"，文本 -> 首字母大写 "Word:"，缺失 -> 通用标签。"""

    if isinstance(step, bool) or step is None:
        return GENERIC_STEP_LABEL
    if isinstance(step, int):
        return f"Step {step}:"
    if isinstance(step, float):
        return f"Step {int(step) if step.is_integer() else step}:"
    if isinstance(step, str):
        text = step.strip()
        if not text:
            return GENERIC_STEP_LABEL
        if text.isdigit():
            return f"Step {int(text)}:"
        return f"{text[0].upper()}{text[1:]}:"
    return GENERIC_STEP_LABEL


def _carries_answer(payload: Dict[str, Any]) -> bool:
    answer = payload.get("answer")
    if not isinstance(answer, str) or not answer:
        return False
    return payload.get("references") is not None or payload.get("evaluation") is not None


def _answer_from(data: Dict[str, Any]) -> AnswerEvent:
    answer = data.get("answer")
    return AnswerEvent(
        text="" if answer is None else str(answer),
        references=normalize_references(data.get("references")),
        evaluation=_evaluation_from(data.get("evaluation")),
        thoughts=data.get("thoughts"),
    )


def _progress_from(payload: Dict[str, Any]) -> ProgressEvent:
    trackers = payload.get("trackers") if isinstance(payload.get("trackers"), dict) else {}
    action_state = trackers.get("actionState") if isinstance(trackers.get("actionState"), dict) else {}
    action = action_state.get("action", payload.get("action"))
    thoughts = action_state.get("thoughts", payload.get("thoughts"))
    return ProgressEvent(
        step_label=step_label(payload.get("step")),
        action_summary=_text_or(action, ""),
        thoughts_summary=None if thoughts is None else str(thoughts),
    )


def _evaluation_from(raw: Any) -> Optional[Evaluation]:
    if not isinstance(raw, dict):
        return None
    return Evaluation(
        reason=_text_or(raw.get("reason"), ""),
        definitive=bool(raw.get("definitive", False)),
    )


def _error_message(raw: Any) -> str:
    if raw is None or not str(raw).strip():
        return DEFAULT_ERROR_MESSAGE
    return str(raw)


def _text_or(value: Any, default: str) -> str:
    if value is None:
        return default
    return value if isinstance(value, str) else str(value)


def _unrecognized(detail: str) -> ProtocolError:
    return ProtocolError(code="UNRECOGNIZED_FRAME", message=detail, kind=NormalizationErrorKind.UNRECOGNIZED)
