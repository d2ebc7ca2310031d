"""单次提交的会话状态机。

状态：Idle -> Submitted -> Streaming -> {Completed, Errored}。
终止状态只进入一次且不可离开；之后到达的任何帧或事件都被忽略。
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from functools import partial
from typing import Any, Callable, Dict, List, Optional, Union
from uuid import uuid4

from research_core.domain.conversation import ConversationStore
from research_core.domain.exceptions import StateError, TransportError
from research_core.domain.models import (
    AnswerEvent,
    BotMessage,
    ErrorEvent,
    NormalizationError,
    NormalizedEvent,
    ProgressEvent,
    ProgressStep,
    SessionStatus,
)
from research_core.infrastructure.logging.logger import log_event
from research_core.providers.base import EventStream
from research_core.session.normalizer import normalize
from research_core.session.trace import DebugTraceRecorder


TRANSPORT_FAILURE_MESSAGE = "Connection to the research service was lost"
REQUEST_FAILURE_TEXT = "An error occurred. Please try again."

Dispatch = Callable[[Callable[[], None]], Any]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def run_now(fn: Callable[[], None]) -> None:
    fn()


class ResearchSession:
    """把一个查询的事件流绑定到其所属会话。

    - 进度事件只累积在本会话的瞬态步骤列表中，不写入存储。
    - 答案或错误事件生成一条终止性 BotMessage 追加到会话，关闭连接。
    - 所有原始帧、归一化结果和状态迁移都写入 DebugTraceRecorder。
    """

    def __init__(
        self,
        conversation_id: str,
        store: ConversationStore,
        recorder: DebugTraceRecorder,
    ):
        self.conversation_id = conversation_id
        self.session_id = f"s-{uuid4().hex}"
        self._store = store
        self._recorder = recorder
        self._status = SessionStatus.IDLE
        self._handle: Optional[EventStream] = None
        self._steps: List[ProgressStep] = []
        self._log_ctx: Dict[str, Any] = {
            "conversation_id": conversation_id,
            "session_id": self.session_id,
        }

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def is_terminal(self) -> bool:
        return self._status.is_terminal

    @property
    def steps(self) -> List[ProgressStep]:
        return list(self._steps)

    @property
    def handle(self) -> Optional[EventStream]:
        return self._handle

    # ---- 生命周期 ----

    def mark_submitted(self) -> None:
        if self._status is not SessionStatus.IDLE:
            raise StateError(code="SESSION_ALREADY_STARTED", message=f"Session is {self._status.value}")
        self._steps = []
        self._transition(SessionStatus.SUBMITTED)

    def attach(self, handle: EventStream) -> None:
        """拿到连接句柄后进入 Streaming。会话若已终止则直接关闭句柄。"""
        if self.is_terminal:
            handle.close()
            return
        if self._status is not SessionStatus.SUBMITTED:
            raise StateError(code="SESSION_NOT_SUBMITTED", message=f"Session is {self._status.value}")
        self._handle = handle
        self._transition(SessionStatus.STREAMING)

    def cancel(self, reason: str = "cancelled") -> None:
        """关闭连接并结束会话，不向会话追加任何消息。"""
        if self.is_terminal:
            return
        self._recorder.record("cancelled", reason)
        self._steps = []
        self._close_handle()
        self._transition(SessionStatus.ERRORED)

    # ---- 事件输入 ----

    def handle_frame(self, raw_frame: str) -> None:
        self._recorder.record("frame", raw_frame)
        if self.is_terminal:
            self._recorder.record("ignored", raw_frame, {"status": self._status.value})
            return
        result = normalize(raw_frame)
        if isinstance(result, NormalizationError):
            # ProtocolError：记录后跳过该帧，会话继续
            self._recorder.record("protocol_error", raw_frame, result)
            log_event(
                logging.WARNING,
                "Skipped unrecognized frame",
                self._log_ctx,
                kind=result.kind.value,
                detail=result.detail,
            )
            return
        self._recorder.record("event", raw_frame, result)
        self.apply(result)

    def apply(self, event: NormalizedEvent) -> None:
        if self.is_terminal:
            return
        if isinstance(event, ProgressEvent):
            if self._status is not SessionStatus.STREAMING:
                return
            self._steps.append(
                ProgressStep(
                    step_label=event.step_label,
                    action_summary=event.action_summary,
                    thoughts_summary=event.thoughts_summary,
                    timestamp=_utcnow(),
                )
            )
        elif isinstance(event, AnswerEvent):
            if self._status is not SessionStatus.STREAMING:
                return
            message = BotMessage(
                id=f"m-{uuid4().hex}",
                text=event.text,
                timestamp=_utcnow(),
                references=event.references,
                evaluation=event.evaluation,
                thoughts=event.thoughts,
            )
            self._finish(SessionStatus.COMPLETED, message)
        elif isinstance(event, ErrorEvent):
            if self._status not in (SessionStatus.SUBMITTED, SessionStatus.STREAMING):
                return
            message = BotMessage(id=f"m-{uuid4().hex}", text=f"Error: {event.message}", timestamp=_utcnow())
            self._finish(SessionStatus.ERRORED, message)

    def fail_transport(self, error: Union[BaseException, str, None] = None) -> None:
        """连接断开（不是解析出的事件）：按固定文案的 Error 事件处理，不重连。"""
        if self.is_terminal:
            return
        self._recorder.record("transport_error", None if error is None else str(error))
        log_event(logging.WARNING, "Event stream failed", self._log_ctx, error=str(error or "stream ended"))
        self.apply(ErrorEvent(message=TRANSPORT_FAILURE_MESSAGE))

    def fail_request(self, error: Union[BaseException, str, None] = None) -> None:
        """发起查询失败或没有拿到 requestId：不打开事件流，直接 Errored。"""
        if self.is_terminal:
            return
        self._recorder.record("request_error", None if error is None else str(error))
        log_event(logging.ERROR, "Query request failed", self._log_ctx, error=str(error))
        message = BotMessage(id=f"m-{uuid4().hex}", text=REQUEST_FAILURE_TEXT, timestamp=_utcnow())
        self._finish(SessionStatus.ERRORED, message)

    def consume(self, dispatch: Optional[Dispatch] = None, handle: Optional[EventStream] = None) -> None:
        """按到达顺序读取连接上的帧并交给 dispatch 执行。

        dispatch 为空时在当前线程直接处理；GUI 中传入 ``root.after`` 的包装，
        读取在工作线程、状态变更在界面线程。此时 attach 可能还排在队列里，
        工作线程直接传入刚打开的 handle。
        """
        handle = handle or self._handle
        if handle is None:
            raise StateError(code="SESSION_NOT_STREAMING", message="Session has no open event stream")
        run = dispatch or run_now
        try:
            for frame in handle.frames():
                if handle.closed:
                    return
                run(partial(self.handle_frame, frame))
                if dispatch is None and self.is_terminal:
                    return
        except TransportError as e:
            if not handle.closed:
                run(partial(self.fail_transport, e))
            return
        if not handle.closed:
            # 没有收到终止事件连接就结束了
            run(partial(self.fail_transport, None))

    def snapshot(self) -> Dict[str, Any]:
        return {
            "conversation_id": self.conversation_id,
            "session_id": self.session_id,
            "status": self._status.value,
            "steps": [
                {
                    "step_label": s.step_label,
                    "action_summary": s.action_summary,
                    "thoughts_summary": s.thoughts_summary,
                    "timestamp": s.timestamp.isoformat(),
                }
                for s in self._steps
            ],
        }

    # ---- 内部实现 ----

    def _finish(self, status: SessionStatus, message: BotMessage) -> None:
        try:
            self._store.append_bot_message(self.conversation_id, message)
        except StateError as e:
            # 会话在流式过程中被删除或已完成
            self._recorder.record("dropped_message", message.text, {"code": e.code, "message": e.message})
            log_event(logging.WARNING, "Dropped terminal message", self._log_ctx, code=e.code)
        finally:
            self._steps = []
            self._close_handle()
            self._transition(status)

    def _close_handle(self) -> None:
        if self._handle is not None and not self._handle.closed:
            self._handle.close()

    def _transition(self, new_status: SessionStatus) -> None:
        old = self._status
        self._status = new_status
        self._recorder.record("transition", None, {"from": old.value, "to": new_status.value})
        log_event(logging.INFO, "Session transition", self._log_ctx, from_status=old.value, to_status=new_status.value)
