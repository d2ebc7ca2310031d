"""提交控制器：校验 -> 写入用户消息 -> 打开会话 -> 绑定事件流。"""

from __future__ import annotations

import logging
from functools import partial
from pathlib import Path
from typing import Callable, Dict, List, Optional

from research_core.config.settings import settings
from research_core.domain.conversation import Conversation, ConversationStore
from research_core.domain.exceptions import StateError, TransportError
from research_core.domain.models import ProgressStep
from research_core.infrastructure.logging.logger import log_event
from research_core.providers.base import EventStream, ResearchProvider
from research_core.session.state_machine import Dispatch, ResearchSession, run_now
from research_core.session.trace import DebugTraceRecorder


class SubmissionController:
    """持有当前活动会话；同一时刻最多只有一个会话在流式接收。

    开始新问题、再次提交或删除活动会话所属的对话，都会先关闭上一个
    会话的连接句柄。关闭后到达的帧由状态机的终止守卫丢弃。
    """

    def __init__(
        self,
        store: ConversationStore,
        provider: ResearchProvider,
        recorder: Optional[DebugTraceRecorder] = None,
    ):
        self._store = store
        self._provider = provider
        self._recorder = recorder or DebugTraceRecorder()
        self._active: Optional[ResearchSession] = None

    @property
    def store(self) -> ConversationStore:
        return self._store

    @property
    def recorder(self) -> DebugTraceRecorder:
        return self._recorder

    @property
    def active_session(self) -> Optional[ResearchSession]:
        return self._active

    @property
    def progress_steps(self) -> List[ProgressStep]:
        return self._active.steps if self._active else []

    def submit(self, conversation_id: str, text: str) -> Optional[ResearchSession]:
        """提交一个问题（begin + connect，同一线程内完成）。

        Returns:
            已进入 Streaming 的会话（调用方负责 consume），发起请求失败时返回
            已 Errored 的会话；空文本返回 None。

        Raises:
            StateError: 会话不存在或已经完成，此时不做任何修改。
        """
        session = self.begin(conversation_id, text)
        if session is None:
            return None
        self.connect(session, text.strip())
        return session

    def begin(self, conversation_id: str, text: str) -> Optional[ResearchSession]:
        """只做本地变更：校验、写入用户消息、创建会话并进入 Submitted，不访问网络。"""
        query = (text or "").strip()
        if not query:
            return None
        conv = self._store.get(conversation_id)
        if conv.completed:
            raise StateError(
                code="CONVERSATION_COMPLETED",
                message="This conversation already has an answer. Start a new question to continue.",
                conversation_id=conversation_id,
            )

        self.cancel_active("superseded")
        self._store.append_user_message(conversation_id, query)
        self._recorder.reset()
        session = ResearchSession(conversation_id, self._store, self._recorder)
        self._active = session
        session.mark_submitted()
        return session

    def connect(
        self,
        session: ResearchSession,
        query: str,
        dispatch: Optional[Dispatch] = None,
    ) -> Optional[EventStream]:
        """发起查询并打开事件流。

        这里只做网络调用，会话和 trace 的变更都交给 dispatch 执行，GUI 可以在
        工作线程里调用。返回打开的连接句柄，失败时返回 None。
        """
        run = dispatch or run_now
        log_ctx: Dict[str, str] = {"conversation_id": session.conversation_id, "session_id": session.session_id}
        try:
            request_id = self._provider.create_query(query)
        except TransportError as e:
            run(partial(session.fail_request, e))
            return None
        run(partial(self._record_request, session, query, request_id))
        log_event(logging.INFO, "Opening event stream", log_ctx, request_id=request_id)

        try:
            handle = self._provider.open_stream(request_id)
        except TransportError as e:
            run(partial(session.fail_transport, e))
            return None
        run(partial(session.attach, handle))
        return handle

    def _record_request(self, session: ResearchSession, query: str, request_id: str) -> None:
        # 已被新的提交取代时 trace 已经重置，不再写入
        if session is self._active:
            self._recorder.record("request", {"q": query}, {"request_id": request_id})

    def new_question(self) -> Conversation:
        self.cancel_active("new question")
        return self._store.create()

    def select(self, conversation_id: str) -> Conversation:
        return self._store.select(conversation_id)

    def delete(self, conversation_id: str, confirm: Optional[Callable[[Conversation], bool]] = None) -> bool:
        """删除会话；confirm 返回 False 时不做任何修改。"""
        conv = self._store.get(conversation_id)
        if confirm is not None and not confirm(conv):
            return False
        if self._active is not None and self._active.conversation_id == conversation_id:
            self.cancel_active("conversation deleted")
        self._store.delete(conversation_id)
        return True

    def cancel_active(self, reason: str = "cancelled") -> None:
        if self._active is not None and not self._active.is_terminal:
            self._active.cancel(reason)

    def export_debug(self, directory: str | Path | None = None) -> Path:
        """导出 trace 与当前会话瞬态状态，文件名带对话 id 与导出时间。"""
        session = self._active
        conversation_id = session.conversation_id if session else (self._store.selected_id or "none")
        snapshot = session.snapshot() if session else {"status": "idle", "steps": []}
        return self._recorder.write_export(directory or settings.debug_export_dir, conversation_id, snapshot)
