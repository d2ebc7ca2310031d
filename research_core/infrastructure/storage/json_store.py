import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from research_core.config.settings import settings
from research_core.domain.conversation import (
    DEFAULT_TITLE,
    Conversation,
    ConversationStore,
    derive_title,
)
from research_core.domain.exceptions import BusinessError, StateError
from research_core.domain.models import (
    BotMessage,
    Evaluation,
    Message,
    Reference,
    UserMessage,
)
from research_core.infrastructure.logging.logger import logger


COLLECTION_FILE = "conversations.json"
SELECTED_FILE = "selected.json"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_ts(raw: str) -> datetime:
    return datetime.fromisoformat(str(raw).replace("Z", "+00:00"))


class JsonConversationStore(ConversationStore):
    """把全部会话与当前选中 id 作为两个 JSON 键持久化到本地目录。

    每次变更都以整份快照替换内存中的集合，然后同步写盘（临时文件 +
    os.replace）。该模式依赖单线程事件模型；若在多线程中共享同一个
    store，需要在外层串行化所有变更。
    """

    def __init__(self, root: str | Path | None = None, title_max_chars: Optional[int] = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._root.mkdir(parents=True, exist_ok=True)
        self._collection_path = self._root / COLLECTION_FILE
        self._selected_path = self._root / SELECTED_FILE
        self._title_max_chars = title_max_chars or settings.title_max_chars
        self._conversations: Tuple[Conversation, ...] = ()
        self._selected_id: Optional[str] = None
        self._load()

    # ---- 查询 ----

    @property
    def selected_id(self) -> Optional[str]:
        return self._selected_id

    def list_conversations(self) -> List[Conversation]:
        return list(self._conversations)

    def get(self, conversation_id: str) -> Conversation:
        conv = self._find(conversation_id)
        if conv is None:
            raise StateError(code="CONVERSATION_NOT_FOUND", message=conversation_id)
        return conv

    def selected(self) -> Conversation:
        return self.get(self._selected_id or "")

    # ---- 变更 ----

    def create(self) -> Conversation:
        """新建会话并置顶（最新在前），同时设为选中。"""
        conv = self._new_conversation()
        self._commit((conv,) + self._conversations, conv.id)
        logger.info("Created conversation", extra={"extra": {"conversation_id": conv.id}})
        return conv

    def select(self, conversation_id: str) -> Conversation:
        conv = self.get(conversation_id)
        self._commit(self._conversations, conv.id)
        return conv

    def append_user_message(self, conversation_id: str, text: str) -> UserMessage:
        conv = self.get(conversation_id)
        if conv.completed:
            raise StateError(
                code="CONVERSATION_COMPLETED",
                message="This conversation already has an answer. Start a new question to continue.",
                conversation_id=conversation_id,
            )
        msg = UserMessage(id=f"m-{uuid4().hex}", text=text, timestamp=_utcnow())
        title = conv.title if conv.has_user_message else derive_title(text, self._title_max_chars)
        updated = Conversation(
            id=conv.id,
            title=title,
            messages=conv.messages + (msg,),
            completed=False,
        )
        self._replace(updated)
        return msg

    def append_bot_message(self, conversation_id: str, message: BotMessage) -> Conversation:
        """追加终止性机器人消息并把会话标记为 completed。"""
        conv = self.get(conversation_id)
        if conv.completed:
            raise StateError(
                code="CONVERSATION_COMPLETED",
                message=f"Conversation {conversation_id} already has a terminal message",
                conversation_id=conversation_id,
            )
        updated = Conversation(
            id=conv.id,
            title=conv.title,
            messages=conv.messages + (message,),
            completed=True,
        )
        self._replace(updated)
        return updated

    def delete(self, conversation_id: str) -> None:
        """删除会话。确认由调用方负责。

        若删除的是当前选中会话，选中项回落到剩余会话中最新的一个；
        没有剩余会话时自动新建一个并选中。
        """
        self.get(conversation_id)
        remaining = tuple(c for c in self._conversations if c.id != conversation_id)
        selected = self._selected_id
        if not remaining:
            fresh = self._new_conversation()
            remaining = (fresh,)
            selected = fresh.id
        elif selected == conversation_id:
            selected = remaining[0].id
        self._commit(remaining, selected)
        logger.info(
            "Deleted conversation",
            extra={"extra": {"conversation_id": conversation_id, "selected_id": selected}},
        )

    # ---- 内部实现 ----

    def _new_conversation(self) -> Conversation:
        return Conversation(id=f"c-{uuid4().hex}", title=DEFAULT_TITLE)

    def _find(self, conversation_id: str) -> Optional[Conversation]:
        for conv in self._conversations:
            if conv.id == conversation_id:
                return conv
        return None

    def _replace(self, updated: Conversation) -> None:
        snapshot = tuple(updated if c.id == updated.id else c for c in self._conversations)
        self._commit(snapshot, self._selected_id)

    def _commit(self, conversations: Tuple[Conversation, ...], selected_id: Optional[str]) -> None:
        self._conversations = conversations
        self._selected_id = selected_id
        self._flush()

    def _load(self) -> None:
        conversations: Tuple[Conversation, ...] = ()
        if self._collection_path.exists():
            try:
                data = json.loads(self._collection_path.read_text(encoding="utf-8"))
                conversations = tuple(self._to_conversation(item) for item in data)
            except (OSError, ValueError, KeyError, TypeError) as e:
                raise BusinessError(code="STORE_READ_ERROR", message=str(e))
        selected: Optional[str] = None
        if self._selected_path.exists():
            try:
                selected = json.loads(self._selected_path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as e:
                logger.warning("Ignoring unreadable selection", extra={"extra": {"error": str(e)}})
        self._conversations = conversations
        if not conversations:
            self.create()
            return
        if not isinstance(selected, str) or self._find(selected) is None:
            selected = conversations[0].id
        self._selected_id = selected

    def _flush(self) -> None:
        self._write_json(self._collection_path, [self._conversation_to_dict(c) for c in self._conversations])
        self._write_json(self._selected_path, self._selected_id)

    def _write_json(self, path: Path, obj: Any) -> None:
        tmp_path = path.with_name(f"{path.stem}.{uuid4().hex}.json.tmp")
        try:
            tmp_path.write_text(json.dumps(obj, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, path)
        except (OSError, TypeError, ValueError) as e:
            raise BusinessError(code="STORE_WRITE_ERROR", message=str(e))

    def _conversation_to_dict(self, conv: Conversation) -> Dict[str, Any]:
        return {
            "id": conv.id,
            "title": conv.title,
            "completed": conv.completed,
            "messages": [self._message_to_dict(m) for m in conv.messages],
        }

    def _message_to_dict(self, message: Message) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": message.id,
            "role": message.role,
            "text": message.text,
            "timestamp": _iso(message.timestamp),
        }
        if isinstance(message, BotMessage):
            payload["references"] = [
                {"url": r.url, "exactQuote": r.exact_quote} for r in message.references
            ]
            payload["evaluation"] = (
                {"reason": message.evaluation.reason, "definitive": message.evaluation.definitive}
                if message.evaluation
                else None
            )
            payload["thoughts"] = message.thoughts
        return payload

    def _to_conversation(self, data: Dict[str, Any]) -> Conversation:
        return Conversation(
            id=data["id"],
            title=data.get("title") or DEFAULT_TITLE,
            messages=tuple(self._to_message(m) for m in data.get("messages") or []),
            completed=bool(data.get("completed", False)),
        )

    def _to_message(self, data: Dict[str, Any]) -> Message:
        ts = _parse_ts(data["timestamp"])
        if data.get("role") == "user":
            return UserMessage(id=data["id"], text=data.get("text") or "", timestamp=ts)
        evaluation_raw = data.get("evaluation")
        evaluation = None
        if isinstance(evaluation_raw, dict):
            evaluation = Evaluation(
                reason=evaluation_raw.get("reason") or "",
                definitive=bool(evaluation_raw.get("definitive", False)),
            )
        return BotMessage(
            id=data["id"],
            text=data.get("text") or "",
            timestamp=ts,
            references=tuple(
                Reference(url=r["url"], exact_quote=r["exactQuote"]) for r in data.get("references") or []
            ),
            evaluation=evaluation,
            thoughts=data.get("thoughts"),
        )
