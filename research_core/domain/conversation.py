from dataclasses import dataclass
from typing import List, Optional, Protocol, Tuple

from .models import BotMessage, Message, UserMessage


DEFAULT_TITLE = "New Question"


@dataclass(frozen=True)
class Conversation:
    id: str
    title: str
    messages: Tuple[Message, ...] = ()
    completed: bool = False

    @property
    def has_user_message(self) -> bool:
        return any(isinstance(m, UserMessage) for m in self.messages)

    @property
    def last_bot_message(self) -> Optional[BotMessage]:
        for m in reversed(self.messages):
            if isinstance(m, BotMessage):
                return m
        return None


def derive_title(text: str, max_chars: int = 30) -> str:
    """由第一条用户消息生成标题：前 max_chars 个字符加省略号。"""
    return text.strip()[:max_chars] + "..."


class ConversationStore(Protocol):
    def create(self) -> Conversation:
        ...

    def get(self, conversation_id: str) -> Conversation:
        ...

    def list_conversations(self) -> List[Conversation]:
        ...

    def select(self, conversation_id: str) -> Conversation:
        ...

    @property
    def selected_id(self) -> Optional[str]:
        ...

    def append_user_message(self, conversation_id: str, text: str) -> UserMessage:
        ...

    def append_bot_message(self, conversation_id: str, message: BotMessage) -> Conversation:
        ...

    def delete(self, conversation_id: str) -> None:
        ...
