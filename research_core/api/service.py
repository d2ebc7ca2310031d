"""对外 API 服务模块。

提供简化的函数接口供上层应用（GUI、脚本）调用。
"""

from typing import Any, Dict, Optional

from research_core.config.settings import settings
from research_core.domain.conversation import Conversation
from research_core.domain.models import BotMessage, Message
from research_core.infrastructure.logging.logger import logger
from research_core.infrastructure.storage.json_store import JsonConversationStore
from research_core.providers import create_provider
from research_core.session.controller import SubmissionController


_controller: Optional[SubmissionController] = None


def get_default_controller() -> SubmissionController:
    """获取默认的提交控制器实例（单例）。"""
    global _controller
    if _controller is None:
        store = JsonConversationStore(root=settings.storage_root)
        _controller = SubmissionController(store=store, provider=create_provider())
    return _controller


def ask(text: str, conversation_id: Optional[str] = None) -> Dict[str, Any]:
    """同步提问：提交并在当前线程读完事件流。

    Args:
        text: 问题文本
        conversation_id: 会话ID（可选，不提供则新建会话）

    Returns:
        包含会话完整内容与最终状态的字典

    Raises:
        各种 domain.exceptions 中定义的异常
    """
    controller = get_default_controller()
    if conversation_id is None:
        conversation_id = controller.new_question().id
    try:
        session = controller.submit(conversation_id, text)
        if session is not None and not session.is_terminal:
            session.consume()
    except Exception as e:
        logger.error(f"Ask failed: {e}", extra={"extra": {
            "conversation_id": conversation_id,
            "error": str(e),
        }})
        raise
    result = conversation_to_dict(controller.store.get(conversation_id))
    result["status"] = session.status.value if session else "idle"
    return result


def list_conversations() -> list[Dict[str, Any]]:
    """列出所有会话（最新在前）。"""
    controller = get_default_controller()
    return [
        {"id": c.id, "title": c.title, "completed": c.completed, "message_count": len(c.messages)}
        for c in controller.store.list_conversations()
    ]


def get_conversation_messages(conversation_id: str) -> list[Dict[str, Any]]:
    controller = get_default_controller()
    return [message_to_dict(m) for m in controller.store.get(conversation_id).messages]


def conversation_to_dict(conv: Conversation) -> Dict[str, Any]:
    return {
        "id": conv.id,
        "title": conv.title,
        "completed": conv.completed,
        "messages": [message_to_dict(m) for m in conv.messages],
    }


def message_to_dict(message: Message) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "id": message.id,
        "role": message.role,
        "text": message.text,
        "timestamp": message.timestamp.isoformat(),
    }
    if isinstance(message, BotMessage):
        payload["references"] = [{"url": r.url, "exactQuote": r.exact_quote} for r in message.references]
        if message.evaluation is not None:
            payload["evaluation"] = {
                "reason": message.evaluation.reason,
                "definitive": message.evaluation.definitive,
            }
        if message.thoughts is not None:
            payload["thoughts"] = message.thoughts
    return payload
