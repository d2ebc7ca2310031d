"""领域层模型与协议。

包含：
- models: 消息、引用、归一化事件与会话状态。
- conversation: Conversation 模型及 ConversationStore 抽象。
- exceptions: 业务异常类型定义。
"""
