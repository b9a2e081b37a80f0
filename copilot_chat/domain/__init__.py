"""领域层模型与状态。

包含：
- models: ChatMessage / Attribution / ResponseContent / TurnResponse 等模型。
- conversation: ConversationSession、PendingQueue 与 ProcessedIdSet。
- exceptions: 业务异常类型定义。
"""
