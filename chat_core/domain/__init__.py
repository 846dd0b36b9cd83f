"""领域层模型与协议。

包含：
- models: Message / ChatRequest / ProviderReply / ModelHealth 等统一模型。
- conversation: 会话历史存储与用户偏好协议。
- exceptions: 业务异常类型定义。
"""
