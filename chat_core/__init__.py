"""Chat Core 顶层包。

该包提供多模型聊天机器人的核心实现，包括配置加载、领域模型、
Provider 适配、模型健康管理、人设、对话编排与偏好持久化等能力。
"""

from chat_core.api.service import ChatService, build_service, get_default_service

__all__ = ["ChatService", "build_service", "get_default_service"]
