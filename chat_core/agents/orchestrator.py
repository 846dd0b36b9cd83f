"""对话编排核心模块。

一轮对话的完整流程：确定模型与人设、写入用户消息、构造系统提示词、
经注册表调用模型、处理"不回复"标记、裁剪历史、拆分多段回复；调用失败
时回滚本轮用户消息。同一用户的整轮处理都持有该用户会话的锁。
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from uuid import uuid4

from chat_core.domain.conversation import ConversationStore, UserPreferenceStore
from chat_core.domain.exceptions import NotFoundError
from chat_core.domain.models import ErrorKind, Message
from chat_core.infrastructure.logging.logger import logger
from chat_core.prompts import (
    DEFAULT_PERSONA,
    NO_RESPONSE_SENTINEL,
    SEGMENT_SEPARATOR,
    PersonaCatalog,
    build_system_prompt,
)
from chat_core.providers.registry import ModelRegistry

GENERIC_ERROR_MESSAGE = "抱歉，处理您的消息时出现错误，请稍后再试。"
EMPTY_HISTORY_SUMMARY = "没有对话历史"

SUMMARY_MESSAGES = 3
SUMMARY_CONTENT_LIMIT = 50


@dataclass
class OrchestratorConfig:
    max_conversation_length: int = 20
    max_segments: int = 3  # 0 表示不限制
    fallback_model: str = "gpt-3.5-turbo"
    default_persona: str = DEFAULT_PERSONA


@dataclass(frozen=True)
class SegmentSplit:
    segments: List[str]
    truncated: int = 0  # 因超出上限被丢弃的段数


def split_segments(text: str, max_segments: int = 0) -> SegmentSplit:
    """按 SEGMENT_SEPARATOR 拆分回复。

    各段去除首尾空白，空段丢弃；全部为空但原文非空时整体作为一段。
    max_segments > 0 时只保留前 max_segments 段。
    """

    segments = [piece.strip() for piece in text.split(SEGMENT_SEPARATOR)]
    segments = [piece for piece in segments if piece]
    if not segments and text.strip():
        segments = [text.strip()]
    if max_segments > 0 and len(segments) > max_segments:
        return SegmentSplit(segments[:max_segments], len(segments) - max_segments)
    return SegmentSplit(segments)


class ConversationOrchestrator:
    def __init__(
        self,
        registry: ModelRegistry,
        personas: PersonaCatalog,
        preferences: UserPreferenceStore,
        store: Optional[ConversationStore] = None,
        config: Optional[OrchestratorConfig] = None,
    ):
        self._registry = registry
        self._personas = personas
        self._preferences = preferences
        self._config = config or OrchestratorConfig()
        self._store = store or ConversationStore(self._config.max_conversation_length)

    @property
    def store(self) -> ConversationStore:
        return self._store

    def reply(self, user_id: str, raw_text: str) -> List[str]:
        """处理一条用户消息，返回按顺序发送的消息段；空列表表示不回复。

        该方法不会抛出异常：任何失败都回滚本轮用户消息并返回一条错误文本。
        """

        start_time = time.time()
        log_ctx: Dict[str, Any] = {"trace_id": f"tr-{uuid4().hex}", "user_id": user_id}
        session = self._store.get_or_create(user_id)

        with session.lock:
            user_msg: Optional[Message] = None
            try:
                model = self.resolve_model(user_id)
                persona = self._personas.get(self.resolve_persona(user_id))
                log_ctx.update(model=model, persona=persona.name)

                user_msg = session.append(Message(role="user", content=raw_text))
                system_prompt = build_system_prompt(persona.prompt)
                reply = self._registry.invoke(model, system_prompt, session.history)
            except Exception:
                if user_msg is not None:
                    session.remove(user_msg)
                logger.exception(
                    "Reply failed unexpectedly",
                    extra={"extra": {**log_ctx, "error_kind": ErrorKind.SESSION.value}},
                )
                return [GENERIC_ERROR_MESSAGE]

            if not reply.ok:
                session.remove(user_msg)
                self._log(
                    logging.WARNING,
                    "Reply failed, user message rolled back",
                    log_ctx,
                    error_kind=reply.error.value if reply.error else None,
                    detail=reply.detail,
                )
                return [reply.text if reply.text.strip() else GENERIC_ERROR_MESSAGE]

            text = reply.text
            if text.strip() == NO_RESPONSE_SENTINEL:
                session.append(Message(role="assistant", content=""))
                trimmed = session.trim()
                self._log(logging.INFO, "Model chose not to reply", log_ctx, trimmed=trimmed)
                return []

            session.append(Message(role="assistant", content=text))
            trimmed = session.trim()
            if trimmed:
                self._log(
                    logging.INFO,
                    "Truncated history",
                    log_ctx,
                    max_length=session.max_length,
                    trimmed=trimmed,
                )

            split = split_segments(text, self._config.max_segments)
            if split.truncated:
                session.truncated_replies += 1
                self._log(
                    logging.WARNING,
                    "Reply segments truncated",
                    log_ctx,
                    max_segments=self._config.max_segments,
                    dropped=split.truncated,
                )

        self._log(
            logging.INFO,
            "Reply completed",
            log_ctx,
            segments=len(split.segments),
            elapsed_seconds=round(time.time() - start_time, 3),
        )
        return split.segments

    def resolve_model(self, user_id: str) -> str:
        return (
            self._preferences.get_user_model(user_id)
            or self._preferences.get_default_model()
            or self._config.fallback_model
        )

    def resolve_persona(self, user_id: str) -> str:
        return self._preferences.get_user_persona(user_id) or self._config.default_persona

    def clear(self, user_id: str) -> None:
        self._store.clear(user_id)
        logger.info("Conversation cleared", extra={"extra": {"user_id": user_id}})

    def set_user_model(self, user_id: str, model: str) -> None:
        if not self._registry.has_model(model):
            raise NotFoundError(code="MODEL_NOT_FOUND", message=f"模型不存在: {model}", http_status=404)
        self._preferences.set_user_model(user_id, model)
        logger.info("User model changed", extra={"extra": {"user_id": user_id, "model": model}})

    def set_user_persona(self, user_id: str, persona: str) -> None:
        """切换人设并清空该用户的会话历史。"""

        if not self._personas.has(persona):
            raise NotFoundError(code="PERSONA_NOT_FOUND", message=f"人设不存在: {persona}", http_status=404)
        self._preferences.set_user_persona(user_id, persona)
        self._store.clear(user_id)
        logger.info("User persona changed", extra={"extra": {"user_id": user_id, "persona": persona}})

    def summary(self, user_id: str) -> str:
        session = self._store.get(user_id)
        if session is None:
            return EMPTY_HISTORY_SUMMARY
        with session.lock:
            history = session.history
        if not history:
            return EMPTY_HISTORY_SUMMARY

        lines = [f"对话历史（{len(history)}条消息）：", ""]
        recent = history[-SUMMARY_MESSAGES:]
        first_index = len(history) - len(recent) + 1
        for idx, message in enumerate(recent, start=first_index):
            role = "用户" if message.role == "user" else "AI"
            content = message.content or "(无回复)"
            if len(content) > SUMMARY_CONTENT_LIMIT:
                content = content[:SUMMARY_CONTENT_LIMIT] + "..."
            lines.append(f"{idx}. {role}: {content}")
        return "\n".join(lines)

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
