"""DeepSeek Provider 适配器。

接口风格与 OpenAI 相同（chat/completions），额外处理：

- 模型 ID 映射：DeepSeek 只接受少数几个模型 ID，其他配置值一律映射为
  deepseek-chat。
- 人设注入方式可配置：作为 system 消息，或作为第一条 user 消息。
- 一次性降级：Provider 报告"模型不存在"时，仅替换 model 字段为
  deepseek-chat 并重试一次，其他参数保持不变。
"""

from typing import Any, Dict, Optional

import httpx

from chat_core.domain.exceptions import ProviderError
from chat_core.domain.models import ChatRequest, ProviderReply
from chat_core.infrastructure.logging.logger import logger
from chat_core.providers.base import HttpProviderAdapter, normalize_completions_url
from chat_core.providers.descriptors import DeepSeekDescriptor

ACCEPTED_MODELS = ("deepseek-chat", "deepseek-reasoner", "deepseek-coder")
FALLBACK_MODEL = "deepseek-chat"


def map_model_id(model_name: str) -> str:
    """将配置中的模型名映射到 DeepSeek API 实际接受的模型 ID。"""

    return model_name if model_name in ACCEPTED_MODELS else FALLBACK_MODEL


def is_model_missing(message: Optional[str]) -> bool:
    if not message:
        return False
    lowered = message.lower()
    if "model not exist" in lowered:
        return True
    return "model" in lowered and ("exist" in lowered or "not found" in lowered)


class DeepSeekClient(HttpProviderAdapter):
    kind = "deepseek"
    label = "DeepSeek"

    UNAVAILABLE_MESSAGE = "DeepSeek AI服务暂时不可用，请稍后再试。"
    MISSING_KEY_MESSAGE = "DeepSeek AI服务暂时不可用，请联系管理员配置API密钥。"
    FALLBACK_FAILED_MESSAGE = "DeepSeek API不支持请求的模型，并且降级尝试也失败。请联系管理员配置正确的模型。"

    def __init__(self, descriptor: DeepSeekDescriptor, http_client: httpx.Client):
        super().__init__(descriptor, http_client)
        self._url = normalize_completions_url(descriptor.api_base_url)

    def build_request(self, req: ChatRequest) -> Dict[str, Any]:
        self._require_api_key()
        cfg = self.descriptor
        # 人设作为 system 消息，或作为对话历史的第一条 user 消息
        role = "system" if cfg.persona_as_system_prompt else "user"
        messages = [self._system_message(req.system_prompt, role=role)]
        messages.extend(self._history_payload(req))
        payload: Dict[str, Any] = {
            "model": map_model_id(cfg.model_name),
            "messages": messages,
            "temperature": cfg.temperature,
            "max_tokens": cfg.max_tokens,
        }
        if cfg.enable_search:
            payload["enable_search"] = True
        if cfg.top_p is not None:
            payload["top_p"] = cfg.top_p
        if cfg.stop_sequences:
            payload["stop"] = list(cfg.stop_sequences)
        return payload

    def endpoint(self) -> str:
        return self._url

    def headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.descriptor.api_key}",
            "Content-Type": "application/json",
        }

    def status_message(self, status_code: int, detail: Optional[str]) -> str:
        if status_code == 400:
            return f"DeepSeek API请求错误: {detail or '未知错误'}"
        if status_code == 401:
            return "DeepSeek API认证失败，请检查API密钥。"
        if status_code == 429:
            return "DeepSeek API请求频率超限或余额不足，请稍后再试。"
        return f"DeepSeek API调用失败: {detail or '未知错误'}"

    def _send(self, body: Dict[str, Any]) -> ProviderReply:
        resp = self._post(body)
        if resp.is_success:
            return ProviderReply(text=self._parse(resp.text))

        detail = self._error_detail(resp)
        if not is_model_missing(detail) or body.get("model") == FALLBACK_MODEL:
            self._raise_for_status(resp)

        logger.warning(
            "DeepSeek model not accepted, retrying with fallback model",
            extra={"extra": {"model": self.name, "requested": body.get("model"), "fallback": FALLBACK_MODEL}},
        )
        retry_body = dict(body)
        retry_body["model"] = FALLBACK_MODEL
        retry = self._post(retry_body)
        if retry.is_success:
            logger.info("DeepSeek fallback model succeeded", extra={"extra": {"model": self.name}})
            return ProviderReply(text=self._parse(retry.text))

        retry_detail = self._error_detail(retry)
        if retry.status_code in (400, 401, 429):
            message = self.status_message(retry.status_code, retry_detail)
        else:
            message = self.FALLBACK_FAILED_MESSAGE
        raise ProviderError(
            code="FALLBACK_FAILED",
            message=message,
            http_status=retry.status_code,
            detail=retry_detail or retry.text[:200],
        )
