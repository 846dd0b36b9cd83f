"""Anthropic Messages API 适配器。

与 chat/completions 的区别：system 提示词是请求体的顶层字段，
不出现在 messages 列表中；认证头为 x-api-key，并需要 anthropic-version。
"""

from typing import Any, Dict, Optional

import httpx

from chat_core.domain.models import ChatRequest
from chat_core.providers.base import HttpProviderAdapter
from chat_core.providers.descriptors import AnthropicDescriptor


class AnthropicClient(HttpProviderAdapter):
    kind = "anthropic"
    label = "Claude"

    UNAVAILABLE_MESSAGE = "抱歉，Claude服务暂时不可用，请稍后再试。"

    def __init__(self, descriptor: AnthropicDescriptor, http_client: httpx.Client):
        super().__init__(descriptor, http_client)
        base = descriptor.api_base_url.rstrip("/")
        self._url = base if base.endswith("/messages") else f"{base}/v1/messages"

    def build_request(self, req: ChatRequest) -> Dict[str, Any]:
        self._require_api_key()
        return {
            "model": self.descriptor.provider_model,
            "system": req.system_prompt,
            "messages": self._history_payload(req),
            "temperature": self.descriptor.temperature,
            "max_tokens": self.descriptor.max_tokens,
        }

    def endpoint(self) -> str:
        return self._url

    def headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self.descriptor.api_key,
            "anthropic-version": self.descriptor.anthropic_version,
            "Content-Type": "application/json",
        }

    def status_message(self, status_code: int, detail: Optional[str]) -> str:
        return f"抱歉，AI响应出错，请稍后再试。错误代码: {status_code}"
