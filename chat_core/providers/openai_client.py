"""OpenAI 兼容（chat/completions）Provider 适配器。

本模块负责：

1. 接收统一的 ChatRequest。
2. 将其转换为 chat/completions 请求格式：system 提示词作为第一条消息，
   其后是会话历史。
3. 调用 HTTP 接口，非 2xx 状态码映射为不同的用户可见文案。
4. 响应交给 normalizer 解析为纯文本。

所有 OpenAI 兼容服务（包括各类代理、中转）都可以使用此适配器，
只需修改 api_base_url 与 api_model_name。
"""

from typing import Any, Dict, Optional

import httpx

from chat_core.domain.models import ChatRequest
from chat_core.providers.base import HttpProviderAdapter, normalize_completions_url
from chat_core.providers.descriptors import OpenAIDescriptor


class OpenAIClient(HttpProviderAdapter):
    """OpenAI 适配器实现。"""

    kind = "openai"
    label = "OpenAI"

    UNAVAILABLE_MESSAGE = "网络连接错误，暂时无法连接到AI服务，请稍后再试。"

    def __init__(self, descriptor: OpenAIDescriptor, http_client: httpx.Client):
        super().__init__(descriptor, http_client)
        self._url = normalize_completions_url(descriptor.api_base_url)

    def build_request(self, req: ChatRequest) -> Dict[str, Any]:
        self._require_api_key()
        messages = [self._system_message(req.system_prompt)]
        messages.extend(self._history_payload(req))
        return {
            "model": self.descriptor.provider_model,
            "messages": messages,
            "temperature": self.descriptor.temperature,
            "max_tokens": self.descriptor.max_tokens,
        }

    def endpoint(self) -> str:
        return self._url

    def headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.descriptor.api_key}",
            "Content-Type": "application/json",
        }

    def status_message(self, status_code: int, detail: Optional[str]) -> str:
        if status_code == 401:
            return "API认证失败，请联系管理员更新API密钥"
        if status_code == 429:
            return "API请求太频繁或已达到配额限制，请稍后再试"
        if status_code >= 500:
            return f"{self.label}服务器暂时不可用，请稍后再试"
        return "AI服务调用失败，请稍后再试"
