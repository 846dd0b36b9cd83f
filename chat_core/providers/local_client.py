"""本地模型服务适配器（LM Studio / Ollama / llama.cpp server 等）。

默认按 OpenAI 兼容格式请求；normalizer 同时识别 Ollama 风格的
{"response": "..."} 单字段响应。本地服务通常不需要密钥。
"""

from typing import Any, Dict, Optional

from chat_core.domain.models import ChatRequest
from chat_core.providers.base import HttpProviderAdapter
from chat_core.providers.descriptors import LocalDescriptor


class LocalLLMClient(HttpProviderAdapter):
    descriptor: LocalDescriptor

    kind = "local"
    label = "LocalLLM"

    UNAVAILABLE_MESSAGE = "抱歉，无法连接到本地AI模型服务，请检查服务是否已启动。"

    def build_request(self, req: ChatRequest) -> Dict[str, Any]:
        messages = [self._system_message(req.system_prompt)]
        messages.extend(self._history_payload(req))
        return {
            "model": self.descriptor.provider_model,
            "messages": messages,
            "temperature": self.descriptor.temperature,
            "max_tokens": self.descriptor.max_tokens,
            "stream": False,
        }

    def endpoint(self) -> str:
        return self.descriptor.api_endpoint

    def headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.descriptor.api_key:
            headers["Authorization"] = f"Bearer {self.descriptor.api_key}"
        return headers

    def status_message(self, status_code: int, detail: Optional[str]) -> str:
        return f"抱歉，本地AI模型响应出错，请检查服务是否正常运行。错误代码: {status_code}"
