"""通用模板驱动 API 适配器。

适用于没有专门适配器的服务：请求体从 request_template 复制，
system + 历史合并进模板的 messages 数组（没有则新建）；请求头来自
headers 配置，值中的 {api_key} 会被替换；响应按 response_content_path
解析，未命中时回退到标准格式。
"""

import copy
from typing import Any, Dict, Optional

from chat_core.domain.exceptions import ConfigurationError
from chat_core.domain.models import ChatRequest
from chat_core.providers.base import HttpProviderAdapter
from chat_core.providers.descriptors import GenericAPIDescriptor

API_KEY_TOKEN = "{api_key}"


class GenericAPIClient(HttpProviderAdapter):
    descriptor: GenericAPIDescriptor

    kind = "api"
    label = "GenericAPI"

    UNAVAILABLE_MESSAGE = "抱歉，API服务暂时不可用，请稍后再试。"
    MISSING_URL_MESSAGE = "模型配置错误：未指定API URL"

    def build_request(self, req: ChatRequest) -> Dict[str, Any]:
        if not self.descriptor.api_url:
            raise ConfigurationError(code="MISSING_API_URL", message=self.MISSING_URL_MESSAGE)
        body = copy.deepcopy(dict(self.descriptor.request_template))
        conversation = [self._system_message(req.system_prompt)]
        conversation.extend(self._history_payload(req))
        messages = body.get("messages")
        if isinstance(messages, list):
            messages.extend(conversation)
        else:
            body["messages"] = conversation
        return body

    def endpoint(self) -> str:
        return self.descriptor.api_url or ""

    def headers(self) -> Dict[str, str]:
        cfg = self.descriptor
        api_key = cfg.api_key or ""
        headers = {"Content-Type": "application/json"}
        for key, value in cfg.headers.items():
            headers[str(key)] = str(value).replace(API_KEY_TOKEN, api_key)
        if api_key:
            headers[cfg.auth_header] = cfg.auth_format.replace(API_KEY_TOKEN, api_key)
        return headers

    def status_message(self, status_code: int, detail: Optional[str]) -> str:
        return f"抱歉，API调用失败，错误代码: {status_code}"
