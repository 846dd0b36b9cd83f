"""Provider 适配器抽象。

上层 ModelRegistry 不直接依赖具体厂商的 HTTP 细节，而是依赖此协议：

- 每种 API 方言实现一个适配器（如 OpenAIClient、AnthropicClient）。
- build_request: 把规范的 ChatRequest 转成该方言的请求体。
- call: 发出请求并把响应交给 normalizer，永远返回 ProviderReply。

HttpProviderAdapter 提供公共部分：注入的 httpx.Client、超时、单次 POST、
状态码映射，以及把内部异常统一转换为可展示文本的边界。
"""

from typing import Any, Dict, List, Optional, Protocol

import httpx

from chat_core.domain.exceptions import (
    BusinessError,
    ConfigurationError,
    ParseError,
    ProviderError,
    TransportError,
)
from chat_core.domain.models import ChatRequest, ErrorKind, ProviderReply
from chat_core.infrastructure.logging.logger import logger
from chat_core.providers.normalizer import ParseFailure, describe_error, parse_response

DEFAULT_CONNECT_TIMEOUT = 30.0
DEFAULT_REQUEST_TIMEOUT = 60.0

_ERROR_KINDS = {
    ConfigurationError: ErrorKind.CONFIGURATION,
    TransportError: ErrorKind.TRANSPORT,
    ProviderError: ErrorKind.PROVIDER,
    ParseError: ErrorKind.UNRECOGNIZED_FORMAT,
}


class ProviderAdapter(Protocol):
    """Provider 适配器协议。

    - name: 逻辑模型名，用于日志。
    - kind: 适配器类型（openai/anthropic/deepseek/api/local）。
    """

    name: str
    kind: str

    def build_request(self, req: ChatRequest) -> Dict[str, Any]:
        ...

    def call(self, req: ChatRequest) -> ProviderReply:
        ...


def normalize_completions_url(base_url: str) -> str:
    """把基础 URL 规范为以 /v1/chat/completions 结尾。"""

    url = base_url.rstrip("/")
    if url.endswith("/chat/completions"):
        return url
    if url.endswith("/v1"):
        return f"{url}/chat/completions"
    return f"{url}/v1/chat/completions"


class HttpProviderAdapter:
    """基于 httpx 的适配器基类。

    子类需要实现 build_request() 与 endpoint()，按需覆盖 headers()、
    status_message() 以及各类用户可见文案。
    """

    kind = "openai"
    label = "AI"

    UNAVAILABLE_MESSAGE = "AI服务暂时不可用，请稍后再试。"
    MISSING_KEY_MESSAGE = "API配置错误：未提供有效的API密钥"
    EMPTY_MESSAGE = "AI服务返回空响应"
    UNRECOGNIZED_MESSAGE = "AI服务返回了无法识别的响应格式，请联系管理员检查模型配置。"
    INTERNAL_MESSAGE = "生成回复时发生错误，请稍后再试。"

    def __init__(self, descriptor: Any, http_client: httpx.Client):
        self.descriptor = descriptor
        self.name = descriptor.name
        self._http = http_client
        self._timeout = httpx.Timeout(
            descriptor.request_timeout or DEFAULT_REQUEST_TIMEOUT,
            connect=descriptor.connect_timeout or DEFAULT_CONNECT_TIMEOUT,
        )

    # ---- 子类实现 ----

    def build_request(self, req: ChatRequest) -> Dict[str, Any]:
        raise NotImplementedError

    def endpoint(self) -> str:
        raise NotImplementedError

    def headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json"}

    def status_message(self, status_code: int, detail: Optional[str]) -> str:
        """非 2xx 状态码对应的用户可见文案。"""

        return f"抱歉，AI服务调用失败，错误代码: {status_code}"

    # ---- 对外入口 ----

    def call(self, req: ChatRequest) -> ProviderReply:
        """执行一次调用。任何异常都在这里转换为 ProviderReply。"""

        try:
            body = self.build_request(req)
            return self._send(body)
        except BusinessError as e:
            kind = _ERROR_KINDS.get(type(e), ErrorKind.PROVIDER)
            kind = e.extra.get("kind", kind)
            logger.warning(
                "Provider call failed",
                extra={"extra": {
                    "model": self.name,
                    "provider": self.kind,
                    "code": e.code,
                    "http_status": e.http_status,
                    "detail": e.extra.get("detail"),
                }},
            )
            return ProviderReply.failure(kind, e.message, detail=e.extra.get("detail") or e.code)
        except Exception as e:  # 适配器边界：不向上抛出原始异常
            logger.exception(
                "Unexpected provider failure",
                extra={"extra": {"model": self.name, "provider": self.kind}},
            )
            return ProviderReply.failure(ErrorKind.PROVIDER, self.INTERNAL_MESSAGE, detail=repr(e))

    # ---- 辅助方法 ----

    def _send(self, body: Dict[str, Any]) -> ProviderReply:
        resp = self._post(body)
        if not resp.is_success:
            self._raise_for_status(resp)
        return ProviderReply(text=self._parse(resp.text))

    def _post(self, body: Dict[str, Any]) -> httpx.Response:
        url = self.endpoint()
        logger.debug(
            "Sending provider request",
            extra={"extra": {"model": self.name, "provider": self.kind, "url": url, "body": body}},
        )
        try:
            resp = self._http.post(url, json=body, headers=self.headers(), timeout=self._timeout)
        except httpx.TimeoutException as e:
            raise TransportError(code="TIMEOUT", message=self.UNAVAILABLE_MESSAGE, detail=repr(e))
        except httpx.RequestError as e:
            # 连接被拒绝、DNS 失败、读写中断等
            raise TransportError(code="NETWORK_ERROR", message=self.UNAVAILABLE_MESSAGE, detail=repr(e))
        logger.debug(
            "Provider response",
            extra={"extra": {"model": self.name, "status": resp.status_code, "body": resp.text}},
        )
        return resp

    def _raise_for_status(self, resp: httpx.Response) -> None:
        detail = self._error_detail(resp)
        raise ProviderError(
            code="API_ERROR",
            message=self.status_message(resp.status_code, detail),
            http_status=resp.status_code,
            detail=detail or resp.text[:200],
        )

    def _parse(self, raw_body: str) -> str:
        parsed = parse_response(raw_body, self.label, self.descriptor.response_content_path)
        if not isinstance(parsed, ParseFailure):
            return parsed
        if parsed.kind is ErrorKind.STRUCTURED_ERROR:
            raise ProviderError(
                code="STRUCTURED_ERROR",
                message=f"API返回错误: {parsed.message}",
                kind=ErrorKind.STRUCTURED_ERROR,
                detail=parsed.excerpt,
            )
        if parsed.kind is ErrorKind.EMPTY_RESPONSE:
            raise ParseError(code="EMPTY_RESPONSE", message=self.EMPTY_MESSAGE, kind=ErrorKind.EMPTY_RESPONSE)
        raise ParseError(code="UNRECOGNIZED_FORMAT", message=self.UNRECOGNIZED_MESSAGE, detail=parsed.excerpt)

    @staticmethod
    def _error_detail(resp: httpx.Response) -> Optional[str]:
        try:
            return describe_error(resp.json())
        except ValueError:
            return None

    def _require_api_key(self) -> str:
        api_key = getattr(self.descriptor, "api_key", None)
        if not api_key:
            raise ConfigurationError(code="MISSING_API_KEY", message=self.MISSING_KEY_MESSAGE)
        return api_key

    @staticmethod
    def _history_payload(req: ChatRequest) -> List[Dict[str, Any]]:
        return [m.to_payload() for m in req.history]

    @staticmethod
    def _system_message(prompt: str, role: str = "system") -> Dict[str, Any]:
        return {"role": role, "content": prompt}
