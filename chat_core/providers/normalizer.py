"""统一的模型响应解析器。

把各家 Provider 五花八门的响应体解析为纯文本，或者返回带类型的
ParseFailure。本模块没有任何状态，所有函数都是纯函数。

标准格式按固定顺序尝试（见 STANDARD_EXTRACTORS），顺序与解析出的 JSON
对象的键顺序无关：同一份响应永远命中同一个字段。
"""

import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple, Union

from chat_core.domain.models import ErrorKind
from chat_core.infrastructure.logging.logger import logger

EXCERPT_LIMIT = 200

# 直接文本格式的候选字段，按优先级排列
BARE_TEXT_FIELDS = ("text", "result", "output", "answer", "reply", "message")


@dataclass(frozen=True)
class ParseFailure:
    """解析失败结果。

    - kind: EMPTY_RESPONSE / STRUCTURED_ERROR / UNRECOGNIZED_FORMAT。
    - message: 结构化错误时为组合后的错误信息，其余为简短描述。
    - excerpt: 原始响应的前 200 个字符，仅用于诊断日志。
    """

    kind: ErrorKind
    message: str
    excerpt: str = ""


def parse_response(
    raw_body: Optional[str],
    provider_hint: str,
    custom_path: Optional[str] = None,
) -> Union[str, ParseFailure]:
    """解析原始响应体。

    Args:
        raw_body: HTTP 响应体文本。
        provider_hint: Provider 名称，仅用于日志。
        custom_path: 自定义解析路径，如 "choices.0.message.content"。

    Returns:
        解析出的文本，或 ParseFailure。
    """

    if raw_body is None or not raw_body.strip():
        logger.warning("Empty response body", extra={"extra": {"provider": provider_hint}})
        return ParseFailure(ErrorKind.EMPTY_RESPONSE, "empty response")

    logger.debug("Parsing response", extra={"extra": {"provider": provider_hint, "body": raw_body}})
    try:
        data = json.loads(raw_body)
    except ValueError:
        data = None
    if not isinstance(data, dict):
        # 非 JSON 对象按纯文本处理（上面已保证 strip 后非空）
        logger.info("Non-JSON response treated as plain text", extra={"extra": {"provider": provider_hint}})
        return raw_body.strip()

    if "error" in data:
        error_message = describe_error(data)
        if error_message is not None:
            logger.warning(
                "Provider returned structured error",
                extra={"extra": {"provider": provider_hint, "error": error_message}},
            )
            return ParseFailure(ErrorKind.STRUCTURED_ERROR, error_message, _excerpt(raw_body))

    if custom_path and custom_path.strip():
        by_path = extract_by_path(data, custom_path.strip())
        if by_path is not None:
            return by_path
        logger.warning(
            "Custom response path missed, trying standard formats",
            extra={"extra": {"provider": provider_hint, "path": custom_path}},
        )

    for name, extractor in STANDARD_EXTRACTORS:
        try:
            text = extractor(data)
        except (KeyError, IndexError, TypeError, AttributeError):
            text = None
        if isinstance(text, str) and text.strip():
            logger.debug("Matched response format", extra={"extra": {"provider": provider_hint, "format": name}})
            return text.strip()

    logger.warning(
        "Response format not recognized",
        extra={"extra": {"provider": provider_hint, "excerpt": _excerpt(raw_body)}},
    )
    return ParseFailure(
        ErrorKind.UNRECOGNIZED_FORMAT,
        f"{provider_hint} response format not supported",
        _excerpt(raw_body),
    )


def describe_error(payload: Any) -> Optional[str]:
    """从 {"error": ...} 中组合错误信息："message (type) (code)"。

    error 为 null 或缺失时返回 None。
    """

    if not isinstance(payload, dict):
        return None
    error = payload.get("error")
    if error is None:
        return None
    if isinstance(error, str):
        return error.strip() or "unknown error"
    if not isinstance(error, dict):
        return str(error)
    message = _as_text(error.get("message")) or "unknown error"
    parts = [message]
    for key in ("type", "code"):
        value = _as_text(error.get(key))
        if value:
            parts.append(f"({value})")
    return " ".join(parts)


def extract_by_path(data: Any, path: str) -> Optional[str]:
    """按点分路径取值；对象按键取，数组按整数下标取。未命中返回 None。"""

    current = data
    for part in path.split("."):
        if isinstance(current, dict):
            if part not in current:
                return None
            current = current[part]
        elif isinstance(current, list):
            try:
                index = int(part)
            except ValueError:
                return None
            if index < 0 or index >= len(current):
                return None
            current = current[index]
        else:
            return None
    if current is None:
        return None
    if isinstance(current, str):
        content = current
    else:
        content = json.dumps(current, ensure_ascii=False)
    content = content.strip()
    return content or None


def _chat_completion(data: Dict[str, Any]) -> Optional[str]:
    choice = data["choices"][0]
    message = choice.get("message")
    if isinstance(message, dict) and isinstance(message.get("content"), str) and message["content"].strip():
        return message["content"]
    # 流式增量
    delta = choice.get("delta")
    if isinstance(delta, dict):
        return delta.get("content")
    return None


def _messages_api(data: Dict[str, Any]) -> Optional[str]:
    content = data["content"]
    if not isinstance(content, list):
        return None
    return content[0].get("text")


def _bare_field(data: Dict[str, Any]) -> Optional[str]:
    for field in BARE_TEXT_FIELDS:
        if field in data:
            value = data[field]
            return value if isinstance(value, str) else None
    return None


def _generation(data: Dict[str, Any]) -> Optional[str]:
    return data.get("response")


def _alt_list(data: Dict[str, Any]) -> Optional[str]:
    return data["data"][0].get("text")


STANDARD_EXTRACTORS: Tuple[Tuple[str, Callable[[Dict[str, Any]], Optional[str]]], ...] = (
    ("chat_completion", _chat_completion),
    ("messages_api", _messages_api),
    ("bare_field", _bare_field),
    ("generation", _generation),
    ("alt_list", _alt_list),
)


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _excerpt(raw_body: str) -> str:
    return raw_body[:EXCERPT_LIMIT]
