"""Provider 错误分类。

把任意异常（或字符串）按关键词映射到固定的错误类别，
每个类别对应一条固定的用户提示模板。匹配顺序即优先级：
同时命中多个类别时取排在前面的那个。
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Tuple


class ErrorCategory(str, Enum):
    AUTHENTICATION = "AuthenticationError"
    TOOL_CALLING_UNSUPPORTED = "ToolCallingUnsupported"
    RATE_LIMITED = "RateLimited"
    NETWORK = "NetworkError"
    MODEL_NOT_FOUND = "ModelNotFound"
    FILE_PROCESSING = "FileProcessingError"
    CONTEXT_LENGTH = "ContextLengthExceeded"
    UNKNOWN = "UnknownProviderError"


_RULES: List[Tuple[ErrorCategory, Tuple[str, ...]]] = [
    (
        ErrorCategory.AUTHENTICATION,
        ("api key", "api-key", "apikey", "api_key", "unauthorized", "authentication", "401", "invalid credentials"),
    ),
    (ErrorCategory.TOOL_CALLING_UNSUPPORTED, ("tool calling", "function calling", "tool_calling")),
    (ErrorCategory.RATE_LIMITED, ("rate limit", "rate_limit", "quota", "too many requests", "429")),
    (ErrorCategory.NETWORK, ("network", "connection", "timeout", "timed out", "econnrefused", "socket")),
    (
        ErrorCategory.MODEL_NOT_FOUND,
        (
            "model not found",
            "model_not_found",
            "no such model",
            "invalid model",
            "unknown model",
            "model does not exist",
            "not found: model",
            "404",
        ),
    ),
    (ErrorCategory.FILE_PROCESSING, ("file", "upload")),
    (
        ErrorCategory.CONTEXT_LENGTH,
        ("context length", "context window", "maximum context", "context_length", "token limit", "too many tokens"),
    ),
]

TEMPLATES: Dict[ErrorCategory, str] = {
    ErrorCategory.AUTHENTICATION: (
        "🔑 **Authentication Error**: Please check your API key in Settings. "
        "The provider may require a valid API key to process requests."
    ),
    ErrorCategory.TOOL_CALLING_UNSUPPORTED: (
        "🔧 **Tool Calling Error**: This provider doesn't support tool calling. "
        "Please disable tools or switch to a compatible provider like OpenAI, Anthropic, or Ollama."
    ),
    ErrorCategory.RATE_LIMITED: (
        "⏱️ **Rate Limit**: You've exceeded the API rate limit. Please wait a moment before trying again."
    ),
    ErrorCategory.NETWORK: (
        "🌐 **Connection Error**: Unable to connect to the provider. "
        "Please check your internet connection and try again."
    ),
    ErrorCategory.MODEL_NOT_FOUND: (
        "🤖 **Model Error**: The selected model is not available. "
        "Please choose a different model in the dropdown below."
    ),
    ErrorCategory.FILE_PROCESSING: (
        "📁 **File Upload Error**: Failed to process the uploaded file. Please check the file format and try again."
    ),
    ErrorCategory.CONTEXT_LENGTH: (
        "📝 **Context Length Error**: Your message is too long for this model. "
        "Please try a shorter message or use a model with a larger context window."
    ),
    ErrorCategory.UNKNOWN: "❌ **Error**: {raw}\n\nPlease try again or check your settings if the problem persists.",
}


@dataclass(frozen=True)
class ClassifiedError:
    category: ErrorCategory
    raw_message: str
    user_message: str


def raw_message(err: Any) -> str:
    """取出错误的原始文本，任何输入都不会抛异常。"""

    if err is None:
        return "Unknown error"
    try:
        message = getattr(err, "message", None)
        text = message if isinstance(message, str) and message else str(err)
    except Exception:
        text = ""
    return text or type(err).__name__


def _haystack(err: Any) -> str:
    parts = [raw_message(err)]
    for attr in ("code", "http_status", "status_code"):
        try:
            value = getattr(err, attr, None)
        except Exception:
            value = None
        if value is not None and not isinstance(err, str):
            parts.append(str(value))
    return " ".join(parts).lower()


def classify(err: Any) -> ErrorCategory:
    """按关键词把错误归到固定类别，永远有结果且不抛异常。"""

    try:
        text = _haystack(err)
    except Exception:
        return ErrorCategory.UNKNOWN
    for category, keywords in _RULES:
        if any(k in text for k in keywords):
            return category
    return ErrorCategory.UNKNOWN


def user_message(category: ErrorCategory, raw: str = "") -> str:
    return TEMPLATES[category].format(raw=raw)


def describe(err: Any) -> ClassifiedError:
    category = classify(err)
    raw = raw_message(err)
    return ClassifiedError(category=category, raw_message=raw, user_message=user_message(category, raw))
