"""Provider 能力表。

本模块是声明式的「provider id → 能力」映射，集中回答以下问题：

- 附件以哪种形态发送（parts 数组 / 文本+图片旁路 / 纯文本）。
- 是否支持视觉输入、原生文档块、原生文件处理管线。
- 流式接口是否返回 usage、是否能在流式中执行工具。
- 是否必须配置 API Key。
- 使用哪种线协议（openai 兼容 / anthropic / ollama）以及默认地址。

新增 Provider 只需要在这里加一行，而不是在各处加 if 分支。"""

from dataclasses import dataclass, field
from typing import Literal, Mapping

ContentShape = Literal["parts", "images", "text"]
ApiStyle = Literal["openai", "anthropic", "ollama"]


@dataclass(frozen=True)
class ProviderCapabilities:
    """单个 Provider 的能力标记。"""

    content_shape: ContentShape = "text"
    supports_vision: bool = False
    supports_native_documents: bool = False
    native_file_pipeline: bool = False
    supports_tool_calls: bool = True
    streaming_reports_usage: bool = True
    streaming_supports_tools: bool = True
    requires_credential: bool = True


@dataclass(frozen=True)
class ProviderInfo:
    """某个 Provider 的整体配置。"""

    id: str
    name: str
    base_url: str
    api_style: ApiStyle = "openai"
    capabilities: ProviderCapabilities = field(default_factory=ProviderCapabilities)


def _parts(**overrides) -> ProviderCapabilities:
    return ProviderCapabilities(content_shape="parts", supports_vision=True, **overrides)


PROVIDER_REGISTRY: Mapping[str, ProviderInfo] = {
    "openai": ProviderInfo(
        id="openai",
        name="OpenAI",
        base_url="https://api.openai.com/v1",
        capabilities=_parts(),
    ),
    "anthropic": ProviderInfo(
        id="anthropic",
        name="Anthropic",
        base_url="https://api.anthropic.com/v1",
        api_style="anthropic",
        capabilities=_parts(supports_native_documents=True),
    ),
    "gemini": ProviderInfo(
        id="gemini",
        name="Google Gemini",
        base_url="https://generativelanguage.googleapis.com/v1beta/openai",
        capabilities=_parts(streaming_supports_tools=False),
    ),
    "mistral": ProviderInfo(
        id="mistral",
        name="Mistral AI",
        base_url="https://api.mistral.ai/v1",
        capabilities=_parts(native_file_pipeline=True),
    ),
    "deepseek": ProviderInfo(
        id="deepseek",
        name="DeepSeek",
        base_url="https://api.deepseek.com/v1",
        capabilities=_parts(streaming_reports_usage=False),
    ),
    "openrouter": ProviderInfo(
        id="openrouter",
        name="OpenRouter",
        base_url="https://openrouter.ai/api/v1",
        capabilities=_parts(),
    ),
    "requesty": ProviderInfo(
        id="requesty",
        name="Requesty",
        base_url="https://router.requesty.ai/v1",
        capabilities=_parts(),
    ),
    "replicate": ProviderInfo(
        id="replicate",
        name="Replicate",
        base_url="https://api.replicate.com/v1",
        capabilities=_parts(supports_tool_calls=False),
    ),
    "n8n": ProviderInfo(
        id="n8n",
        name="n8n",
        base_url="",
        capabilities=_parts(supports_tool_calls=False, requires_credential=False),
    ),
    "ollama": ProviderInfo(
        id="ollama",
        name="Ollama",
        base_url="http://localhost:11434",
        api_style="ollama",
        capabilities=ProviderCapabilities(
            content_shape="images",
            supports_vision=True,
            requires_credential=False,
        ),
    ),
    "lmstudio": ProviderInfo(
        id="lmstudio",
        name="LM Studio",
        base_url="http://localhost:1234/v1",
        capabilities=ProviderCapabilities(content_shape="text", requires_credential=False),
    ),
}

# 未登记的 Provider 一律按纯文本、需要密钥处理
UNKNOWN_CAPABILITIES = ProviderCapabilities()


def get_provider_info(provider_id: str) -> ProviderInfo:
    """根据 id 获取 ProviderInfo，名称不区分大小写。"""

    key = (provider_id or "").lower()
    info = PROVIDER_REGISTRY.get(key)
    if info is None:
        raise KeyError(f"Unknown provider: {provider_id!r}")
    return info


def get_capabilities(provider_id: str) -> ProviderCapabilities:
    info = PROVIDER_REGISTRY.get((provider_id or "").lower())
    return info.capabilities if info else UNKNOWN_CAPABILITIES


def requires_credential(provider_id: str) -> bool:
    return get_capabilities(provider_id).requires_credential
