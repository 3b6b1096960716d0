"""配置管理模块。

支持从 .env、config.yaml 以及环境变量加载配置。
编排层不直接读取这里的全局配置，而是通过 to_chat_settings()
在边界处生成不可变的 ChatSettings 快照。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from chat_core.domain.models import ChatSettings, ProviderSettings, RAGOptions


# 需要密钥的 Provider，对应 <id>_api_key 字段
_KEYED_PROVIDERS = (
    "openai",
    "anthropic",
    "gemini",
    "mistral",
    "deepseek",
    "openrouter",
    "requesty",
    "replicate",
)
_LOCAL_PROVIDERS = ("ollama", "lmstudio", "n8n")


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("CHAT_CORE_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class AppSettings(BaseSettings):
    """应用配置（使用 Pydantic）。"""

    # ---- 默认对话设置 ----
    default_provider: str = Field(default="ollama", description="默认 Provider id，例如 openai、ollama")
    default_model: str = Field(default="llama3.2", description="默认模型名")
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: Optional[int] = Field(default=None, ge=1)
    system_prompt: str = Field(default="", description="默认系统提示词")
    conversation_history_length: int = Field(default=10, ge=1, le=100, description="带入请求的历史消息条数")
    rag_enabled: bool = False
    tool_calling_enabled: bool = False
    max_tool_rounds: int = Field(
        default=5,
        ge=1,
        le=20,
        description="单轮对话内工具调用最大轮数（硬上限 20）",
    )

    # ---- 检索增强默认值 ----
    rag_max_results_per_kb: int = Field(default=3, ge=1)
    rag_relevance_threshold: float = Field(default=0.1, ge=0.0, le=1.0)
    rag_context_window_tokens: int = Field(default=4000, ge=100)
    rag_aggregation_strategy: str = Field(default="relevance", pattern="^(relevance|balanced|comprehensive)$")
    rag_include_source_attribution: bool = True

    # ---- Provider 凭证 ----
    openai_api_key: Optional[str] = None
    anthropic_api_key: Optional[str] = None
    gemini_api_key: Optional[str] = None
    mistral_api_key: Optional[str] = None
    deepseek_api_key: Optional[str] = None
    openrouter_api_key: Optional[str] = None
    requesty_api_key: Optional[str] = None
    replicate_api_key: Optional[str] = None
    # 覆盖默认 base_url，key 为 provider id
    provider_base_urls: Dict[str, str] = Field(default_factory=dict)
    ollama_base_url: str = Field(default="http://localhost:11434", description="Ollama 服务地址")
    lmstudio_base_url: str = Field(default="http://localhost:1234/v1", description="LM Studio 服务地址")
    n8n_base_url: str = Field(default="", description="n8n Webhook 地址")

    # ---- 运行环境 ----
    http_timeout: float = Field(default=60.0, ge=1.0, description="HTTP 超时时间（秒）")
    storage_root: str = Field(default=".storage", description="存储根目录")
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")
    agents_file: str = Field(default="agents.yaml", description="Agent 配置文件")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator(*(f"{p}_api_key" for p in _KEYED_PROVIDERS))
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v and len(v) < 8:
            raise ValueError("API key seems too short")
        return v

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )

    def provider_settings(self) -> Dict[str, ProviderSettings]:
        """汇总每个 Provider 的凭证与地址覆盖。"""

        result: Dict[str, ProviderSettings] = {}
        for pid in _KEYED_PROVIDERS:
            result[pid] = ProviderSettings(
                api_key=getattr(self, f"{pid}_api_key") or "",
                base_url=self.provider_base_urls.get(pid, ""),
            )
        for pid in _LOCAL_PROVIDERS:
            base = self.provider_base_urls.get(pid) or getattr(self, f"{pid}_base_url")
            result[pid] = ProviderSettings(base_url=base)
        return result

    def to_chat_settings(self, **overrides: Any) -> ChatSettings:
        """生成本轮对话的不可变设置快照。"""

        values: Dict[str, Any] = {
            "provider": self.default_provider,
            "model": self.default_model,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "system_prompt": self.system_prompt,
            "rag_enabled": self.rag_enabled,
            "tool_calling_enabled": self.tool_calling_enabled,
            "rag_options": RAGOptions(
                max_results_per_kb=self.rag_max_results_per_kb,
                relevance_threshold=self.rag_relevance_threshold,
                context_window_tokens=self.rag_context_window_tokens,
                aggregation_strategy=self.rag_aggregation_strategy,  # type: ignore[arg-type]
                include_source_attribution=self.rag_include_source_attribution,
            ),
            "history_length": self.conversation_history_length,
            "max_tool_rounds": self.max_tool_rounds,
            "providers": self.provider_settings(),
        }
        values.update(overrides)
        return ChatSettings(**values)


settings = AppSettings()

# 类型别名，让外部代码可以使用 Settings 类型
Settings = AppSettings
