"""模型价格表与费用计算。

价格单位为 USD / 1M tokens。查找顺序：
精确模型名 → 前两段（gpt-4-1106-preview → gpt-4）→ 第一段 →
该 Provider 的 default → 全局默认价格。本地 Provider 不计费。
"""

from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from chat_core.domain.models import Cost


@dataclass(frozen=True)
class ModelPricing:
    input_price: float
    output_price: float
    currency: str = "USD"


def _p(input_price: float, output_price: float) -> ModelPricing:
    return ModelPricing(input_price=input_price, output_price=output_price)


PROVIDER_PRICING: Mapping[str, Dict[str, ModelPricing]] = {
    "openai": {
        "gpt-4": _p(30.00, 60.00),
        "gpt-4-turbo": _p(10.00, 30.00),
        "gpt-4-turbo-preview": _p(10.00, 30.00),
        "gpt-4-vision-preview": _p(10.00, 30.00),
        "gpt-4o": _p(5.00, 15.00),
        "gpt-4o-mini": _p(0.15, 0.60),
        "gpt-3.5-turbo": _p(0.50, 1.50),
        "gpt-3.5-turbo-16k": _p(3.00, 4.00),
        "o1-preview": _p(15.00, 60.00),
        "o1-mini": _p(3.00, 12.00),
    },
    "anthropic": {
        "claude-3-5-sonnet-20241022": _p(3.00, 15.00),
        "claude-3-5-sonnet-20240620": _p(3.00, 15.00),
        "claude-3-5-haiku-20241022": _p(1.00, 5.00),
        "claude-3-opus-20240229": _p(15.00, 75.00),
        "claude-3-sonnet-20240229": _p(3.00, 15.00),
        "claude-3-haiku-20240307": _p(0.25, 1.25),
    },
    "gemini": {
        "gemini-1.5-pro": _p(3.50, 10.50),
        "gemini-1.5-flash": _p(0.075, 0.30),
        "gemini-1.0-pro": _p(0.50, 1.50),
        "gemini-pro": _p(0.50, 1.50),
        "gemini-pro-vision": _p(0.25, 0.50),
    },
    "mistral": {
        "mistral-large-latest": _p(4.00, 12.00),
        "mistral-medium-latest": _p(2.70, 8.10),
        "mistral-small-latest": _p(1.00, 3.00),
        "open-mistral-7b": _p(0.25, 0.25),
        "open-mixtral-8x7b": _p(0.70, 0.70),
        "open-mixtral-8x22b": _p(2.00, 6.00),
    },
    "deepseek": {
        "deepseek-chat": _p(0.14, 0.28),
        "deepseek-coder": _p(0.14, 0.28),
    },
    "openrouter": {
        "openai/gpt-4o": _p(5.00, 15.00),
        "openai/gpt-4o-mini": _p(0.15, 0.60),
        "anthropic/claude-3.5-sonnet": _p(3.00, 15.00),
        "anthropic/claude-3-haiku": _p(0.25, 1.25),
        "google/gemini-flash-1.5": _p(0.075, 0.30),
        "meta-llama/llama-3.1-70b-instruct": _p(0.52, 0.75),
        "meta-llama/llama-3.1-8b-instruct": _p(0.055, 0.055),
    },
    "replicate": {
        "meta/meta-llama-3-70b-instruct": _p(0.65, 2.75),
        "meta/meta-llama-3-8b-instruct": _p(0.05, 0.25),
    },
    # n8n 与 Requesty 的价格取决于其背后的服务，这里取估算均值
    "n8n": {"default": _p(2.00, 6.00)},
    "requesty": {"default": _p(2.00, 6.00)},
}

DEFAULT_PRICING = _p(1.00, 3.00)
LOCAL_PROVIDERS = frozenset({"ollama", "lmstudio"})


def is_local_provider(provider_id: str) -> bool:
    return (provider_id or "").lower() in LOCAL_PROVIDERS


def get_model_pricing(provider_id: str, model: str) -> Optional[ModelPricing]:
    table = PROVIDER_PRICING.get((provider_id or "").lower())
    if not table:
        return None
    parts = (model or "").split("-")
    for key in (model, "-".join(parts[:2]), parts[0], "default"):
        if key in table:
            return table[key]
    return None


def calculate_cost(provider_id: str, model: str, prompt_tokens: int, completion_tokens: int) -> Cost:
    pricing = get_model_pricing(provider_id, model) or DEFAULT_PRICING
    input_cost = prompt_tokens / 1_000_000 * pricing.input_price
    output_cost = completion_tokens / 1_000_000 * pricing.output_price
    return Cost(
        input_cost=round(input_cost, 6),
        output_cost=round(output_cost, 6),
        total_cost=round(input_cost + output_cost, 6),
        currency=pricing.currency,
        provider=provider_id,
        model=model,
    )


def format_cost(cost: float) -> str:
    if cost < 0.000001:
        return "<$0.000001"
    if cost < 0.01:
        return f"${cost:.6f}"
    return f"${cost:.4f}"
