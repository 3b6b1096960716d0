"""响应归一化：把各家 Provider 的原始返回整理为统一的遥测信息。

- usage：兼容 OpenAI、camelCase、Anthropic、Ollama 的字段名，缺失补 0，
  总数缺失时取 prompt + completion。
- cost：Provider 自带费用优先，否则查价格表；本地 Provider 不计费。
- timing：耗时与每秒 token 数（两者都为正时才计算）。
- sources：仅当存在网页搜索类工具调用时提取。
"""

from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional, Sequence

from chat_core.domain.models import Cost, ProviderResponse, Source, Timing, ToolCallRecord, Usage
from chat_core.providers.pricing import calculate_cost, is_local_provider
from chat_core.responses.sources import SourceExtractionStrategy, extract_web_sources

_PROMPT_KEYS = ("prompt_tokens", "promptTokens", "input_tokens", "prompt_eval_count")
_COMPLETION_KEYS = ("completion_tokens", "completionTokens", "output_tokens", "eval_count")
_TOTAL_KEYS = ("total_tokens", "totalTokens")


def _first_int(raw: Mapping[str, Any], keys: Sequence[str]) -> int:
    for key in keys:
        value = raw.get(key)
        if isinstance(value, bool):
            continue
        if isinstance(value, (int, float)):
            return max(int(value), 0)
    return 0


def normalize_usage(raw: Optional[Mapping[str, Any]]) -> Usage:
    if not isinstance(raw, Mapping):
        return Usage()
    prompt = _first_int(raw, _PROMPT_KEYS)
    completion = _first_int(raw, _COMPLETION_KEYS)
    total = _first_int(raw, _TOTAL_KEYS) or prompt + completion
    return Usage(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)


def compute_timing(start_time: float, end_time: float, completion_tokens: int) -> Timing:
    duration = end_time - start_time
    tps = None
    if completion_tokens > 0 and duration > 0:
        tps = completion_tokens / duration * 1000
    return Timing(start_time=start_time, end_time=end_time, duration=duration, tokens_per_second=tps)


@dataclass
class NormalizedResponse:
    usage: Usage
    cost: Optional[Cost]
    timing: Timing
    sources: List[Source] = field(default_factory=list)


class ResponseNormalizer:
    def __init__(self, source_strategy: Optional[SourceExtractionStrategy] = None):
        self._source_strategy = source_strategy or SourceExtractionStrategy()

    def normalize(
        self,
        response: ProviderResponse,
        tool_calls: Sequence[ToolCallRecord],
        start_time: float,
        end_time: float,
        provider_id: str,
        model: str,
    ) -> NormalizedResponse:
        usage = normalize_usage(response.usage)
        cost = response.cost
        if cost is None and response.usage and not is_local_provider(provider_id):
            cost = calculate_cost(provider_id, model, usage.prompt_tokens, usage.completion_tokens)
        timing = compute_timing(start_time, end_time, usage.completion_tokens)
        sources = extract_web_sources(tool_calls, response.content, self._source_strategy)
        return NormalizedResponse(usage=usage, cost=cost, timing=timing, sources=sources)
