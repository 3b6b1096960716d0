"""Agent 配置仓库。

Agent 是一组固定的 provider / 模型 / 系统提示词 / 知识库组合，
从 YAML 文件加载，格式如下::

    agents:
      - id: researcher
        name: Research Assistant
        provider: openai
        model: gpt-4o-mini
        system_prompt: You are a careful researcher.
        rag_enabled: true
        knowledge_base_ids: [kb-papers]
        rag_options:
          max_results_per_kb: 5
"""

from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Union

import yaml

from chat_core.domain.exceptions import ValidationError
from chat_core.domain.models import AgentProfile, RAGOptions


class AgentRepository(Protocol):
    def get_agent(self, agent_id: str) -> Optional[AgentProfile]:
        ...

    def list_agents(self) -> List[AgentProfile]:
        ...


def profile_from_dict(data: Dict[str, Any]) -> AgentProfile:
    try:
        agent_id = str(data["id"])
        provider = str(data["provider"])
        model = str(data["model"])
    except KeyError as e:
        raise ValidationError(code="INVALID_AGENT", message=f"Agent definition missing field: {e.args[0]}")
    rag_raw = data.get("rag_options") or {}
    if not isinstance(rag_raw, dict):
        raise ValidationError(code="INVALID_AGENT", message=f"rag_options of agent {agent_id} must be a mapping")
    return AgentProfile(
        id=agent_id,
        name=str(data.get("name") or agent_id),
        provider=provider,
        model=model,
        temperature=float(data.get("temperature", 0.7)),
        max_tokens=data.get("max_tokens"),
        system_prompt=str(data.get("system_prompt") or ""),
        rag_enabled=bool(data.get("rag_enabled", False)),
        tool_calling_enabled=bool(data.get("tool_calling_enabled", False)),
        knowledge_base_ids=tuple(str(i) for i in data.get("knowledge_base_ids") or ()),
        rag_options=RAGOptions(**rag_raw),
    )


class YamlAgentRepository:
    def __init__(self, path: Union[str, Path]):
        self._path = Path(path)
        self._agents: Dict[str, AgentProfile] = {}
        self.reload()

    def reload(self) -> None:
        """重新读取 YAML 文件；文件不存在时视为没有任何 Agent。"""

        if not self._path.exists():
            self._agents = {}
            return
        try:
            data = yaml.safe_load(self._path.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ValidationError(code="AGENTS_FILE_ERROR", message=f"Failed to read {self._path}: {e}")
        items = data.get("agents") if isinstance(data, dict) else data
        agents: Dict[str, AgentProfile] = {}
        for item in items or []:
            profile = profile_from_dict(item)
            agents[profile.id] = profile
        self._agents = agents

    def get_agent(self, agent_id: str) -> Optional[AgentProfile]:
        return self._agents.get(agent_id)

    def list_agents(self) -> List[AgentProfile]:
        return list(self._agents.values())
