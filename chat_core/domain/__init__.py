"""领域层模型与协议。

包含：
- models: ChatTurn / ProviderRequest / ProviderResponse / ChatSettings 等统一模型。
- conversation: 会话模型与 HistoryStore 抽象。
- exceptions: 业务异常类型定义。
"""
