"""Chat Core 顶层包。

该包提供多 Provider 聊天客户端的核心流水线：
内容适配、检索增强、流式/批量调度、响应归一化与错误分类，
以及配置加载、持久化存储和 Provider HTTP 适配。
"""

__version__ = "0.1.0"
