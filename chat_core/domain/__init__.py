"""领域层模型与协议。

包含：
- models: Author / Message / Outcome 等统一模型。
- conversation: 会话模型及 HistoryStore 持久化协议。
- exceptions: 业务异常类型定义。
"""
