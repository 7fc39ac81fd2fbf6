"""领域层模型。

包含：
- models: Prompt / PromptTemplate / ChatResponse 等统一模型。
- exceptions: 业务异常类型定义。
"""
