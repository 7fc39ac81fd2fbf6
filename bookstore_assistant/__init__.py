"""Bookstore Assistant 顶层包。

一个把书店相关问题转发给聊天模型的 HTTP 网关，
包括配置加载、领域模型、Provider 适配、网关服务与 FastAPI 路由。
"""
