"""Damage analysis pipeline following Clean Architecture.

Layers:
- domain: entities, error taxonomy, the normalization / batch pipeline use cases
- data: HTTP adapter and repository for the damage scoring service
- presentation: FastAPI routers and models
- core: configuration, DI, and logging
"""
