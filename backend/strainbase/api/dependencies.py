"""
FastAPI 依赖注入 - Depends 工厂

依赖项从 app.state.container 获取（在 lifespan 中设置），不使用全局单例。

使用方式：
    from fastapi import Depends
    from .dependencies import get_strain_repository

    @router.get("/strains/race/{race}")
    def by_race(race: str, repo: StrainRepository = Depends(get_strain_repository)):
        return repo.list_by_race(race)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Request

if TYPE_CHECKING:
    from ..core.container import ServiceContainer
    from ..repositories.strain_repository import StrainRepository
    from ..services.reconciler import StrainReconciler
    from ..services.schema_version import SchemaVersionGuard


def get_container(request: Request) -> 'ServiceContainer':
    """从 app.state 获取服务容器

    Raises:
        RuntimeError: 如果容器未初始化（lifespan 未启动）
    """
    if not hasattr(request.app.state, 'container'):
        raise RuntimeError(
            "ServiceContainer 未初始化。"
            "请确保应用 lifespan 已启动。"
        )
    return request.app.state.container


def get_strain_repository(request: Request) -> 'StrainRepository':
    return get_container(request).strain_repository


def get_reconciler(request: Request) -> 'StrainReconciler':
    return get_container(request).reconciler


def get_schema_guard(request: Request) -> 'SchemaVersionGuard':
    return get_container(request).schema_guard
