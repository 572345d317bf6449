"""
服务容器 - 由一份显式的 Settings 构建所有协作者

架构：
- 每个容器实例持有自己的 Database 和服务实例
- 配置通过构造函数传入，不读取进程级全局变量
- 测试中可通过 override() 替换任意服务
"""

from __future__ import annotations

import logging
from functools import cached_property
from typing import TYPE_CHECKING, Any, Callable

from .config import Settings
from .database import Database

if TYPE_CHECKING:
    from ..repositories.strain_repository import StrainRepository
    from ..services.reconciler import StrainReconciler
    from ..services.schema_version import SchemaVersionGuard

logger = logging.getLogger(__name__)


class ServiceContainer:
    """Builds and caches the catalog's collaborators."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._overrides: dict[str, Any] = {}
        self._initialized = False

    def override(self, name: str, instance: Any) -> None:
        """替换服务实例（必须在首次访问之前调用）"""
        self._overrides[name] = instance
        self.__dict__.pop(name, None)

    def _get_or_override(self, name: str, factory: Callable[[], Any]) -> Any:
        """Get service instance, preferring override if set"""
        if name in self._overrides:
            return self._overrides[name]
        return factory()

    @cached_property
    def database(self) -> Database:
        return self._get_or_override('database', lambda: Database(self.settings))

    @cached_property
    def schema_guard(self) -> 'SchemaVersionGuard':
        from ..services.schema_version import SchemaVersionGuard
        return self._get_or_override('schema_guard', lambda: SchemaVersionGuard(self.database))

    @cached_property
    def reconciler(self) -> 'StrainReconciler':
        from ..services.reconciler import StrainReconciler
        return self._get_or_override(
            'reconciler',
            lambda: StrainReconciler(self.database, create_retries=self.settings.create_retries),
        )

    @cached_property
    def strain_repository(self) -> 'StrainRepository':
        from ..repositories.strain_repository import StrainRepository
        return self._get_or_override('strain_repository', lambda: StrainRepository(self.database))

    def initialize(self) -> int:
        """运行 schema 守卫（每个进程一次），返回生效的 schema 版本"""
        version = self.schema_guard.ensure(self.settings.schema_version)
        self._initialized = True
        logger.info(f"[容器] 初始化完成，schema 版本 {version}")
        return version

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def shutdown(self) -> None:
        self.database.close()
        self._initialized = False
