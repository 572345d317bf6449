"""
Schema 版本守卫

进程启动时调用一次 ensure()，之后才允许同步和查询：
1. 确保逻辑数据库存在（幂等）
2. 幂等地应用表结构
3. 读取库中记录的版本（无记录视为 0）
4. 比较：
   - 库中版本 > 目标版本：抛出 VersionRegression，不做任何修改
   - 相等：无需写入
   - 库中版本 < 目标版本：替换版本行为目标版本

版本只增不减；不支持降级。守卫不是为并发自调用设计的，调用方需串行化。
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, delete, select

from ..core.database import Database
from ..core.errors import MigrationError, VersionRegression
from ..models.strain import DatabaseVer

logger = logging.getLogger(__name__)


def normalize_version(version: int) -> int:
    """0 不是合法的目标版本，按 1 处理"""
    if version < 0:
        raise ValueError(f"schema version must not be negative, got {version}")
    return version or 1


def stored_version(session: Session) -> int:
    latest = session.exec(
        select(DatabaseVer).order_by(DatabaseVer.version_id.desc())
    ).first()
    return latest.iteration if latest else 0


class SchemaVersionGuard:
    """Bring the stored schema up to a target version, never down."""

    def __init__(self, database: Database) -> None:
        self.database = database

    def ensure(self, desired_version: int) -> int:
        """
        确保 schema 处于目标版本

        Returns:
            生效的目标版本（0 已被规范化为 1）

        Raises:
            ConfigurationError: 数据库配置不完整
            VersionRegression: 库中版本比目标版本新
            MigrationError: 连接或表结构应用失败
        """
        desired = normalize_version(desired_version)

        try:
            self.database.ensure_database()
            if not self.database.is_open:
                self.database.open()
            self.database.create_tables()
        except SQLAlchemyError as err:
            logger.error(f"[迁移] 迁移到版本 {desired} 失败: {err}")
            raise MigrationError(desired, str(err)) from err

        try:
            with self.database.session_scope() as session:
                stored = stored_version(session)
                if stored > desired:
                    raise VersionRegression(stored, desired)
                if stored == desired:
                    logger.info(f"[迁移] schema 已是版本 {desired}，无需迁移")
                    return desired

                # 版本行逻辑上只有一行：替换而不是追加
                session.exec(delete(DatabaseVer))
                session.add(DatabaseVer(iteration=desired))
        except VersionRegression as err:
            logger.error(f"[迁移] 拒绝降级: {err}")
            raise
        except SQLAlchemyError as err:
            logger.error(f"[迁移] 写入 schema 版本 {desired} 失败: {err}")
            raise MigrationError(desired, str(err)) from err

        logger.info(f"[迁移] schema 版本 {stored} -> {desired}")
        return desired

    def current_version(self) -> int:
        """读取库中记录的 schema 版本"""
        with self.database.session_scope() as session:
            return stored_version(session)
