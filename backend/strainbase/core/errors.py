"""
错误类型 - 目录服务的异常层级

所有异常都继承自 StrainbaseError，便于 HTTP 层和 CLI 统一捕获：
- 配置错误（ConfigurationError）：调用方配置问题，快速失败，不重试
- 前置条件错误：DatabaseConnectionNil / ReferenceIDNotSet / InvalidReferenceID
- 迁移错误：VersionRegression / MigrationError
- 写入错误：RecordAlreadyExists / ReconcileError / CreateRetriesExhausted
- 查询未命中：NotFound
"""

from __future__ import annotations

from typing import Any


class StrainbaseError(Exception):
    """Base class for all catalog errors."""


# ========== 配置 ==========

class ConfigurationError(StrainbaseError):
    """配置不完整或非法"""


class DatabaseNameNotSet(ConfigurationError):
    def __init__(self) -> None:
        super().__init__("database name was not set")


class DatabaseUsernameNotSet(ConfigurationError):
    def __init__(self) -> None:
        super().__init__("database username was not set")


class InvalidDatabaseName(ConfigurationError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"database name '{name}' must contain only letters, digits and underscores")


# ========== 迁移 ==========

class VersionRegression(StrainbaseError):
    """库中记录的 schema 版本比目标版本更新，拒绝降级"""

    def __init__(self, stored: int, desired: int) -> None:
        self.stored = stored
        self.desired = desired
        super().__init__(
            f"the actual database version {stored} is newer than the desired migration version {desired}"
        )


class MigrationError(StrainbaseError):
    def __init__(self, version: int, reason: str = "") -> None:
        self.version = version
        message = f"database migration to version {version} failed"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


# ========== 前置条件 ==========

class DatabaseConnectionNil(StrainbaseError):
    def __init__(self) -> None:
        super().__init__("the given database connection is not connected")


class ReferenceIDNotSet(StrainbaseError):
    def __init__(self) -> None:
        super().__init__("the reference ID must be set for this operation")


class InvalidReferenceID(StrainbaseError):
    """引用ID超出存储范围（1 .. 2**63-1）"""

    def __init__(self, reference_id: int) -> None:
        self.reference_id = reference_id
        super().__init__(f"reference ID {reference_id} is out of range")


# ========== 写入 ==========

class RecordAlreadyExists(StrainbaseError):
    def __init__(self, reference_id: int) -> None:
        self.reference_id = reference_id
        super().__init__(f"strain with reference ID {reference_id} already exists")


class ReconcileError(StrainbaseError):
    """单条记录同步失败，事务已回滚"""

    def __init__(self, reference_id: int, reason: str = "") -> None:
        self.reference_id = reference_id
        message = f"unable to reconcile strain with reference ID {reference_id}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class CreateRetriesExhausted(StrainbaseError):
    """有限重试全部失败；原始错误保存在 __cause__ 中"""

    def __init__(self, reference_id: int, attempts: int) -> None:
        self.reference_id = reference_id
        self.attempts = attempts
        super().__init__(
            f"unable to create strain with reference ID {reference_id} after {attempts} attempts"
        )


# ========== 查询 ==========

class NotFound(StrainbaseError):
    def __init__(self, field: str, value: Any) -> None:
        self.field = field
        self.value = value
        super().__init__(f"no strain found with {field} {value!r}")
