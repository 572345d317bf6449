"""
数据库连接 - 存储边界

负责：
1. 校验连接配置（库名 / 用户名）
2. 幂等地创建逻辑数据库（CREATE DATABASE IF NOT EXISTS 语义）
3. 管理引擎生命周期（open / close）
4. 提供事务作用域 session_scope()，任何异常都会回滚整个事务

SQLite 说明：
    pysqlite 默认的事务行为会让 SAVEPOINT 脱离外层事务，
    这里按 SQLAlchemy 文档的做法自行发出 BEGIN，
    使 begin_nested() 能嵌套在外层事务中。
"""

from __future__ import annotations

import logging
import re
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from sqlalchemy import event, text
from sqlalchemy.engine import URL, Engine
from sqlalchemy.exc import DBAPIError
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from .config import Settings
from .errors import (
    DatabaseConnectionNil,
    DatabaseNameNotSet,
    DatabaseUsernameNotSet,
    InvalidDatabaseName,
)

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z0-9_]+$")
_MEMORY = ":memory:"


class Database:
    """Database server where strain records are stored and queried."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._engine: Engine | None = None

    # ========== 配置 ==========

    @property
    def name(self) -> str:
        return self.settings.resolved_database_name

    @property
    def is_sqlite(self) -> bool:
        return self.settings.is_sqlite

    def validate_config(self) -> None:
        """在连接之前拦截不完整的配置，避免之后出现更难排查的错误"""
        if not self.name:
            raise DatabaseNameNotSet()
        if self.is_sqlite:
            return
        if not self.settings.database_username:
            raise DatabaseUsernameNotSet()
        if not _IDENTIFIER.match(self.name):
            raise InvalidDatabaseName(self.name)

    def url(self, with_database: bool = True) -> URL:
        if self.is_sqlite:
            return URL.create(self.settings.database_driver, database=self.name)
        return URL.create(
            self.settings.database_driver,
            username=self.settings.database_username,
            password=self.settings.database_password or None,
            host=self.settings.database_host,
            port=self.settings.database_port,
            database=self.name if with_database else None,
        )

    # ========== 逻辑数据库 ==========

    def ensure_database(self) -> None:
        """幂等地确保逻辑数据库存在；并发创建同名库不会报错"""
        self.validate_config()

        if self.is_sqlite:
            # 确保数据库目录存在，文件在首次连接时创建
            if self.name != _MEMORY:
                Path(self.name).parent.mkdir(parents=True, exist_ok=True)
            return

        backend = self.url().get_backend_name()
        if backend == "postgresql":
            server_url = self.url(with_database=False).set(database="postgres")
        else:
            server_url = self.url(with_database=False)

        server = create_engine(server_url, isolation_level="AUTOCOMMIT")
        try:
            with server.connect() as conn:
                if backend in ("mysql", "mariadb"):
                    conn.execute(text(f"CREATE DATABASE IF NOT EXISTS `{self.name}`"))
                else:
                    self._create_postgres_database(conn)
        finally:
            server.dispose()
        logger.info(f"[数据库] 已确认逻辑数据库存在: {self.name}")

    def _create_postgres_database(self, conn) -> None:
        exists_query = text("SELECT 1 FROM pg_database WHERE datname = :name")
        if conn.execute(exists_query, {"name": self.name}).first():
            return
        try:
            conn.execute(text(f'CREATE DATABASE "{self.name}"'))
        except DBAPIError:
            # 另一个进程可能刚刚创建了同名库
            if conn.execute(exists_query, {"name": self.name}).first():
                return
            raise

    # ========== 连接 ==========

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise DatabaseConnectionNil()
        return self._engine

    def open(self) -> Engine:
        """建立连接（引擎）"""
        self.validate_config()
        if self._engine is not None:
            return self._engine

        if self.is_sqlite:
            connect_args = {"check_same_thread": False}
            if self.name == _MEMORY:
                engine = create_engine(
                    self.url(),
                    echo=self.settings.database_echo,
                    connect_args=connect_args,
                    poolclass=StaticPool,
                )
            else:
                engine = create_engine(self.url(), echo=self.settings.database_echo, connect_args=connect_args)
            _install_sqlite_transaction_hooks(engine)
        else:
            engine = create_engine(self.url(), echo=self.settings.database_echo, pool_pre_ping=True)

        self._engine = engine
        logger.debug(f"[数据库] 已连接: {self.url().render_as_string(hide_password=True)}")
        return engine

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            logger.debug("[数据库] 连接已关闭")

    # ========== Schema ==========

    def create_tables(self) -> None:
        """Create database tables if they do not exist."""
        # 确保所有模型已注册到 SQLModel 元数据
        from ..models import strain  # noqa: F401
        SQLModel.metadata.create_all(self.engine)

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Provide a transactional scope around a series of operations."""

        session = Session(self.engine, expire_on_commit=False)
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


def _install_sqlite_transaction_hooks(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # 禁止 pysqlite 自行发出 BEGIN
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")
