from __future__ import annotations

import logging
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings

DEFAULT_DATABASE_NAME = "so_many_strains"


class Settings(BaseSettings):
    """Global configuration for the strain catalog."""

    app_name: str = Field(default="strainbase", alias="APP_NAME")

    # 数据库连接
    # database_driver 为 SQLAlchemy drivername：sqlite / mysql+pymysql / postgresql+psycopg
    # SQLite 时 database_name 为数据库文件路径（或 :memory:）
    database_driver: str = Field(default="sqlite", alias="DB_DRIVER")
    database_host: str | None = Field(default=None, alias="DB_HOST")
    database_port: int | None = Field(default=None, alias="DB_PORT")
    # 未设置时：SQLite 使用 data/db/so_many_strains.db，其他引擎使用 so_many_strains
    database_name: str | None = Field(default=None, alias="DB_NAME")
    database_username: str = Field(default="", alias="DB_USERNAME")
    database_password: str = Field(default="", alias="DB_PASSWORD")
    database_echo: bool = Field(default=False, alias="DB_ECHO")

    # 迁移与写入
    schema_version: int = Field(default=1, ge=0, alias="SCHEMA_VERSION")
    create_retries: int = Field(default=3, ge=0, alias="CREATE_RETRIES")
    seed_file: str | None = Field(default=None, alias="SEED_FILE")

    # HTTP 服务
    host: str = Field(default="127.0.0.1", alias="HOST")
    port: int = Field(default=8888, alias="PORT")

    # 日志配置
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_dir: str = Field(default="data/logs", alias="LOG_DIR")
    log_to_file: bool = Field(default=True, alias="LOG_TO_FILE")
    log_to_console: bool = Field(default=True, alias="LOG_TO_CONSOLE")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "populate_by_name": True,
    }

    @property
    def is_sqlite(self) -> bool:
        return self.database_driver.split("+", 1)[0] == "sqlite"

    @property
    def resolved_database_name(self) -> str:
        if self.database_name is not None:
            return self.database_name
        if self.is_sqlite:
            return f"data/db/{DEFAULT_DATABASE_NAME}.db"
        return DEFAULT_DATABASE_NAME


def setup_logging(settings: Settings) -> None:
    """配置全局日志系统

    Args:
        settings: 应用配置对象
    """
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    # 配置根logger
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # 清除已存在的handlers，避免重复输出
    root_logger.handlers.clear()

    formatter = logging.Formatter(
        fmt='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    if settings.log_to_file:
        log_dir = Path(settings.log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(
            log_dir / "strainbase.log",
            encoding='utf-8',
            mode='a'
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    if settings.log_to_console:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(log_level)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    # 设置第三方库日志级别（避免干扰）
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    root_logger.info(f"日志系统初始化完成 - 级别: {settings.log_level}, 目录: {settings.log_dir}")


def get_settings(**overrides) -> Settings:
    """Return a fresh settings instance, optionally overriding fields."""

    return Settings(**overrides)
