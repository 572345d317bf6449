#!/usr/bin/env python3
"""
strainbase CLI - 命令行接口

子命令：
    migrate  运行 schema 守卫，并可选地从种子文件导入 strain
    serve    启动 HTTP 服务

用法：
    strainbase migrate --schema-version 1 --seed-file data/strains.json
    strainbase serve --port 8888
    python -m strainbase migrate --db-driver mysql+pymysql --db-username root
"""

from __future__ import annotations

import argparse
import logging
import sys
from importlib.metadata import PackageNotFoundError, version
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from .core.config import Settings, setup_logging
from .core.container import ServiceContainer
from .core.errors import StrainbaseError

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_RECORD_FAILURES = 1
EXIT_MIGRATION_FAILED = 2


def _app_version() -> str:
    try:
        return version("strainbase")
    except PackageNotFoundError:
        return "unknown"


def create_parser() -> argparse.ArgumentParser:
    """创建参数解析器"""
    parser = argparse.ArgumentParser(
        prog="strainbase",
        description="strainbase is a cannabis strains server.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
示例：
    # 迁移到 schema 版本 1 并导入种子数据
    strainbase migrate --seed-file data/strains.json

    # 使用 MySQL
    strainbase migrate --db-driver mysql+pymysql --db-host localhost \\
        --db-username root --db-password password --db-name so_many_strains

    # 启动 HTTP 服务
    strainbase serve --port 8888
""",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s version {_app_version()}",
    )

    # 数据库与日志参数，所有子命令共用
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--db-driver", dest="database_driver", default=None,
                        help="SQLAlchemy 驱动名 (sqlite / mysql+pymysql / postgresql+psycopg)")
    common.add_argument("--db-host", dest="database_host", default=None, help="数据库主机")
    common.add_argument("--db-port", dest="database_port", type=int, default=None, help="数据库端口")
    common.add_argument("--db-name", dest="database_name", default=None,
                        help="逻辑数据库名（SQLite 时为文件路径）")
    common.add_argument("-u", "--db-username", dest="database_username", default=None, help="数据库用户名")
    common.add_argument("-p", "--db-password", dest="database_password", default=None, help="数据库密码")
    common.add_argument("-l", "--log-level", dest="log_level", default=None,
                        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
                        type=str.upper, help="日志级别")
    common.add_argument("--no-log-file", dest="log_to_file", action="store_false", default=None,
                        help="不写日志文件")

    subparsers = parser.add_subparsers(dest="command", required=True)

    migrate = subparsers.add_parser("migrate", parents=[common], help="迁移数据库并导入种子数据")
    migrate.add_argument("--schema-version", dest="schema_version", type=int, default=None,
                         help="目标 schema 版本 (default: 1)")
    migrate.add_argument("-f", "--seed-file", dest="seed_file", default=None,
                         help="种子文件路径（strain JSON 数组）")

    serve = subparsers.add_parser("serve", parents=[common], help="启动 HTTP 服务")
    serve.add_argument("--host", dest="host", default=None, help="监听地址")
    serve.add_argument("-P", "--port", dest="port", type=int, default=None, help="监听端口 (default: 8888)")

    return parser


_SETTINGS_FIELDS = (
    "database_driver",
    "database_host",
    "database_port",
    "database_name",
    "database_username",
    "database_password",
    "log_level",
    "log_to_file",
    "schema_version",
    "seed_file",
    "host",
    "port",
)


def settings_from_args(args: argparse.Namespace) -> Settings:
    """把命令行参数合并到一份显式的 Settings 中（未指定的保持环境变量/默认值）"""
    overrides: Dict[str, Any] = {}
    for name in _SETTINGS_FIELDS:
        value = getattr(args, name, None)
        if value is not None:
            overrides[name] = value
    return Settings(**overrides)


def run_migrate(settings: Settings) -> int:
    """运行迁移；返回退出码"""
    from .services.seed import seed_from_file

    container = ServiceContainer(settings)
    try:
        try:
            container.initialize()
        except StrainbaseError as e:
            logger.error(f"[迁移] 失败: {e}")
            return EXIT_MIGRATION_FAILED

        if not settings.seed_file:
            return EXIT_OK

        try:
            result = seed_from_file(container.reconciler, settings.seed_file)
        except (OSError, ValidationError) as e:
            logger.error(f"[种子] 无法读取种子文件 {settings.seed_file}: {e}")
            return EXIT_RECORD_FAILURES
        print(result.format_summary())
        return EXIT_OK if result.success else EXIT_RECORD_FAILURES
    finally:
        container.shutdown()


def run_serve(settings: Settings) -> int:
    import uvicorn

    from .main import create_app

    app = create_app(settings, configure_logging=False)
    logger.info(f"[服务] 监听 {settings.host}:{settings.port}")
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    """主入口"""
    parser = create_parser()
    args = parser.parse_args(argv)

    settings = settings_from_args(args)
    setup_logging(settings)

    if args.command == "migrate":
        return run_migrate(settings)
    if args.command == "serve":
        return run_serve(settings)

    parser.print_help()
    return EXIT_MIGRATION_FAILED


if __name__ == "__main__":
    sys.exit(main())
