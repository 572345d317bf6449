"""
strainbase 后端入口

此模块负责：
1. 创建服务容器（显式传入 Settings）
2. 配置中间件
3. 注册路由
4. 应用生命周期管理：启动时运行一次 schema 守卫，关闭时释放连接

运行：
    uvicorn strainbase.main:create_app --factory
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Callable

from fastapi import Depends, FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from .api.dependencies import get_schema_guard
from .core.config import Settings, get_settings, setup_logging
from .core.container import ServiceContainer

logger = logging.getLogger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """请求日志中间件 - 使用结构化日志记录请求信息"""

    IGNORED_PATHS = {
        "/api/health",
        "/health",
    }

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()

        client_host = request.client.host if request.client else "unknown"
        method = request.method
        path = request.url.path

        response = await call_next(request)

        duration_ms = (time.time() - start_time) * 1000
        status_code = response.status_code

        # 跳过健康检查的正常响应
        if path in self.IGNORED_PATHS and status_code < 400:
            return response

        log_extra = {
            "method": method,
            "path": path,
            "status": status_code,
            "duration_ms": round(duration_ms, 1),
            "client": client_host,
        }

        # 根据状态码选择日志级别
        if status_code >= 500:
            logger.error(f"HTTP {status_code} {method} {path}", extra=log_extra)
        elif status_code >= 400:
            logger.warning(f"HTTP {status_code} {method} {path}", extra=log_extra)
        else:
            logger.debug(f"HTTP {status_code} {method} {path}", extra=log_extra)

        return response


def create_app(
    settings: Settings | None = None,
    container: ServiceContainer | None = None,
    configure_logging: bool = True,
) -> FastAPI:
    """
    创建 FastAPI 应用

    Args:
        settings: 应用配置；不传时从环境变量读取
        container: 可选，预先构建的服务容器（测试用）
        configure_logging: 是否配置全局日志
    """
    if container is not None:
        settings = container.settings
    settings = settings or get_settings()
    if configure_logging:
        setup_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        services = container or ServiceContainer(settings)

        # schema 守卫每个进程只运行一次
        if not services.is_initialized:
            services.initialize()

        app.state.container = services
        logger.info("[启动] 服务容器初始化完成")

        yield

        logger.info("[关闭] 应用正在关闭")
        services.shutdown()

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.add_middleware(RequestLoggingMiddleware)

    @app.get("/health", tags=["system"])
    def healthcheck() -> dict[str, str]:
        """基础健康检查"""
        return {"status": "ok"}

    @app.get("/api/health", tags=["system"])
    def api_healthcheck(guard = Depends(get_schema_guard)) -> dict:
        """API 健康检查（带 schema 版本）"""
        return {
            "status": "ok",
            "schema_version": guard.current_version(),
        }

    from .api.routes import router as strain_router
    app.include_router(strain_router, prefix="/api")

    return app
