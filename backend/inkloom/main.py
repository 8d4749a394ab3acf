"""FastAPI 应用入口，负责装配路由、服务容器与生命周期管理。"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .core.config import settings
from .core.logging_config import setup_logging, setup_exception_hook, log_startup_info
from .core.errors import classify_error
from .core.dependencies import AppServices, build_services
from .db.init_db import init_db
from .db.session import AsyncSessionLocal
from .exceptions import InkloomException


# 重要：必须先配置 logging，再导入 api_router
# 否则 router 模块中的 logger 会在配置完成前被创建，导致日志无法正常输出
setup_logging()
setup_exception_hook()

# 在 logging 配置完成后导入 api_router，确保所有 router 模块的 logger 都能正确配置
from .api.routers import api_router

log_startup_info()
logger = logging.getLogger(__name__)

APP_VERSION = "1.0.0"


def _error_response(exc: BaseException, status_code: int, detail: str) -> JSONResponse:
    payload = classify_error(exc).to_payload()
    payload["detail"] = detail
    return JSONResponse(status_code=status_code, content=payload)


def create_app(services: Optional[AppServices] = None) -> FastAPI:
    """
    创建应用

    传入 services 时直接使用（测试场景），否则在启动阶段初始化数据库并组装默认服务。
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """启动时初始化数据库并启动摘要队列；关闭时停止摘要队列"""
        if getattr(app.state, "services", None) is None:
            await init_db()
            app.state.services = build_services(settings, AsyncSessionLocal)
        app.state.services.summary_queue.start()
        yield
        await app.state.services.summary_queue.stop()

    app = FastAPI(
        title=settings.app_name,
        debug=settings.debug,
        version=APP_VERSION,
        lifespan=lifespan,
    )
    app.state.services = services

    # 全局异常处理器：捕获所有业务异常并转换为HTTP响应
    @app.exception_handler(InkloomException)
    async def inkloom_exception_handler(request: Request, exc: InkloomException):
        """
        统一处理所有业务异常

        日志中会记录详细错误信息（detail），用户只看到友好的message与错误分类。
        """
        logger.error(
            "业务异常 [%s %s]: %s (状态码: %d)",
            request.method,
            request.url.path,
            exc.detail,
            exc.status_code,
        )
        return _error_response(exc, exc.status_code, exc.message)

    # 全局异常处理器：捕获所有未处理的异常
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """捕获所有未处理的异常，防止内部细节泄露给客户端"""
        logger.critical(
            "未捕获的异常 [%s %s]: %s",
            request.method,
            request.url.path,
            exc,
            exc_info=exc,
        )
        return _error_response(exc, 500, "服务器内部错误")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:*", "http://127.0.0.1:*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router)

    # 健康检查接口（用于应用自检）
    @app.get("/health", tags=["Health"])
    @app.get("/api/health", tags=["Health"])
    async def health_check():
        """健康检查接口，返回应用状态。"""
        return {
            "status": "healthy",
            "app": settings.app_name,
            "version": APP_VERSION,
        }

    return app


app = create_app()
