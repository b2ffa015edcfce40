"""FastAPI 应用入口点。"""

import logging

from fastapi import FastAPI

from crm_sharing.api.router import api_router
from crm_sharing.core.config import get_settings
from crm_sharing.exceptions import register_exception_handlers
from crm_sharing.middlewares import register_middlewares

settings = get_settings()


def _setup_logging() -> None:
    """初始化日志输出格式与级别。"""
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format=settings.log_format,
    )


def create_app() -> FastAPI:
    """创建并配置 FastAPI 应用实例。"""
    _setup_logging()
    app = FastAPI(
        title=settings.app_name,
        version="1.0.0",
        debug=settings.app_debug,
        description=(
            "多租户记录级访问控制与共享计算接口。\n\n"
            "所有业务接口统一返回：`{request_id, data, meta}`。\n"
            "通过访问令牌进行认证：`sub` 为用户 ID，`tenant_id` 为租户上下文。"
        ),
        openapi_tags=[
            {"name": "health", "description": "服务存活与就绪探针。"},
            {"name": "access", "description": "对象/字段权限与记录访问级别查询（无副作用）。"},
            {"name": "sharing", "description": "记录共享明细、手工共享与共享重算。"},
        ],
    )

    register_middlewares(app)
    register_exception_handlers(app)
    app.include_router(api_router, prefix=settings.api_prefix)
    return app


app = create_app()
