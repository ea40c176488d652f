"""
FastAPI 应用主入口

这是应用的启动文件，负责：
1. 创建 FastAPI 应用实例
2. 配置全局中间件（CORS、Sentry）
3. 注册全局异常处理器
4. 注册 API 路由

所有错误响应统一为：
    {"success": false, "error": "<单行描述>", "code": "<ErrorKind>"}

运行方式：
    uvicorn app.main:app --reload  # 开发模式
    fastapi dev app/main.py  # 或使用 FastAPI CLI
"""
import logging

import sentry_sdk  # Sentry 错误监控
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError  # 请求验证错误
from fastapi.middleware.cors import CORSMiddleware  # CORS 中间件
from fastapi.responses import JSONResponse  # JSON 响应
from fastapi.routing import APIRoute  # 路由类型
from starlette.exceptions import HTTPException  # FastAPI 的 HTTPException 是其子类

from app.api.errors import AppError, ErrorKind
from app.api.main import api_router
from app.core.config import settings

logger = logging.getLogger(__name__)

# HTTPException 状态码到错误分类的映射，其余状态码按 4xx/5xx 归类
_HTTP_STATUS_KINDS: dict[int, ErrorKind] = {
    400: ErrorKind.validation,
    401: ErrorKind.unauthorized,
    403: ErrorKind.unauthorized,
    404: ErrorKind.not_found,
    405: ErrorKind.validation,
    409: ErrorKind.conflict,
    422: ErrorKind.validation,
    502: ErrorKind.upstream_error,
}


def custom_generate_unique_id(route: APIRoute) -> str:
    """
    自定义 OpenAPI 操作 ID 生成函数

    格式：{tag}-{route_name}，例如 "subscription-create"
    """
    return f"{route.tags[0]}-{route.name}"


def error_response(status_code: int, kind: ErrorKind, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": message, "code": kind.value},
    )


# 初始化 Sentry 错误监控（仅在生产/测试环境）
if settings.SENTRY_DSN and settings.ENVIRONMENT != "local":  # pragma: no cover
    sentry_sdk.init(dsn=str(settings.SENTRY_DSN), enable_tracing=True)

# 创建 FastAPI 应用实例
app = FastAPI(
    title=settings.PROJECT_NAME,  # API 文档标题
    openapi_url=f"{settings.API_V1_STR}/openapi.json",  # OpenAPI 规范 URL
    generate_unique_id_function=custom_generate_unique_id,  # 自定义操作 ID
)


@app.exception_handler(AppError)
async def app_error_handler(_: Request, exc: AppError) -> JSONResponse:
    """业务异常：按 AppError 自带的分类和状态码返回"""
    if exc.kind == ErrorKind.upstream_error:
        logger.warning("Upstream error: %s", exc.message)
    return error_response(exc.status_code, exc.kind, exc.message)


@app.exception_handler(HTTPException)
async def http_error_handler(_: Request, exc: HTTPException) -> JSONResponse:
    """
    HTTP 异常处理器

    框架抛出的 HTTPException（如 404 路由不存在、405 方法不允许）也转换为统一格式。
    """
    kind = _HTTP_STATUS_KINDS.get(
        exc.status_code, ErrorKind.unknown if exc.status_code >= 500 else ErrorKind.validation
    )
    return error_response(exc.status_code, kind, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    """
    请求验证错误处理器

    取第一条错误拼成单行描述，例如 "body.plan_id: Field required"。
    """
    errors = exc.errors()
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        message = f"{location}: {first.get('msg', 'Invalid value')}" if location else str(first.get("msg"))
    else:
        message = "Validation error"
    return error_response(422, ErrorKind.validation, message)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """未处理异常：记录堆栈，只返回通用描述"""
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(500, ErrorKind.unknown, "Internal server error")


# 配置 CORS（跨域资源共享）中间件
if settings.all_cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.all_cors_origins,  # 允许的源（域名列表）
        allow_credentials=True,  # 允许携带凭证（如 cookies）
        allow_methods=["*"],  # 允许所有 HTTP 方法
        allow_headers=["*"],  # 允许所有请求头
    )

# 注册 API 路由，所有路由都会添加 /api/v1 前缀
app.include_router(api_router, prefix=settings.API_V1_STR)
