"""
自定义异常模块

定义应用特定的异常类，用于统一的错误处理。
所有业务异常都继承自 AppError，在 main.py 中有统一的异常处理器，
统一转换为 {"success": false, "error": "...", "code": "..."} 格式。
"""
from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """
    错误分类

    前端根据 code 区分错误类型，根据 error 直接展示给用户。
    """
    validation = "VALIDATION"
    not_found = "NOT_FOUND"
    conflict = "CONFLICT"
    invalid_state = "INVALID_STATE"
    no_op = "NO_OP"
    unauthorized = "UNAUTHORIZED"
    upstream_error = "UPSTREAM_ERROR"
    unknown = "UNKNOWN"


# 每种错误的默认 HTTP 状态码
_DEFAULT_STATUS: dict[ErrorKind, int] = {
    ErrorKind.validation: 400,
    ErrorKind.not_found: 404,
    ErrorKind.conflict: 409,
    ErrorKind.invalid_state: 409,
    ErrorKind.no_op: 409,
    ErrorKind.unauthorized: 401,
    ErrorKind.upstream_error: 502,
    ErrorKind.unknown: 500,
}


class AppError(Exception):
    """
    应用自定义异常类

    用于业务逻辑中的错误处理，包含：
    - kind: 错误分类（用于前端区分不同错误）
    - message: 错误消息（单行、可直接展示给用户）
    - status_code: HTTP 状态码（不传则按 kind 取默认值）

    使用示例：
        raise AppError(kind=ErrorKind.conflict, message="User already has an active subscription")
    """

    def __init__(
        self,
        *,
        kind: ErrorKind,
        message: str,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status_code = status_code or _DEFAULT_STATUS[kind]


def validation_error(message: str) -> AppError:
    return AppError(kind=ErrorKind.validation, message=message)


def not_found(message: str) -> AppError:
    return AppError(kind=ErrorKind.not_found, message=message)


def conflict(message: str) -> AppError:
    return AppError(kind=ErrorKind.conflict, message=message)


def invalid_state(message: str) -> AppError:
    return AppError(kind=ErrorKind.invalid_state, message=message)


def no_op(message: str) -> AppError:
    return AppError(kind=ErrorKind.no_op, message=message)


def unauthorized(message: str = "Unauthorized", status_code: int = 401) -> AppError:
    """
    创建"未授权"异常

    签名校验失败时使用 400（Razorpay 只关心是否 2xx），
    用户 ID 与登录用户不一致时使用 403。
    """
    return AppError(kind=ErrorKind.unauthorized, message=message, status_code=status_code)


def upstream_error(message: str) -> AppError:
    return AppError(kind=ErrorKind.upstream_error, message=message)
