"""
全项目共用的错误分类：store、services、routers 都抛这里的异常。

main.py 统一把它们转成 {"detail": {"code", "message"}}，状态码按 kind 取。
"""

from enum import Enum

from fastapi import HTTPException


class ErrorKind(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_STATE = "INVALID_STATE"
    NOT_FOUND = "NOT_FOUND"
    PERSISTENCE_FAILURE = "PERSISTENCE_FAILURE"
    FORBIDDEN = "FORBIDDEN"


STATUS_BY_KIND = {
    ErrorKind.VALIDATION_ERROR: 400,
    ErrorKind.INVALID_STATE: 409,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.PERSISTENCE_FAILURE: 503,
    ErrorKind.FORBIDDEN: 403,
}


class ZagferError(Exception):
    """业务错误基类。"""

    kind = ErrorKind.VALIDATION_ERROR
    default_code = "VALIDATION_ERROR"
    status_code: int | None = None

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code

    @property
    def http_status(self) -> int:
        return self.status_code or STATUS_BY_KIND[self.kind]

    def to_detail(self) -> dict:
        return {"code": self.code, "message": self.message}


class ValidationError(ZagferError):
    """缺必填项或没选任何东西。"""

    kind = ErrorKind.VALIDATION_ERROR
    default_code = "VALIDATION_ERROR"


class DuplicateError(ValidationError):
    """唯一键（工具 id、matricula）已被占用。"""

    default_code = "DUPLICATE"
    status_code = 409


class InvalidStateError(ZagferError):
    """实体当前状态不允许这个操作。"""

    kind = ErrorKind.INVALID_STATE
    default_code = "INVALID_STATE"


class NotFoundError(ZagferError):
    kind = ErrorKind.NOT_FOUND
    default_code = "NOT_FOUND"


class PersistenceError(ZagferError):
    """存储读写失败。"""

    kind = ErrorKind.PERSISTENCE_FAILURE
    default_code = "PERSISTENCE_FAILURE"


class ForbiddenError(ZagferError):
    kind = ErrorKind.FORBIDDEN
    default_code = "FORBIDDEN"


def _auth_401(code: str, message: str) -> HTTPException:
    # ✅ 保留 WWW-Authenticate，符合 Bearer 规范
    return HTTPException(
        status_code=401,
        detail={"code": code, "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )
