"""异常处理模块：定义统一的业务异常与响应格式。

业务异常均继承 ``AppException``，``msg`` 即展示给聊天用户的文案：
- 在交互分发边界（workflow_service）被转换为仅发起人可见的回复；
- 在 HTTP 层被转换为 ``{"msg","data","code"}`` 响应体。
"""

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse

from app.packages.uploader.core.constants import (
    HTTP_STATUS_BAD_GATEWAY,
    HTTP_STATUS_BAD_REQUEST,
    HTTP_STATUS_CONFLICT,
    HTTP_STATUS_FORBIDDEN,
    HTTP_STATUS_NOT_FOUND,
    HTTP_STATUS_PRECONDITION_FAILED,
    HTTP_STATUS_SERVICE_UNAVAILABLE,
)
from app.packages.uploader.core.logger import logger


class AppException(HTTPException):
    """携带统一响应结构的业务异常，方便在全局处理中转换响应体。"""

    def __init__(self, msg: str, code: int = status.HTTP_400_BAD_REQUEST, data=None) -> None:
        super().__init__(status_code=code, detail=msg)
        self.data = data

    @property
    def msg(self) -> str:
        return str(self.detail)

    def __str__(self) -> str:
        return self.msg


class RequestNotFoundError(AppException):
    """卡片无法解析（被删除、被外部编辑或标题不匹配），视为请求过期。"""

    def __init__(self, msg: str = "Upload request expired or not found.") -> None:
        super().__init__(msg, HTTP_STATUS_NOT_FOUND)


class PermissionDeniedError(AppException):
    def __init__(self, msg: str = "You don't have permission to use this command.") -> None:
        super().__init__(msg, HTTP_STATUS_FORBIDDEN)


class AlreadyProcessedError(AppException):
    def __init__(self, msg: str = "This request has already been processed.") -> None:
        super().__init__(msg, HTTP_STATUS_CONFLICT)


class BackendTransferError(AppException):
    """下载或上传失败；``detail_message`` 保留底层错误供审核卡展示。"""

    def __init__(self, detail_message: str) -> None:
        super().__init__(f"Error during upload: {detail_message}", HTTP_STATUS_BAD_GATEWAY)
        self.detail_message = detail_message


class ConfigurationMissingError(AppException):
    def __init__(self, msg: str) -> None:
        super().__init__(msg, HTTP_STATUS_PRECONDITION_FAILED)


class CacheUnavailableError(AppException):
    def __init__(self, msg: str) -> None:
        super().__init__(msg, HTTP_STATUS_SERVICE_UNAVAILABLE)


class FolderNotFoundError(AppException):
    def __init__(self, path: str) -> None:
        super().__init__(f"Folder not found: {path}", HTTP_STATUS_NOT_FOUND)
        self.path = path


class InvalidInputError(AppException):
    def __init__(self, msg: str) -> None:
        super().__init__(msg, HTTP_STATUS_BAD_REQUEST)


class ChatDeliveryError(AppException):
    """调用聊天桥接失败（网络错误或非 2xx 响应）。"""

    def __init__(self, msg: str) -> None:
        super().__init__(msg, HTTP_STATUS_BAD_GATEWAY)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:  # pragma: no cover - framework glue
    """将 FastAPI 的 ``HTTPException`` 转换为统一响应格式。"""
    payload = {"msg": exc.detail, "data": getattr(exc, "data", None), "code": exc.status_code}
    return JSONResponse(status_code=exc.status_code, content=payload)


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:  # pragma: no cover - framework glue
    """兜底处理：将未捕获异常转换为标准的 500 响应结构。"""
    logger.exception("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    payload = {
        "msg": "Internal server error",
        "data": None,
        "code": status.HTTP_500_INTERNAL_SERVER_ERROR,
    }
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=payload)
