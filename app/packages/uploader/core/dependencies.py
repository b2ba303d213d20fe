"""依赖注入模块：桥接令牌校验与工作流相关单例的构建。"""

from __future__ import annotations

import secrets
from functools import lru_cache
from typing import Optional

from fastapi import Header

from app.packages.uploader.core.config import get_settings
from app.packages.uploader.core.constants import BRIDGE_TOKEN_HEADER, HTTP_STATUS_UNAUTHORIZED
from app.packages.uploader.core.exceptions import AppException
from app.packages.uploader.services.admin_service import AdminService
from app.packages.uploader.services.chat_adapters import ChatAdapter, build_chat_adapter
from app.packages.uploader.services.drive_backends import DriveBackend, build_backend
from app.packages.uploader.services.folder_cache import FolderCache
from app.packages.uploader.services.pending_edits import PendingEditStore
from app.packages.uploader.services.workflow_service import UploadWorkflow


def verify_bridge_token(token: Optional[str] = Header(default=None, alias=BRIDGE_TOKEN_HEADER)) -> None:
    """校验桥接进程携带的共享令牌，缺失或不匹配时返回 401。"""
    expected = get_settings().bridge_token
    if not token or not secrets.compare_digest(token, expected):
        raise AppException("Invalid bridge token", HTTP_STATUS_UNAUTHORIZED)


@lru_cache
def get_drive_backend() -> DriveBackend:
    settings = get_settings()
    return build_backend(
        type=settings.drive_backend,
        local_root_path=str(settings.drive_local_root_path),
        view_url_base=settings.drive_view_url_base,
    )


@lru_cache
def get_folder_cache() -> FolderCache:
    return FolderCache(get_drive_backend())


@lru_cache
def get_chat_adapter() -> ChatAdapter:
    return build_chat_adapter(get_settings())


@lru_cache
def get_pending_edit_store() -> PendingEditStore:
    return PendingEditStore()


@lru_cache
def get_workflow() -> UploadWorkflow:
    return UploadWorkflow(get_chat_adapter(), get_folder_cache(), get_pending_edit_store())


@lru_cache
def get_admin_service() -> AdminService:
    return AdminService(get_folder_cache())
