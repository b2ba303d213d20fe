"""管理命令路由：与配置项、缓存操作一一对应。"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from app.packages.uploader.api.v1.schemas.admin import (
    AdminCommand,
    AdminResponse,
    ChannelRequest,
    ReviewMappingRequest,
    RootFolderRequest,
    UploadMarkerRequest,
)
from app.packages.uploader.core.dependencies import get_admin_service
from app.packages.uploader.services.admin_service import AdminService

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/upload-marker", response_model=AdminResponse)
def set_upload_marker(payload: UploadMarkerRequest, service: AdminService = Depends(get_admin_service)) -> AdminResponse:
    return service.set_upload_marker(payload.actor, payload.marker)


@router.post("/upload-channels/add", response_model=AdminResponse)
def add_upload_channel(payload: ChannelRequest, service: AdminService = Depends(get_admin_service)) -> AdminResponse:
    return service.add_upload_channel(payload.actor, payload.channel_id)


@router.post("/upload-channels/remove", response_model=AdminResponse)
def remove_upload_channel(payload: ChannelRequest, service: AdminService = Depends(get_admin_service)) -> AdminResponse:
    return service.remove_upload_channel(payload.actor, payload.channel_id)


@router.post("/review-channel", response_model=AdminResponse)
def set_review_channel(payload: ChannelRequest, service: AdminService = Depends(get_admin_service)) -> AdminResponse:
    return service.set_review_channel(payload.actor, payload.channel_id)


@router.post("/review-mappings/add", response_model=AdminResponse)
def map_review_channel(
    payload: ReviewMappingRequest, service: AdminService = Depends(get_admin_service)
) -> AdminResponse:
    return service.map_review_channel(payload.actor, payload.source_channel_id, payload.review_channel_id)


@router.post("/review-mappings/remove", response_model=AdminResponse)
def unmap_review_channel(
    payload: ReviewMappingRequest, service: AdminService = Depends(get_admin_service)
) -> AdminResponse:
    return service.unmap_review_channel(payload.actor, payload.source_channel_id)


@router.post("/root-folder", response_model=AdminResponse)
async def set_root_folder(payload: RootFolderRequest, service: AdminService = Depends(get_admin_service)) -> AdminResponse:
    """设置根目录（仅管理员），成功后立即重建文件夹缓存。"""
    return await service.set_root_folder(payload.actor, payload.link)


@router.post("/refresh-folders", response_model=AdminResponse)
async def refresh_folders(payload: AdminCommand, service: AdminService = Depends(get_admin_service)) -> AdminResponse:
    return await service.refresh_folders(payload.actor)


@router.post("/show-config", response_model=AdminResponse)
def show_config(payload: AdminCommand, service: AdminService = Depends(get_admin_service)) -> AdminResponse:
    return service.show_config(payload.actor)
