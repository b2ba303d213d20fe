"""管理命令服务：修改运行期配置、重建文件夹缓存、查看当前配置。

除设置根目录需要管理员权限外，其余命令均要求官员权限；权限不足时抛出
``PermissionDeniedError``，由 HTTP 层转换为统一错误响应。
"""

from __future__ import annotations

from typing import Any, Optional

from app.packages.uploader.core.exceptions import CacheUnavailableError, InvalidInputError
from app.packages.uploader.core.guards import require_admin, require_officer
from app.packages.uploader.core.logger import logger
from app.packages.uploader.core.responses import create_response
from app.packages.uploader.services.chat_adapters import Actor
from app.packages.uploader.services.config_service import (
    DEFAULT_REVIEW_CHANNEL,
    OFFICER_CAPABILITY,
    REVIEW_MAPPINGS,
    ROOT_FOLDER_ID,
    ROOT_FOLDER_NAME,
    UPLOAD_CHANNELS,
    UPLOAD_MARKER,
    ConfigService,
    config_service,
)
from app.packages.uploader.services.folder_cache import FolderCache
from app.packages.uploader.utils.path_utils import extract_folder_id


def _clean(value: Optional[str], label: str) -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise InvalidInputError(f"{label} is required.")
    return cleaned


class AdminService:
    def __init__(self, cache: FolderCache, config: ConfigService = config_service) -> None:
        self.cache = cache
        self.config = config

    def _require_officer(self, actor: Actor) -> None:
        require_officer(actor, self.config.get(OFFICER_CAPABILITY))

    def set_upload_marker(self, actor: Actor, marker: str) -> dict[str, Any]:
        self._require_officer(actor)
        marker = _clean(marker, "Emoji")
        self.config.set(UPLOAD_MARKER, marker)
        logger.info("Upload marker set to %s by %s", marker, actor.id)
        return create_response(f"✅ Upload emoji set to {marker}", {"upload_marker": marker})

    def add_upload_channel(self, actor: Actor, channel_id: str) -> dict[str, Any]:
        self._require_officer(actor)
        channel_id = _clean(channel_id, "Channel")
        added = self.config.add_to_list(UPLOAD_CHANNELS, channel_id)
        msg = f"✅ Added <#{channel_id}> to upload channels." if added else "ℹ️ Channel is already an upload channel."
        return create_response(msg, {"upload_channels": self.config.get(UPLOAD_CHANNELS), "changed": added})

    def remove_upload_channel(self, actor: Actor, channel_id: str) -> dict[str, Any]:
        self._require_officer(actor)
        channel_id = _clean(channel_id, "Channel")
        removed = self.config.remove_from_list(UPLOAD_CHANNELS, channel_id)
        msg = f"✅ Removed <#{channel_id}> from upload channels." if removed else "ℹ️ Channel was not an upload channel."
        return create_response(msg, {"upload_channels": self.config.get(UPLOAD_CHANNELS), "changed": removed})

    def set_review_channel(self, actor: Actor, channel_id: str) -> dict[str, Any]:
        self._require_officer(actor)
        channel_id = _clean(channel_id, "Channel")
        self.config.set(DEFAULT_REVIEW_CHANNEL, channel_id)
        return create_response(f"✅ Approval channel set to <#{channel_id}>", {"default_review_channel": channel_id})

    def map_review_channel(self, actor: Actor, source_channel_id: str, review_channel_id: str) -> dict[str, Any]:
        self._require_officer(actor)
        source_channel_id = _clean(source_channel_id, "Upload channel")
        review_channel_id = _clean(review_channel_id, "Approval channel")
        self.config.set_review_mapping(source_channel_id, review_channel_id)
        return create_response(
            f"✅ Uploads from <#{source_channel_id}> will be reviewed in <#{review_channel_id}>",
            {"review_mappings": self.config.get(REVIEW_MAPPINGS)},
        )

    def unmap_review_channel(self, actor: Actor, source_channel_id: str) -> dict[str, Any]:
        self._require_officer(actor)
        source_channel_id = _clean(source_channel_id, "Upload channel")
        removed = self.config.remove_review_mapping(source_channel_id)
        msg = (
            f"✅ Removed approval mapping for <#{source_channel_id}>"
            if removed
            else "ℹ️ No approval mapping exists for that channel."
        )
        return create_response(msg, {"review_mappings": self.config.get(REVIEW_MAPPINGS), "changed": removed})

    async def set_root_folder(self, actor: Actor, link: str) -> dict[str, Any]:
        """按分享链接设置根目录：校验目标为文件夹后写入配置并立即重建缓存。"""
        require_admin(actor)
        raw = _clean(link, "Folder link")
        folder_id = extract_folder_id(raw) or raw
        info = await self.cache.backend.get_node_info(folder_id)
        if info is None or not info.is_folder:
            raise InvalidInputError("Invalid folder link or the folder is not accessible.")

        self.config.update({ROOT_FOLDER_ID: info.id, ROOT_FOLDER_NAME: info.name})
        logger.info("Root folder set to %s (%s) by %s", info.name, info.id, actor.id)
        data: dict[str, Any] = {"root_folder_id": info.id, "root_folder_name": info.name}
        try:
            snapshot = await self.cache.refresh_now()
            data["folder_count"] = snapshot.folder_count
        except CacheUnavailableError as exc:
            logger.warning("Root folder saved but cache rebuild failed: %s", exc.msg)
            return create_response(f"⚠️ Root folder set to **{info.name}**, but the folder cache could not be rebuilt.", data)
        return create_response(f"✅ Root folder set to **{info.name}**", data)

    async def refresh_folders(self, actor: Actor) -> dict[str, Any]:
        self._require_officer(actor)
        snapshot = await self.cache.refresh_now()
        return create_response(
            f"✅ Folder cache refreshed ({snapshot.folder_count} folders)",
            self._cache_info(),
        )

    def show_config(self, actor: Actor) -> dict[str, Any]:
        self._require_officer(actor)
        data = self.config.snapshot()
        data["cache"] = self._cache_info()
        return create_response("Current configuration", data)

    def _cache_info(self) -> dict[str, Any]:
        snapshot = self.cache.snapshot
        return {
            "root_id": snapshot.root_id,
            "folder_count": snapshot.folder_count,
            "built_at": snapshot.built_at.isoformat() if snapshot.built_at else None,
            "needs_refresh": self.cache.needs_refresh(),
        }
