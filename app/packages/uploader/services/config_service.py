"""机器人配置服务：以键值对方式读写运行期配置（持久化在 bot_settings 表）。

核心流程只把它当作不透明的 KV 提供者使用：
- 根目录 ID / 名称、官员权限名、上传触发表情、上传频道列表；
- 上传频道 -> 审核频道映射（缺省回退到默认审核频道）；
- 文件夹缓存刷新间隔（秒）。
"""

from __future__ import annotations

import json
from typing import Any, Optional

from app.packages.uploader.core.config import get_settings
from app.packages.uploader.core.exceptions import InvalidInputError
from app.packages.uploader.core.logger import logger
from app.packages.uploader.crud.bot_setting import bot_setting_crud
from app.packages.uploader.db import session as db_session

UPLOAD_MARKER = "upload_marker"
UPLOAD_CHANNELS = "upload_channels"
DEFAULT_REVIEW_CHANNEL = "default_review_channel"
REVIEW_MAPPINGS = "review_mappings"
OFFICER_CAPABILITY = "officer_capability"
ROOT_FOLDER_ID = "root_folder_id"
ROOT_FOLDER_NAME = "root_folder_name"
CACHE_REFRESH_SECONDS = "cache_refresh_seconds"


def _default_values() -> dict[str, Any]:
    settings = get_settings()
    return {
        UPLOAD_MARKER: settings.default_upload_marker,
        UPLOAD_CHANNELS: [],
        DEFAULT_REVIEW_CHANNEL: "",
        REVIEW_MAPPINGS: {},
        OFFICER_CAPABILITY: settings.default_officer_capability,
        ROOT_FOLDER_ID: settings.default_root_folder_id,
        ROOT_FOLDER_NAME: "",
        CACHE_REFRESH_SECONDS: settings.default_cache_refresh_seconds,
    }


class ConfigService:
    def get(self, key: str) -> Any:
        defaults = _default_values()
        with db_session.SessionLocal() as db:
            row = bot_setting_crud.get_by_key(db, key)
            if row is None:
                return defaults.get(key)
            try:
                return json.loads(row.value)
            except (TypeError, ValueError):
                logger.warning("Bot setting %s holds invalid JSON, using default", key)
                return defaults.get(key)

    def set(self, key: str, value: Any) -> Any:
        if key not in _default_values():
            raise InvalidInputError(f"Unknown setting: {key}")
        with db_session.SessionLocal() as db:
            bot_setting_crud.upsert(db, key=key, value=json.dumps(value, ensure_ascii=False))
        logger.info("Bot setting updated: %s", key)
        return value

    def update(self, values: dict[str, Any]) -> None:
        for key, value in values.items():
            self.set(key, value)

    def snapshot(self) -> dict[str, Any]:
        """返回所有配置项的当前值（缺失项使用默认值）。"""
        return {key: self.get(key) for key in _default_values()}

    def seed_defaults(self) -> int:
        """把缺失的配置项写入默认值，返回写入条数；已存在的值不会被覆盖。"""
        seeded = 0
        with db_session.SessionLocal() as db:
            for key, value in _default_values().items():
                if bot_setting_crud.get_by_key(db, key) is None:
                    bot_setting_crud.create(db, {"key": key, "value": json.dumps(value, ensure_ascii=False)})
                    seeded += 1
        return seeded

    # ----------------------------
    # 列表与映射辅助
    # ----------------------------
    def add_to_list(self, key: str, value: str) -> bool:
        """向列表配置追加元素；已存在时返回 ``False``。"""
        items = list(self.get(key) or [])
        if value in items:
            return False
        items.append(value)
        self.set(key, items)
        return True

    def remove_from_list(self, key: str, value: str) -> bool:
        items = list(self.get(key) or [])
        if value not in items:
            return False
        items.remove(value)
        self.set(key, items)
        return True

    def set_review_mapping(self, source_channel_id: str, review_channel_id: str) -> None:
        mappings = dict(self.get(REVIEW_MAPPINGS) or {})
        mappings[source_channel_id] = review_channel_id
        self.set(REVIEW_MAPPINGS, mappings)

    def remove_review_mapping(self, source_channel_id: str) -> bool:
        mappings = dict(self.get(REVIEW_MAPPINGS) or {})
        if source_channel_id not in mappings:
            return False
        mappings.pop(source_channel_id)
        self.set(REVIEW_MAPPINGS, mappings)
        return True

    def review_channel_for(self, source_channel_id: Optional[str]) -> Optional[str]:
        """上传频道对应的审核频道；未映射时回退到默认审核频道，均未配置返回 ``None``。"""
        mappings = self.get(REVIEW_MAPPINGS) or {}
        if source_channel_id and mappings.get(source_channel_id):
            return mappings[source_channel_id]
        return self.get(DEFAULT_REVIEW_CHANNEL) or None

    def is_upload_channel(self, channel_id: str) -> bool:
        return channel_id in (self.get(UPLOAD_CHANNELS) or [])


config_service = ConfigService()
