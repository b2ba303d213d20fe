"""应用生命周期钩子：启动时构建文件夹缓存并开启定时刷新，关闭时停止刷新任务。"""

from __future__ import annotations

from app.packages.uploader.core.dependencies import get_folder_cache
from app.packages.uploader.core.exceptions import AppException
from app.packages.uploader.core.logger import logger


async def startup() -> None:
    cache = get_folder_cache()
    try:
        await cache.rebuild()
    except AppException as exc:
        # 根目录未配置或不可访问时服务仍然可用，交互中会走后端回退解析
        logger.error("Initial folder cache build failed: %s", exc.msg)
    cache.start_auto_refresh()


async def shutdown() -> None:
    await get_folder_cache().stop_auto_refresh()
