"""Database bootstrapping utilities."""

from __future__ import annotations

import logging

from app.packages.uploader.db import session as db_session
from app.packages.uploader.models.base import Base
from app.packages.uploader.models.bot_setting import BotSetting  # noqa: F401 - ensure table creation in tests

logger = logging.getLogger(__name__)


def init_db() -> None:
    """Create all database tables and seed bot settings that are still missing."""
    Base.metadata.create_all(bind=db_session.engine)

    # 延迟导入：config_service 依赖 SessionLocal，测试会在导入后替换它
    from app.packages.uploader.services.config_service import config_service

    try:
        seeded = config_service.seed_defaults()
    except Exception:  # pragma: no cover - initialization failures should surface
        logger.exception("Failed to seed default bot settings during database initialization")
        raise
    if seeded:
        logger.info("Seeded %s default bot settings", seeded)
