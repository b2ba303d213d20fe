"""BotSetting CRUD。"""

from __future__ import annotations

from sqlalchemy.orm import Session

from app.packages.uploader.crud.base import CRUDBase
from app.packages.uploader.models.bot_setting import BotSetting


class CRUDBotSetting(CRUDBase[BotSetting]):
    def get_by_key(self, db: Session, key: str) -> BotSetting | None:
        return self.query(db).filter(BotSetting.key == key).first()

    def upsert(self, db: Session, *, key: str, value: str) -> BotSetting:
        existing = self.get_by_key(db, key)
        if existing is None:
            return self.create(db, {"key": key, "value": value})
        existing.value = value
        return self.save(db, existing)


bot_setting_crud = CRUDBotSetting(BotSetting)
