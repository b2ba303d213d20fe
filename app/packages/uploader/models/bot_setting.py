"""机器人运行期配置：键值对形式存储，值为 JSON 文本。

典型键：upload_marker、upload_channels、default_review_channel、review_mappings、
officer_capability、root_folder_id、root_folder_name、cache_refresh_seconds。
"""

from sqlalchemy import String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.packages.uploader.models.base import Base, TimestampMixin


class BotSetting(TimestampMixin, Base):
    __tablename__ = "bot_settings"
    __table_args__ = (
        UniqueConstraint("key", name="uq_bot_settings_key"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    key: Mapped[str] = mapped_column(String(64), index=True)
    # JSON 编码后的值，列表/字典/字符串/数字均可
    value: Mapped[str] = mapped_column(Text, default="null")
