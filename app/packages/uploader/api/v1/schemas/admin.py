"""管理命令的请求与响应模型。"""

from __future__ import annotations

from typing import Any, Dict

from pydantic import BaseModel, Field, model_validator

from app.packages.uploader.api.v1.schemas.common import ResponseEnvelope
from app.packages.uploader.services.chat_adapters import Actor


class AdminCommand(BaseModel):
    """所有管理命令都携带执行人及其在服务器中的权限。"""

    actor: Actor


class UploadMarkerRequest(AdminCommand):
    marker: str = Field(..., min_length=1, description="触发上传的表情")

    @model_validator(mode="after")
    def _trim_marker(self) -> "UploadMarkerRequest":
        self.marker = self.marker.strip()
        if not self.marker:
            raise ValueError("表情不能为空")
        return self


class ChannelRequest(AdminCommand):
    channel_id: str = Field(..., min_length=1, description="频道 ID")


class ReviewMappingRequest(AdminCommand):
    source_channel_id: str = Field(..., min_length=1, description="上传频道 ID")
    review_channel_id: str = Field(default="", description="审核频道 ID，解除映射时可省略")


class RootFolderRequest(AdminCommand):
    link: str = Field(..., min_length=1, description="文件夹分享链接或 ID")


AdminResponse = ResponseEnvelope[Dict[str, Any]]
