"""上传请求的领域模型。

请求本身不落库：状态卡片（请求人私信中的那条消息）就是它的唯一载体，
``card.key`` 即请求的持久标识。
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional

from app.packages.uploader.core.enums import LifecycleState
from app.packages.uploader.services.cards import MessageHandle
from app.packages.uploader.utils.path_utils import join_path


@dataclass(frozen=True)
class SourceReference:
    """源附件引用，创建后不可变。"""

    channel_id: str
    message_id: str
    url: str
    size_bytes: int
    content_type: str
    original_file_name: str

    @property
    def key(self) -> str:
        return f"{self.channel_id}/{self.message_id}"


@dataclass
class UploadRequest:
    requester_id: str
    source: SourceReference
    file_name: str
    destination: tuple[str, ...] = ()
    description: str = ""
    state: LifecycleState = LifecycleState.COLLECTING_DESTINATION
    card: Optional[MessageHandle] = None

    @classmethod
    def create(cls, requester_id: str, source: SourceReference) -> "UploadRequest":
        return cls(requester_id=requester_id, source=source, file_name=source.original_file_name)

    @property
    def key(self) -> Optional[str]:
        return self.card.key if self.card else None

    @property
    def destination_text(self) -> str:
        return join_path(self.destination)

    def navigate_into(self, folder_name: str) -> "UploadRequest":
        return replace(self, destination=self.destination + (folder_name,))

    def navigate_back(self) -> "UploadRequest":
        return replace(self, destination=self.destination[:-1])

    def with_details(self, file_name: str, description: str) -> "UploadRequest":
        return replace(self, file_name=file_name, description=description)


@dataclass
class ReviewRecord:
    """从审核卡片解析出的请求快照（审核卡只展示部分字段）。"""

    requester_id: str
    file_name: str
    size_text: str
    destination: tuple[str, ...]
    attachment_url: str
    description: str
    request_key: str
    state: LifecycleState = LifecycleState.PENDING_REVIEW
    last_edited_by: Optional[str] = None

    @property
    def destination_text(self) -> str:
        return join_path(self.destination)
