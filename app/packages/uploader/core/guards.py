"""权限判定：谁可以发起上传请求、谁可以执行管理命令。

- 发起上传：源消息作者本人，或在源消息上下文中具备官员权限的用户；被拒绝时静默忽略；
- 管理命令：需要官员权限（设置根目录需要管理员权限），被拒绝时明确提示。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from app.packages.uploader.core.constants import ADMIN_CAPABILITY
from app.packages.uploader.core.exceptions import PermissionDeniedError
from app.packages.uploader.services.chat_adapters import Actor, SourceItem

REASON_ORIGINAL_AUTHOR = "original_author"
REASON_OFFICER_PERMISSION = "officer_permission"
REASON_NO_PERMISSION = "no_permission"


@dataclass(frozen=True)
class PermissionCheck:
    allowed: bool
    reason: str


def can_initiate(actor: Actor, source: SourceItem, officer_capability: Optional[str]) -> PermissionCheck:
    if actor.id == source.author_id:
        return PermissionCheck(True, REASON_ORIGINAL_AUTHOR)
    if actor.has_capability(officer_capability):
        return PermissionCheck(True, REASON_OFFICER_PERMISSION)
    return PermissionCheck(False, REASON_NO_PERMISSION)


def require_officer(actor: Actor, officer_capability: Optional[str]) -> None:
    if not actor.has_capability(officer_capability):
        raise PermissionDeniedError()


def require_admin(actor: Actor) -> None:
    if not actor.has_capability(ADMIN_CAPABILITY):
        raise PermissionDeniedError("This command requires Administrator permissions.")
