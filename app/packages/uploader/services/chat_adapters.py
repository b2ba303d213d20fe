"""聊天平台适配层：工作流通过它收发卡片、读取源消息。

- ``InMemoryChatAdapter``：进程内实现，记录每一次调用，供开发与测试使用；
- ``WebhookChatAdapter``：把动作以 JSON 形式 POST 给桥接进程（httpx），
  桥接进程持有真正的机器人连接并回传消息句柄或卡片内容。
"""

from __future__ import annotations

import itertools
from typing import Any, Optional

import httpx
from pydantic import BaseModel, Field

from app.packages.uploader.core.config import Settings
from app.packages.uploader.core.constants import ADMIN_CAPABILITY, BRIDGE_TOKEN_HEADER
from app.packages.uploader.core.exceptions import ChatDeliveryError
from app.packages.uploader.core.logger import logger
from app.packages.uploader.services.cards import Card, MessageHandle


class Actor(BaseModel):
    """触发事件的用户，``capabilities`` 为其在事件上下文中的权限名集合。"""

    id: str
    display_name: str = ""
    capabilities: list[str] = Field(default_factory=list)

    @property
    def name(self) -> str:
        return self.display_name or self.id

    def has_capability(self, capability: Optional[str]) -> bool:
        if ADMIN_CAPABILITY in self.capabilities:
            return True
        return bool(capability) and capability in self.capabilities


class Attachment(BaseModel):
    url: str
    size_bytes: int = 0
    content_type: Optional[str] = None

    @property
    def is_image(self) -> bool:
        return bool(self.content_type) and self.content_type.startswith("image/")


class SourceItem(BaseModel):
    """被标记上传的源消息。"""

    channel_id: str
    message_id: str
    author_id: str
    attachments: list[Attachment] = Field(default_factory=list)

    @property
    def image_attachments(self) -> list[Attachment]:
        return [item for item in self.attachments if item.is_image]


class ChatAdapter:
    """聊天平台接口。"""

    async def send_direct_message(self, actor_id: str, card: Card) -> MessageHandle:
        raise NotImplementedError

    async def edit_message(self, handle: MessageHandle, card: Card) -> None:
        raise NotImplementedError

    async def delete_message(self, handle: MessageHandle) -> None:
        raise NotImplementedError

    async def post_to_channel(self, channel_id: str, card: Card) -> MessageHandle:
        raise NotImplementedError

    async def fetch_message(self, handle: MessageHandle) -> Optional[Card]:
        raise NotImplementedError

    async def fetch_source_item(self, channel_id: str, message_id: str) -> Optional[SourceItem]:
        raise NotImplementedError


# ------------------------------------------
# 内存实现
# ------------------------------------------


class InMemoryChatAdapter(ChatAdapter):
    def __init__(self) -> None:
        self.messages: dict[str, Card] = {}
        self.sources: dict[str, SourceItem] = {}
        self.calls: list[tuple[str, Any]] = []
        self.fail_deletes = False
        self._ids = itertools.count(1)

    @staticmethod
    def dm_channel_id(actor_id: str) -> str:
        return f"dm-{actor_id}"

    def add_source_item(self, item: SourceItem) -> SourceItem:
        self.sources[f"{item.channel_id}/{item.message_id}"] = item
        return item

    def messages_in(self, channel_id: str) -> list[tuple[MessageHandle, Card]]:
        result = []
        for key, card in self.messages.items():
            handle = MessageHandle.parse(key)
            if handle.channel_id == channel_id:
                result.append((handle, card))
        return result

    def direct_messages(self, actor_id: str) -> list[tuple[MessageHandle, Card]]:
        return self.messages_in(self.dm_channel_id(actor_id))

    def _store(self, channel_id: str, card: Card) -> MessageHandle:
        handle = MessageHandle(channel_id=channel_id, message_id=f"m{next(self._ids)}")
        self.messages[handle.key] = card
        return handle

    async def send_direct_message(self, actor_id: str, card: Card) -> MessageHandle:
        self.calls.append(("send_direct_message", actor_id))
        return self._store(self.dm_channel_id(actor_id), card)

    async def edit_message(self, handle: MessageHandle, card: Card) -> None:
        self.calls.append(("edit_message", handle.key))
        if handle.key not in self.messages:
            raise ChatDeliveryError(f"Unknown message: {handle.key}")
        self.messages[handle.key] = card

    async def delete_message(self, handle: MessageHandle) -> None:
        self.calls.append(("delete_message", handle.key))
        if self.fail_deletes or handle.key not in self.messages:
            raise ChatDeliveryError(f"Could not delete message: {handle.key}")
        del self.messages[handle.key]

    async def post_to_channel(self, channel_id: str, card: Card) -> MessageHandle:
        self.calls.append(("post_to_channel", channel_id))
        return self._store(channel_id, card)

    async def fetch_message(self, handle: MessageHandle) -> Optional[Card]:
        return self.messages.get(handle.key)

    async def fetch_source_item(self, channel_id: str, message_id: str) -> Optional[SourceItem]:
        return self.sources.get(f"{channel_id}/{message_id}")


# ------------------------------------------
# 桥接回调实现
# ------------------------------------------


class WebhookChatAdapter(ChatAdapter):
    """所有动作 POST 到 ``<callback_url>/actions``，响应体为统一的 ``{"msg","data","code"}``。"""

    def __init__(
        self,
        callback_url: str,
        token: str,
        *,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.callback_url = callback_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._transport = transport

    async def _call(self, action: str, payload: dict[str, Any]) -> Any:
        body = {"action": action, **payload}
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.callback_url}/actions",
                    json=body,
                    headers={BRIDGE_TOKEN_HEADER: self.token},
                )
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ChatDeliveryError(
                f"Bridge rejected {action}: HTTP {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise ChatDeliveryError(f"Bridge call {action} failed: {exc}") from exc

        try:
            envelope = response.json()
        except ValueError as exc:
            raise ChatDeliveryError(f"Bridge returned invalid JSON for {action}") from exc
        return envelope.get("data") if isinstance(envelope, dict) else None

    @staticmethod
    def _handle(data: Any, action: str) -> MessageHandle:
        if not isinstance(data, dict):
            raise ChatDeliveryError(f"Bridge returned no message handle for {action}")
        return MessageHandle.model_validate(data)

    async def send_direct_message(self, actor_id: str, card: Card) -> MessageHandle:
        data = await self._call("send_direct_message", {"actor_id": actor_id, "card": card.model_dump(mode="json")})
        return self._handle(data, "send_direct_message")

    async def edit_message(self, handle: MessageHandle, card: Card) -> None:
        await self._call("edit_message", {"message": handle.model_dump(), "card": card.model_dump(mode="json")})

    async def delete_message(self, handle: MessageHandle) -> None:
        await self._call("delete_message", {"message": handle.model_dump()})

    async def post_to_channel(self, channel_id: str, card: Card) -> MessageHandle:
        data = await self._call("post_to_channel", {"channel_id": channel_id, "card": card.model_dump(mode="json")})
        return self._handle(data, "post_to_channel")

    async def fetch_message(self, handle: MessageHandle) -> Optional[Card]:
        data = await self._call("fetch_message", {"message": handle.model_dump()})
        return Card.model_validate(data) if data else None

    async def fetch_source_item(self, channel_id: str, message_id: str) -> Optional[SourceItem]:
        data = await self._call("fetch_source_item", {"channel_id": channel_id, "message_id": message_id})
        return SourceItem.model_validate(data) if data else None


def build_chat_adapter(settings: Settings, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> ChatAdapter:
    if settings.bridge_callback_url:
        return WebhookChatAdapter(
            settings.bridge_callback_url,
            settings.bridge_token,
            timeout=settings.bridge_timeout_seconds,
            transport=transport,
        )
    logger.warning("BRIDGE_CALLBACK_URL is not set; using the in-memory chat adapter")
    return InMemoryChatAdapter()
