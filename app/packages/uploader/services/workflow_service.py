"""上传审批工作流：无状态状态机，全部请求状态都保存在已渲染的卡片里。

入口：
- ``handle_reaction``：用户在源消息上添加触发表情，权限通过后私信发送状态卡或多附件选择卡；
- ``handle_interaction``：卡片上的按钮、下拉框与弹窗提交。组件 ID 形如 ``<动作>:<请求键>``，
  由唯一的分发表映射到（所需卡片种类、所需生命周期状态、处理函数）。

每次交互都重新读取目标卡片并按标题做守卫判定，组件 ID 中的请求键必须指向这张卡片，
终态卡片不再接受任何动作。批准先把审核卡改写为 PROCESSING 再传输，传输后的回执改写失败
只记录日志，卡片停留在 PROCESSING，不会出现第二次传输。
业务异常在分发边界被转换为仅操作者可见的回复，其余异常记录堆栈后返回通用提示。
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from pydantic import BaseModel, Field

from app.packages.uploader.core.config import get_settings
from app.packages.uploader.core.constants import (
    DESCRIPTION_MAX_LENGTH,
    FILE_NAME_MAX_LENGTH,
    SELECT_MENU_LIMIT,
    UPLOAD_PATH_MAX_LENGTH,
)
from app.packages.uploader.core.enums import CardKind, LifecycleState, TransitionTag
from app.packages.uploader.core.exceptions import (
    AlreadyProcessedError,
    AppException,
    BackendTransferError,
    ConfigurationMissingError,
    InvalidInputError,
    RequestNotFoundError,
)
from app.packages.uploader.core.guards import can_initiate
from app.packages.uploader.core.logger import logger, request_key_context
from app.packages.uploader.services import card_codec
from app.packages.uploader.services.cards import (
    COMPONENT_ID_SEPARATOR,
    Card,
    MessageHandle,
    ModalForm,
    TextInput,
    component_id,
    parse_component_id,
)
from app.packages.uploader.services.chat_adapters import Actor, Attachment, ChatAdapter, SourceItem
from app.packages.uploader.services.config_service import (
    OFFICER_CAPABILITY,
    UPLOAD_MARKER,
    ConfigService,
    config_service,
)
from app.packages.uploader.services.drive_backends import guess_mime_type
from app.packages.uploader.services.folder_cache import FolderCache
from app.packages.uploader.services.pending_edits import PendingEditStore
from app.packages.uploader.services.upload_request import ReviewRecord, SourceReference, UploadRequest
from app.packages.uploader.utils.path_utils import file_name_from_url, is_path_segment, split_path

GENERIC_ERROR_REPLY = "❌ Something went wrong. Please try again later."

# 反应事件的处理结果
OUTCOME_IGNORED = "ignored"
OUTCOME_REJECTED = "rejected"
OUTCOME_STARTED = "started"
OUTCOME_PICKER = "picker"
OUTCOME_FAILED = "failed"


class ReactionEvent(BaseModel):
    actor: Actor
    marker: str
    channel_id: str
    message_id: str
    is_bot: bool = False


class InteractionEvent(BaseModel):
    """``message`` 为组件所在的卡片；``values`` 为下拉框选中值，``fields`` 为弹窗输入。"""

    actor: Actor
    custom_id: str
    message: MessageHandle
    values: list[str] = Field(default_factory=list)
    fields: dict[str, str] = Field(default_factory=dict)


class InteractionResult(BaseModel):
    """交给桥接进程的回应：一条回复文本（默认仅操作者可见）或一个待弹出的表单。"""

    reply: Optional[str] = None
    ephemeral: bool = True
    modal: Optional[ModalForm] = None


Handler = Callable[[InteractionEvent, Card], Awaitable[InteractionResult]]

_REQUESTER_STATES = frozenset({LifecycleState.COLLECTING_DESTINATION, LifecycleState.AWAITING_CONFIRMATION})
_REVIEW_STATES = frozenset({LifecycleState.PENDING_REVIEW})


@dataclass(frozen=True)
class Route:
    kind: CardKind
    states: frozenset
    handler: Handler


class UploadWorkflow:
    def __init__(
        self,
        chat: ChatAdapter,
        cache: FolderCache,
        pending: PendingEditStore,
        config: ConfigService = config_service,
    ) -> None:
        self.chat = chat
        self.cache = cache
        self.pending = pending
        self.config = config
        self._routes: dict[TransitionTag, Route] = {
            TransitionTag.NAVIGATE_INTO: Route(CardKind.STATE, _REQUESTER_STATES, self._navigate_into),
            TransitionTag.NAVIGATE_BACK: Route(CardKind.STATE, _REQUESTER_STATES, self._navigate_back),
            TransitionTag.EDIT_DETAILS: Route(CardKind.STATE, _REQUESTER_STATES, self._edit_details),
            TransitionTag.SUBMIT_DETAILS: Route(CardKind.STATE, _REQUESTER_STATES, self._submit_details),
            TransitionTag.CONFIRM: Route(CardKind.STATE, _REQUESTER_STATES, self._confirm),
            TransitionTag.CANCEL: Route(CardKind.STATE, _REQUESTER_STATES, self._cancel),
            TransitionTag.APPROVE: Route(CardKind.REVIEW, _REVIEW_STATES, self._approve),
            TransitionTag.DENY: Route(CardKind.REVIEW, _REVIEW_STATES, self._deny),
            TransitionTag.OFFICER_EDIT: Route(CardKind.REVIEW, _REVIEW_STATES, self._officer_edit),
            TransitionTag.SUBMIT_OFFICER_EDIT: Route(CardKind.REVIEW, _REVIEW_STATES, self._submit_officer_edit),
            TransitionTag.SELECT_ATTACHMENTS: Route(CardKind.ATTACHMENT_PICKER, frozenset(), self._select_attachments),
            TransitionTag.CANCEL_ATTACHMENTS: Route(CardKind.ATTACHMENT_PICKER, frozenset(), self._cancel_attachments),
        }

    # ----------------------------
    # 反应触发
    # ----------------------------
    async def handle_reaction(self, event: ReactionEvent) -> str:
        if event.is_bot or event.marker != self.config.get(UPLOAD_MARKER):
            return OUTCOME_IGNORED

        actor = event.actor
        try:
            source = await self.chat.fetch_source_item(event.channel_id, event.message_id)
            if source is None:
                logger.warning("Reaction target %s/%s could not be fetched", event.channel_id, event.message_id)
                return OUTCOME_IGNORED

            check = can_initiate(actor, source, self.config.get(OFFICER_CAPABILITY))
            if not check.allowed:
                logger.info(
                    "Upload reaction ignored: %s (%s) on message %s", actor.id, check.reason, source.message_id
                )
                return OUTCOME_IGNORED

            if not self.config.is_upload_channel(source.channel_id):
                await self._notify(actor.id, "❌ Upload requests are only allowed in designated upload channels.")
                return OUTCOME_REJECTED

            logger.info("Upload request initiated by %s (%s) on message %s", actor.id, check.reason, source.message_id)
            if not source.attachments:
                await self._notify(actor.id, "❌ You can only upload messages that contain image attachments.")
                return OUTCOME_REJECTED

            images = source.image_attachments
            if not images:
                await self._notify(actor.id, "❌ No image attachments found in that message.")
                return OUTCOME_REJECTED

            if len(images) == 1:
                await self.start_request(actor.id, source, images[0])
                return OUTCOME_STARTED

            await self.chat.send_direct_message(
                actor.id, card_codec.encode_picker_card(source.channel_id, source.message_id, images)
            )
            return OUTCOME_PICKER
        except Exception:
            logger.exception("Error sending upload request to user %s", actor.id)
            return OUTCOME_FAILED

    async def start_request(self, requester_id: str, item: SourceItem, attachment: Attachment) -> UploadRequest:
        """为单个附件创建请求：先发出状态卡拿到句柄，再带上以句柄为键的交互组件重绘。"""
        source = SourceReference(
            channel_id=item.channel_id,
            message_id=item.message_id,
            url=attachment.url,
            size_bytes=attachment.size_bytes,
            content_type=attachment.content_type or "",
            original_file_name=file_name_from_url(attachment.url),
        )
        request = UploadRequest.create(requester_id, source)
        folders = self.cache.list_children(request.destination)
        request.card = await self.chat.send_direct_message(requester_id, card_codec.encode_state_card(request, folders))
        await self.chat.edit_message(request.card, card_codec.encode_state_card(request, folders))
        logger.info("Upload request %s created for %s", request.key, requester_id)
        return request

    # ----------------------------
    # 交互分发
    # ----------------------------
    async def handle_interaction(self, event: InteractionEvent) -> InteractionResult:
        with request_key_context(event.custom_id.partition(COMPONENT_ID_SEPARATOR)[2]):
            return await self._dispatch(event)

    async def _dispatch(self, event: InteractionEvent) -> InteractionResult:
        try:
            tag, key = parse_component_id(event.custom_id)
            route = self._routes[tag]
            card = await self.chat.fetch_message(event.message)
            self._check_guard(route, card, event.message, key)
            return await route.handler(event, card)
        except AppException as exc:
            logger.info("Interaction %s by %s refused: %s", event.custom_id, event.actor.id, exc.msg)
            return InteractionResult(reply=f"❌ {exc.msg}")
        except Exception:
            logger.exception("Error handling interaction %s", event.custom_id)
            return InteractionResult(reply=GENERIC_ERROR_REPLY)

    @staticmethod
    def _check_guard(route: Route, card: Optional[Card], handle: MessageHandle, key: str) -> None:
        kind = card_codec.card_kind_of(card)
        if kind != route.kind:
            raise RequestNotFoundError()
        if kind == CardKind.ATTACHMENT_PICKER and card.title != card_codec.PICKER_TITLE:
            raise AlreadyProcessedError()
        if route.states and card_codec.lifecycle_state_of(card) not in route.states:
            raise AlreadyProcessedError()
        # 组件 ID 中的请求键必须指向这张卡片
        if card_codec.request_key_of(card, handle) != key:
            raise RequestNotFoundError()

    def _decode_request(self, event: InteractionEvent, card: Card) -> UploadRequest:
        request = card_codec.decode_state_card(card, event.actor.id)
        request.card = event.message
        return request

    async def _render_state(self, request: UploadRequest) -> None:
        folders = self.cache.list_children(request.destination)
        await self.chat.edit_message(request.card, card_codec.encode_state_card(request, folders))

    # ----------------------------
    # 请求人动作（状态卡）
    # ----------------------------
    async def _navigate_into(self, event: InteractionEvent, card: Card) -> InteractionResult:
        folder_name = event.values[0] if event.values else ""
        if not folder_name:
            raise InvalidInputError("No folder selected.")
        if not is_path_segment(folder_name):
            raise InvalidInputError(f"Folder name \"{folder_name}\" cannot be used in an upload path.")
        request = self._decode_request(event, card).navigate_into(folder_name)
        await self._render_state(request)
        return InteractionResult()

    async def _navigate_back(self, event: InteractionEvent, card: Card) -> InteractionResult:
        request = self._decode_request(event, card)
        if not request.destination:
            raise InvalidInputError("Already at the root folder.")
        await self._render_state(request.navigate_back())
        return InteractionResult()

    async def _edit_details(self, event: InteractionEvent, card: Card) -> InteractionResult:
        request = self._decode_request(event, card)
        self.pending.put(request)
        modal = ModalForm(
            custom_id=component_id(TransitionTag.SUBMIT_DETAILS, request.key),
            title="✏️ Edit Upload Details",
            inputs=[
                TextInput(
                    custom_id="filename",
                    label="File Name",
                    value=request.file_name,
                    required=True,
                    max_length=FILE_NAME_MAX_LENGTH,
                ),
                TextInput(
                    custom_id="description",
                    label="Description (optional)",
                    value=request.description,
                    placeholder="Brief description of the artwork...",
                    max_length=DESCRIPTION_MAX_LENGTH,
                    multiline=True,
                ),
            ],
        )
        return InteractionResult(modal=modal)

    async def _submit_details(self, event: InteractionEvent, card: Card) -> InteractionResult:
        request = self.pending.pop(event.message.key)
        if request is None:
            logger.info("Pending edit for %s missed, decoding the card instead", event.message.key)
            request = self._decode_request(event, card)
        request.card = event.message

        file_name = _required_text(event.fields.get("filename"), "File name", FILE_NAME_MAX_LENGTH)
        description = _optional_text(event.fields.get("description"), "Description", DESCRIPTION_MAX_LENGTH)
        await self._render_state(request.with_details(file_name, description))
        return InteractionResult()

    async def _confirm(self, event: InteractionEvent, card: Card) -> InteractionResult:
        request = self._decode_request(event, card)
        review_channel = self.config.review_channel_for(request.source.channel_id or None)
        if not review_channel:
            raise ConfigurationMissingError("Approval channel not configured. Please contact an administrator.")

        # 先收起请求人的按钮，改写失败则不发审核卡
        request.state = LifecycleState.PENDING_REVIEW
        await self.chat.edit_message(request.card, card_codec.encode_submitted_card(request))

        record = card_codec.review_record_from_request(request)
        try:
            await self.chat.post_to_channel(review_channel, card_codec.encode_review_card(record, event.actor.name))
        except Exception:
            logger.exception("Could not post review card for %s, restoring the state card", request.key)
            request.state = LifecycleState.COLLECTING_DESTINATION
            try:
                await self._render_state(request)
            except Exception:
                logger.exception("Could not restore state card %s", request.key)
            raise
        logger.info("Upload request %s sent for approval", request.key)

        return InteractionResult(
            reply="✅ Upload request submitted for approval! The message above has been updated.",
            ephemeral=False,
        )

    async def _cancel(self, event: InteractionEvent, card: Card) -> InteractionResult:
        marker = self.config.get(UPLOAD_MARKER)
        await self.chat.edit_message(
            event.message,
            card_codec.encode_cancelled_card(
                f"Upload request has been cancelled. You can start a new upload by reacting to an image with {marker}."
            ),
        )
        return InteractionResult()

    # ----------------------------
    # 审核人动作（审核卡）
    # ----------------------------
    async def _approve(self, event: InteractionEvent, card: Card) -> InteractionResult:
        record = card_codec.decode_review_card(card)
        reviewer = event.actor
        backend = self.cache.backend
        # 占用审核卡失败时不传输，审核人可以直接重试
        await self.chat.edit_message(event.message, card_codec.encode_review_processing(card, reviewer.id))
        try:
            folder_id = await self.cache.resolve_cached(record.destination)
            data = await backend.download_bytes(record.attachment_url)
            uploaded = await backend.upload_bytes(
                folder_id,
                record.file_name,
                guess_mime_type(file_name_from_url(record.attachment_url)),
                data,
                {
                    "description": record.description,
                    "uploader": record.requester_id,
                    "approver": reviewer.id,
                    "upload_date": datetime.now(timezone.utc).isoformat(),
                    "uploaded_via": get_settings().project_name,
                },
            )
        except Exception as exc:
            detail = _error_detail(exc)
            logger.exception("Error during upload approval of %s", record.request_key)
            await self._write_receipt(
                event.message,
                card_codec.encode_review_outcome(card, LifecycleState.FAILED, reviewer.id, error=detail),
            )
            return InteractionResult(reply=f"❌ Error during upload: {detail}")

        logger.info("Upload request %s approved by %s (file %s)", record.request_key, reviewer.id, uploaded.id)
        await self._write_receipt(
            event.message, card_codec.encode_review_outcome(card, LifecycleState.APPROVED, reviewer.id)
        )
        await self._notify(
            record.requester_id, card_codec.encode_approved_notice(record, reviewer.name, uploaded.view_url)
        )
        await self._delete_state_card(record)
        return InteractionResult(reply="✅ Upload approved and completed successfully!")

    async def _deny(self, event: InteractionEvent, card: Card) -> InteractionResult:
        record = card_codec.decode_review_card(card)
        reviewer = event.actor
        await self.chat.edit_message(
            event.message, card_codec.encode_review_outcome(card, LifecycleState.DENIED, reviewer.id)
        )
        logger.info("Upload request %s denied by %s", record.request_key, reviewer.id)
        await self._notify(record.requester_id, card_codec.encode_denied_notice(record, reviewer.name))
        await self._delete_state_card(record)
        return InteractionResult(reply="❌ Upload request denied.")

    async def _officer_edit(self, event: InteractionEvent, card: Card) -> InteractionResult:
        record = card_codec.decode_review_card(card)
        modal = ModalForm(
            custom_id=component_id(TransitionTag.SUBMIT_OFFICER_EDIT, record.request_key),
            title="✏️ Edit Upload Details",
            inputs=[
                TextInput(
                    custom_id="filename",
                    label="File Name",
                    value=record.file_name,
                    required=True,
                    max_length=FILE_NAME_MAX_LENGTH,
                ),
                TextInput(
                    custom_id="path",
                    label="Upload Path",
                    value=record.destination_text,
                    max_length=UPLOAD_PATH_MAX_LENGTH,
                ),
                TextInput(
                    custom_id="description",
                    label="Description",
                    value=record.description,
                    max_length=DESCRIPTION_MAX_LENGTH,
                    multiline=True,
                ),
            ],
        )
        return InteractionResult(modal=modal)

    async def _submit_officer_edit(self, event: InteractionEvent, card: Card) -> InteractionResult:
        record = card_codec.decode_review_card(card)
        record.file_name = _required_text(event.fields.get("filename"), "File name", FILE_NAME_MAX_LENGTH)
        record.destination = split_path(
            _optional_text(event.fields.get("path"), "Upload path", UPLOAD_PATH_MAX_LENGTH)
        )
        record.description = _optional_text(event.fields.get("description"), "Description", DESCRIPTION_MAX_LENGTH)
        record.last_edited_by = event.actor.id
        await self.chat.edit_message(event.message, card_codec.apply_review_edit(card, record))
        return InteractionResult(reply="✅ Upload details updated successfully!")

    # ----------------------------
    # 多附件选择卡
    # ----------------------------
    async def _select_attachments(self, event: InteractionEvent, card: Card) -> InteractionResult:
        channel_id, message_id = card_codec.decode_picker_card(card)
        item = await self.chat.fetch_source_item(channel_id, message_id)
        if item is None:
            raise RequestNotFoundError(
                "Original message not found or was deleted. Attachment data is no longer available."
            )

        images = item.image_attachments[:SELECT_MENU_LIMIT]
        if not images:
            raise InvalidInputError("No file attachments found in the original message.")

        indices: list[int] = []
        for index in card_codec.parse_picker_selection(event.values):
            if 0 <= index < len(images) and index not in indices:
                indices.append(index)
        if not indices:
            raise InvalidInputError("No valid attachments selected.")

        try:
            await self.chat.edit_message(event.message, card_codec.encode_picker_processed(len(indices)))
        except Exception:
            logger.exception("Could not update attachment selection message %s", event.message.key)

        for index in indices:
            await self.start_request(event.actor.id, item, images[index])

        return InteractionResult(
            reply=(
                f"✅ Processing {len(indices)} attachment(s). "
                "You'll receive a separate message for each upload."
            ),
            ephemeral=False,
        )

    async def _cancel_attachments(self, event: InteractionEvent, card: Card) -> InteractionResult:
        marker = self.config.get(UPLOAD_MARKER)
        await self.chat.edit_message(
            event.message,
            card_codec.encode_cancelled_card(
                f"Attachment selection cancelled. You can start a new upload by reacting to an image with {marker}."
            ),
        )
        return InteractionResult()

    # ----------------------------
    # 尽力而为的通知与清理
    # ----------------------------
    async def _notify(self, actor_id: str, content: "Card | str") -> bool:
        card = card_codec.encode_notice(content) if isinstance(content, str) else content
        try:
            await self.chat.send_direct_message(actor_id, card)
            return True
        except Exception as exc:
            logger.info("Could not DM user %s: %s", actor_id, exc)
            return False

    async def _write_receipt(self, handle: MessageHandle, receipt: Card) -> None:
        """传输已结束时的回执改写；失败时审核卡停留在 PROCESSING，不会再次传输。"""
        try:
            await self.chat.edit_message(handle, receipt)
        except Exception:
            logger.exception("Could not write receipt %r on review card %s", receipt.title, handle.key)

    async def _delete_state_card(self, record: ReviewRecord) -> None:
        try:
            await self.chat.delete_message(MessageHandle.parse(record.request_key))
            logger.info("Deleted original DM for request %s", record.request_key)
        except Exception as exc:
            logger.warning("Could not delete original DM for request %s: %s", record.request_key, exc)


def _required_text(raw: Optional[str], label: str, max_length: int) -> str:
    value = (raw or "").strip()
    if not value:
        raise InvalidInputError(f"{label} is required.")
    if len(value) > max_length:
        raise InvalidInputError(f"{label} must be at most {max_length} characters.")
    return value


def _optional_text(raw: Optional[str], label: str, max_length: int) -> str:
    value = (raw or "").strip()
    if len(value) > max_length:
        raise InvalidInputError(f"{label} must be at most {max_length} characters.")
    return value


def _error_detail(exc: Exception) -> str:
    if isinstance(exc, BackendTransferError):
        return exc.detail_message
    if isinstance(exc, AppException):
        return exc.msg
    return str(exc) or exc.__class__.__name__
