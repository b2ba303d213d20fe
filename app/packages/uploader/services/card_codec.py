"""请求状态编解码：在上传请求与聊天卡片之间双向转换。

卡片文本即状态，渲染格式是解码的依据，改动任何标题、字段名或哨兵文本都会让
已发出的卡片无法再被识别。约定：
- 状态卡（请求人私信）可完整还原 ``UploadRequest``；来源、精确字节数以及百分号编码的
  原始文件名与 URL 写在页脚，摘要行只供展示（文件名含 ``](`` 时无法按 Markdown 解析）；
- 审核卡（审核频道）可还原 ``ReviewRecord``，页脚 ``Request ID`` 指回状态卡；
  批准时先改写为 PROCESSING 回执再传输，回执标题即占用标记；
- 多附件选择卡的页脚为 ``<message_id>|<channel_id>``，指回源消息。
"""

from __future__ import annotations

import re
from typing import Iterable, Optional
from urllib.parse import quote, unquote

from app.packages.uploader.core.constants import SELECT_MENU_LIMIT
from app.packages.uploader.core.enums import ButtonStyle, CardKind, LifecycleState, TransitionTag
from app.packages.uploader.core.exceptions import RequestNotFoundError
from app.packages.uploader.services.cards import (
    Button,
    Card,
    CardField,
    MessageHandle,
    SelectMenu,
    SelectOption,
    component_id,
)
from app.packages.uploader.services.chat_adapters import Attachment
from app.packages.uploader.services.upload_request import ReviewRecord, SourceReference, UploadRequest
from app.packages.uploader.utils.path_utils import file_name_from_url, split_path
from app.packages.uploader.utils.size_utils import format_file_size, parse_file_size

# 标题
STATE_TITLE = "📤 Upload to Drive"
SUBMITTED_TITLE = "📤 Upload Request Submitted ✅"
CANCELLED_TITLE = "❌ Upload Cancelled"
REVIEW_TITLE = "📤 Upload Request for Approval"
PROCESSING_TITLE = "⏳ Upload Request PROCESSING"
APPROVED_TITLE = "✅ Upload Request APPROVED"
DENIED_TITLE = "❌ Upload Request DENIED"
FAILED_TITLE = "❌ Upload Request FAILED"
PICKER_TITLE = "🖼️ Multiple Attachments Found"
PICKER_PROCESSED_TITLE = "✅ Attachments Processed"

# 状态卡字段与哨兵
LOCATION_FIELD = "📁 Current Location"
FILE_NAME_FIELD = "📝 File Name"
DESCRIPTION_FIELD = "📋 Description"
ROOT_SENTINEL = "*(Root)*"
NO_DESCRIPTION_SENTINEL = "*(none)*"

# 审核卡字段与哨兵
REQUESTED_BY_FIELD = "👤 Requested by"
REVIEW_FILE_NAME_FIELD = "📁 File Name"
FILE_SIZE_FIELD = "📊 File Size"
UPLOAD_PATH_FIELD = "📂 Upload Path"
ORIGINAL_FILE_FIELD = "🔗 Original File"
LAST_EDITED_FIELD = "✏️ Last edited by"
APPROVED_BY_FIELD = "👨‍💼 Approved by"
DENIED_BY_FIELD = "👨‍💼 Denied by"
PROCESSING_BY_FIELD = "⏳ Being processed by"
ERROR_FIELD = "❌ Error"
REVIEW_ROOT_SENTINEL = "*(root folder)*"
REVIEW_NO_DESCRIPTION_SENTINEL = "*(no description)*"

COLOR_INFO = 0x3498DB
COLOR_PENDING = 0xF39C12
COLOR_SUCCESS = 0x27AE60
COLOR_DANGER = 0xE74C3C
COLOR_PROCESSED = 0x2ECC71

_SUMMARY_PATTERN = re.compile(r"^\*\*File:\*\* \[(?P<name>.+?)\]\((?P<url>.+?)\) \((?P<size>.+?)\)$")
_SOURCE_FOOTER_PATTERN = re.compile(
    r"^Source: (?P<channel>[^/|\s]+)/(?P<message>[^|\s]+) \| (?P<size>\d+) bytes \| (?P<content_type>[^|]*?)"
    r"(?: \| (?P<name>[^|\s]*) \| (?P<url>[^|\s]+))?$"
)
_REQUEST_ID_FOOTER_PATTERN = re.compile(r"^Request ID: (?P<key>\S+)$")
_MENTION_PATTERN = re.compile(r"<@(?P<id>[^>]+)>")
_PICKER_FOOTER_PATTERN = re.compile(r"^(?P<message>[^|]+)\|(?P<channel>[^|]+)$")

_TITLE_STATES = {
    STATE_TITLE: LifecycleState.COLLECTING_DESTINATION,
    SUBMITTED_TITLE: LifecycleState.PENDING_REVIEW,
    REVIEW_TITLE: LifecycleState.PENDING_REVIEW,
    PROCESSING_TITLE: LifecycleState.TRANSFERRING,
    APPROVED_TITLE: LifecycleState.APPROVED,
    DENIED_TITLE: LifecycleState.DENIED,
    FAILED_TITLE: LifecycleState.FAILED,
    CANCELLED_TITLE: LifecycleState.CANCELLED,
}

_TITLE_KINDS = {
    STATE_TITLE: CardKind.STATE,
    SUBMITTED_TITLE: CardKind.STATE,
    CANCELLED_TITLE: CardKind.STATE,
    REVIEW_TITLE: CardKind.REVIEW,
    PROCESSING_TITLE: CardKind.REVIEW,
    APPROVED_TITLE: CardKind.REVIEW,
    DENIED_TITLE: CardKind.REVIEW,
    FAILED_TITLE: CardKind.REVIEW,
    PICKER_TITLE: CardKind.ATTACHMENT_PICKER,
    PICKER_PROCESSED_TITLE: CardKind.ATTACHMENT_PICKER,
}

_OUTCOMES = {
    LifecycleState.APPROVED: (APPROVED_TITLE, COLOR_SUCCESS, APPROVED_BY_FIELD),
    LifecycleState.DENIED: (DENIED_TITLE, COLOR_DANGER, DENIED_BY_FIELD),
    LifecycleState.FAILED: (FAILED_TITLE, COLOR_DANGER, ERROR_FIELD),
}


def lifecycle_state_of(card: Optional[Card]) -> Optional[LifecycleState]:
    """按标题判断卡片所处的生命周期状态；无法识别时返回 ``None``。"""
    if card is None:
        return None
    return _TITLE_STATES.get(card.title)


def card_kind_of(card: Optional[Card]) -> Optional[CardKind]:
    if card is None:
        return None
    return _TITLE_KINDS.get(card.title)


def request_key_of(card: Optional[Card], handle: MessageHandle) -> Optional[str]:
    """卡片所属请求的键：状态卡是自身句柄，审核卡取页脚，选择卡指向源消息。"""
    kind = card_kind_of(card)
    if kind == CardKind.STATE:
        return handle.key
    if kind == CardKind.REVIEW:
        footer = _REQUEST_ID_FOOTER_PATTERN.match(card.footer or "")
        return footer.group("key") if footer else None
    if kind == CardKind.ATTACHMENT_PICKER:
        footer = _PICKER_FOOTER_PATTERN.match(card.footer or "")
        return f"{footer.group('channel')}/{footer.group('message')}" if footer else None
    return None


def mention(actor_id: str) -> str:
    return f"<@{actor_id}>"


def _summary_line(source: SourceReference) -> str:
    return f"**File:** [{source.original_file_name}]({source.url}) ({format_file_size(source.size_bytes)})"


def _source_footer(source: SourceReference) -> str:
    return (
        f"Source: {source.channel_id}/{source.message_id} | {source.size_bytes} bytes | {source.content_type}"
        f" | {quote(source.original_file_name, safe='')} | {quote(source.url, safe='')}"
    )


# ----------------------------
# 状态卡
# ----------------------------
def encode_state_card(request: UploadRequest, folder_names: Iterable[str] = ()) -> Card:
    """渲染状态卡。请求尚未绑定卡片句柄时不渲染交互组件（组件 ID 需要句柄）。"""
    folders = list(folder_names)[:SELECT_MENU_LIMIT]
    location = request.destination_text
    card = Card(
        title=STATE_TITLE,
        description=_summary_line(request.source),
        fields=[
            CardField(name=LOCATION_FIELD, value=location or ROOT_SENTINEL, inline=True),
            CardField(name=FILE_NAME_FIELD, value=request.file_name, inline=True),
            CardField(name=DESCRIPTION_FIELD, value=request.description or NO_DESCRIPTION_SENTINEL),
        ],
        footer=_source_footer(request.source),
        color=COLOR_INFO,
    )

    if not folders and not location:
        card.fields.append(
            CardField(name="⚠️ No Folders", value="No subfolders found. You can upload to the root location.")
        )
    elif not folders:
        card.fields.append(
            CardField(name="📁 End of Path", value='No subfolders here. Choose "Upload Here" to upload to this location.')
        )

    key = request.key
    if key is None:
        return card

    if folders:
        placeholder = (
            "📁 Choose a subfolder to navigate into..." if location else "📁 Choose a folder to navigate into..."
        )
        card.select_menus.append(
            SelectMenu(
                custom_id=component_id(TransitionTag.NAVIGATE_INTO, key),
                placeholder=placeholder,
                options=[SelectOption(label=name, value=name, emoji="📁") for name in folders],
            )
        )
    if location:
        card.buttons.append(
            Button(custom_id=component_id(TransitionTag.NAVIGATE_BACK, key), label="Back", emoji="⬅️")
        )
    card.buttons.extend(
        [
            Button(custom_id=component_id(TransitionTag.EDIT_DETAILS, key), label="Edit Details", emoji="✏️"),
            Button(
                custom_id=component_id(TransitionTag.CONFIRM, key),
                label="Upload Here",
                style=ButtonStyle.SUCCESS,
                emoji="✅",
            ),
            Button(
                custom_id=component_id(TransitionTag.CANCEL, key),
                label="Cancel",
                style=ButtonStyle.DANGER,
                emoji="❌",
            ),
        ]
    )
    return card


def decode_state_card(card: Optional[Card], requester_id: str) -> UploadRequest:
    """从状态卡还原请求；标题不符或关键字段缺失时视为请求已过期。

    来源信息优先取页脚；页脚缺失时退回摘要行，字节数按单位表反推展示文本（有精度损失）。
    """
    if card is None or card.title != STATE_TITLE:
        raise RequestNotFoundError()

    file_name = card.field_value(FILE_NAME_FIELD)
    if not file_name:
        raise RequestNotFoundError()

    footer = _SOURCE_FOOTER_PATTERN.match(card.footer or "")
    summary = None
    if footer is None or footer.group("url") is None:
        summary = _SUMMARY_PATTERN.match(card.description or "")
        if summary is None:
            raise RequestNotFoundError()

    if footer is not None:
        channel_id = footer.group("channel")
        message_id = footer.group("message")
        size_bytes = int(footer.group("size"))
        content_type = footer.group("content_type")
    else:
        channel_id = message_id = content_type = ""
        size_bytes = parse_file_size(summary.group("size"))

    if summary is None:
        original_name = unquote(footer.group("name"))
        url = unquote(footer.group("url"))
    else:
        original_name = summary.group("name")
        url = summary.group("url")

    location = card.field_value(LOCATION_FIELD) or ""
    description = card.field_value(DESCRIPTION_FIELD) or ""
    source = SourceReference(
        channel_id=channel_id,
        message_id=message_id,
        url=url,
        size_bytes=size_bytes,
        content_type=content_type,
        original_file_name=original_name,
    )
    return UploadRequest(
        requester_id=requester_id,
        source=source,
        file_name=file_name,
        destination=() if location == ROOT_SENTINEL else split_path(location),
        description="" if description == NO_DESCRIPTION_SENTINEL else description,
        state=LifecycleState.COLLECTING_DESTINATION,
    )


def encode_submitted_card(request: UploadRequest) -> Card:
    """提交后的回执：无交互组件，防止重复提交。"""
    return Card(
        title=SUBMITTED_TITLE,
        description=_summary_line(request.source),
        fields=[
            CardField(name="📂 Upload Location", value=request.destination_text or ROOT_SENTINEL, inline=True),
            CardField(name=FILE_NAME_FIELD, value=request.file_name, inline=True),
            CardField(name="🆔 Request ID", value=request.key or "", inline=True),
            CardField(name=DESCRIPTION_FIELD, value=request.description or NO_DESCRIPTION_SENTINEL),
            CardField(name="⏳ Status", value="Sent to officers for approval. You'll be notified when processed."),
        ],
        footer=_source_footer(request.source),
        color=COLOR_PENDING,
    )


def encode_cancelled_card(description: str) -> Card:
    return Card(title=CANCELLED_TITLE, description=description, color=COLOR_DANGER)


# ----------------------------
# 审核卡
# ----------------------------
def review_record_from_request(request: UploadRequest) -> ReviewRecord:
    return ReviewRecord(
        requester_id=request.requester_id,
        file_name=request.file_name,
        size_text=format_file_size(request.source.size_bytes),
        destination=request.destination,
        attachment_url=request.source.url,
        description=request.description,
        request_key=request.key or "",
    )


def _review_fields(record: ReviewRecord) -> list[CardField]:
    fields = [
        CardField(name=REQUESTED_BY_FIELD, value=mention(record.requester_id), inline=True),
        CardField(name=REVIEW_FILE_NAME_FIELD, value=record.file_name, inline=True),
        CardField(name=FILE_SIZE_FIELD, value=record.size_text, inline=True),
        CardField(name=UPLOAD_PATH_FIELD, value=record.destination_text or REVIEW_ROOT_SENTINEL, inline=True),
        CardField(name=ORIGINAL_FILE_FIELD, value=record.attachment_url, inline=True),
        CardField(name=DESCRIPTION_FIELD, value=record.description or REVIEW_NO_DESCRIPTION_SENTINEL),
    ]
    if record.last_edited_by:
        fields.append(CardField(name=LAST_EDITED_FIELD, value=mention(record.last_edited_by), inline=True))
    return fields


def _review_buttons(key: str) -> list[Button]:
    return [
        Button(
            custom_id=component_id(TransitionTag.APPROVE, key),
            label="Approve",
            style=ButtonStyle.SUCCESS,
            emoji="✅",
        ),
        Button(
            custom_id=component_id(TransitionTag.DENY, key),
            label="Deny",
            style=ButtonStyle.DANGER,
            emoji="❌",
        ),
        Button(custom_id=component_id(TransitionTag.OFFICER_EDIT, key), label="Edit Details", emoji="✏️"),
    ]


def encode_review_card(record: ReviewRecord, requester_name: str) -> Card:
    return Card(
        title=REVIEW_TITLE,
        description=f"**{requester_name}** wants to upload a file to the drive",
        fields=_review_fields(record),
        footer=f"Request ID: {record.request_key}",
        color=COLOR_PENDING,
        buttons=_review_buttons(record.request_key),
    )


def decode_review_card(card: Optional[Card]) -> ReviewRecord:
    """从审核卡（含已终结的回执）还原审核记录。"""
    if card_kind_of(card) != CardKind.REVIEW:
        raise RequestNotFoundError()

    requester = _MENTION_PATTERN.search(card.field_value(REQUESTED_BY_FIELD) or "")
    file_name = card.field_value(REVIEW_FILE_NAME_FIELD)
    attachment_url = card.field_value(ORIGINAL_FILE_FIELD)
    footer = _REQUEST_ID_FOOTER_PATTERN.match(card.footer or "")
    if requester is None or not file_name or not attachment_url or footer is None:
        raise RequestNotFoundError()

    upload_path = card.field_value(UPLOAD_PATH_FIELD) or ""
    description = card.field_value(DESCRIPTION_FIELD) or ""
    editor = _MENTION_PATTERN.search(card.field_value(LAST_EDITED_FIELD) or "")
    return ReviewRecord(
        requester_id=requester.group("id"),
        file_name=file_name,
        size_text=card.field_value(FILE_SIZE_FIELD) or "",
        destination=() if upload_path == REVIEW_ROOT_SENTINEL else split_path(upload_path),
        attachment_url=attachment_url,
        description="" if description == REVIEW_NO_DESCRIPTION_SENTINEL else description,
        request_key=footer.group("key"),
        state=lifecycle_state_of(card),
        last_edited_by=editor.group("id") if editor else None,
    )


def apply_review_edit(card: Card, record: ReviewRecord) -> Card:
    """审核人编辑后原地重写字段，保留标题、页脚与按钮。"""
    return card.model_copy(update={"fields": _review_fields(record)})


def encode_review_processing(card: Card, reviewer_id: str) -> Card:
    """传输开始前的占用回执：移除交互组件，之后的审核动作都会被标题守卫拒绝。"""
    fields = list(card.fields) + [CardField(name=PROCESSING_BY_FIELD, value=mention(reviewer_id), inline=True)]
    return card.model_copy(update={"title": PROCESSING_TITLE, "fields": fields, "select_menus": [], "buttons": []})


def encode_review_outcome(card: Card, state: LifecycleState, reviewer_id: str, error: Optional[str] = None) -> Card:
    """把审核卡改写为终态回执（批准/拒绝/失败），移除全部交互组件。"""
    title, color, field_name = _OUTCOMES[state]
    value = error if state == LifecycleState.FAILED else mention(reviewer_id)
    fields = list(card.fields) + [
        CardField(name=field_name, value=value or "Unknown error", inline=state != LifecycleState.FAILED)
    ]
    return card.model_copy(update={"title": title, "color": color, "fields": fields, "select_menus": [], "buttons": []})


# ----------------------------
# 请求人通知
# ----------------------------
def encode_approved_notice(record: ReviewRecord, reviewer_name: str, view_url: str) -> Card:
    return Card(
        title="✅ Upload Approved!",
        description=f"Your file **{record.file_name}** has been uploaded to the drive",
        fields=[
            CardField(name="📁 File Name", value=record.file_name, inline=True),
            CardField(name="📂 Location", value=record.destination_text or REVIEW_ROOT_SENTINEL, inline=True),
            CardField(name=APPROVED_BY_FIELD, value=reviewer_name, inline=True),
            CardField(name="🔗 View File", value=f"[Open in Drive]({view_url})"),
        ],
        color=COLOR_SUCCESS,
    )


def encode_denied_notice(record: ReviewRecord, reviewer_name: str) -> Card:
    return Card(
        title="❌ Upload Request Denied",
        description=f"Your upload request for **{record.file_name}** has been denied.",
        fields=[CardField(name=DENIED_BY_FIELD, value=reviewer_name, inline=True)],
        color=COLOR_DANGER,
    )


def encode_notice(message: str) -> Card:
    """纯文本提示（例如反应触发被拒的原因），以无组件卡片发送。"""
    return Card(title=message, color=COLOR_DANGER)


# ----------------------------
# 多附件选择卡
# ----------------------------
def encode_picker_card(channel_id: str, message_id: str, attachments: list[Attachment]) -> Card:
    total = len(attachments)
    description = (
        f"This message contains **{total}** files. Select which ones you'd like to upload to the drive.\n\n"
        "*You can select multiple attachments and each will go through the upload process individually.*"
    )
    if total > SELECT_MENU_LIMIT:
        description += f"\n\n⚠️ **Note:** Only the first {SELECT_MENU_LIMIT} attachments are shown."

    shown = attachments[:SELECT_MENU_LIMIT]
    options = []
    for index, attachment in enumerate(shown):
        name = file_name_from_url(attachment.url)
        options.append(
            SelectOption(
                label=name if len(name) <= 100 else name[:97] + "...",
                value=f"attachment_{index}",
                description=f"{format_file_size(attachment.size_bytes)} • Click to select for upload",
                emoji="🖼️",
            )
        )
    source_key = f"{channel_id}/{message_id}"
    return Card(
        title=PICKER_TITLE,
        description=description,
        footer=f"{message_id}|{channel_id}",
        color=COLOR_INFO,
        select_menus=[
            SelectMenu(
                custom_id=component_id(TransitionTag.SELECT_ATTACHMENTS, source_key),
                placeholder="📂 Choose attachments to upload...",
                options=options,
                min_values=1,
                max_values=max(1, len(shown)),
            )
        ],
        buttons=[
            Button(
                custom_id=component_id(TransitionTag.CANCEL_ATTACHMENTS, source_key),
                label="Cancel",
                style=ButtonStyle.DANGER,
                emoji="❌",
            )
        ],
    )


def decode_picker_card(card: Optional[Card]) -> tuple[str, str]:
    """返回源消息的 ``(channel_id, message_id)``。"""
    if card is None or card.title != PICKER_TITLE:
        raise RequestNotFoundError()
    footer = _PICKER_FOOTER_PATTERN.match(card.footer or "")
    if footer is None:
        raise RequestNotFoundError("Source message information not found.")
    return footer.group("channel"), footer.group("message")


def parse_picker_selection(values: Iterable[str]) -> list[int]:
    indices = []
    for value in values:
        raw = value.replace("attachment_", "", 1)
        if raw.isdigit():
            indices.append(int(raw))
    return indices


def encode_picker_processed(count: int) -> Card:
    return Card(
        title=PICKER_PROCESSED_TITLE,
        description=(
            f"Successfully processed **{count}** attachment(s). "
            "Each will go through the individual upload workflow."
        ),
        color=COLOR_PROCESSED,
    )

