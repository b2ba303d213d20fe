"""上传工作流：从表情触发到审核结束的完整流转。"""

import pytest

from app.packages.uploader.core.enums import LifecycleState
from app.packages.uploader.core.exceptions import ChatDeliveryError
from app.packages.uploader.services import card_codec
from app.packages.uploader.services.cards import MessageHandle
from app.packages.uploader.services.chat_adapters import Attachment, InMemoryChatAdapter
from app.packages.uploader.services.config_service import (
    DEFAULT_REVIEW_CHANNEL,
    UPLOAD_CHANNELS,
    config_service,
)
from app.packages.uploader.services.workflow_service import InteractionEvent, ReactionEvent, UploadWorkflow

MARKER = "⬆️"


def _react(actor, message_id: str = "src-1", channel_id: str = "upload-chan", marker: str = MARKER) -> ReactionEvent:
    return ReactionEvent(actor=actor, marker=marker, channel_id=channel_id, message_id=message_id)


def _state_card(chat: InMemoryChatAdapter, actor_id: str) -> tuple[MessageHandle, object]:
    cards = [
        (handle, card)
        for handle, card in chat.direct_messages(actor_id)
        if card_codec.card_kind_of(card) is not None and card.title != card_codec.PICKER_TITLE
    ]
    assert cards, "state card not found"
    return cards[-1]


def _review_card(chat: InMemoryChatAdapter, channel_id: str = "review-chan"):
    cards = chat.messages_in(channel_id)
    assert len(cards) == 1
    return cards[0]


async def _click(workflow: UploadWorkflow, actor, handle: MessageHandle, tag: str, key: str, **kwargs):
    event = InteractionEvent(actor=actor, custom_id=f"{tag}:{key}", message=handle, **kwargs)
    return await workflow.handle_interaction(event)


async def _submitted_request(workflow, chat, cache, author, make_source, folder: str = "Art"):
    """发起请求、进入 ``folder`` 并提交审核，返回 (状态卡句柄, 审核卡句柄)。"""
    await cache.rebuild()
    make_source(author.id)
    assert await workflow.handle_reaction(_react(author)) == "started"

    handle, _ = _state_card(chat, author.id)
    await _click(workflow, author, handle, "navigate_into", handle.key, values=[folder])
    result = await _click(workflow, author, handle, "confirm", handle.key)
    assert result.reply.startswith("✅ Upload request submitted")
    assert result.ephemeral is False

    review_handle, _ = _review_card(chat)
    return handle, review_handle


@pytest.mark.asyncio
async def test_reaction_sends_state_card_with_controls(workflow, chat, cache, author, make_source):
    await cache.rebuild()
    make_source(author.id)

    assert await workflow.handle_reaction(_react(author)) == "started"

    handle, card = _state_card(chat, author.id)
    assert card.title == card_codec.STATE_TITLE
    assert card.field_value(card_codec.LOCATION_FIELD) == "*(Root)*"
    assert card.field_value(card_codec.FILE_NAME_FIELD) == "sunset.png"
    assert card.field_value(card_codec.DESCRIPTION_FIELD) == "*(none)*"
    assert "(2.29 MB)" in card.description
    assert card.select_menus[0].custom_id == f"navigate_into:{handle.key}"
    assert [option.value for option in card.select_menus[0].options] == ["Art", "Docs"]
    # 先发送无组件卡片，再补上以句柄为键的组件
    assert [name for name, _ in chat.calls] == ["send_direct_message", "edit_message"]


@pytest.mark.asyncio
async def test_reaction_ignored_for_bots_and_other_markers(workflow, chat, author, make_source):
    make_source(author.id)

    bot_event = _react(author)
    bot_event.is_bot = True
    assert await workflow.handle_reaction(bot_event) == "ignored"
    assert await workflow.handle_reaction(_react(author, marker="👍")) == "ignored"
    assert chat.calls == []


@pytest.mark.asyncio
async def test_unpermitted_actor_gets_silence(workflow, chat, author, stranger, make_source):
    make_source(author.id)

    assert await workflow.handle_reaction(_react(stranger)) == "ignored"
    assert chat.calls == []

    # 非上传频道中同样保持静默，不泄露频道配置
    make_source(author.id, message_id="src-2", channel_id="general")
    assert await workflow.handle_reaction(_react(stranger, message_id="src-2", channel_id="general")) == "ignored"
    assert chat.calls == []


@pytest.mark.asyncio
async def test_officer_may_initiate_for_someone_else(workflow, chat, cache, author, officer, make_source):
    await cache.rebuild()
    make_source(author.id)

    assert await workflow.handle_reaction(_react(officer)) == "started"
    assert chat.direct_messages(officer.id)
    assert chat.direct_messages(author.id) == []


@pytest.mark.asyncio
async def test_reaction_rejections_are_reported_by_dm(workflow, chat, author, make_source):
    make_source(author.id, message_id="src-2", channel_id="general")
    assert await workflow.handle_reaction(_react(author, message_id="src-2", channel_id="general")) == "rejected"

    make_source(author.id, message_id="src-3", attachments=[])
    assert await workflow.handle_reaction(_react(author, message_id="src-3")) == "rejected"

    make_source(
        author.id,
        message_id="src-4",
        attachments=[Attachment(url="https://cdn.example.com/files/doc.pdf", size_bytes=10, content_type="application/pdf")],
    )
    assert await workflow.handle_reaction(_react(author, message_id="src-4")) == "rejected"

    titles = [card.title for _, card in chat.direct_messages(author.id)]
    assert titles == [
        "❌ Upload requests are only allowed in designated upload channels.",
        "❌ You can only upload messages that contain image attachments.",
        "❌ No image attachments found in that message.",
    ]


@pytest.mark.asyncio
async def test_navigation_re_renders_state_card(workflow, chat, cache, author, make_source):
    await cache.rebuild()
    make_source(author.id)
    await workflow.handle_reaction(_react(author))
    handle, _ = _state_card(chat, author.id)

    await _click(workflow, author, handle, "navigate_into", handle.key, values=["Art"])
    card = chat.messages[handle.key]
    assert card.field_value(card_codec.LOCATION_FIELD) == "Art"
    assert [option.value for option in card.select_menus[0].options] == ["Landscapes", "Portraits"]
    assert card.buttons[0].custom_id == f"navigate_back:{handle.key}"

    await _click(workflow, author, handle, "navigate_into", handle.key, values=["Portraits"])
    card = chat.messages[handle.key]
    assert card.field_value(card_codec.LOCATION_FIELD) == "Art/Portraits"
    assert card.select_menus == []
    assert card.field_value("📁 End of Path") is not None

    await _click(workflow, author, handle, "navigate_back", handle.key)
    assert chat.messages[handle.key].field_value(card_codec.LOCATION_FIELD) == "Art"

    await _click(workflow, author, handle, "navigate_back", handle.key)
    result = await _click(workflow, author, handle, "navigate_back", handle.key)
    assert result.reply == "❌ Already at the root folder."


@pytest.mark.asyncio
async def test_edit_details_modal_round_trip(workflow, chat, cache, author, make_source):
    await cache.rebuild()
    make_source(author.id)
    await workflow.handle_reaction(_react(author))
    handle, _ = _state_card(chat, author.id)

    result = await _click(workflow, author, handle, "edit_details", handle.key)
    assert result.modal is not None
    assert result.modal.custom_id == f"submit_details:{handle.key}"
    assert result.modal.inputs[0].value == "sunset.png"

    await _click(
        workflow,
        author,
        handle,
        "submit_details",
        handle.key,
        fields={"filename": "  evening.png ", "description": "Golden hour"},
    )
    card = chat.messages[handle.key]
    assert card.field_value(card_codec.FILE_NAME_FIELD) == "evening.png"
    assert card.field_value(card_codec.DESCRIPTION_FIELD) == "Golden hour"

    result = await _click(workflow, author, handle, "submit_details", handle.key, fields={"filename": "   "})
    assert result.reply == "❌ File name is required."
    assert chat.messages[handle.key].field_value(card_codec.FILE_NAME_FIELD) == "evening.png"


@pytest.mark.asyncio
async def test_cancel_is_terminal(workflow, chat, cache, author, make_source):
    await cache.rebuild()
    make_source(author.id)
    await workflow.handle_reaction(_react(author))
    handle, _ = _state_card(chat, author.id)

    await _click(workflow, author, handle, "cancel", handle.key)
    card = chat.messages[handle.key]
    assert card.title == card_codec.CANCELLED_TITLE
    assert not card.has_controls

    result = await _click(workflow, author, handle, "confirm", handle.key)
    assert result.reply == "❌ This request has already been processed."
    assert chat.messages_in("review-chan") == []


@pytest.mark.asyncio
async def test_confirm_without_review_channel_is_refused(workflow, chat, cache, author, make_source):
    config_service.set(DEFAULT_REVIEW_CHANNEL, "")
    await cache.rebuild()
    make_source(author.id)
    await workflow.handle_reaction(_react(author))
    handle, before = _state_card(chat, author.id)

    result = await _click(workflow, author, handle, "confirm", handle.key)

    assert result.reply == "❌ Approval channel not configured. Please contact an administrator."
    assert result.ephemeral is True
    assert chat.messages[handle.key] == before


@pytest.mark.asyncio
async def test_confirm_uses_review_mapping(workflow, chat, cache, author, make_source):
    config_service.set_review_mapping("upload-chan", "art-review")
    await cache.rebuild()
    make_source(author.id)
    await workflow.handle_reaction(_react(author))
    handle, _ = _state_card(chat, author.id)

    await _click(workflow, author, handle, "confirm", handle.key)

    assert len(chat.messages_in("art-review")) == 1
    assert chat.messages_in("review-chan") == []


@pytest.mark.asyncio
async def test_end_to_end_approval(workflow, chat, cache, backend, author, officer, make_source):
    handle, review_handle = await _submitted_request(workflow, chat, cache, author, make_source)

    submitted = chat.messages[handle.key]
    assert submitted.title == card_codec.SUBMITTED_TITLE
    assert not submitted.has_controls

    review = chat.messages[review_handle.key]
    assert review.field_value(card_codec.UPLOAD_PATH_FIELD) == "Art"
    assert review.footer == f"Request ID: {handle.key}"

    result = await _click(workflow, officer, review_handle, "approve", handle.key)
    assert result.reply == "✅ Upload approved and completed successfully!"

    assert len(backend.uploads) == 1
    upload = backend.uploads[0]
    assert upload.parent_id == "art"
    assert upload.file.name == "sunset.png"
    assert upload.mime_type == "image/png"
    assert upload.metadata["uploader"] == author.id
    assert upload.metadata["approver"] == officer.id

    approved = chat.messages[review_handle.key]
    assert approved.title == card_codec.APPROVED_TITLE
    assert approved.field_value(card_codec.APPROVED_BY_FIELD) == f"<@{officer.id}>"
    assert not approved.has_controls

    assert handle.key not in chat.messages
    notices = [card for _, card in chat.direct_messages(author.id)]
    assert notices[-1].title == "✅ Upload Approved!"
    assert f"({upload.file.view_url})" in notices[-1].field_value("🔗 View File")


@pytest.mark.asyncio
async def test_second_decision_is_already_processed(workflow, chat, cache, backend, author, officer, make_source):
    handle, review_handle = await _submitted_request(workflow, chat, cache, author, make_source)

    await _click(workflow, officer, review_handle, "approve", handle.key)
    notices_before = len(chat.direct_messages(author.id))

    for tag in ("deny", "approve", "officer_edit"):
        result = await _click(workflow, officer, review_handle, tag, handle.key)
        assert result.reply == "❌ This request has already been processed."

    assert len(backend.uploads) == 1
    assert len(chat.direct_messages(author.id)) == notices_before


@pytest.mark.asyncio
async def test_denial(workflow, chat, cache, backend, author, officer, make_source):
    handle, review_handle = await _submitted_request(workflow, chat, cache, author, make_source)

    result = await _click(workflow, officer, review_handle, "deny", handle.key)
    assert result.reply == "❌ Upload request denied."

    denied = chat.messages[review_handle.key]
    assert denied.title == card_codec.DENIED_TITLE
    assert denied.field_value(card_codec.DENIED_BY_FIELD) == f"<@{officer.id}>"
    assert handle.key not in chat.messages
    assert backend.uploads == []

    notice = chat.direct_messages(author.id)[-1][1]
    assert notice.title == "❌ Upload Request Denied"
    assert notice.field_value(card_codec.DENIED_BY_FIELD) == officer.name


@pytest.mark.asyncio
async def test_failed_transfer_marks_review_card_only(workflow, chat, cache, backend, author, officer, make_source):
    await cache.rebuild()
    make_source(
        author.id,
        attachments=[
            Attachment(url="https://cdn.example.com/missing/art.png", size_bytes=2400000, content_type="image/png")
        ],
    )
    await workflow.handle_reaction(_react(author))
    handle, _ = _state_card(chat, author.id)
    await _click(workflow, author, handle, "confirm", handle.key)
    review_handle, _ = _review_card(chat)
    dm_count = len(chat.direct_messages(author.id))

    result = await _click(workflow, officer, review_handle, "approve", handle.key)

    assert result.reply == "❌ Error during upload: Failed to download file: HTTP 404"
    failed = chat.messages[review_handle.key]
    assert failed.title == card_codec.FAILED_TITLE
    assert failed.field_value(card_codec.ERROR_FIELD) == "Failed to download file: HTTP 404"
    assert backend.uploads == []
    # 失败时不删除请求人的卡片，也不通知请求人
    assert handle.key in chat.messages
    assert len(chat.direct_messages(author.id)) == dm_count


@pytest.mark.asyncio
async def test_officer_edit_then_approve_creates_missing_folders(
    workflow, chat, cache, backend, author, officer, make_source
):
    handle, review_handle = await _submitted_request(workflow, chat, cache, author, make_source)

    modal = (await _click(workflow, officer, review_handle, "officer_edit", handle.key)).modal
    assert modal.custom_id == f"submit_officer_edit:{handle.key}"
    assert [item.value for item in modal.inputs] == ["sunset.png", "Art", ""]

    result = await _click(
        workflow,
        officer,
        review_handle,
        "submit_officer_edit",
        handle.key,
        fields={"filename": "final.png", "path": "Art/Sketches", "description": "Edited"},
    )
    assert result.reply == "✅ Upload details updated successfully!"
    edited = chat.messages[review_handle.key]
    assert edited.field_value(card_codec.LAST_EDITED_FIELD) == f"<@{officer.id}>"
    assert edited.has_controls

    await _click(workflow, officer, review_handle, "approve", handle.key)

    assert [node.name for node in backend.created_folders] == ["Sketches"]
    assert backend.uploads[0].parent_id == backend.created_folders[0].id
    assert backend.uploads[0].file.name == "final.png"
    assert backend.uploads[0].metadata["description"] == "Edited"


@pytest.mark.asyncio
async def test_approval_survives_failed_state_card_deletion(
    workflow, chat, cache, backend, author, officer, make_source
):
    handle, review_handle = await _submitted_request(workflow, chat, cache, author, make_source)
    chat.fail_deletes = True

    result = await _click(workflow, officer, review_handle, "approve", handle.key)

    assert result.reply == "✅ Upload approved and completed successfully!"
    assert chat.messages[review_handle.key].title == card_codec.APPROVED_TITLE
    assert len(backend.uploads) == 1


async def _started_request(workflow, chat, cache, author, make_source) -> MessageHandle:
    await cache.rebuild()
    make_source(author.id)
    await workflow.handle_reaction(_react(author))
    handle, _ = _state_card(chat, author.id)
    return handle


def _reject_edits_titled(monkeypatch, chat: InMemoryChatAdapter, title: str) -> None:
    original_edit = chat.edit_message

    async def edit_message(handle, card):
        if card.title == title:
            raise ChatDeliveryError("Bridge rejected edit_message: HTTP 502")
        await original_edit(handle, card)

    monkeypatch.setattr(chat, "edit_message", edit_message)


@pytest.mark.asyncio
async def test_confirm_does_not_post_review_when_state_card_rewrite_fails(
    workflow, chat, cache, author, make_source, monkeypatch
):
    handle = await _started_request(workflow, chat, cache, author, make_source)
    _reject_edits_titled(monkeypatch, chat, card_codec.SUBMITTED_TITLE)

    result = await _click(workflow, author, handle, "confirm", handle.key)

    assert result.reply == "❌ Bridge rejected edit_message: HTTP 502"
    assert chat.messages_in("review-chan") == []
    assert chat.messages[handle.key].title == card_codec.STATE_TITLE
    assert chat.messages[handle.key].has_controls

    monkeypatch.undo()
    result = await _click(workflow, author, handle, "confirm", handle.key)
    assert result.reply.startswith("✅ Upload request submitted")
    assert len(chat.messages_in("review-chan")) == 1


@pytest.mark.asyncio
async def test_confirm_restores_state_card_when_review_post_fails(
    workflow, chat, cache, author, make_source, monkeypatch
):
    handle = await _started_request(workflow, chat, cache, author, make_source)

    async def post_to_channel(channel_id, card):
        raise ChatDeliveryError("Bridge rejected post_to_channel: HTTP 502")

    monkeypatch.setattr(chat, "post_to_channel", post_to_channel)

    result = await _click(workflow, author, handle, "confirm", handle.key)

    assert result.reply == "❌ Bridge rejected post_to_channel: HTTP 502"
    restored = chat.messages[handle.key]
    assert restored.title == card_codec.STATE_TITLE
    assert restored.has_controls


@pytest.mark.asyncio
async def test_failed_approval_receipt_never_transfers_twice(
    workflow, chat, cache, backend, author, officer, make_source, monkeypatch
):
    handle, review_handle = await _submitted_request(workflow, chat, cache, author, make_source)
    _reject_edits_titled(monkeypatch, chat, card_codec.APPROVED_TITLE)

    result = await _click(workflow, officer, review_handle, "approve", handle.key)

    assert result.reply == "✅ Upload approved and completed successfully!"
    assert len(backend.uploads) == 1
    review = chat.messages[review_handle.key]
    assert review.title == card_codec.PROCESSING_TITLE
    assert not review.has_controls
    assert chat.direct_messages(author.id)[-1][1].title == "✅ Upload Approved!"
    assert handle.key not in chat.messages

    again = await _click(workflow, officer, review_handle, "approve", handle.key)
    assert again.reply == "❌ This request has already been processed."
    assert len(backend.uploads) == 1


@pytest.mark.asyncio
async def test_approval_is_not_attempted_when_review_card_cannot_be_claimed(
    workflow, chat, cache, backend, author, officer, make_source, monkeypatch
):
    handle, review_handle = await _submitted_request(workflow, chat, cache, author, make_source)
    _reject_edits_titled(monkeypatch, chat, card_codec.PROCESSING_TITLE)

    result = await _click(workflow, officer, review_handle, "approve", handle.key)

    assert result.reply == "❌ Bridge rejected edit_message: HTTP 502"
    assert backend.uploads == []
    assert chat.messages[review_handle.key].title == card_codec.REVIEW_TITLE
    assert handle.key in chat.messages

    monkeypatch.undo()
    result = await _click(workflow, officer, review_handle, "approve", handle.key)
    assert result.reply == "✅ Upload approved and completed successfully!"
    assert len(backend.uploads) == 1


@pytest.mark.asyncio
async def test_component_key_must_point_at_the_card(workflow, chat, cache, backend, author, officer, make_source):
    handle, review_handle = await _submitted_request(workflow, chat, cache, author, make_source)

    result = await _click(workflow, officer, review_handle, "approve", "dm-u-author/m999")

    assert result.reply == "❌ Upload request expired or not found."
    assert backend.uploads == []
    assert chat.messages[review_handle.key].title == card_codec.REVIEW_TITLE

    make_source(author.id, message_id="src-2")
    await workflow.handle_reaction(_react(author, message_id="src-2"))
    fresh, _ = _state_card(chat, author.id)
    result = await _click(workflow, author, fresh, "navigate_into", handle.key, values=["Art"])
    assert result.reply == "❌ Upload request expired or not found."
    assert chat.messages[fresh.key].field_value(card_codec.LOCATION_FIELD) == card_codec.ROOT_SENTINEL


@pytest.mark.asyncio
async def test_navigate_into_rejects_names_that_cannot_form_a_path(workflow, chat, cache, author, make_source):
    handle = await _started_request(workflow, chat, cache, author, make_source)

    for name in ("2023/2024", " Art"):
        result = await _click(workflow, author, handle, "navigate_into", handle.key, values=[name])
        assert result.reply == f'❌ Folder name "{name}" cannot be used in an upload path.'

    assert chat.messages[handle.key].field_value(card_codec.LOCATION_FIELD) == card_codec.ROOT_SENTINEL


@pytest.mark.asyncio
async def test_interaction_on_unknown_card_reports_expired(workflow, author):
    handle = MessageHandle(channel_id="dm-u-author", message_id="gone")
    result = await _click(workflow, author, handle, "confirm", handle.key)
    assert result.reply == "❌ Upload request expired or not found."

    result = await workflow.handle_interaction(InteractionEvent(actor=author, custom_id="bogus:1/2", message=handle))
    assert result.reply == "❌ Unknown interaction: bogus:1/2"


@pytest.mark.asyncio
async def test_multiple_attachments_use_picker(workflow, chat, cache, author, make_source):
    await cache.rebuild()
    attachments = [
        Attachment(url=f"https://cdn.example.com/files/img{i}.png", size_bytes=1024 * (i + 1), content_type="image/png")
        for i in range(3)
    ] + [Attachment(url="https://cdn.example.com/files/readme.txt", size_bytes=5, content_type="text/plain")]
    make_source(author.id, attachments=attachments)

    assert await workflow.handle_reaction(_react(author)) == "picker"
    picker_handle, picker = chat.direct_messages(author.id)[0]
    assert picker.title == card_codec.PICKER_TITLE
    assert len(picker.select_menus[0].options) == 3

    result = await _click(
        workflow,
        author,
        picker_handle,
        "select_attachments",
        "upload-chan/src-1",
        values=["attachment_0", "attachment_2", "attachment_2"],
    )
    assert result.reply.startswith("✅ Processing 2 attachment(s).")
    assert chat.messages[picker_handle.key].title == card_codec.PICKER_PROCESSED_TITLE

    state_cards = [card for _, card in chat.direct_messages(author.id) if card.title == card_codec.STATE_TITLE]
    assert [card.field_value(card_codec.FILE_NAME_FIELD) for card in state_cards] == ["img0.png", "img2.png"]

    again = await _click(
        workflow, author, picker_handle, "select_attachments", "upload-chan/src-1", values=["attachment_1"]
    )
    assert again.reply == "❌ This request has already been processed."


@pytest.mark.asyncio
async def test_picker_cancel(workflow, chat, author, make_source):
    attachments = [
        Attachment(url=f"https://cdn.example.com/files/img{i}.png", size_bytes=10, content_type="image/png")
        for i in range(2)
    ]
    make_source(author.id, attachments=attachments)
    await workflow.handle_reaction(_react(author))
    picker_handle, _ = chat.direct_messages(author.id)[0]

    await _click(workflow, author, picker_handle, "cancel_attachments", "upload-chan/src-1")

    card = chat.messages[picker_handle.key]
    assert card.title == card_codec.CANCELLED_TITLE
    assert card.description.startswith("Attachment selection cancelled.")


def test_upload_channel_list_is_configurable():
    assert config_service.get(UPLOAD_CHANNELS) == ["upload-chan"]
    assert config_service.is_upload_channel("upload-chan")
    assert not config_service.is_upload_channel("general")
    assert LifecycleState.CANCELLED.is_terminal
