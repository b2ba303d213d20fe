"""卡片编解码与大小格式测试。"""

import pytest

from app.packages.uploader.core.enums import CardKind, LifecycleState, TransitionTag
from app.packages.uploader.core.exceptions import InvalidInputError, RequestNotFoundError
from app.packages.uploader.services import card_codec
from app.packages.uploader.services.cards import Card, MessageHandle, component_id, parse_component_id
from app.packages.uploader.services.chat_adapters import Attachment
from app.packages.uploader.services.upload_request import SourceReference, UploadRequest
from app.packages.uploader.utils.path_utils import extract_folder_id, file_name_from_url, split_path
from app.packages.uploader.utils.size_utils import format_file_size, parse_file_size


def _request(**overrides) -> UploadRequest:
    source = SourceReference(
        channel_id="upload-chan",
        message_id="src-1",
        url="https://cdn.example.com/files/sunset.png",
        size_bytes=2400000,
        content_type="image/png",
        original_file_name="sunset.png",
    )
    request = UploadRequest.create("u-author", source)
    request.card = MessageHandle(channel_id="dm-u-author", message_id="m1")
    for key, value in overrides.items():
        setattr(request, key, value)
    return request


@pytest.mark.parametrize(
    "size, text",
    [(0, "0 Bytes"), (500, "500 Bytes"), (1024, "1 KB"), (1536, "1.5 KB"), (2400000, "2.29 MB")],
)
def test_format_file_size(size: int, text: str):
    assert format_file_size(size) == text


def test_parse_file_size_is_approximate_inverse():
    assert parse_file_size("1.5 KB") == 1536
    assert parse_file_size("500 Bytes") == 500
    assert parse_file_size("garbage") == 0


def test_state_card_round_trip_preserves_request():
    request = _request(destination=("Art", "Landscapes"), description="Evening sky", file_name="sky.png")

    card = card_codec.encode_state_card(request, ["Mountains"])
    decoded = card_codec.decode_state_card(card, "u-author")

    assert decoded.source == request.source
    assert decoded.file_name == "sky.png"
    assert decoded.destination == ("Art", "Landscapes")
    assert decoded.description == "Evening sky"
    assert decoded.state == LifecycleState.COLLECTING_DESTINATION
    assert card.description == "**File:** [sunset.png](https://cdn.example.com/files/sunset.png) (2.29 MB)"


def test_state_card_root_and_empty_description_use_sentinels():
    card = card_codec.encode_state_card(_request(), [])

    assert card.field_value(card_codec.LOCATION_FIELD) == card_codec.ROOT_SENTINEL
    assert card.field_value(card_codec.DESCRIPTION_FIELD) == card_codec.NO_DESCRIPTION_SENTINEL
    assert card.field_value("⚠️ No Folders") is not None

    decoded = card_codec.decode_state_card(card, "u-author")
    assert decoded.destination == ()
    assert decoded.description == ""


def test_state_card_controls_depend_on_location_and_key():
    request = _request(destination=("Art",))
    card = card_codec.encode_state_card(request, ["Portraits", "Landscapes"])
    custom_ids = [button.custom_id for button in card.buttons]

    assert custom_ids[0] == component_id(TransitionTag.NAVIGATE_BACK, "dm-u-author/m1")
    assert component_id(TransitionTag.CONFIRM, "dm-u-author/m1") in custom_ids
    assert card.select_menus[0].custom_id == "navigate_into:dm-u-author/m1"
    assert [option.value for option in card.select_menus[0].options] == ["Portraits", "Landscapes"]

    unbound = _request()
    unbound.card = None
    assert not card_codec.encode_state_card(unbound, ["Art"]).has_controls


def test_state_card_without_footer_falls_back_to_size_text():
    card = card_codec.encode_state_card(_request(), [])
    card.footer = None

    decoded = card_codec.decode_state_card(card, "u-author")
    assert decoded.source.size_bytes == parse_file_size("2.29 MB")
    assert decoded.source.channel_id == ""


@pytest.mark.parametrize(
    "card",
    [
        None,
        Card(title="Something else"),
        Card(title=card_codec.STATE_TITLE, description="not a summary"),
    ],
)
def test_decode_state_card_rejects_foreign_cards(card):
    with pytest.raises(RequestNotFoundError):
        card_codec.decode_state_card(card, "u-author")


def test_review_card_round_trip_and_outcome():
    request = _request(destination=("Art",), description="")
    record = card_codec.review_record_from_request(request)
    card = card_codec.encode_review_card(record, "Author")

    assert card.footer == "Request ID: dm-u-author/m1"
    assert card.field_value(card_codec.UPLOAD_PATH_FIELD) == "Art"
    assert card.field_value(card_codec.DESCRIPTION_FIELD) == card_codec.REVIEW_NO_DESCRIPTION_SENTINEL

    decoded = card_codec.decode_review_card(card)
    assert decoded.requester_id == "u-author"
    assert decoded.request_key == "dm-u-author/m1"
    assert decoded.destination == ("Art",)
    assert decoded.size_text == "2.29 MB"
    assert decoded.state == LifecycleState.PENDING_REVIEW

    approved = card_codec.encode_review_outcome(card, LifecycleState.APPROVED, "u-officer")
    assert approved.title == card_codec.APPROVED_TITLE
    assert not approved.has_controls
    assert approved.field_value(card_codec.APPROVED_BY_FIELD) == "<@u-officer>"
    assert card_codec.decode_review_card(approved).state == LifecycleState.APPROVED


def test_review_edit_keeps_controls_and_records_editor():
    record = card_codec.review_record_from_request(_request())
    card = card_codec.encode_review_card(record, "Author")
    record.file_name = "renamed.png"
    record.destination = ("Docs", "Scans")
    record.last_edited_by = "u-officer"

    edited = card_codec.apply_review_edit(card, record)
    decoded = card_codec.decode_review_card(edited)

    assert edited.buttons == card.buttons
    assert decoded.file_name == "renamed.png"
    assert decoded.destination == ("Docs", "Scans")
    assert decoded.last_edited_by == "u-officer"


def test_picker_card_encodes_source_and_limits_options():
    attachments = [
        Attachment(url=f"https://cdn.example.com/files/img{i}.png", size_bytes=1024, content_type="image/png")
        for i in range(30)
    ]
    card = card_codec.encode_picker_card("upload-chan", "src-9", attachments)

    assert card.footer == "src-9|upload-chan"
    assert len(card.select_menus[0].options) == 25
    assert card.select_menus[0].max_values == 25
    assert "Only the first 25" in card.description
    assert card_codec.decode_picker_card(card) == ("upload-chan", "src-9")
    assert card_codec.card_kind_of(card) == CardKind.ATTACHMENT_PICKER
    assert card_codec.parse_picker_selection(["attachment_3", "attachment_x", "attachment_0"]) == [3, 0]


def test_component_ids_and_paths():
    assert parse_component_id("approve:dm-1/m2") == (TransitionTag.APPROVE, "dm-1/m2")
    with pytest.raises(InvalidInputError):
        parse_component_id("launch:dm-1/m2")
    with pytest.raises(InvalidInputError):
        MessageHandle.parse("no-separator")

    assert split_path(" /Art// Landscapes /") == ("Art", "Landscapes")
    assert file_name_from_url("https://cdn.example.com/a/my%20file.png?x=1") == "my file.png"
    assert extract_folder_id("https://drive.example.com/drive/folders/AbCdEf12345?usp=sharing") == "AbCdEf12345"
    assert extract_folder_id("https://drive.example.com/open?id=Xyz_987") == "Xyz_987"
    assert extract_folder_id("bad link") is None


def test_state_card_round_trip_with_markdown_characters_in_file_name():
    url = "https://cdn.example.com/files/a%5D%28b%20%281%29.png?ex=1|2"
    request = _request()
    request.source = SourceReference(
        channel_id="upload-chan",
        message_id="src-1",
        url=url,
        size_bytes=42,
        content_type="image/png",
        original_file_name=file_name_from_url(url),
    )
    assert request.source.original_file_name == "a](b (1).png"

    card = card_codec.encode_state_card(request, [])
    decoded = card_codec.decode_state_card(card, "u-author")

    assert decoded.source == request.source
    assert card_codec.review_record_from_request(decoded).attachment_url == url


def test_state_card_with_legacy_footer_reads_name_from_summary():
    card = card_codec.encode_state_card(_request(), [])
    card.footer = "Source: upload-chan/src-1 | 2400000 bytes | image/png"

    decoded = card_codec.decode_state_card(card, "u-author")
    assert decoded.source == _request().source


def test_request_key_of_each_card_kind():
    request = _request()
    handle = request.card
    state = card_codec.encode_state_card(request, [])
    review = card_codec.encode_review_card(card_codec.review_record_from_request(request), "Author")
    picker = card_codec.encode_picker_card(
        "upload-chan", "src-9", [Attachment(url="https://cdn.example.com/files/a.png", size_bytes=1)]
    )
    review_handle = MessageHandle(channel_id="review-chan", message_id="m7")

    assert card_codec.request_key_of(state, handle) == "dm-u-author/m1"
    assert card_codec.request_key_of(review, review_handle) == "dm-u-author/m1"
    assert card_codec.request_key_of(picker, handle) == "upload-chan/src-9"
    assert card_codec.request_key_of(Card(title="Something else"), handle) is None


def test_processing_receipt_blocks_review_controls():
    record = card_codec.review_record_from_request(_request())
    card = card_codec.encode_review_card(record, "Author")

    processing = card_codec.encode_review_processing(card, "u-officer")

    assert not processing.has_controls
    assert card_codec.card_kind_of(processing) == CardKind.REVIEW
    assert card_codec.lifecycle_state_of(processing) == LifecycleState.TRANSFERRING
    assert processing.field_value(card_codec.PROCESSING_BY_FIELD) == "<@u-officer>"
    assert card_codec.decode_review_card(processing).request_key == "dm-u-author/m1"
