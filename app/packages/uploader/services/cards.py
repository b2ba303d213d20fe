"""聊天卡片的可渲染模型：卡片、字段、按钮、下拉框、弹窗表单与消息句柄。

这些模型就是与聊天桥接进程交换的线格式（JSON），桥接方负责把它们映射为
平台原生的消息与组件。组件 ID 统一为 ``<动作>:<请求键>``。
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from app.packages.uploader.core.enums import ButtonStyle, TransitionTag
from app.packages.uploader.core.exceptions import InvalidInputError

COMPONENT_ID_SEPARATOR = ":"


class MessageHandle(BaseModel):
    """消息句柄：频道 ID + 消息 ID；``key`` 即上传请求的持久标识。"""

    model_config = ConfigDict(frozen=True)

    channel_id: str
    message_id: str

    @property
    def key(self) -> str:
        return f"{self.channel_id}/{self.message_id}"

    @classmethod
    def parse(cls, key: str) -> "MessageHandle":
        channel_id, sep, message_id = (key or "").partition("/")
        if not sep or not channel_id or not message_id:
            raise InvalidInputError(f"Invalid message key: {key}")
        return cls(channel_id=channel_id, message_id=message_id)


class CardField(BaseModel):
    name: str
    value: str
    inline: bool = False


class Button(BaseModel):
    custom_id: str
    label: str
    style: ButtonStyle = ButtonStyle.SECONDARY
    emoji: Optional[str] = None


class SelectOption(BaseModel):
    label: str
    value: str
    description: Optional[str] = None
    emoji: Optional[str] = None


class SelectMenu(BaseModel):
    custom_id: str
    placeholder: str = ""
    options: list[SelectOption] = Field(default_factory=list)
    min_values: int = 1
    max_values: int = 1


class Card(BaseModel):
    """一条富文本消息：标题、描述、字段列表、页脚，以及可选的交互组件。"""

    title: str
    description: Optional[str] = None
    fields: list[CardField] = Field(default_factory=list)
    footer: Optional[str] = None
    color: Optional[int] = None
    select_menus: list[SelectMenu] = Field(default_factory=list)
    buttons: list[Button] = Field(default_factory=list)

    def field_value(self, name: str) -> Optional[str]:
        for item in self.fields:
            if item.name == name:
                return item.value
        return None

    @property
    def has_controls(self) -> bool:
        return bool(self.select_menus or self.buttons)


class TextInput(BaseModel):
    custom_id: str
    label: str
    value: str = ""
    placeholder: Optional[str] = None
    required: bool = False
    max_length: Optional[int] = None
    multiline: bool = False


class ModalForm(BaseModel):
    """弹窗表单：提交时以 ``custom_id`` 回传，输入值按 ``TextInput.custom_id`` 取。"""

    custom_id: str
    title: str
    inputs: list[TextInput] = Field(default_factory=list)


def component_id(tag: TransitionTag, key: str) -> str:
    return f"{tag.value}{COMPONENT_ID_SEPARATOR}{key}"


def parse_component_id(custom_id: str) -> tuple[TransitionTag, str]:
    """拆分组件 ID；未知动作前缀抛出 ``InvalidInputError``。"""
    raw_tag, _, key = (custom_id or "").partition(COMPONENT_ID_SEPARATOR)
    try:
        tag = TransitionTag(raw_tag)
    except ValueError as exc:
        raise InvalidInputError(f"Unknown interaction: {custom_id}") from exc
    return tag, key
