"""枚举定义：约束上传请求生命周期与交互动作的可选值。"""

from enum import Enum


class LifecycleState(str, Enum):
    """上传请求的生命周期状态。"""

    COLLECTING_DESTINATION = "collecting-destination"
    AWAITING_CONFIRMATION = "awaiting-confirmation"
    PENDING_REVIEW = "pending-review"
    # 已批准、传输进行中
    TRANSFERRING = "transferring"
    APPROVED = "approved"
    DENIED = "denied"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in {
            LifecycleState.APPROVED,
            LifecycleState.DENIED,
            LifecycleState.FAILED,
            LifecycleState.CANCELLED,
        }


class CardKind(str, Enum):
    """卡片种类：请求人私信中的状态卡、审核频道中的审核卡、多附件选择卡。"""

    STATE = "state"
    REVIEW = "review"
    ATTACHMENT_PICKER = "attachment_picker"


class TransitionTag(str, Enum):
    """交互组件 ID 的动作前缀，组件 ID 形如 ``<tag>:<request key>``。"""

    NAVIGATE_INTO = "navigate_into"
    NAVIGATE_BACK = "navigate_back"
    EDIT_DETAILS = "edit_details"
    SUBMIT_DETAILS = "submit_details"
    CONFIRM = "confirm"
    CANCEL = "cancel"
    APPROVE = "approve"
    DENY = "deny"
    OFFICER_EDIT = "officer_edit"
    SUBMIT_OFFICER_EDIT = "submit_officer_edit"
    SELECT_ATTACHMENTS = "select_attachments"
    CANCEL_ATTACHMENTS = "cancel_attachments"


class ButtonStyle(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"
    SUCCESS = "success"
    DANGER = "danger"


class DriveBackendType(str, Enum):
    MEMORY = "MEMORY"
    LOCAL = "LOCAL"
