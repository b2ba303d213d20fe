"""桥接事件的请求与响应模型。"""

from __future__ import annotations

from pydantic import BaseModel, Field

from app.packages.uploader.api.v1.schemas.common import ResponseEnvelope
from app.packages.uploader.services.workflow_service import InteractionResult


class ReactionOutcome(BaseModel):
    """反应事件的处理结果：ignored / rejected / started / picker / failed。"""

    outcome: str = Field(..., description="处理结果")


class InteractionReply(InteractionResult):
    """交互事件的回应，桥接进程据此回复用户或弹出表单。"""

    @classmethod
    def from_result(cls, result: InteractionResult) -> "InteractionReply":
        return cls(**result.model_dump())


ReactionResponse = ResponseEnvelope[ReactionOutcome]
InteractionResponse = ResponseEnvelope[InteractionReply]
