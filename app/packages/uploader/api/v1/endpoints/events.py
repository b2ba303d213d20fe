"""桥接进程投递的聊天事件：表情反应与卡片交互。"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from app.packages.uploader.api.v1.schemas.events import (
    InteractionReply,
    InteractionResponse,
    ReactionOutcome,
    ReactionResponse,
)
from app.packages.uploader.core.dependencies import get_workflow
from app.packages.uploader.core.responses import create_response
from app.packages.uploader.services.workflow_service import InteractionEvent, ReactionEvent, UploadWorkflow

router = APIRouter(prefix="/events", tags=["events"])


@router.post("/reactions", response_model=ReactionResponse)
async def receive_reaction(
    event: ReactionEvent,
    workflow: UploadWorkflow = Depends(get_workflow),
) -> ReactionResponse:
    """处理源消息上的表情反应，可能发起上传请求或多附件选择。"""
    outcome = await workflow.handle_reaction(event)
    return create_response("OK", ReactionOutcome(outcome=outcome).model_dump())


@router.post("/interactions", response_model=InteractionResponse)
async def receive_interaction(
    event: InteractionEvent,
    workflow: UploadWorkflow = Depends(get_workflow),
) -> InteractionResponse:
    """处理按钮、下拉框与弹窗提交；业务错误以回复文本返回而不是 HTTP 错误。"""
    result = await workflow.handle_interaction(event)
    return create_response("OK", InteractionReply.from_result(result).model_dump())
