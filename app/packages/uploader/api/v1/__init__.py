"""API v1 汇总路由：所有接口都要求桥接令牌。"""

from fastapi import APIRouter, Depends

from app.packages.uploader.api.v1.endpoints import admin, events
from app.packages.uploader.core.dependencies import verify_bridge_token

api_router = APIRouter(dependencies=[Depends(verify_bridge_token)])
api_router.include_router(events.router)
api_router.include_router(admin.router)
