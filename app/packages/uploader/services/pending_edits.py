"""待提交编辑中转：打开“编辑详情”弹窗时暂存解码后的请求，弹窗提交时取出。

弹窗提交事件不一定带回原卡片内容，因此以卡片键为索引做短时中转；
未命中（过期或进程重启）时由调用方回退为重新解码卡片。
优先使用 Redis，不可用时回退到进程内存。键：pending_edit:{card key}
"""

from __future__ import annotations

import json
import threading
from dataclasses import asdict
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import redis

from app.packages.uploader.core.config import get_settings
from app.packages.uploader.core.enums import LifecycleState
from app.packages.uploader.core.logger import logger
from app.packages.uploader.services.cards import MessageHandle
from app.packages.uploader.services.upload_request import SourceReference, UploadRequest


def request_to_payload(request: UploadRequest) -> dict[str, Any]:
    return {
        "requester_id": request.requester_id,
        "source": asdict(request.source),
        "file_name": request.file_name,
        "destination": list(request.destination),
        "description": request.description,
        "state": request.state.value,
        "card": request.card.model_dump() if request.card else None,
    }


def request_from_payload(payload: dict[str, Any]) -> UploadRequest:
    card = payload.get("card")
    return UploadRequest(
        requester_id=payload["requester_id"],
        source=SourceReference(**payload["source"]),
        file_name=payload["file_name"],
        destination=tuple(payload.get("destination") or ()),
        description=payload.get("description") or "",
        state=LifecycleState(payload.get("state") or LifecycleState.COLLECTING_DESTINATION.value),
        card=MessageHandle(**card) if card else None,
    )


class PendingEditBackend:
    def set(self, key: str, raw: str, ttl_seconds: int) -> None:  # pragma: no cover - interface definition
        raise NotImplementedError

    def pop(self, key: str) -> Optional[str]:  # pragma: no cover
        raise NotImplementedError


class RedisPendingEditBackend(PendingEditBackend):
    def __init__(self, url: str) -> None:
        self._client = redis.Redis.from_url(url, decode_responses=True)
        self._client.ping()

    @staticmethod
    def _build_key(key: str) -> str:
        return f"pending_edit:{key}"

    def set(self, key: str, raw: str, ttl_seconds: int) -> None:
        self._client.set(self._build_key(key), raw, ex=ttl_seconds)

    def pop(self, key: str) -> Optional[str]:
        pipe = self._client.pipeline()
        pipe.get(self._build_key(key))
        pipe.delete(self._build_key(key))
        raw, _ = pipe.execute()
        return raw


class InMemoryPendingEditBackend(PendingEditBackend):
    """内存后端用于测试或缺少 Redis 时的回退实现。"""

    def __init__(self) -> None:
        self._store: dict[str, tuple[str, datetime]] = {}
        self._lock = threading.Lock()

    def set(self, key: str, raw: str, ttl_seconds: int) -> None:
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds)
        with self._lock:
            self._store[key] = (raw, expires_at)

    def pop(self, key: str) -> Optional[str]:
        with self._lock:
            record = self._store.pop(key, None)
        if record is None:
            return None
        raw, expires_at = record
        if expires_at < datetime.now(timezone.utc):
            return None
        return raw


class PendingEditStore:
    def __init__(self, backend: Optional[PendingEditBackend] = None, ttl_seconds: Optional[int] = None) -> None:
        self._backend = backend
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else get_settings().pending_edit_ttl_seconds

    def _get_backend(self) -> PendingEditBackend:
        if self._backend is not None:
            return self._backend

        settings = get_settings()
        if not settings.redis_enabled:
            self._backend = InMemoryPendingEditBackend()
            return self._backend
        try:
            self._backend = RedisPendingEditBackend(settings.redis_url)
            logger.info("Pending edit store initialized with Redis at %s", settings.redis_url)
        except Exception as exc:  # pragma: no cover - fallback path
            logger.warning("Redis unavailable (%s), falling back to in-memory pending edit store", exc)
            self._backend = InMemoryPendingEditBackend()
        return self._backend

    def put(self, request: UploadRequest) -> None:
        if request.key is None:
            return
        raw = json.dumps(request_to_payload(request), ensure_ascii=False)
        self._get_backend().set(request.key, raw, self.ttl_seconds)

    def pop(self, key: str) -> Optional[UploadRequest]:
        """取出并删除暂存的请求；不存在、已过期或内容损坏时返回 ``None``。"""
        raw = self._get_backend().pop(key)
        if not raw:
            return None
        try:
            return request_from_payload(json.loads(raw))
        except (KeyError, TypeError, ValueError):
            logger.warning("Discarding malformed pending edit for %s", key)
            return None
