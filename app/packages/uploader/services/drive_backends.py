"""云盘后端抽象与实现：统一封装文件夹遍历、建目录、上传与附件下载。

- ``MemoryDriveBackend``：进程内实现，支持一个节点挂在多个父目录下，用于开发与测试；
- ``LocalDriveBackend``：本地文件系统实现，节点 ID 为相对根目录的 POSIX 路径，
  上传元数据写入同目录下的 JSON 旁路文件；
- 附件下载统一由基类通过 httpx 完成。
"""

from __future__ import annotations

import itertools
import json
import mimetypes
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional
from urllib.parse import quote

import httpx
from fastapi import status

from app.packages.uploader.core.config import get_settings
from app.packages.uploader.core.constants import BACKEND_ROOT_SENTINEL, HTTP_STATUS_BAD_REQUEST, HTTP_STATUS_NOT_FOUND
from app.packages.uploader.core.enums import DriveBackendType
from app.packages.uploader.core.exceptions import AppException, BackendTransferError
from app.packages.uploader.core.logger import logger

DEFAULT_PAGE_SIZE = 100


def guess_mime_type(name: str) -> str:
    mime, _ = mimetypes.guess_type(name)
    return mime or "application/octet-stream"


# ------------------------------------------
# 公共数据结构
# ------------------------------------------

@dataclass
class DriveNode:
    id: str
    name: str
    is_folder: bool
    parents: tuple[str, ...] = ()

    @property
    def parent_id(self) -> Optional[str]:
        return self.parents[0] if self.parents else None


@dataclass
class ChildrenPage:
    items: list[DriveNode]
    next_page_token: Optional[str] = None


@dataclass
class UploadedFile:
    id: str
    name: str
    view_url: str


@dataclass
class StoredUpload:
    """内存后端记录的一次上传，便于核对目标目录、内容与元数据。"""

    file: UploadedFile
    parent_id: str
    mime_type: str
    data: bytes
    metadata: dict[str, Any] = field(default_factory=dict)


class DriveBackend:
    """云盘后端接口。``root_id`` 为后端自身的根目录标识，无需查询即视为合法文件夹。"""

    root_id = BACKEND_ROOT_SENTINEL

    def __init__(self, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self._transport = transport

    async def list_children(self, parent_id: str, page_token: Optional[str] = None) -> ChildrenPage:
        """列出 ``parent_id`` 下的直接子文件夹（分页）。"""
        raise NotImplementedError

    async def get_node_info(self, node_id: str) -> Optional[DriveNode]:
        raise NotImplementedError

    async def create_folder(self, parent_id: str, name: str) -> DriveNode:
        raise NotImplementedError

    async def upload_bytes(
        self,
        parent_id: str,
        name: str,
        mime_type: str,
        data: bytes,
        metadata: dict[str, Any],
    ) -> UploadedFile:
        raise NotImplementedError

    async def find_child_folder(self, parent_id: str, name: str) -> Optional[DriveNode]:
        """在 ``parent_id`` 下按名称查找子文件夹（逐页遍历）。"""
        page_token: Optional[str] = None
        while True:
            page = await self.list_children(parent_id, page_token)
            for node in page.items:
                if node.is_folder and node.name == name:
                    return node
            page_token = page.next_page_token
            if not page_token:
                return None

    async def download_bytes(self, url: str) -> bytes:
        """下载附件内容；网络错误与非 2xx 响应统一转换为 ``BackendTransferError``。"""
        settings = get_settings()
        try:
            async with httpx.AsyncClient(
                transport=self._transport,
                timeout=settings.download_timeout_seconds,
                follow_redirects=True,
                headers={"User-Agent": settings.download_user_agent},
            ) as client:
                response = await client.get(url)
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise BackendTransferError(
                f"Failed to download file: HTTP {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise BackendTransferError(f"Failed to download file: {exc}") from exc

        logger.info("Downloaded %s bytes from %s", len(response.content), url)
        return response.content


# ------------------------------------------
# 内存实现
# ------------------------------------------


class MemoryDriveBackend(DriveBackend):
    def __init__(self, *, page_size: int = DEFAULT_PAGE_SIZE, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(transport=transport)
        self.page_size = max(1, page_size)
        self.nodes: dict[str, DriveNode] = {}
        self.uploads: list[StoredUpload] = []
        self.created_folders: list[DriveNode] = []
        self._ids = itertools.count(1)

    def add_node(
        self,
        parent_id: str,
        name: str,
        *,
        node_id: Optional[str] = None,
        is_folder: bool = True,
    ) -> DriveNode:
        """直接登记一个节点（不计入 ``created_folders``），用于准备数据。"""
        node = DriveNode(
            id=node_id or f"node-{next(self._ids)}",
            name=name,
            is_folder=is_folder,
            parents=(parent_id,),
        )
        self.nodes[node.id] = node
        return node

    def link(self, node_id: str, parent_id: str, *, primary: bool = False) -> None:
        """为节点追加一个父目录；``primary`` 为真时作为首个父目录。"""
        node = self.nodes[node_id]
        if parent_id in node.parents:
            return
        node.parents = (parent_id,) + node.parents if primary else node.parents + (parent_id,)

    async def list_children(self, parent_id: str, page_token: Optional[str] = None) -> ChildrenPage:
        if parent_id != self.root_id and parent_id not in self.nodes:
            raise AppException(f"Folder does not exist: {parent_id}", HTTP_STATUS_NOT_FOUND)
        children = [node for node in self.nodes.values() if node.is_folder and parent_id in node.parents]
        offset = int(page_token or 0)
        end = offset + self.page_size
        next_token = str(end) if end < len(children) else None
        return ChildrenPage(items=children[offset:end], next_page_token=next_token)

    async def get_node_info(self, node_id: str) -> Optional[DriveNode]:
        if node_id == self.root_id:
            return DriveNode(id=self.root_id, name="My Drive", is_folder=True)
        return self.nodes.get(node_id)

    async def create_folder(self, parent_id: str, name: str) -> DriveNode:
        if parent_id != self.root_id and parent_id not in self.nodes:
            raise AppException(f"Folder does not exist: {parent_id}", HTTP_STATUS_NOT_FOUND)
        node = self.add_node(parent_id, name)
        self.created_folders.append(node)
        logger.info("Created folder %s (ID: %s)", name, node.id)
        return node

    async def upload_bytes(
        self,
        parent_id: str,
        name: str,
        mime_type: str,
        data: bytes,
        metadata: dict[str, Any],
    ) -> UploadedFile:
        if parent_id != self.root_id and parent_id not in self.nodes:
            raise BackendTransferError(f"Failed to upload file: folder {parent_id} does not exist")
        file_id = f"file-{next(self._ids)}"
        uploaded = UploadedFile(id=file_id, name=name, view_url=f"memory://{file_id}")
        self.uploads.append(
            StoredUpload(file=uploaded, parent_id=parent_id, mime_type=mime_type, data=data, metadata=dict(metadata))
        )
        return uploaded


# ------------------------------------------
# 本地文件系统实现
# ------------------------------------------


class LocalDriveBackend(DriveBackend):
    """节点 ID 为相对根目录的 POSIX 路径，根目录本身使用 ``root`` 标识。"""

    def __init__(
        self,
        root: str,
        *,
        view_url_base: str = "",
        page_size: int = DEFAULT_PAGE_SIZE,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(transport=transport)
        self.root = Path(root).resolve()
        self.view_url_base = view_url_base
        self.page_size = max(1, page_size)
        if not self.root.exists():
            try:
                self.root.mkdir(parents=True, exist_ok=True)
            except OSError as exc:  # pragma: no cover - 极端情况下可能失败
                raise AppException(
                    f"Cannot create drive root: {exc}", status.HTTP_500_INTERNAL_SERVER_ERROR
                ) from exc

    # 统一的安全路径拼接，防止路径遍历
    def _resolve(self, node_id: str) -> Path:
        rel = "" if node_id == self.root_id else (node_id or "").strip().lstrip("/")
        candidate = (self.root / rel).resolve()
        try:
            candidate.relative_to(self.root)
        except ValueError as exc:
            raise AppException("Illegal path outside the drive root", HTTP_STATUS_BAD_REQUEST) from exc
        return candidate

    def _node_id(self, path: Path) -> str:
        rel = path.relative_to(self.root).as_posix()
        return rel if rel != "." else self.root_id

    def _to_node(self, path: Path) -> DriveNode:
        parent = path.parent
        return DriveNode(
            id=self._node_id(path),
            name=path.name,
            is_folder=path.is_dir(),
            parents=(self._node_id(parent),),
        )

    @staticmethod
    def _safe_name(name: str) -> str:
        safe_name = os.path.basename((name or "").strip())
        if not safe_name or safe_name in {".", ".."}:
            raise AppException("Name must not be empty", HTTP_STATUS_BAD_REQUEST)
        return safe_name

    def _folder(self, node_id: str) -> Path:
        folder = self._resolve(node_id)
        if not folder.is_dir():
            raise AppException(f"Folder does not exist: {node_id}", HTTP_STATUS_NOT_FOUND)
        return folder

    async def list_children(self, parent_id: str, page_token: Optional[str] = None) -> ChildrenPage:
        base = self._folder(parent_id)
        children = sorted((entry for entry in base.iterdir() if entry.is_dir()), key=lambda p: p.name.lower())
        offset = int(page_token or 0)
        end = offset + self.page_size
        next_token = str(end) if end < len(children) else None
        return ChildrenPage(items=[self._to_node(entry) for entry in children[offset:end]], next_page_token=next_token)

    async def get_node_info(self, node_id: str) -> Optional[DriveNode]:
        if node_id == self.root_id:
            return DriveNode(id=self.root_id, name=self.root.name, is_folder=True)
        try:
            target = self._resolve(node_id)
        except AppException:
            return None
        if not target.exists():
            return None
        return self._to_node(target)

    async def create_folder(self, parent_id: str, name: str) -> DriveNode:
        parent = self._folder(parent_id)
        new_dir = parent / self._safe_name(name)
        if new_dir.exists():
            raise AppException("A file or folder with the same name already exists", HTTP_STATUS_BAD_REQUEST)
        new_dir.mkdir(parents=False, exist_ok=False)
        logger.info("Created folder %s", self._node_id(new_dir))
        return self._to_node(new_dir)

    def _available_path(self, folder: Path, name: str) -> Path:
        candidate = folder / name
        stem, suffix = os.path.splitext(name)
        for index in itertools.count(1):
            if not candidate.exists():
                return candidate
            candidate = folder / f"{stem} ({index}){suffix}"
        raise AssertionError("unreachable")  # pragma: no cover

    def _view_url(self, target: Path) -> str:
        if not self.view_url_base:
            return target.as_uri()
        return f"{self.view_url_base.rstrip('/')}/{quote(self._node_id(target))}"

    async def upload_bytes(
        self,
        parent_id: str,
        name: str,
        mime_type: str,
        data: bytes,
        metadata: dict[str, Any],
    ) -> UploadedFile:
        try:
            folder = self._folder(parent_id)
            target = self._available_path(folder, self._safe_name(name))
            target.write_bytes(data)
            sidecar = folder / f".{target.name}.json"
            sidecar.write_text(
                json.dumps({"mime_type": mime_type, **metadata}, ensure_ascii=False, indent=2),
                encoding="utf-8",
            )
        except AppException as exc:
            raise BackendTransferError(f"Failed to upload file: {exc.msg}") from exc
        except OSError as exc:
            logger.exception("Local upload failed: %s", exc)
            raise BackendTransferError(f"Failed to upload file: {exc}") from exc
        return UploadedFile(id=self._node_id(target), name=target.name, view_url=self._view_url(target))


def build_backend(
    *,
    type: str,
    local_root_path: Optional[str] = None,
    view_url_base: str = "",
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> DriveBackend:
    t = (type or "").upper()
    if t == DriveBackendType.MEMORY.value:
        return MemoryDriveBackend(transport=transport)
    if t == DriveBackendType.LOCAL.value:
        if not local_root_path:
            raise AppException("Missing local drive root", HTTP_STATUS_BAD_REQUEST)
        return LocalDriveBackend(local_root_path, view_url_base=view_url_base, transport=transport)
    raise AppException("Unsupported drive backend type", HTTP_STATUS_BAD_REQUEST)
