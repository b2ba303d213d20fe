"""文件夹缓存：在内存中维护配置根目录下的文件夹树镜像，供目录导航与路径解析使用。

构建流程：
1. 校验根目录（后端自身的根标识免查询）；
2. 广度优先逐个父目录分页列举子文件夹，父目录与节点均去重，深度受 ``folder_max_depth`` 限制；
3. 计算路径：沿首个父目录向上拼接，遇到环或父目录不在范围内时视为顶层（路径即自身名称）；
4. 组装树：父目录不在范围内的节点不挂入树，环上的节点挂在顶层；名称含 ``/`` 或首尾空白的文件夹
   无法写成路径，连同其子目录一并跳过；
5. 新快照通过一次引用赋值整体替换旧快照，读取方无需等待构建锁。
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, Optional, Union

from app.packages.uploader.core.config import get_settings
from app.packages.uploader.core.constants import SELECT_MENU_LIMIT
from app.packages.uploader.core.exceptions import AppException, CacheUnavailableError, FolderNotFoundError
from app.packages.uploader.core.logger import logger
from app.packages.uploader.services.config_service import CACHE_REFRESH_SECONDS, ROOT_FOLDER_ID, config_service
from app.packages.uploader.services.drive_backends import DriveBackend, DriveNode
from app.packages.uploader.utils.path_utils import is_path_segment, join_path, split_path

PathLike = Union[str, Iterable[str]]


def _segments(path: PathLike) -> tuple[str, ...]:
    if isinstance(path, str):
        return split_path(path)
    return tuple(part for part in path if part)


@dataclass
class FolderNode:
    id: str
    name: str
    parent_id: Optional[str]
    path: str = ""
    children: dict[str, "FolderNode"] = field(default_factory=dict)


@dataclass
class FolderSnapshot:
    """某一时刻的文件夹树快照，构建完成后不再修改。"""

    root_id: str
    tree: dict[str, FolderNode] = field(default_factory=dict)
    nodes: dict[str, FolderNode] = field(default_factory=dict)
    path_index: dict[str, str] = field(default_factory=dict)
    built_at: Optional[datetime] = None

    @property
    def folder_count(self) -> int:
        return len(self.nodes)


class FolderCache:
    def __init__(
        self,
        backend: DriveBackend,
        *,
        root_id_getter: Optional[Callable[[], Optional[str]]] = None,
        refresh_seconds_getter: Optional[Callable[[], Optional[float]]] = None,
        max_depth: Optional[int] = None,
    ) -> None:
        self.backend = backend
        self._root_id_getter = root_id_getter or (lambda: config_service.get(ROOT_FOLDER_ID))
        self._refresh_seconds_getter = refresh_seconds_getter or (lambda: config_service.get(CACHE_REFRESH_SECONDS))
        self.max_depth = max_depth if max_depth is not None else get_settings().folder_max_depth
        self._snapshot = FolderSnapshot(root_id=backend.root_id)
        self._lock = asyncio.Lock()
        self._baseline: Optional[float] = None
        self._refresh_task: Optional[asyncio.Task] = None

    @property
    def snapshot(self) -> FolderSnapshot:
        return self._snapshot

    def configured_root_id(self) -> str:
        return self._root_id_getter() or self.backend.root_id

    def refresh_interval(self) -> float:
        raw = self._refresh_seconds_getter()
        try:
            return max(1.0, float(raw))
        except (TypeError, ValueError):
            return float(get_settings().default_cache_refresh_seconds)

    # ----------------------------
    # 构建
    # ----------------------------
    async def rebuild(self, root_id: Optional[str] = None) -> FolderSnapshot:
        """重建缓存；失败时抛出 ``CacheUnavailableError``，旧快照保持不变。"""
        async with self._lock:
            root = root_id or self.configured_root_id()
            started = time.monotonic()
            self._baseline = started
            logger.info("Building folder cache from root %s", root)

            await self._validate_root(root)
            scanned = await self._scan(root)
            snapshot = self._assemble(root, scanned)

            self._snapshot = snapshot
            logger.info(
                "Folder cache built (%s folders, %.0fms)",
                snapshot.folder_count,
                (time.monotonic() - started) * 1000,
            )
            return snapshot

    async def _validate_root(self, root: str) -> None:
        if root == self.backend.root_id:
            return
        try:
            info = await self.backend.get_node_info(root)
        except Exception as exc:
            logger.error("Cannot access root folder %s: %s", root, exc)
            raise CacheUnavailableError(f"Invalid root folder: {root}") from exc
        if info is None or not info.is_folder:
            raise CacheUnavailableError(f"Invalid root folder: {root}")

    async def _scan(self, root: str) -> list[DriveNode]:
        visited_parents: set[str] = set()
        seen: dict[str, DriveNode] = {}
        queue: deque[tuple[str, int]] = deque([(root, 0)])

        while queue:
            parent_id, depth = queue.popleft()
            if parent_id in visited_parents:
                continue
            visited_parents.add(parent_id)
            if depth >= self.max_depth:
                continue

            page_token: Optional[str] = None
            while True:
                try:
                    page = await self.backend.list_children(parent_id, page_token)
                except AppException as exc:
                    raise CacheUnavailableError(f"Error scanning folder {parent_id}: {exc.msg}") from exc
                except Exception as exc:
                    raise CacheUnavailableError(f"Error scanning folder {parent_id}: {exc}") from exc
                for node in page.items:
                    if not node.is_folder or node.id == root or node.id in seen:
                        continue
                    seen[node.id] = node
                    if node.id not in visited_parents:
                        queue.append((node.id, depth + 1))
                page_token = page.next_page_token
                if not page_token:
                    break

        return list(seen.values())

    def _assemble(self, root: str, scanned: list[DriveNode]) -> FolderSnapshot:
        nodes = {item.id: FolderNode(id=item.id, name=item.name, parent_id=item.parent_id) for item in scanned}
        cycle_ids = self._compute_paths(nodes, root)

        tree: dict[str, FolderNode] = {}
        for node in nodes.values():
            if not is_path_segment(node.name):
                logger.warning(
                    "Folder %s (%r) cannot be addressed by path, skipped with its subfolders", node.id, node.name
                )
                continue
            if node.id in cycle_ids or node.parent_id is None or node.parent_id == root:
                tree.setdefault(node.name, node)
            elif node.parent_id in nodes:
                nodes[node.parent_id].children.setdefault(node.name, node)
            else:
                logger.debug("Folder %s has a parent outside the root scope, skipped", node.id)

        return FolderSnapshot(
            root_id=root,
            tree=tree,
            nodes=nodes,
            path_index=self._index(tree),
            built_at=datetime.now(get_settings().timezone_info),
        )

    @staticmethod
    def _compute_paths(nodes: dict[str, FolderNode], root: str) -> set[str]:
        """沿首个父目录计算路径，返回处在环上的节点 ID。"""
        resolved: set[str] = set()
        cycle_ids: set[str] = set()

        for start in nodes:
            chain: list[str] = []
            position: dict[str, int] = {}
            current: Optional[str] = start
            while current is not None and current not in resolved:
                if current in position:
                    cycle_ids.update(chain[position[current]:])
                    break
                position[current] = len(chain)
                chain.append(current)
                parent_id = nodes[current].parent_id
                current = parent_id if parent_id in nodes and parent_id != root else None

            for node_id in reversed(chain):
                node = nodes[node_id]
                if node_id in cycle_ids or node.parent_id not in nodes or node.parent_id == root:
                    node.path = node.name
                else:
                    node.path = f"{nodes[node.parent_id].path}/{node.name}"
                resolved.add(node_id)

        return cycle_ids

    @staticmethod
    def _index(tree: dict[str, FolderNode]) -> dict[str, str]:
        """只为挂入树中的节点建立 路径 -> ID 索引。"""
        index: dict[str, str] = {}
        visited: set[str] = set()
        stack = [("", node) for node in tree.values()]
        while stack:
            prefix, node = stack.pop()
            if node.id in visited:
                continue
            visited.add(node.id)
            path = f"{prefix}/{node.name}" if prefix else node.name
            index.setdefault(path, node.id)
            stack.extend((path, child) for child in node.children.values())
        return index

    # ----------------------------
    # 读取与解析
    # ----------------------------
    def list_children(self, path: PathLike = "") -> list[str]:
        """返回路径下的直接子文件夹名称（不区分大小写排序，最多 25 个）；路径未知时返回空列表。"""
        level = self._snapshot.tree
        for segment in _segments(path):
            node = level.get(segment)
            if node is None:
                return []
            level = node.children
        return sorted(level, key=lambda name: (name.casefold(), name))[:SELECT_MENU_LIMIT]

    async def resolve_path_to_id(self, path: PathLike, create_if_missing: bool = False) -> str:
        """逐段向后端查询路径对应的文件夹 ID；``create_if_missing`` 时补建缺失的目录。"""
        segments = _segments(path)
        current = self.configured_root_id()
        for index, segment in enumerate(segments):
            child = await self.backend.find_child_folder(current, segment)
            if child is None:
                if not create_if_missing:
                    raise FolderNotFoundError(join_path(segments[: index + 1]))
                child = await self.backend.create_folder(current, segment)
            current = child.id
        return current

    async def resolve_cached(self, path: PathLike) -> str:
        """优先走快照的路径索引，未命中时回退到后端解析（缺失目录自动创建）。"""
        segments = _segments(path)
        root = self.configured_root_id()
        if not segments:
            return root
        snapshot = self._snapshot
        if snapshot.root_id == root:
            folder_id = snapshot.path_index.get(join_path(segments))
            if folder_id:
                return folder_id
        logger.warning("Folder not found in cache: %s, using fallback method", join_path(segments))
        return await self.resolve_path_to_id(segments, create_if_missing=True)

    # ----------------------------
    # 定时刷新
    # ----------------------------
    def needs_refresh(self) -> bool:
        if self._snapshot.built_at is None or self._baseline is None:
            return True
        return time.monotonic() - self._baseline >= self.refresh_interval()

    async def refresh_now(self) -> FolderSnapshot:
        """立即重建，并以此刻作为下一次定时刷新的计时起点。"""
        logger.info("Refreshing folder cache...")
        return await self.rebuild()

    def start_auto_refresh(self) -> None:
        if self._refresh_task is not None and not self._refresh_task.done():
            return
        self._refresh_task = asyncio.create_task(self._refresh_loop())

    async def stop_auto_refresh(self) -> None:
        task, self._refresh_task = self._refresh_task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _refresh_loop(self) -> None:
        while True:
            interval = self.refresh_interval()
            elapsed = time.monotonic() - self._baseline if self._baseline is not None else 0.0
            await asyncio.sleep(max(0.0, interval - elapsed))
            if not self.needs_refresh():
                # refresh_now 期间重置了计时起点
                continue
            try:
                await self.rebuild()
            except Exception:
                logger.exception("Failed to refresh folder cache")
