"""测试夹具：为 pytest 提供数据库、工作流组件与客户端的共享配置。"""

import os
from typing import Generator

# 必须在导入应用之前设置，确保 Settings 读取到测试配置
TEST_DB_PATH = os.path.join(os.path.dirname(__file__), "test.db")
TEST_DATABASE_URL = f"sqlite:///{TEST_DB_PATH}"
os.environ.setdefault("DATABASE_URL", TEST_DATABASE_URL)
os.environ["DRIVE_BACKEND"] = "MEMORY"
os.environ["REDIS_ENABLED"] = "false"
os.environ["BRIDGE_TOKEN"] = "test-bridge-token"
os.environ.pop("BRIDGE_CALLBACK_URL", None)

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.main import app
from app.packages.uploader.core import dependencies
from app.packages.uploader.db import session as db_session
from app.packages.uploader.db.init_db import init_db
from app.packages.uploader.models.base import Base
from app.packages.uploader.models.bot_setting import BotSetting
from app.packages.uploader.services.admin_service import AdminService
from app.packages.uploader.services.chat_adapters import Actor, Attachment, InMemoryChatAdapter, SourceItem
from app.packages.uploader.services.config_service import (
    DEFAULT_REVIEW_CHANNEL,
    UPLOAD_CHANNELS,
    config_service,
)
from app.packages.uploader.services.drive_backends import MemoryDriveBackend
from app.packages.uploader.services.folder_cache import FolderCache
from app.packages.uploader.services.pending_edits import InMemoryPendingEditBackend, PendingEditStore
from app.packages.uploader.services.workflow_service import UploadWorkflow

BRIDGE_HEADERS = {"X-Bridge-Token": "test-bridge-token"}

UPLOAD_CHANNEL = "upload-chan"
REVIEW_CHANNEL = "review-chan"


@pytest.fixture(scope="session", autouse=True)
def setup_test_database() -> Generator[None, None, None]:
    """创建隔离的 SQLite 测试数据库，并在会话结束后清理。"""
    if os.path.exists(TEST_DB_PATH):
        os.remove(TEST_DB_PATH)

    engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    db_session.engine = engine
    db_session.SessionLocal = TestingSessionLocal

    Base.metadata.create_all(bind=engine)
    init_db()
    yield

    engine.dispose()
    if os.path.exists(TEST_DB_PATH):
        os.remove(TEST_DB_PATH)


@pytest.fixture(autouse=True)
def reset_bot_settings() -> Generator[None, None, None]:
    """每个用例前把机器人配置恢复为默认值，并登记上传频道与默认审核频道。"""
    with db_session.SessionLocal() as db:
        db.query(BotSetting).delete()
        db.commit()
    config_service.seed_defaults()
    config_service.set(UPLOAD_CHANNELS, [UPLOAD_CHANNEL])
    config_service.set(DEFAULT_REVIEW_CHANNEL, REVIEW_CHANNEL)
    yield


IMAGE_BYTES = b"\x89PNG\r\n\x1a\n-test-image"


def _serve_attachment(request: httpx.Request) -> httpx.Response:
    """模拟附件 CDN：路径包含 missing 时返回 404。"""
    if "missing" in request.url.path:
        return httpx.Response(404)
    return httpx.Response(200, content=IMAGE_BYTES)


@pytest.fixture()
def backend() -> MemoryDriveBackend:
    """预置文件夹树：Art/{Portraits, Landscapes/Mountains}、Docs。"""
    drive = MemoryDriveBackend(transport=httpx.MockTransport(_serve_attachment))
    art = drive.add_node(drive.root_id, "Art", node_id="art")
    drive.add_node(art.id, "Portraits", node_id="portraits")
    landscapes = drive.add_node(art.id, "Landscapes", node_id="landscapes")
    drive.add_node(landscapes.id, "Mountains", node_id="mountains")
    drive.add_node(drive.root_id, "Docs", node_id="docs")
    return drive


@pytest.fixture()
def cache(backend: MemoryDriveBackend) -> FolderCache:
    return FolderCache(backend)


@pytest.fixture()
def chat() -> InMemoryChatAdapter:
    return InMemoryChatAdapter()


@pytest.fixture()
def workflow(chat: InMemoryChatAdapter, cache: FolderCache) -> UploadWorkflow:
    return UploadWorkflow(chat, cache, PendingEditStore(InMemoryPendingEditBackend()))


@pytest.fixture()
def author() -> Actor:
    return Actor(id="u-author", display_name="Author")


@pytest.fixture()
def officer() -> Actor:
    return Actor(id="u-officer", display_name="Officer", capabilities=["ManageMessages"])


@pytest.fixture()
def admin() -> Actor:
    return Actor(id="u-admin", display_name="Admin", capabilities=["Administrator"])


@pytest.fixture()
def stranger() -> Actor:
    return Actor(id="u-stranger", display_name="Stranger")


@pytest.fixture()
def make_source(chat: InMemoryChatAdapter):
    """登记一条源消息，默认带一张 2400000 字节的 PNG 附件。"""

    def _make(
        author_id: str,
        *,
        message_id: str = "src-1",
        channel_id: str = UPLOAD_CHANNEL,
        attachments=None,
    ) -> SourceItem:
        if attachments is None:
            attachments = [
                Attachment(url="https://cdn.example.com/files/sunset.png", size_bytes=2400000, content_type="image/png")
            ]
        return chat.add_source_item(
            SourceItem(channel_id=channel_id, message_id=message_id, author_id=author_id, attachments=attachments)
        )

    return _make


@pytest.fixture()
def client(backend: MemoryDriveBackend, chat: InMemoryChatAdapter):
    """构建 FastAPI TestClient，工作流依赖替换为测试用的内存实现。"""
    cache = FolderCache(backend)
    store = PendingEditStore(InMemoryPendingEditBackend())

    app.dependency_overrides[dependencies.get_drive_backend] = lambda: backend
    app.dependency_overrides[dependencies.get_folder_cache] = lambda: cache
    app.dependency_overrides[dependencies.get_chat_adapter] = lambda: chat
    app.dependency_overrides[dependencies.get_workflow] = lambda: UploadWorkflow(chat, cache, store)
    app.dependency_overrides[dependencies.get_admin_service] = lambda: AdminService(cache)

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
