"""配置模块：负责加载和缓存基于环境变量的应用设置。"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# 探测项目根目录并加载环境文件，支持通过 ENV_FILE/ENVIRONMENT 定制优先级。
def _detect_base_dir() -> Path:
    """向上遍历目录树，寻找包含 `app` 目录的项目根路径。"""
    current = Path(__file__).resolve()
    for candidate in current.parents:
        if (candidate / "app").is_dir():
            return candidate
    return current.parent


BASE_DIR = _detect_base_dir()


def _as_bool(value: Optional[str]) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _load_environment() -> None:
    env_file_override = os.getenv("ENV_FILE")
    if env_file_override:
        candidate = BASE_DIR / env_file_override
        if candidate.exists():
            load_dotenv(candidate, override=True, encoding="utf-8")
        return

    base_env = BASE_DIR / ".env"
    if base_env.exists():
        load_dotenv(base_env, override=False, encoding="utf-8")

    environment = os.getenv("ENVIRONMENT")
    if environment is None and _as_bool(os.getenv("DEBUG")):
        environment = "development"

    if environment:
        if environment.startswith(".env"):
            candidate_name = environment
        else:
            candidate_name = f".env.{environment}"
        candidate_path = BASE_DIR / candidate_name
        if candidate_path.exists():
            load_dotenv(candidate_path, override=True, encoding="utf-8")


_load_environment()


class Settings(BaseSettings):
    """
    封装服务运行所需的所有配置项，每个字段都可以通过环境变量重写。

    这里只保存“部署期”配置（数据库、日志、后端类型、桥接地址等）；
    运行期可由管理员命令修改的机器人配置（触发表情、上传频道、审核频道映射、根目录）
    存放在数据库中，由 ``ConfigService`` 负责读写，本类仅提供其初始默认值。
    """

    project_name: str = Field(default="Drive Upload Relay", alias="PROJECT_NAME")
    api_v1_str: str = Field(default="/api/v1", alias="API_V1_STR")
    debug: bool = Field(default=False, alias="DEBUG")

    database_url: str = Field(default="sqlite:///./uploader.db", alias="DATABASE_URL")
    database_echo: bool = Field(default=False, alias="DATABASE_ECHO")

    redis_host: str = Field(default="localhost", alias="REDIS_HOST")
    redis_port: int = Field(default=6379, alias="REDIS_PORT")
    redis_db: int = Field(default=0, alias="REDIS_DB")
    redis_enabled: bool = Field(default=True, alias="REDIS_ENABLED")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_dir: str = Field(default="log", alias="LOG_DIR")
    log_file_name: str = Field(default="uploader.log", alias="LOG_FILE_NAME")
    log_json: bool = Field(default=False, alias="LOG_JSON")
    app_port: int = Field(default=8000, alias="APP_PORT")
    timezone: str = Field(default="UTC", alias="TIMEZONE")

    # 聊天平台桥接：入站事件用共享令牌校验，出站动作回调到 bridge_callback_url
    bridge_token: str = Field(default="changeme", alias="BRIDGE_TOKEN")
    bridge_callback_url: Optional[str] = Field(default=None, alias="BRIDGE_CALLBACK_URL")
    bridge_timeout_seconds: float = Field(default=15.0, alias="BRIDGE_TIMEOUT_SECONDS")

    # 存储后端："MEMORY" | "LOCAL"
    drive_backend: str = Field(default="LOCAL", alias="DRIVE_BACKEND")
    drive_local_root: str = Field(default="drive", alias="DRIVE_LOCAL_ROOT")
    # 为空时 LOCAL 后端返回 file:// 链接
    drive_view_url_base: str = Field(default="", alias="DRIVE_VIEW_URL_BASE")
    download_timeout_seconds: float = Field(default=60.0, alias="DOWNLOAD_TIMEOUT_SECONDS")
    download_user_agent: str = Field(default="Drive Upload Relay/1.0", alias="DOWNLOAD_USER_AGENT")

    # 机器人运行期配置的初始值（首次启动写入 bot_settings 表）
    default_upload_marker: str = Field(default="⬆️", alias="DEFAULT_UPLOAD_MARKER")
    default_officer_capability: str = Field(default="ManageMessages", alias="DEFAULT_OFFICER_CAPABILITY")
    default_root_folder_id: str = Field(default="", alias="DEFAULT_ROOT_FOLDER_ID")
    default_cache_refresh_seconds: int = Field(default=3600, alias="DEFAULT_CACHE_REFRESH_SECONDS")

    folder_max_depth: int = Field(default=32, alias="FOLDER_MAX_DEPTH")
    pending_edit_ttl_seconds: int = Field(default=900, alias="PENDING_EDIT_TTL_SECONDS")

    model_config = SettingsConfigDict(extra='ignore')

    @property
    def redis_url(self) -> str:
        """根据当前配置生成 Redis 连接地址。"""
        return f"redis://{self.redis_host}:{self.redis_port}/{self.redis_db}"

    def _resolve_path(self, raw: str) -> Path:
        path = Path(raw)
        if not path.is_absolute():
            path = BASE_DIR / path
        return path

    @property
    def log_directory(self) -> Path:
        """返回日志目录的绝对路径，支持相对路径配置。"""
        return self._resolve_path(self.log_dir)

    @property
    def log_file_path(self) -> Path:
        """组合日志目录与文件名，得到完整的日志文件路径。"""
        return self.log_directory / self.log_file_name

    @property
    def drive_local_root_path(self) -> Path:
        """LOCAL 存储后端的根目录（绝对路径）。"""
        return self._resolve_path(self.drive_local_root)

    @property
    def timezone_info(self) -> ZoneInfo:
        """返回当前配置对应的时区信息，无法解析时回退到 UTC。"""
        try:
            return ZoneInfo(self.timezone)
        except ZoneInfoNotFoundError:
            return ZoneInfo("UTC")


@lru_cache
def get_settings() -> Settings:
    """返回单例化的配置对象，避免重复解析环境变量造成性能浪费。"""
    return Settings()
