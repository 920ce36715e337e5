"""
FastAPI application configuration module
"""

import os
import json
import logging
import platform
from pathlib import Path
from functools import lru_cache
from typing import Optional, Any, Dict, List

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

# 加载.env文件,覆盖电脑自身环境变量
load_dotenv(override=True)


logger = logging.getLogger("config")

SERVICE_NAME = "gcli2api"
SERVICE_VERSION = "0.3.0"

# GeminiCLI 客户端版本（User-Agent 中使用）
CLI_VERSION = "0.1.5"

# 假流式模型后缀
FAKE_STREAMING_SUFFIX = "-假流式"

# 上游 max_tokens 上限
MAX_OUTPUT_TOKENS = 65535

HEALTH_CHECK_REPLY = "公益站正常工作中"


@lru_cache(maxsize=1)
def _load_config_file() -> Dict[str, Any]:
    """
    读取 config.json（路径可通过 CONFIG_FILE 环境变量覆盖）

    文件不存在或解析失败时返回空字典，所有配置项回落到默认值。
    """
    config_path = Path(os.getenv("CONFIG_FILE", "config.json"))
    if not config_path.exists():
        return {}

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning("[CONFIG] 读取 %s 失败，使用默认配置: %s", config_path, e)
        return {}

    if not isinstance(data, dict):
        logger.warning("[CONFIG] %s 顶层不是对象，使用默认配置", config_path)
        return {}

    logger.info("[CONFIG] 已加载配置文件 %s", config_path)
    return data


def _config_value(key: str, default: Any) -> Any:
    """配置文件中的值优先于硬编码默认值（环境变量由 BaseSettings 再覆盖）"""
    value = _load_config_file().get(key)
    return default if value is None else value


class Settings(BaseSettings):
    """Application settings"""

    # Auth Configuration - /v1/* 接口共享密码
    PASSWORD: str = Field(default_factory=lambda: _config_value("password", "pwd"))

    # Server Configuration
    BIND_ADDRESS: str = Field(default_factory=lambda: _config_value("bind_address", "0.0.0.0:7878"))

    # Credential Configuration
    CREDENTIALS_DIR: str = Field(default_factory=lambda: _config_value("credentials_dir", "./credentials"))
    CALLS_PER_ROTATION: int = Field(default_factory=lambda: _config_value("calls_per_rotation", 1))
    MAX_RETRIES: int = Field(default_factory=lambda: _config_value("max_retries", 3))
    # 每个凭证最多保留的历史错误码数量（超过时丢弃最早的）
    MAX_ERROR_CODES: int = Field(default_factory=lambda: _config_value("max_error_codes", 16))

    # Upstream Configuration
    CODE_ASSIST_ENDPOINT: str = Field(
        default_factory=lambda: _config_value("code_assist_endpoint", "https://codeassist-pa.clients6.google.com")
    )
    OAUTH_TOKEN_URL: str = Field(
        default_factory=lambda: _config_value("oauth_token_url", "https://oauth2.googleapis.com/token")
    )
    ONBOARD_POLL_INTERVAL: float = Field(default_factory=lambda: _config_value("onboard_poll_interval", 5.0))
    ONBOARD_MAX_ATTEMPTS: int = Field(default_factory=lambda: _config_value("onboard_max_attempts", 12))

    # 出站代理（可选）
    PROXY: Optional[str] = Field(default_factory=lambda: _config_value("proxy", None))

    # Logging Configuration - 支持三个等级：false, info, debug
    LOG_LEVEL: str = Field(default_factory=lambda: _config_value("log_level", "info"))
    LOG_FILE: str = Field(default_factory=lambda: _config_value("log_file", "gcli2api.log"))

    # Feature Configuration - 调试接口（凭证状态查看/启停）
    DEBUG_API: bool = Field(default_factory=lambda: _config_value("debug_api", False))

    @field_validator("LOG_LEVEL")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        value = (value or "info").lower()
        if value in ("warn", "warning", "error"):
            return "info"
        return value if value in ["false", "info", "debug"] else "info"

    @property
    def LISTEN_HOST(self) -> str:
        host, _, _ = self.BIND_ADDRESS.rpartition(":")
        return host or "0.0.0.0"

    @property
    def LISTEN_PORT(self) -> int:
        _, _, port = self.BIND_ADDRESS.rpartition(":")
        try:
            return int(port)
        except ValueError:
            return 7878


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


settings = get_settings()


# Model Configuration - 对外公布的模型列表（含假流式变体）
SUPPORTED_MODELS: List[str] = [
    "gemini-2.5-pro-preview-06-05",
    "gemini-2.5-pro-preview-06-05" + FAKE_STREAMING_SUFFIX,
    "gemini-2.5-pro",
    "gemini-2.5-pro" + FAKE_STREAMING_SUFFIX,
    "gemini-2.5-pro-preview-05-06",
    "gemini-2.5-pro-preview-05-06" + FAKE_STREAMING_SUFFIX,
    "gemini-2.5-flash-preview-09-2025",
    "gemini-2.5-flash-image-preview",
    "gemini-2.5-flash-image-preview" + FAKE_STREAMING_SUFFIX,
    "gemini-3-pro-preview-11-2025",
]


def get_user_agent() -> str:
    """GeminiCLI/<version> (<os>; <arch>)"""
    system = platform.system().lower()
    arch = platform.machine().lower()
    return f"GeminiCLI/{CLI_VERSION} ({system}; {arch})"


def get_platform_string() -> str:
    """映射为 Code Assist 接受的平台枚举"""
    system = platform.system().lower()
    arch = platform.machine().lower()
    is_arm = arch in ("arm64", "aarch64")

    if system == "darwin":
        return "DARWIN_ARM64" if is_arm else "DARWIN_AMD64"
    if system == "linux":
        return "LINUX_ARM64" if is_arm else "LINUX_AMD64"
    if system == "windows":
        return "WINDOWS_AMD64"
    return "PLATFORM_UNSPECIFIED"


def get_client_metadata(project_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "ideType": "IDE_UNSPECIFIED",
        "platform": get_platform_string(),
        "pluginType": "GEMINI",
        "duetProject": project_id,
    }
