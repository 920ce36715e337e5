"""
测试公共配置：在导入 gcli2api 之前固定环境变量
"""

import os

os.environ["PASSWORD"] = "test-password"
os.environ["LOG_FILE"] = ""
os.environ["LOG_LEVEL"] = "info"
os.environ["DEBUG_API"] = "false"
os.environ["CONFIG_FILE"] = os.path.join(os.path.dirname(__file__), "no-such-config.json")

from datetime import datetime, timedelta, timezone
from pathlib import Path

import orjson
import pytest


PASSWORD = "test-password"


def make_credential(project_id="proj-1", refresh_token="refresh-1", expired=False, **extra):
    expiry = datetime.now(timezone.utc) + (timedelta(hours=-1) if expired else timedelta(hours=1))
    data = {
        "access_token": f"access-{refresh_token}",
        "refresh_token": refresh_token,
        "client_id": "client-id",
        "client_secret": "client-secret",
        "expiry": expiry.isoformat(),
        "token_uri": "https://oauth.test/token",
    }
    if project_id is not None:
        data["project_id"] = project_id
    data.update(extra)
    return data


@pytest.fixture
def creds_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "credentials"
    directory.mkdir()
    return directory


@pytest.fixture
def write_credential(creds_dir: Path):
    """写入凭证文件：write_credential("a.json", project_id="p") 或直接写原始文本"""

    def _write(file_name: str, data=None, raw: str = None, **kwargs) -> Path:
        path = creds_dir / file_name
        if raw is not None:
            path.write_text(raw, encoding="utf-8")
        else:
            payload = data if data is not None else make_credential(**kwargs)
            path.write_bytes(orjson.dumps(payload))
        return path

    return _write
