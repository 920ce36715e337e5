#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
OAuth 访问令牌刷新模块
"""

import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import aiofiles
import orjson

from .config import settings
from .credential_manager import CredentialRecord
from .errors import CredentialRefreshError
from .helpers import debug_log, error_log, info_log, perf_timer
from .services.network_manager import NetworkManager


class TokenRefresher:
    """访问令牌过期（或没有过期时间）时使用 refresh_token 换取新令牌"""

    def __init__(self, network: NetworkManager, token_url: Optional[str] = None):
        self.network = network
        self.token_url = token_url or settings.OAUTH_TOKEN_URL

    async def refresh_if_needed(self, record: CredentialRecord) -> CredentialRecord:
        if not record.is_expired():
            return record

        token_url = record.token_uri or self.token_url
        body = {
            "grant_type": "refresh_token",
            "refresh_token": record.refresh_token,
            "client_id": record.client_id,
            "client_secret": record.client_secret,
        }

        client = await self.network.get_client()
        with perf_timer("token_refresh"):
            response = await client.post(token_url, json=body)

        if response.status_code < 200 or response.status_code >= 300:
            error_log(
                "[OAUTH] 刷新访问令牌失败",
                credential=record.credential_id,
                status_code=response.status_code,
            )
            raise CredentialRefreshError(
                f"Failed to refresh credentials for {record.credential_id}: {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise CredentialRefreshError(f"Invalid token response: {e}", body=response.text) from e

        access_token = data.get("access_token")
        if not access_token:
            raise CredentialRefreshError("Token response has no access_token", body=response.text)

        record.access_token = access_token
        expires_in = data.get("expires_in")
        if isinstance(expires_in, (int, float)):
            record.expiry = datetime.now(timezone.utc) + timedelta(seconds=expires_in)
        else:
            record.expiry = None

        info_log("[OAUTH] 访问令牌已刷新", credential=record.credential_id)
        await self._write_back(record)
        return record

    async def _write_back(self, record: CredentialRecord) -> None:
        """把新令牌写回凭证文件，保留文件中的其他字段

        先写临时文件再 os.replace，写入失败时原凭证文件保持不变
        """
        path = Path(record.file_path)
        tmp_path = path.with_name(path.name + ".tmp")
        try:
            async with aiofiles.open(path, "rb") as f:
                data: Dict[str, Any] = orjson.loads(await f.read())
            if not isinstance(data, dict):
                return

            data["access_token"] = record.access_token
            if "token" in data:
                data["token"] = record.access_token
            data["expiry"] = record.expiry.isoformat() if record.expiry else None

            async with aiofiles.open(tmp_path, "wb") as f:
                await f.write(orjson.dumps(data, option=orjson.OPT_INDENT_2))
            os.replace(tmp_path, path)
            debug_log("[OAUTH] 新令牌已写回凭证文件", file=record.file_name)
        except (OSError, ValueError) as e:
            # 写回失败不影响本次请求
            error_log("[OAUTH] 写回凭证文件失败", file=record.file_name, error=str(e))
