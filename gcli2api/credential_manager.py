#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
凭证管理模块 - 管理凭证文件的发现、轮换、失败切换与状态持久化

凭证目录下每个 *.json 文件是一份 Google OAuth 凭证；creds_state.json 保存
每个文件的错误码、禁用标记和最近一次成功时间。
"""

import os
import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Any

import aiofiles
import orjson
from pydantic import BaseModel, ValidationError, field_validator, model_validator

from .config import settings
from .errors import NoCredentialsError
from .helpers import error_log, info_log, debug_log, warn_log


STATE_FILE_NAME = "creds_state.json"

_DERIVED_FIELDS = ("credential_id", "file_name", "file_path")


class CredentialRecord(BaseModel):
    """单个凭证文件的内容（每次使用都从磁盘重新读取）"""

    access_token: Optional[str] = None
    refresh_token: str
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    project_id: Optional[str] = None
    expiry: Optional[datetime] = None
    scope: Optional[str] = None
    scopes: Optional[List[str]] = None
    token_uri: Optional[str] = None

    # 派生字段，不从文件读取
    credential_id: str = ""
    file_name: str = ""
    file_path: str = ""

    @model_validator(mode="before")
    @classmethod
    def _normalize_source(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = {k: v for k, v in data.items() if k not in _DERIVED_FIELDS}
        # gemini-cli 写入的是 token，旧格式是 access_token，两者都有时以 token 为准
        if data.get("token"):
            data["access_token"] = data["token"]
        if not data.get("scopes") and isinstance(data.get("scope"), str):
            data["scopes"] = data["scope"].split()
        return data

    @field_validator("refresh_token")
    @classmethod
    def _require_refresh_token(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("refresh_token is empty")
        return value

    @field_validator("expiry")
    @classmethod
    def _expiry_as_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @classmethod
    def from_file(cls, path: Path, data: Any) -> "CredentialRecord":
        record = cls.model_validate(data)
        record.credential_id = path.stem
        record.file_name = path.name
        record.file_path = str(path)
        return record

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expiry is None:
            return True
        now = now or datetime.now(timezone.utc)
        return now >= self.expiry


@dataclass
class CredentialState:
    """凭证运行时状态（持久化到 creds_state.json）"""
    error_codes: List[int] = field(default_factory=list)
    disabled: bool = False
    last_success: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_codes": list(self.error_codes),
            "disabled": self.disabled,
            "last_success": self.last_success.isoformat() if self.last_success else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CredentialState":
        last_success = data.get("last_success")
        if isinstance(last_success, str):
            try:
                last_success = datetime.fromisoformat(last_success)
            except ValueError:
                last_success = None
        else:
            last_success = None
        return cls(
            error_codes=[int(code) for code in data.get("error_codes") or []],
            disabled=bool(data.get("disabled", False)),
            last_success=last_success,
        )


class CredentialManager:
    """凭证池 - 轮换选择、失败切换、错误记录（所有状态变更都持有同一把锁）"""

    def __init__(
            self,
            credentials_dir: Optional[str] = None,
            calls_per_rotation: Optional[int] = None,
            max_retries: Optional[int] = None,
            max_error_codes: Optional[int] = None,
    ):
        self.credentials_dir = Path(credentials_dir or settings.CREDENTIALS_DIR)
        self.state_file = self.credentials_dir / STATE_FILE_NAME
        self.calls_per_rotation = max(1, calls_per_rotation if calls_per_rotation is not None else settings.CALLS_PER_ROTATION)
        self._max_retries = max_retries if max_retries is not None else settings.MAX_RETRIES
        self.max_error_codes = max(1, max_error_codes if max_error_codes is not None else settings.MAX_ERROR_CODES)

        self.credential_files: List[str] = []
        self.current_index: int = 0
        self.call_count: int = 0
        self._states: Dict[str, CredentialState] = {}

        self._lock = asyncio.Lock()

    @property
    def max_retries(self) -> int:
        return max(1, self._max_retries)

    async def initialize(self) -> None:
        """创建凭证目录、加载状态文件并扫描凭证"""
        async with self._lock:
            self.credentials_dir.mkdir(parents=True, exist_ok=True)
            await self._load_state()
            self._discover()
        info_log(
            "[CREDS] 凭证管理器初始化完成",
            directory=str(self.credentials_dir),
            available=len(self.credential_files),
            calls_per_rotation=self.calls_per_rotation,
            max_retries=self.max_retries,
        )

    # ------------------------------------------------------------------
    # 选择与轮换
    # ------------------------------------------------------------------

    async def get_current_credentials(self) -> Optional[CredentialRecord]:
        """启动阶段使用：读取当前凭证，失败时只尝试下一个"""
        async with self._lock:
            self._rotate_if_needed()
            total = len(self.credential_files)
            if total == 0:
                return None

            index = self.current_index % total
            record = await self._load_credential(self.credential_files[index])
            if record is None and total > 1:
                index = (index + 1) % total
                record = await self._load_credential(self.credential_files[index])
            if record is not None:
                self.current_index = index
            return record

    async def get_credentials_with_retry(self) -> Optional[CredentialRecord]:
        async with self._lock:
            return await self._select_with_retry()

    async def acquire(self, count_call: bool = True) -> CredentialRecord:
        """请求路径使用：计数 + 带重试的选择，在一次加锁内完成"""
        async with self._lock:
            if count_call:
                self.call_count += 1
            record = await self._select_with_retry()
        if record is None:
            raise NoCredentialsError("no credentials available")
        return record

    async def increment_call_count(self) -> None:
        async with self._lock:
            self.call_count += 1

    async def failover_from(self, file_name: str) -> None:
        """游标仍指向 file_name 时切到下一个凭证"""
        async with self._lock:
            total = len(self.credential_files)
            if total == 0:
                return
            index = self.current_index % total
            if self.credential_files[index] != file_name:
                return
            self.current_index = (index + 1) % total
            self.call_count = 0
            debug_log(
                "[CREDS] 凭证失败切换",
                failed=file_name,
                next=self.credential_files[self.current_index],
            )

    def _rotate_if_needed(self) -> None:
        if not self.credential_files:
            self._discover()
            return
        if self.call_count >= self.calls_per_rotation:
            self.current_index = (self.current_index + 1) % len(self.credential_files)
            self.call_count = 0
            debug_log(
                "[CREDS] 轮换到下一个凭证",
                index=self.current_index,
                file=self.credential_files[self.current_index],
            )

    async def _select_with_retry(self) -> Optional[CredentialRecord]:
        self._rotate_if_needed()
        total = len(self.credential_files)
        if total == 0:
            return None

        start = self.current_index % total
        budget = min(self.max_retries, total)

        index = start
        for _ in range(budget):
            record = await self._load_credential(self.credential_files[index])
            if record is not None:
                self.current_index = index
                return record
            index = (index + 1) % total

        # 最后再试一次起始凭证（文件可能刚被写完）
        record = await self._load_credential(self.credential_files[start])
        if record is not None:
            self.current_index = start
            return record

        error_log("[CREDS] 没有可用的凭证", tried=budget, total=total)
        return None

    # ------------------------------------------------------------------
    # 状态记录
    # ------------------------------------------------------------------

    async def record_error(self, file_name: str, status_code: int) -> None:
        async with self._lock:
            state = self._states.setdefault(file_name, CredentialState())
            if status_code in state.error_codes:
                return
            state.error_codes.append(status_code)
            while len(state.error_codes) > self.max_error_codes:
                state.error_codes.pop(0)
            warn_log("[CREDS] 记录凭证错误", file=file_name, status_code=status_code)
            await self._save_state()

    async def record_success(self, file_name: str) -> None:
        async with self._lock:
            state = self._states.setdefault(file_name, CredentialState())
            state.error_codes.clear()
            state.last_success = datetime.now(timezone.utc)
            await self._save_state()

    async def set_credential_disabled(self, file_name: str, disabled: bool) -> bool:
        """启用/禁用凭证文件；文件不存在时返回 False"""
        path = self.credentials_dir / file_name
        if file_name == STATE_FILE_NAME or path.suffix != ".json" or not path.is_file():
            return False

        async with self._lock:
            state = self._states.setdefault(file_name, CredentialState())
            state.disabled = disabled
            self._discover()
            await self._save_state()
        info_log("[CREDS] 凭证状态已更新", file=file_name, disabled=disabled)
        return True

    async def get_credentials_status(self) -> Dict[str, Any]:
        async with self._lock:
            current = None
            if self.credential_files:
                current = self.credential_files[self.current_index % len(self.credential_files)]
            return {
                "credentials": {name: state.to_dict() for name, state in sorted(self._states.items())},
                "available": list(self.credential_files),
                "current_index": self.current_index,
                "current_file": current,
                "call_count": self.call_count,
                "calls_per_rotation": self.calls_per_rotation,
            }

    # ------------------------------------------------------------------
    # 磁盘读写（调用方持有锁）
    # ------------------------------------------------------------------

    def _discover(self) -> None:
        if not self.credentials_dir.is_dir():
            self.credential_files = []
            return

        files = []
        for path in self.credentials_dir.glob("*.json"):
            if not path.is_file() or path.name == STATE_FILE_NAME:
                continue
            state = self._states.get(path.name)
            if state and state.disabled:
                continue
            files.append(path.name)

        self.credential_files = sorted(files)
        if self.current_index >= len(self.credential_files):
            self.current_index = 0
        debug_log("[CREDS] 扫描凭证目录", available=self.credential_files)

    async def _load_credential(self, file_name: str) -> Optional[CredentialRecord]:
        path = self.credentials_dir / file_name
        try:
            async with aiofiles.open(path, "rb") as f:
                raw = await f.read()
            return CredentialRecord.from_file(path, orjson.loads(raw))
        except (OSError, orjson.JSONDecodeError, ValidationError) as e:
            error_log("[CREDS] 读取凭证失败", file=file_name, error=str(e))
            return None

    async def _load_state(self) -> None:
        self._states = {}
        if not self.state_file.exists():
            return
        try:
            async with aiofiles.open(self.state_file, "rb") as f:
                raw = await f.read()
            data = orjson.loads(raw)
            if not isinstance(data, dict):
                raise ValueError("state file root is not an object")
            self._states = {
                name: CredentialState.from_dict(entry)
                for name, entry in data.items()
                if isinstance(entry, dict)
            }
            debug_log("[CREDS] 已加载凭证状态", entries=len(self._states))
        except (OSError, ValueError) as e:
            warn_log("[CREDS] 凭证状态文件无效，使用空状态", file=str(self.state_file), error=str(e))
            self._states = {}

    async def _save_state(self) -> None:
        payload = {name: state.to_dict() for name, state in sorted(self._states.items())}
        tmp_path = self.state_file.with_name(self.state_file.name + ".tmp")
        try:
            async with aiofiles.open(tmp_path, "wb") as f:
                await f.write(orjson.dumps(payload, option=orjson.OPT_INDENT_2))
            os.replace(tmp_path, self.state_file)
        except OSError as e:
            error_log("[CREDS] 保存凭证状态失败", file=str(self.state_file), error=str(e))
