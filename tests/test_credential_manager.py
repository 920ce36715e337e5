"""
凭证管理器测试：发现、轮换、失败切换、状态持久化
"""

import asyncio
from datetime import datetime, timezone

import orjson
import pytest
from pydantic import ValidationError

from conftest import make_credential
from gcli2api.credential_manager import (
    STATE_FILE_NAME,
    CredentialManager,
    CredentialRecord,
)
from gcli2api.errors import NoCredentialsError


class CountingManager(CredentialManager):
    """记录每次读取的凭证文件名"""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.reads = []

    async def _load_credential(self, file_name):
        self.reads.append(file_name)
        return await super()._load_credential(file_name)


def make_manager(creds_dir, cls=CredentialManager, **kwargs):
    options = {"calls_per_rotation": 1, "max_retries": 3, "max_error_codes": 16}
    options.update(kwargs)
    manager = cls(str(creds_dir), **options)
    asyncio.run(manager.initialize())
    return manager


def read_state(creds_dir):
    return orjson.loads((creds_dir / STATE_FILE_NAME).read_bytes())


# ============================================================================
# CredentialRecord
# ============================================================================

def test_record_prefers_token_over_access_token(tmp_path):
    data = make_credential(token="from-token")
    record = CredentialRecord.from_file(tmp_path / "user-a.json", data)
    assert record.access_token == "from-token"
    assert record.credential_id == "user-a"
    assert record.file_name == "user-a.json"


def test_record_splits_scope_string(tmp_path):
    data = make_credential(scope="scope-one scope-two")
    record = CredentialRecord.from_file(tmp_path / "a.json", data)
    assert record.scopes == ["scope-one", "scope-two"]


def test_record_rejects_empty_refresh_token(tmp_path):
    with pytest.raises(ValidationError):
        CredentialRecord.from_file(tmp_path / "a.json", make_credential(refresh_token="  "))


def test_record_naive_expiry_is_utc(tmp_path):
    data = make_credential()
    data["expiry"] = "2099-01-01T00:00:00"
    record = CredentialRecord.from_file(tmp_path / "a.json", data)
    assert record.expiry.tzinfo is not None
    assert record.expiry == datetime(2099, 1, 1, tzinfo=timezone.utc)
    assert not record.is_expired()


def test_record_without_expiry_is_expired(tmp_path):
    data = make_credential()
    del data["expiry"]
    record = CredentialRecord.from_file(tmp_path / "a.json", data)
    assert record.is_expired()


def test_record_ignores_derived_fields_in_file(tmp_path):
    data = make_credential(file_name="evil.json", credential_id="evil")
    record = CredentialRecord.from_file(tmp_path / "real.json", data)
    assert record.file_name == "real.json"
    assert record.credential_id == "real"


# ============================================================================
# 发现与选择
# ============================================================================

def test_discovery_is_sorted_and_skips_state_file(creds_dir, write_credential):
    write_credential("c.json")
    write_credential("a.json")
    write_credential("b.json")
    (creds_dir / "notes.txt").write_text("ignored")
    (creds_dir / STATE_FILE_NAME).write_bytes(b"{}")

    manager = make_manager(creds_dir)
    assert manager.credential_files == ["a.json", "b.json", "c.json"]


def test_retry_selector_finds_the_usable_file(creds_dir, write_credential):
    write_credential("a.json", raw="{not json")
    write_credential("b.json", raw='{"refresh_token": ""}')
    write_credential("c.json", refresh_token="good")

    manager = make_manager(creds_dir, cls=CountingManager, calls_per_rotation=100)
    record = asyncio.run(manager.get_credentials_with_retry())

    assert record is not None
    assert record.file_name == "c.json"
    assert manager.current_index == 2
    assert len(set(manager.reads)) <= manager.max_retries


def test_retry_selector_reads_at_most_max_retries_files(creds_dir, write_credential):
    write_credential("a.json", raw="{broken")
    write_credential("b.json", raw="{broken")
    write_credential("c.json", raw="{broken")
    write_credential("d.json")

    manager = make_manager(creds_dir, cls=CountingManager, calls_per_rotation=100, max_retries=2)
    record = asyncio.run(manager.get_credentials_with_retry())

    assert record is None
    assert set(manager.reads) == {"a.json", "b.json"}
    # 最后一次重试回到起始凭证
    assert manager.reads[-1] == "a.json"


def test_get_current_credentials_tries_next_once(creds_dir, write_credential):
    write_credential("a.json", raw="[]")
    write_credential("b.json", refresh_token="second")

    manager = make_manager(creds_dir, calls_per_rotation=100)
    record = asyncio.run(manager.get_current_credentials())
    assert record.file_name == "b.json"


def test_acquire_rotates_after_calls_per_rotation(creds_dir, write_credential):
    for name in ("a.json", "b.json", "c.json"):
        write_credential(name)

    manager = make_manager(creds_dir, calls_per_rotation=2)

    async def run():
        picked = []
        for _ in range(4):
            record = await manager.acquire()
            picked.append(record.file_name)
        return picked

    assert asyncio.run(run()) == ["a.json", "b.json", "b.json", "c.json"]


def test_acquire_without_credentials_raises(creds_dir):
    manager = make_manager(creds_dir)
    with pytest.raises(NoCredentialsError) as exc_info:
        asyncio.run(manager.acquire())
    assert exc_info.value.status_code == 400


def test_acquire_picks_up_files_added_later(creds_dir, write_credential):
    manager = make_manager(creds_dir)
    assert manager.credential_files == []

    write_credential("late.json")
    record = asyncio.run(manager.acquire())
    assert record.file_name == "late.json"


def test_failover_moves_cursor_only_when_pointing_at_file(creds_dir, write_credential):
    for name in ("a.json", "b.json", "c.json"):
        write_credential(name)
    manager = make_manager(creds_dir, calls_per_rotation=100)

    asyncio.run(manager.failover_from("c.json"))
    assert manager.current_index == 0

    manager.call_count = 5
    asyncio.run(manager.failover_from("a.json"))
    assert manager.current_index == 1
    assert manager.call_count == 0


# ============================================================================
# 状态记录与持久化
# ============================================================================

def test_record_error_is_idempotent(creds_dir, write_credential):
    write_credential("a.json")
    manager = make_manager(creds_dir)

    async def run():
        await manager.record_error("a.json", 429)
        await manager.record_error("a.json", 429)
        await manager.record_error("a.json", 500)

    asyncio.run(run())
    assert read_state(creds_dir)["a.json"]["error_codes"] == [429, 500]


def test_record_error_drops_oldest_when_full(creds_dir, write_credential):
    write_credential("a.json")
    manager = make_manager(creds_dir, max_error_codes=3)

    async def run():
        for code in (400, 401, 403, 429):
            await manager.record_error("a.json", code)

    asyncio.run(run())
    assert read_state(creds_dir)["a.json"]["error_codes"] == [401, 403, 429]


def test_record_success_clears_errors(creds_dir, write_credential):
    write_credential("a.json")
    manager = make_manager(creds_dir)

    async def run():
        await manager.record_error("a.json", 500)
        await manager.record_success("a.json")

    asyncio.run(run())
    entry = read_state(creds_dir)["a.json"]
    assert entry["error_codes"] == []
    assert entry["last_success"] is not None


def test_disable_and_enable_change_eligible_files(creds_dir, write_credential):
    for name in ("b.json", "a.json", "c.json"):
        write_credential(name)
    manager = make_manager(creds_dir)

    assert asyncio.run(manager.set_credential_disabled("b.json", True)) is True
    assert manager.credential_files == ["a.json", "c.json"]

    # 状态文件被新实例读取后仍然生效
    reloaded = make_manager(creds_dir)
    assert reloaded.credential_files == ["a.json", "c.json"]

    assert asyncio.run(reloaded.set_credential_disabled("b.json", False)) is True
    assert reloaded.credential_files == ["a.json", "b.json", "c.json"]


def test_disable_unknown_file_returns_false(creds_dir, write_credential):
    write_credential("a.json")
    manager = make_manager(creds_dir)
    assert asyncio.run(manager.set_credential_disabled("missing.json", True)) is False
    assert asyncio.run(manager.set_credential_disabled(STATE_FILE_NAME, True)) is False


def test_corrupt_state_file_starts_empty(creds_dir, write_credential):
    write_credential("a.json")
    (creds_dir / STATE_FILE_NAME).write_text("{definitely not json", encoding="utf-8")

    manager = make_manager(creds_dir)
    assert manager.credential_files == ["a.json"]
    status = asyncio.run(manager.get_credentials_status())
    assert status["credentials"] == {}
    assert status["current_file"] == "a.json"
