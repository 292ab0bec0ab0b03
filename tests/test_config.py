"""配置加载测试：环境变量读取与执行模式归一化。"""

import pytest
from pydantic import ValidationError

from governor.config import Settings
from governor.domain.enums import ExecutionMode


def test_defaults() -> None:
    settings = Settings(_env_file=None, execution_mode="auto")
    assert settings.execution_mode == ExecutionMode.auto
    assert settings.target_host == "127.0.0.1"
    assert settings.allow_client_target_override is False
    assert settings.allow_key_auth is False
    assert settings.local_timeout_seconds == 180
    assert settings.history_limit == 30
    assert settings.api_prefix == "/api"


@pytest.mark.parametrize(("raw", "expected"), [("LOCAL", ExecutionMode.local), (" ssh ", ExecutionMode.remote), ("remote", ExecutionMode.remote)])
def test_execution_mode_normalized(raw: str, expected: ExecutionMode) -> None:
    assert Settings(execution_mode=raw).execution_mode == expected


def test_invalid_execution_mode_rejected() -> None:
    with pytest.raises(ValidationError):
        Settings(execution_mode="telepathy")


def test_reads_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TARGET_HOST", "203.0.113.9")
    monkeypatch.setenv("TARGET_PASSWORD", "pw")
    monkeypatch.setenv("ALLOW_KEY_AUTH", "true")
    monkeypatch.setenv("LOG_DEBUG_SESSION_IDS", "s1, s2,")
    settings = Settings()
    assert settings.target_host == "203.0.113.9"
    assert settings.target_password == "pw"
    assert settings.allow_key_auth is True
    assert settings.log_debug_session_ids_list() == ["s1", "s2"]
