"""全局配置加载模块：从环境变量构建执行治理参数并提供缓存访问。"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from governor.domain.enums import ExecutionMode


def _csv_to_list(value: str) -> list[str]:
    """将逗号分隔字符串转换为去空白列表。"""
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """系统运行配置对象，从环境变量读取并提供类型化访问。"""
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        protected_namespaces=("settings_",),
    )

    app_name: str = "Orbit Governor"
    api_prefix: str = "/api"
    environment: str = "dev"
    cors_allowed_origins: str = "*"
    cors_allowed_methods: str = "GET,POST,PATCH,OPTIONS"
    cors_allowed_headers: str = "Authorization,Content-Type,X-Request-Id"
    cors_allow_credentials: bool = False

    database_url: str = "sqlite:///./governor.db"

    # 执行目标只从服务端配置读取；客户端覆盖需运维显式开启。
    execution_mode: ExecutionMode = ExecutionMode.auto
    target_host: str = "127.0.0.1"
    target_user: str = "root"
    target_password: str | None = None
    target_port: int = 22
    allow_client_target_override: bool = False
    allow_key_auth: bool = False

    local_shell: str = "bash"
    local_timeout_seconds: float = 180.0
    remote_timeout_seconds: float = 180.0
    remote_connect_timeout_seconds: int = 15
    max_output_bytes: int = 4 * 1024 * 1024

    model_base_url: str = "http://127.0.0.1:11434"
    model_name: str = "gemma3:4b"
    model_timeout_seconds: float = 120.0
    model_status_timeout_seconds: float = 5.0
    summary_timeout_seconds: float = 60.0
    model_temperature: float = 0.2
    history_limit: int = 30
    summary_max_transcript_chars: int = 12_000

    log_dir: Path = Field(default=Path("./logs"))
    log_level: str = "INFO"
    log_debug_modules: str = ""
    log_debug_session_ids: str = ""
    log_redaction_mode: str = "standard"
    log_payload_preview_chars: int = 1024
    log_max_bytes: int = 20 * 1024 * 1024
    log_backup_count: int = 5

    @field_validator("execution_mode", mode="before")
    @classmethod
    def _normalize_execution_mode(cls, value: object) -> object:
        """兼容大小写与历史取值 ssh（等价于 remote）。"""
        if isinstance(value, str):
            normalized = value.strip().lower()
            if normalized == "ssh":
                return ExecutionMode.remote.value
            return normalized
        return value

    def cors_allowed_origins_list(self) -> list[str]:
        return _csv_to_list(self.cors_allowed_origins)

    def cors_allowed_methods_list(self) -> list[str]:
        return _csv_to_list(self.cors_allowed_methods)

    def cors_allowed_headers_list(self) -> list[str]:
        return _csv_to_list(self.cors_allowed_headers)

    def log_debug_modules_list(self) -> list[str]:
        return _csv_to_list(self.log_debug_modules)

    def log_debug_session_ids_list(self) -> list[str]:
        return _csv_to_list(self.log_debug_session_ids)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """构建并缓存 Settings。"""
    return Settings()
