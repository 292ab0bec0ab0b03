"""执行路由：决定本地或远程执行，并只从服务端配置组装执行目标。"""

from __future__ import annotations

import logging

from governor.config import Settings
from governor.domain.enums import ExecutionMode
from governor.domain.models import ExecutionTarget, TargetOverrides

logger = logging.getLogger(__name__)

# auto 模式只识别这两个字面量；IPv6 回环与主机别名暂不视为本机。
LOOPBACK_HOSTS = frozenset({"127.0.0.1", "localhost"})


class ExecutionRouter:
    """执行路由器，屏蔽治理进程与被管主机是否同机部署的差异。"""
    def __init__(
        self,
        *,
        mode: ExecutionMode,
        default_target: ExecutionTarget,
        allow_client_override: bool = False,
        allow_key_auth: bool = False,
    ) -> None:
        self._mode = mode
        self._default_target = default_target
        self._allow_client_override = allow_client_override
        self._allow_key_auth = allow_key_auth

    @classmethod
    def from_settings(cls, settings: Settings) -> ExecutionRouter:
        return cls(
            mode=settings.execution_mode,
            default_target=ExecutionTarget(
                host=settings.target_host,
                user=settings.target_user,
                password=settings.target_password or None,
                port=settings.target_port,
            ),
            allow_client_override=settings.allow_client_target_override,
            allow_key_auth=settings.allow_key_auth,
        )

    @property
    def mode(self) -> ExecutionMode:
        return self._mode

    def should_run_locally(self, target: ExecutionTarget) -> bool:
        """local 恒本地，remote 恒远程，auto 仅在回环地址时本地执行。"""
        if self._mode == ExecutionMode.local:
            return True
        if self._mode == ExecutionMode.remote:
            return False
        return target.host in LOOPBACK_HOSTS

    def resolve_target(self, overrides: TargetOverrides | None = None) -> ExecutionTarget:
        """组装执行目标；客户端覆盖项仅在运维显式开启后生效。"""
        base = self._default_target
        if overrides is None:
            return base
        if not self._allow_client_override:
            if overrides.host or overrides.user or overrides.password:
                logger.warning(
                    "client target override ignored",
                    extra={"event": "execution.target.override_ignored", "payload_preview": {"host": overrides.host}},
                )
            return base
        return ExecutionTarget(
            host=overrides.host or base.host,
            user=overrides.user or base.user,
            password=overrides.password or base.password,
            port=base.port,
        )

    def ensure_credentials(self, target: ExecutionTarget) -> None:
        """远程执行缺少密码且未允许密钥认证时拒绝请求。"""
        if self.should_run_locally(target):
            return
        if not target.password and not self._allow_key_auth:
            raise ValueError(
                "Missing target password. Set TARGET_PASSWORD on the server (recommended), "
                "or enable key auth with ALLOW_KEY_AUTH."
            )

    def runner_target(self, target: ExecutionTarget) -> ExecutionTarget | None:
        """返回交给执行器的目标；本地执行时为 None。"""
        return None if self.should_run_locally(target) else target
