"""技能注册中心测试：查询、列举顺序与提示词渲染。"""

import pytest

from governor.domain.models import Skill
from governor.domain.skills.registry import SkillRegistry


def test_default_catalog_order() -> None:
    """默认技能按注册顺序列出。"""
    registry = SkillRegistry()
    assert [item["id"] for item in registry.list_descriptors()] == [
        "health-check",
        "quick-fix",
        "vpn-status",
        "repo-sync",
        "service-restart",
    ]
    assert registry.list_descriptors()[0] == {"id": "health-check", "title": "System Health Check"}


def test_get_unknown_skill_raises_key_error() -> None:
    registry = SkillRegistry()
    with pytest.raises(KeyError):
        registry.get("rm-rf")


def test_contains_rejects_non_string_ids() -> None:
    """模型可能返回任意 JSON 类型，非字符串一律视为未知。"""
    registry = SkillRegistry()
    assert registry.contains("vpn-status")
    assert not registry.contains(None)
    assert not registry.contains(["health-check"])


def test_duplicate_skill_id_rejected() -> None:
    skill = Skill(id="a", title="A", command="true")
    with pytest.raises(ValueError):
        SkillRegistry([skill, skill])


def test_render_catalog_and_rules() -> None:
    """提示词目录与规则覆盖全部技能，并以 Otherwise respond 结尾。"""
    registry = SkillRegistry(
        [
            Skill(id="disk", title="Disk Usage", command="df -h", when="about disk space"),
            Skill(id="uptime", title="Uptime", command="uptime"),
        ]
    )
    assert registry.render_catalog() == "- disk: Disk Usage\n- uptime: Uptime"
    rules = registry.render_rules().splitlines()
    assert rules == ["- If the user asks about disk space, use disk.", "- Otherwise respond."]
