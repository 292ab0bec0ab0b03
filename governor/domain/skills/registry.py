"""技能注册中心：只读技能表的查询、列举与提示词渲染。"""

from __future__ import annotations

from collections.abc import Iterable

from governor.domain.models import Skill
from governor.domain.skills.catalog import DEFAULT_SKILLS


class SkillRegistry:
    """技能注册中心。构造后不提供任何修改接口，技能模板不能来自请求。"""
    def __init__(self, skills: Iterable[Skill] = DEFAULT_SKILLS) -> None:
        self._skills: dict[str, Skill] = {}
        for skill in skills:
            if skill.id in self._skills:
                raise ValueError(f"duplicate skill id: {skill.id}")
            self._skills[skill.id] = skill

    def get(self, skill_id: str) -> Skill:
        """按技能 ID 获取技能，未知 ID 抛出 KeyError。"""
        try:
            return self._skills[skill_id]
        except KeyError as exc:
            raise KeyError(f"unknown skill: {skill_id}") from exc

    def contains(self, skill_id: object) -> bool:
        return isinstance(skill_id, str) and skill_id in self._skills

    def all(self) -> list[Skill]:
        """按注册顺序返回全部技能。"""
        return list(self._skills.values())

    def list_descriptors(self) -> list[dict[str, str]]:
        """返回 `{id, title}` 列表，顺序稳定，用于接口展示与提示词。"""
        return [{"id": skill.id, "title": skill.title} for skill in self._skills.values()]

    def render_catalog(self) -> str:
        return "\n".join(f"- {skill.id}: {skill.title}" for skill in self._skills.values())

    def render_rules(self) -> str:
        """根据技能的使用提示生成路由规则。"""
        rules = [
            f"- If the user asks {skill.when}, use {skill.id}."
            for skill in self._skills.values()
            if skill.when
        ]
        rules.append("- Otherwise respond.")
        return "\n".join(rules)
