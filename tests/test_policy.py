"""
tests.test_policy
~~~~~~~~~~~~~~~~~

咨询策略加载与 Prompt 构建测试。
"""
from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from counsel_relay.core.policy import PolicyConfig, load_policy
from counsel_relay.prompts import counseling
from counsel_relay.prompts.counseling import build_draft_turns, build_refine_turns


class TestPolicyConfig:
    """测试策略默认值与模板校验。"""

    def test_defaults_come_from_builtin_prompts(self) -> None:
        policy = PolicyConfig()

        assert policy.draft_system_prompt == counseling.DRAFT_SYSTEM_PROMPT
        assert policy.refine_system_prompt == counseling.REFINE_SYSTEM_PROMPT
        assert policy.draft_error_message

    def test_notices(self) -> None:
        policy = PolicyConfig()

        assert policy.join_notice("A", "client") == "A（来访者）进入了咨询室。"
        assert policy.leave_notice("Kim", "counselor") == "Kim（咨询师）离开了咨询室。"

    def test_unknown_role_label_falls_back_to_role(self) -> None:
        assert PolicyConfig().role_label("observer") == "observer"

    def test_unknown_placeholder_is_rejected(self) -> None:
        with pytest.raises(ValidationError):
            PolicyConfig(draft_user_template="{utterance} {history}")

    def test_malformed_template_is_rejected(self) -> None:
        with pytest.raises(ValidationError):
            PolicyConfig(join_notice_template="{name")

    def test_empty_error_message_is_rejected(self) -> None:
        with pytest.raises(ValidationError):
            PolicyConfig(draft_error_message="")


class TestLoadPolicy:
    """测试 YAML 策略文件加载。"""

    def test_missing_file_uses_defaults(self, tmp_path: Path) -> None:
        assert load_policy(tmp_path / "nope.yaml") == PolicyConfig()
        assert load_policy(None) == PolicyConfig()

    def test_yaml_overrides_fields(self, tmp_path: Path) -> None:
        path = tmp_path / "policy.yaml"
        path.write_text(
            "draft_system_prompt: 自定义系统提示\n"
            "draft_error_message: 暂时无法生成\n",
            encoding="utf-8",
        )

        policy = load_policy(path)

        assert policy.draft_system_prompt == "自定义系统提示"
        assert policy.draft_error_message == "暂时无法生成"
        assert policy.refine_system_prompt == counseling.REFINE_SYSTEM_PROMPT

    def test_empty_file_uses_defaults(self, tmp_path: Path) -> None:
        path = tmp_path / "policy.yaml"
        path.write_text("", encoding="utf-8")

        assert load_policy(path) == PolicyConfig()

    def test_non_mapping_file_fails(self, tmp_path: Path) -> None:
        path = tmp_path / "policy.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")

        with pytest.raises(ValueError):
            load_policy(path)

    def test_invalid_template_in_file_fails(self, tmp_path: Path) -> None:
        path = tmp_path / "policy.yaml"
        path.write_text("refine_user_template: '{unknown}'\n", encoding="utf-8")

        with pytest.raises(ValidationError):
            load_policy(path)


class TestBuildTurns:
    """测试 Prompt 轮次组装。"""

    def test_draft_turns(self) -> None:
        policy = PolicyConfig(draft_user_template="来访者：{utterance}")

        turns = build_draft_turns(policy, "I feel worthless")

        assert turns == [
            {"role": "system", "content": policy.draft_system_prompt},
            {"role": "user", "content": "来访者：I feel worthless"},
        ]

    def test_refine_turns(self) -> None:
        policy = PolicyConfig(refine_user_template="{utterance} | {instruction}")

        turns = build_refine_turns(policy, "I feel worthless", "more empathetic")

        assert turns[0]["content"] == policy.refine_system_prompt
        assert turns[1]["content"] == "I feel worthless | more empathetic"
