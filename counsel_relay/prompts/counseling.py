"""
counsel_relay.prompts.counseling
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

咨询辅助草稿的内置 Prompt 与 Prompt 构建工具。

Prompt 文案属于配置：这里只提供默认值，运行时以 ``PolicyConfig``
（可由 YAML 文件覆盖）为准。构建函数只负责把策略和输入拼成对话轮次。
"""
from __future__ import annotations

from typing import TYPE_CHECKING

from counsel_relay.llm.base import PromptTurn

if TYPE_CHECKING:
    from counsel_relay.core.policy import PolicyConfig

# ---------------------------------------------------------------------------
# 系统 Prompt —— 基于拜伦·凯蒂"四个问题"（The Work）的咨询辅助
# ---------------------------------------------------------------------------
DRAFT_SYSTEM_PROMPT: str = """\
你是一名遵循拜伦·凯蒂"四个问题"（The Work）方法的心理咨询助理。
请始终保持共情、不评判的态度，针对来访者的信念与想法，参考以下顺序简短清晰地回应：
1) 这是真的吗？
2) 你能绝对确定这是真的吗？
3) 当你相信这个想法时，你会如何反应？伴随着哪些情绪、身体感受或行为？
4) 如果没有这个想法，你会是谁？或者你能如何换个角度看待这个情境？
规则：
• 不要一次把所有问题都抛出，结合上下文用 2~4 句话提出下一步探索，每轮只提一个问题。
• 一旦出现自伤或伤害他人的风险迹象，立即以安全为先，建议联系当地专业机构或紧急求助渠道。
• 避免下诊断结论、医学处方或法律意见。\
"""

DRAFT_USER_TEMPLATE: str = (
    '来访者消息："""{utterance}"""\n'
    "请基于上述方法，写一段咨询师可以直接发送给来访者的回复草稿，2~4 句话。"
)

REFINE_SYSTEM_PROMPT: str = """\
你是一名遵循拜伦·凯蒂"四个问题"方法的咨询助理。请结合咨询师的反馈，
针对来访者的消息给出一个更好的回复，2~4 句话。出现自伤或伤害他人的风险时，优先给出安全指引。\
"""

REFINE_USER_TEMPLATE: str = (
    '来访者消息："""{utterance}"""\n'
    '咨询师指示："""{instruction}"""\n'
    "请在保持上述理念的前提下改进回复。"
)

# ---------------------------------------------------------------------------
# 推送给咨询师 / 房间的固定提示语
# ---------------------------------------------------------------------------
DRAFT_ERROR_MESSAGE: str = "生成 AI 回复草稿时出错，请稍后重试。"
REFINE_ERROR_MESSAGE: str = "AI 修改草稿时出错，请稍后重试。"
NO_UTTERANCE_MESSAGE: str = "来访者还没有发送消息，暂时无法修改草稿。"
RATE_LIMITED_MESSAGE: str = "修改指令发送得太快啦，请稍后再试。"

JOIN_NOTICE_TEMPLATE: str = "{name}（{role_label}）进入了咨询室。"
LEAVE_NOTICE_TEMPLATE: str = "{name}（{role_label}）离开了咨询室。"

ROLE_LABELS: dict[str, str] = {
    "client": "来访者",
    "counselor": "咨询师",
}


def build_draft_turns(policy: PolicyConfig, utterance: str) -> list[PromptTurn]:
    """为来访者的一条消息组装草稿生成的对话轮次。

    Args:
        policy: 当前生效的咨询策略。
        utterance: 来访者消息原文。

    Returns:
        ``[system, user]`` 两轮 Prompt。
    """
    return [
        {"role": "system", "content": policy.draft_system_prompt},
        {"role": "user", "content": policy.draft_user_template.format(utterance=utterance)},
    ]


def build_refine_turns(policy: PolicyConfig, utterance: str, instruction: str) -> list[PromptTurn]:
    """为咨询师的修改指令组装对话轮次。

    每次修改都从同一条来访者消息 + 本次指令重新推导，
    不携带之前的草稿或历史指令。
    """
    return [
        {"role": "system", "content": policy.refine_system_prompt},
        {
            "role": "user",
            "content": policy.refine_user_template.format(
                utterance=utterance, instruction=instruction,
            ),
        },
    ]
