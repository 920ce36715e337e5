"""
Thinking-mode suffix handling (-nothinking / -maxthinking)
"""

from typing import Optional

from .schemas import GeminiThinkingConfig


NOTHINKING_SUFFIX = "-nothinking"
MAXTHINKING_SUFFIX = "-maxthinking"

NOTHINKING_BUDGET = 128
MAXTHINKING_BUDGET = 32768
# -1 交给上游决定
DEFAULT_BUDGET = -1


def get_base_model_name(model_name: str) -> str:
    for suffix in (MAXTHINKING_SUFFIX, NOTHINKING_SUFFIX):
        if model_name.endswith(suffix):
            return model_name[: -len(suffix)]
    return model_name


def is_nothinking_model(model_name: str) -> bool:
    return NOTHINKING_SUFFIX in model_name


def is_maxthinking_model(model_name: str) -> bool:
    return MAXTHINKING_SUFFIX in model_name


def is_image_model(model_name: str) -> bool:
    return "gemini-2.5-flash-image" in model_name


def get_thinking_budget(model_name: str) -> int:
    if is_nothinking_model(model_name):
        return NOTHINKING_BUDGET
    if is_maxthinking_model(model_name):
        return MAXTHINKING_BUDGET
    return DEFAULT_BUDGET


def should_include_thoughts(model_name: str) -> bool:
    """-nothinking 只有 2.5 pro 仍返回思考内容（pro 不允许完全关闭思考）"""
    if is_nothinking_model(model_name):
        return "gemini-2.5-pro" in get_base_model_name(model_name)
    return True


def get_thinking_config(model_name: str) -> Optional[GeminiThinkingConfig]:
    # 图像模型不支持 thinking
    if is_image_model(model_name):
        return None
    return GeminiThinkingConfig(
        thinking_budget=get_thinking_budget(model_name),
        include_thoughts=should_include_thoughts(model_name),
    )
