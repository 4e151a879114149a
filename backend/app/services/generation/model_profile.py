"""模型档案

Review note:
- 模型 ID 只在启动时解析一次，得到 (家族 × 能力标记)，请求路径上不再做子串判断。
- 推理强度按家族映射到具体的请求参数。
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional


class ModelFamily(str, Enum):
    GEMINI_3 = "gemini-3"
    GEMINI_2 = "gemini-2"
    OPENAI_REASONING = "openai-reasoning"
    OPENAI = "openai"
    GENERIC = "generic"


class ReasoningStyle(str, Enum):
    NONE = "none"
    EFFORT = "effort"  # reasoning_effort 参数
    LEVEL = "level"  # thinking level（low / high）
    BUDGET = "budget"  # thinking budget（token 数）


# Gemini 2.x 的 thinking budget：最小 512，最大 24576
THINKING_BUDGETS = {"low": 2048, "medium": 8192, "high": 24576}


@dataclass(frozen=True)
class ModelProfile:
    model_id: str
    family: ModelFamily
    reasoning: ReasoningStyle
    supports_tools: bool = True
    image_output: bool = False

    def request_options(self, reasoning_effort: str) -> Dict[str, Any]:
        """生成本模型需要附加到 chat.completions.create 的参数"""
        effort = reasoning_effort if reasoning_effort in THINKING_BUDGETS else "medium"
        if self.reasoning is ReasoningStyle.EFFORT:
            return {"reasoning_effort": effort}
        if self.reasoning is ReasoningStyle.LEVEL:
            # Gemini 3 只区分 low / high
            return _google_thinking({"thinking_level": "low" if effort == "low" else "high"})
        if self.reasoning is ReasoningStyle.BUDGET:
            return _google_thinking({"thinking_budget": THINKING_BUDGETS[effort]})
        if self.image_output:
            return {"extra_body": {"modalities": ["image", "text"]}}
        return {}


def _google_thinking(config: Dict[str, Any]) -> Dict[str, Any]:
    # Gemini 的 OpenAI 兼容接口要求 extra_body 再嵌一层 extra_body
    thinking_config = {**config, "include_thoughts": True}
    return {"extra_body": {"extra_body": {"google": {"thinking_config": thinking_config}}}}


def resolve_profile(model_id: str) -> ModelProfile:
    """按模型 ID 解析档案（仅在构建目录时调用）"""
    clean = model_id.strip()
    name = clean.split("/", 1)[-1].lower()

    if name.startswith("gemini"):
        if "image" in name:
            return ModelProfile(clean, ModelFamily.GEMINI_2, ReasoningStyle.NONE, supports_tools=False, image_output=True)
        if name.startswith("gemini-3"):
            return ModelProfile(clean, ModelFamily.GEMINI_3, ReasoningStyle.LEVEL)
        return ModelProfile(clean, ModelFamily.GEMINI_2, ReasoningStyle.BUDGET)
    if name.startswith(("o1", "o3", "o4", "gpt-5")):
        return ModelProfile(clean, ModelFamily.OPENAI_REASONING, ReasoningStyle.EFFORT)
    if name.startswith("gpt"):
        return ModelProfile(clean, ModelFamily.OPENAI, ReasoningStyle.NONE)
    return ModelProfile(clean, ModelFamily.GENERIC, ReasoningStyle.NONE)


class UnknownModelError(LookupError):
    """请求的模型不在配置目录中"""


class ModelCatalog:
    """已配置模型的档案目录"""

    def __init__(self, model_ids: Iterable[str], default_model: Optional[str] = None):
        self._profiles: Dict[str, ModelProfile] = {}
        for model_id in model_ids:
            profile = resolve_profile(model_id)
            self._profiles[profile.model_id] = profile
        if default_model and default_model not in self._profiles:
            self._profiles[default_model] = resolve_profile(default_model)
        self.default_model = default_model or next(iter(self._profiles), None)

    @classmethod
    def from_settings(cls, settings) -> "ModelCatalog":
        return cls(settings.models_list, settings.DEFAULT_MODEL)

    def get(self, model_id: Optional[str]) -> ModelProfile:
        key = (model_id or self.default_model or "").strip()
        profile = self._profiles.get(key)
        if profile is None:
            raise UnknownModelError(f"未配置的模型: {key or '(empty)'}")
        return profile

    def profiles(self) -> List[ModelProfile]:
        return list(self._profiles.values())
