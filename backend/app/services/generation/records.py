"""生成过程中的不可变记录类型"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from app.services.generation.telemetry import Usage


@dataclass(frozen=True)
class ToolCall:
    call_id: str
    name: str
    args: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolResult:
    call_id: str
    name: str
    output: Any = None


@dataclass(frozen=True)
class GeneratedFile:
    media_type: str
    data: str  # base64


@dataclass(frozen=True)
class StepResult:
    """单个步骤的增量结果"""
    text: str = ""
    reasoning: str = ""
    tool_calls: Tuple[ToolCall, ...] = ()
    tool_results: Tuple[ToolResult, ...] = ()
    files: Tuple[GeneratedFile, ...] = ()
    usage: Usage = Usage()
    finish_reason: Optional[str] = None


@dataclass(frozen=True)
class GenerationState:
    """所有步骤折叠后的累计状态"""
    text: str = ""
    reasoning: str = ""
    tool_calls: Tuple[ToolCall, ...] = ()
    tool_results: Tuple[ToolResult, ...] = ()
    files: Tuple[GeneratedFile, ...] = ()
    usage: Usage = Usage()
    steps: int = 0
    finish_reason: Optional[str] = None

    def absorb(self, step: StepResult) -> "GenerationState":
        return GenerationState(
            text=self.text + step.text,
            reasoning=self.reasoning + step.reasoning,
            tool_calls=self.tool_calls + step.tool_calls,
            tool_results=self.tool_results + step.tool_results,
            files=self.files + step.files,
            usage=self.usage + step.usage,
            steps=self.steps + 1,
            finish_reason=step.finish_reason,
        )
