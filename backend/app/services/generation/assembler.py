"""把分步输出整理成有序的 ContentPart 列表"""
from __future__ import annotations

from typing import Iterable, List, Optional

from app.schemas.content import (
    ContentPart,
    GeneratedFilePart,
    ReasoningPart,
    TextPart,
    ToolInvocationPart,
)
from app.services.generation.records import GeneratedFile, ToolCall, ToolResult


def assemble_content(
    tool_calls: Iterable[ToolCall] = (),
    tool_results: Iterable[ToolResult] = (),
    reasoning: str = "",
    text: str = "",
    files: Iterable[GeneratedFile] = (),
) -> List[ContentPart]:
    """
    组装最终消息内容

    顺序固定：工具调用 → 推理 → 正文 → 生成的文件。
    没有结果的工具调用也会保留（result=None, state="call"），
    否则存档的对话与模型实际看到的上下文不一致。
    """
    results = {}
    for item in tool_results:
        results.setdefault(item.call_id, item)

    parts: List[ContentPart] = []
    for call in tool_calls:
        matched: Optional[ToolResult] = results.get(call.call_id)
        parts.append(
            ToolInvocationPart(
                tool_call_id=call.call_id,
                tool_name=call.name,
                state="result" if matched is not None else "call",
                args=dict(call.args or {}),
                result=matched.output if matched is not None else None,
            )
        )

    if reasoning:
        parts.append(ReasoningPart(text=reasoning))
    if text:
        parts.append(TextPart(text=text))
    for f in files:
        parts.append(GeneratedFilePart(media_type=f.media_type, data=f"data:{f.media_type};base64,{f.data}"))
    return parts


def recover_partial_content(partial_reasoning: str, partial_text: str) -> List[ContentPart]:
    """台账检查点 → 内容片段（推理在前，正文在后）"""
    return assemble_content(reasoning=partial_reasoning or "", text=partial_text or "")
