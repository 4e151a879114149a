"""消息内容片段（ContentPart）schemas

Review note:
- 封闭的四种变体，按 `type` 字段区分。
- 同一条消息内的顺序固定：tool-invocation* → reasoning? → text? → generated-file*。
"""
from pydantic import BaseModel, Field, TypeAdapter
from typing import Annotated, Any, Dict, List, Literal, Optional, Union


class ToolInvocationPart(BaseModel):
    """工具调用（含结果）"""
    type: Literal["tool-invocation"] = "tool-invocation"
    tool_call_id: str
    tool_name: str
    state: Literal["call", "result"] = "result"
    args: Dict[str, Any] = Field(default_factory=dict)
    result: Optional[Any] = None


class ReasoningPart(BaseModel):
    """模型推理内容"""
    type: Literal["reasoning"] = "reasoning"
    text: str


class TextPart(BaseModel):
    """正文"""
    type: Literal["text"] = "text"
    text: str


class GeneratedFilePart(BaseModel):
    """模型生成的媒体（data URL 内联）"""
    type: Literal["generated-file"] = "generated-file"
    media_type: str
    data: str


ContentPart = Annotated[
    Union[ToolInvocationPart, ReasoningPart, TextPart, GeneratedFilePart],
    Field(discriminator="type"),
]

# 变体的规范顺序，用于校验与排序
PART_ORDER = {
    "tool-invocation": 0,
    "reasoning": 1,
    "text": 2,
    "generated-file": 3,
}

_parts_adapter = TypeAdapter(List[ContentPart])


def parse_parts(raw: Any) -> List[ContentPart]:
    """把 JSON 数据解析成 ContentPart 列表"""
    return _parts_adapter.validate_python(raw or [])


def dump_parts(parts: List[ContentPart]) -> List[dict]:
    """ContentPart 列表转为可 JSON 序列化的 dict 列表"""
    return _parts_adapter.dump_python(list(parts), mode="json")


def is_canonical_order(parts: List[ContentPart]) -> bool:
    """检查片段顺序是否符合规范（reasoning / text 最多各一个）"""
    ranks = [PART_ORDER[p.type] for p in parts]
    if ranks != sorted(ranks):
        return False
    return ranks.count(1) <= 1 and ranks.count(2) <= 1
