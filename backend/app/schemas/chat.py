"""聊天相关的Pydantic schemas"""
from pydantic import BaseModel, Field
from typing import Optional, List, Literal


ChatMode = Literal["chat", "learning"]
LearningSubMode = Literal["summary", "flashcard", "teaching"]
ReasoningEffort = Literal["low", "medium", "high", "auto"]


class ChatRequest(BaseModel):
    """聊天请求

    未提供的字段回退到用户设置。
    """
    chat_id: str = Field(..., description="会话ID")
    message: str = Field(..., min_length=1, description="用户消息")
    model: Optional[str] = Field(None, description="模型ID")
    reasoning_effort: Optional[ReasoningEffort] = Field(None, description="推理强度")
    response_length: Optional[int] = Field(None, ge=0, le=100, description="回复长度（0-100）")
    chat_mode: Optional[ChatMode] = Field(None, description="对话模式")
    learning_sub_mode: Optional[LearningSubMode] = Field(None, description="学习子模式")
    custom_instructions: Optional[str] = Field(None, description="自定义指令")
    enabled_tools: Optional[List[str]] = Field(None, description="启用的工具能力")
    user_name: Optional[str] = Field(None, description="用户称呼")
    user_gender: Optional[str] = Field(None, description="用户性别")


class ChatStatsResponse(BaseModel):
    """最近一条助手消息的统计"""
    tokens_per_second: Optional[float] = None
    model_id: Optional[str] = None


class AutoReasoningRequest(BaseModel):
    """推理强度自动分级请求"""
    prompt: str = Field("", description="用户提示词")


class AutoReasoningResponse(BaseModel):
    effort: Literal["low", "medium", "high"]
