"""会话相关的Pydantic schemas"""
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List
from datetime import datetime

from app.schemas.content import ContentPart
from app.schemas.chat import ChatMode


class MessageResponse(BaseModel):
    """消息响应"""
    id: str
    chat_id: str
    role: str
    content: List[ContentPart] = Field(default_factory=list)
    model: Optional[str] = None
    learning_sub_mode: Optional[str] = None
    tokens_per_second: Optional[float] = None
    created_at: datetime


class ChatCreate(BaseModel):
    """创建会话（id 可由客户端生成）"""
    id: Optional[str] = Field(None, min_length=1, max_length=50)
    title: Optional[str] = Field(None, max_length=200)
    mode: ChatMode = "chat"


class ChatResponse(BaseModel):
    """会话响应（不含消息）"""
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: Optional[str]
    mode: str
    created_at: datetime


class ChatDetailResponse(ChatResponse):
    """会话详情响应（含消息）"""
    messages: List[MessageResponse] = Field(default_factory=list)


class ChatListResponse(BaseModel):
    """会话列表响应"""
    chats: List[ChatResponse]
