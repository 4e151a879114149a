"""用户设置相关的Pydantic schemas"""
from pydantic import BaseModel, Field, field_validator, ConfigDict
from typing import Optional, List
import json

from app.schemas.chat import ChatMode, LearningSubMode, ReasoningEffort


class UserSettingsResponse(BaseModel):
    """用户设置响应"""
    model_config = ConfigDict(from_attributes=True)

    model_id: Optional[str]
    reasoning_effort: str
    response_length: int
    chat_mode: str
    learning_sub_mode: str
    custom_instructions: Optional[str]
    enabled_tools: List[str]
    user_name: Optional[str]
    user_gender: str

    @field_validator("enabled_tools", mode="before")
    @classmethod
    def parse_enabled_tools(cls, v):
        if v is None:
            return []
        if isinstance(v, list):
            return v
        if isinstance(v, str):
            try:
                parsed = json.loads(v)
            except json.JSONDecodeError:
                return []
            return parsed if isinstance(parsed, list) else []
        return []


class UserSettingsUpdate(BaseModel):
    """更新用户设置"""
    model_id: Optional[str] = None
    reasoning_effort: Optional[ReasoningEffort] = None
    response_length: Optional[int] = Field(None, ge=0, le=100)
    chat_mode: Optional[ChatMode] = None
    learning_sub_mode: Optional[LearningSubMode] = None
    custom_instructions: Optional[str] = None
    enabled_tools: Optional[List[str]] = None
    user_name: Optional[str] = Field(None, max_length=100)
    user_gender: Optional[str] = None
