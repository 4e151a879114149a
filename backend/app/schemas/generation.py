"""生成台账相关的Pydantic schemas"""
from pydantic import BaseModel, ConfigDict
from typing import Optional
from datetime import datetime


class GenerationStatusResponse(BaseModel):
    """进行中生成的快照（供客户端重连展示）"""
    model_config = ConfigDict(from_attributes=True)

    id: str
    chat_id: str
    model_id: str
    reasoning_effort: Optional[str]
    status: str
    started_at: datetime
    first_chunk_at: Optional[datetime]
    last_update_at: datetime
    partial_text: str
    partial_reasoning: str
    error: Optional[str]
