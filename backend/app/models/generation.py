"""生成台账模型

Review note:
- 每个进行中的生成一行，保存部分文本 / 推理的检查点。
- 正常完成时由编排器删除；进程中断时由对账任务转成消息后删除。
"""
from sqlalchemy import Column, String, Text, Float, Integer, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from app.models.base import Base, utcnow

GENERATION_STREAMING = "streaming"
GENERATION_COMPLETED = "completed"
GENERATION_ERROR = "error"


class ActiveGeneration(Base):
    """进行中的生成表"""
    __tablename__ = "active_generations"

    id = Column(String(50), primary_key=True)
    chat_id = Column(String(50), ForeignKey("chats.id", ondelete="CASCADE"), nullable=False, index=True)
    model_id = Column(String(100), nullable=False)
    reasoning_effort = Column(String(20), nullable=True, default="medium")
    status = Column(String(20), nullable=False, default=GENERATION_STREAMING, index=True)
    started_at = Column(DateTime, default=utcnow, nullable=False)
    first_chunk_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    last_update_at = Column(DateTime, default=utcnow, nullable=False)
    partial_text = Column(Text, nullable=False, default="")
    partial_reasoning = Column(Text, nullable=False, default="")
    response_content = Column(Text, nullable=True)  # JSON snapshot of the finalized parts
    learning_sub_mode = Column(String(20), nullable=True)
    tokens_per_second = Column(Float, nullable=True)
    total_tokens = Column(Integer, nullable=True)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    # 关系
    chat = relationship("Chat", back_populates="generations")

    def __repr__(self):
        return f"<ActiveGeneration {self.id} {self.status}>"
