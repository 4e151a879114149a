"""消息模型

Review note:
- content 为有序 ContentPart 列表的 JSON，经 ContentCipher 加密后落库。
- 消息一经写入不再修改。
"""
from sqlalchemy import Column, String, Text, Float, DateTime, ForeignKey, CheckConstraint, Index
from sqlalchemy.orm import relationship

from app.models.base import Base, utcnow


class Message(Base):
    """消息表"""
    __tablename__ = "messages"

    id = Column(String(50), primary_key=True)
    chat_id = Column(String(50), ForeignKey("chats.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(String(20), nullable=False)  # user, assistant, tool
    content = Column(Text, nullable=False)
    model = Column(String(100), nullable=True)
    learning_sub_mode = Column(String(20), nullable=True)
    tokens_per_second = Column(Float, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    # 关系
    chat = relationship("Chat", back_populates="messages")

    # 约束
    __table_args__ = (
        CheckConstraint("role IN ('user', 'assistant', 'tool')", name="check_role"),
        Index("messages_chat_id_created_at_idx", "chat_id", "created_at"),
    )

    def __repr__(self):
        return f"<Message {self.role} {self.id}>"
