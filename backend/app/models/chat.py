"""会话模型"""
from sqlalchemy import Column, String, DateTime
from sqlalchemy.orm import relationship

from app.models.base import Base, utcnow


class Chat(Base):
    """对话会话表"""
    __tablename__ = "chats"

    id = Column(String(50), primary_key=True)
    user_id = Column(String(50), nullable=False, index=True)
    title = Column(String(200), nullable=True)
    mode = Column(String(20), nullable=False, default="chat")  # chat, learning
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    # 关系
    messages = relationship("Message", back_populates="chat", cascade="all, delete-orphan", order_by="Message.created_at")
    generations = relationship("ActiveGeneration", back_populates="chat", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Chat {self.id}>"
