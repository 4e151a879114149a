"""用户设置模型"""
from sqlalchemy import Column, String, Text, Integer, DateTime

from app.models.base import Base, utcnow


class UserSettings(Base):
    """用户设置表（每个用户一行）"""
    __tablename__ = "user_settings"

    user_id = Column(String(50), primary_key=True)
    model_id = Column(String(100), nullable=True)
    reasoning_effort = Column(String(20), nullable=False, default="medium")
    response_length = Column(Integer, nullable=False, default=30)
    chat_mode = Column(String(20), nullable=False, default="chat")
    learning_sub_mode = Column(String(20), nullable=False, default="teaching")
    custom_instructions = Column(Text, nullable=True)
    enabled_tools = Column(Text, nullable=False, default='["web-search"]')  # JSON array
    user_name = Column(String(100), nullable=True)
    user_gender = Column(String(20), nullable=False, default="not-specified")
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<UserSettings {self.user_id}>"
