"""模型包初始化"""
from app.models.base import Base
from app.models.chat import Chat
from app.models.message import Message
from app.models.generation import ActiveGeneration
from app.models.user_settings import UserSettings

__all__ = [
    "Base",
    "Chat",
    "Message",
    "ActiveGeneration",
    "UserSettings",
]
