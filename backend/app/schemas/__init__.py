"""Schemas包初始化"""
from app.schemas.content import (
    ToolInvocationPart,
    ReasoningPart,
    TextPart,
    GeneratedFilePart,
    ContentPart,
)
from app.schemas.conversation import (
    MessageResponse,
    ChatCreate,
    ChatResponse,
    ChatDetailResponse,
    ChatListResponse,
)
from app.schemas.chat import (
    AutoReasoningRequest,
    AutoReasoningResponse,
    ChatRequest,
    ChatStatsResponse,
)
from app.schemas.generation import GenerationStatusResponse
from app.schemas.settings import (
    UserSettingsResponse,
    UserSettingsUpdate,
)

__all__ = [
    # Content schemas
    "ToolInvocationPart",
    "ReasoningPart",
    "TextPart",
    "GeneratedFilePart",
    "ContentPart",
    # Chat / message schemas
    "MessageResponse",
    "ChatCreate",
    "ChatResponse",
    "ChatDetailResponse",
    "ChatListResponse",
    "ChatRequest",
    "ChatStatsResponse",
    "AutoReasoningRequest",
    "AutoReasoningResponse",
    # Generation schemas
    "GenerationStatusResponse",
    # Settings schemas
    "UserSettingsResponse",
    "UserSettingsUpdate",
]
