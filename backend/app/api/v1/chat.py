"""聊天API（流式输出）

Review note:
- 生成在编排器的后台 task 中运行；本接口只负责把 relay 订阅编码成 SSE。
- 客户端断开时只关闭 relay 订阅，生成继续完成并落库。
- 请求中未提供的参数回退到用户设置，再回退到默认值。
"""
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession
from typing import AsyncGenerator, Optional

from app.database import get_chat_session
from app.crud.chat import chat_crud, message_crud
from app.crud.user_settings import user_settings_crud
from app.models.user_settings import UserSettings
from app.schemas.chat import AutoReasoningRequest, AutoReasoningResponse, ChatRequest, ChatStatsResponse
from app.schemas.generation import GenerationStatusResponse
from app.schemas.settings import UserSettingsResponse
from app.services.generation.events import encode_sse
from app.services.generation.model_profile import UnknownModelError
from app.services.generation.orchestrator import (
    ChatNotFoundError,
    GenerationConflictError,
    GenerationHandle,
    GenerationOrchestrator,
    GenerationRequest,
)
from app.services.identity import Identity, require_caller
from app.services.tools.registry import DEFAULT_CAPABILITIES

router = APIRouter()


def get_orchestrator(request: Request) -> GenerationOrchestrator:
    return request.app.state.orchestrator


def build_generation_request(
    body: ChatRequest,
    identity: Identity,
    user_settings: Optional[UserSettings],
) -> GenerationRequest:
    """合并请求参数与用户设置"""
    saved = UserSettingsResponse.model_validate(user_settings) if user_settings else None

    def pick(name: str, default):
        value = getattr(body, name)
        if value is not None:
            return value
        if saved is not None and getattr(saved, name) is not None:
            return getattr(saved, name)
        return default

    return GenerationRequest(
        chat_id=body.chat_id,
        user_id=identity.user_id,
        message=body.message,
        model_id=body.model or (saved.model_id if saved else None),
        reasoning_effort=pick("reasoning_effort", "medium"),
        response_length=pick("response_length", 30),
        chat_mode=body.chat_mode or (saved.chat_mode if saved else "chat"),
        learning_sub_mode=pick("learning_sub_mode", "teaching"),
        custom_instructions=pick("custom_instructions", None),
        enabled_tools=pick("enabled_tools", list(DEFAULT_CAPABILITIES)),
        user_name=pick("user_name", ""),
        user_gender=pick("user_gender", "not-specified"),
    )


async def relay_stream(handle: GenerationHandle) -> AsyncGenerator[str, None]:
    """把 relay 订阅编码成 SSE 帧"""
    try:
        async for event in handle.events():
            yield encode_sse(event)
    finally:
        handle.detach()


@router.post("/chat/stream")
async def chat_stream(
    body: ChatRequest,
    identity: Identity = Depends(require_caller),
    chat_db: AsyncSession = Depends(get_chat_session),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    """流式聊天接口（SSE）"""
    user_settings = await user_settings_crud.get(chat_db, identity.user_id)
    generation_request = build_generation_request(body, identity, user_settings)

    try:
        handle = await orchestrator.start(generation_request)
    except ChatNotFoundError:
        raise HTTPException(status_code=404, detail="会话不存在")
    except UnknownModelError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except GenerationConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return StreamingResponse(
        relay_stream(handle),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # 禁用nginx缓冲
        }
    )


@router.get("/chat/stats", response_model=ChatStatsResponse)
async def chat_stats(
    chat_id: str = Query(..., description="会话ID"),
    identity: Identity = Depends(require_caller),
    chat_db: AsyncSession = Depends(get_chat_session),
):
    """最近一条助手消息的 tokens/s 与模型"""
    chat = await chat_crud.get(chat_db, chat_id, identity.user_id)
    if not chat:
        raise HTTPException(status_code=404, detail="会话不存在")

    message = await message_crud.get_last_assistant(chat_db, chat_id)
    if not message:
        return ChatStatsResponse()
    return ChatStatsResponse(tokens_per_second=message.tokens_per_second, model_id=message.model)


@router.get("/chat/{chat_id}/generation", response_model=GenerationStatusResponse)
async def get_active_generation(
    chat_id: str,
    request: Request,
    identity: Identity = Depends(require_caller),
    chat_db: AsyncSession = Depends(get_chat_session),
):
    """进行中生成的快照（客户端重连时展示部分内容）"""
    chat = await chat_crud.get(chat_db, chat_id, identity.user_id)
    if not chat:
        raise HTTPException(status_code=404, detail="会话不存在")

    row = await request.app.state.ledger.get_streaming(chat_id)
    if not row:
        raise HTTPException(status_code=404, detail="没有进行中的生成")
    return row


@router.post("/chat/auto-reasoning", response_model=AutoReasoningResponse)
async def auto_reasoning(
    body: AutoReasoningRequest,
    identity: Identity = Depends(require_caller),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    """按提示词复杂度推荐推理强度（失败时返回 medium）"""
    return AutoReasoningResponse(effort=await orchestrator.classify_effort(body.prompt))
