"""会话管理API"""
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_chat_session
from app.crud.chat import chat_crud
from app.schemas.conversation import (
    ChatCreate,
    ChatResponse,
    ChatDetailResponse,
    ChatListResponse,
)
from app.services.identity import Identity, require_caller

router = APIRouter()


@router.get("/chats", response_model=ChatListResponse)
async def list_chats(
    identity: Identity = Depends(require_caller),
    db: AsyncSession = Depends(get_chat_session),
):
    """获取当前用户的所有会话"""
    chats = await chat_crud.get_by_user(db, identity.user_id)
    return ChatListResponse(chats=[ChatResponse.model_validate(c) for c in chats])


@router.post("/chats", response_model=ChatResponse)
async def create_chat(
    body: ChatCreate,
    identity: Identity = Depends(require_caller),
    db: AsyncSession = Depends(get_chat_session),
):
    """创建会话"""
    if body.id and await chat_crud.get(db, body.id):
        raise HTTPException(status_code=409, detail="会话已存在")
    chat = await chat_crud.create(db, identity.user_id, body)
    return ChatResponse.model_validate(chat)


@router.get("/chats/{chat_id}", response_model=ChatDetailResponse)
async def get_chat(
    chat_id: str,
    request: Request,
    identity: Identity = Depends(require_caller),
    db: AsyncSession = Depends(get_chat_session),
):
    """获取会话详情（含解密后的消息）"""
    chat = await chat_crud.get(db, chat_id, identity.user_id)
    if not chat:
        raise HTTPException(status_code=404, detail="会话不存在")

    messages = await request.app.state.gateway.load_messages(db, chat_id)
    return ChatDetailResponse(
        id=chat.id,
        title=chat.title,
        mode=chat.mode,
        created_at=chat.created_at,
        messages=messages,
    )


@router.delete("/chats/{chat_id}")
async def delete_chat(
    chat_id: str,
    identity: Identity = Depends(require_caller),
    db: AsyncSession = Depends(get_chat_session),
):
    """删除会话"""
    success = await chat_crud.delete(db, chat_id, identity.user_id)
    if not success:
        raise HTTPException(status_code=404, detail="会话不存在")
    return {"success": True, "message": "会话已删除"}
