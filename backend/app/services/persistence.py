"""消息持久化网关

Review note:
- 消息只在这里编码（ContentPart JSON → 加密）后落库，读取时反向解码。
- finalize_generation 在一个事务里写入助手消息并删除对应台账行；
  台账行已不存在（被对账任务抢先处理）时仍提交消息，只记录警告。
"""
from __future__ import annotations

import json
import logging
import uuid
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.crud.chat import message_crud
from app.crud.generation import generation_crud
from app.models.message import Message
from app.schemas.content import ContentPart, dump_parts, parse_parts
from app.schemas.conversation import MessageResponse
from app.services.crypto import ContentCipher

logger = logging.getLogger("uvicorn.error")


class PersistenceGateway:
    def __init__(self, session_maker: async_sessionmaker, cipher: ContentCipher):
        self.session_maker = session_maker
        self.cipher = cipher

    def encode_parts(self, chat_id: str, parts: List[ContentPart]) -> str:
        raw = json.dumps(dump_parts(parts), ensure_ascii=False)
        return self.cipher.encrypt(raw, chat_id)

    def decode_parts(self, chat_id: str, stored: str) -> List[ContentPart]:
        return parse_parts(json.loads(self.cipher.decrypt(stored or "[]", chat_id)))

    def build_message(
        self,
        chat_id: str,
        role: str,
        parts: List[ContentPart],
        model: Optional[str] = None,
        learning_sub_mode: Optional[str] = None,
        tokens_per_second: Optional[float] = None,
    ) -> Message:
        """构造（未落库的）消息行"""
        return Message(
            id=str(uuid.uuid4()),
            chat_id=chat_id,
            role=role,
            content=self.encode_parts(chat_id, parts),
            model=model,
            learning_sub_mode=learning_sub_mode,
            tokens_per_second=tokens_per_second,
        )

    async def save_message(self, chat_id: str, role: str, parts: List[ContentPart], **meta) -> Message:
        async with self.session_maker() as session:
            message = self.build_message(chat_id, role, parts, **meta)
            session.add(message)
            await session.commit()
            await session.refresh(message)
            return message

    async def finalize_generation(
        self,
        generation_id: str,
        chat_id: str,
        parts: List[ContentPart],
        **meta,
    ) -> Message:
        """写入最终助手消息并删除台账行（同一事务）"""
        async with self.session_maker() as session:
            async with session.begin():
                message = self.build_message(chat_id, "assistant", parts, **meta)
                session.add(message)
                deleted = await generation_crud.delete_row(session, generation_id)
            if not deleted:
                logger.warning("generation-row-missing id=%s chat=%s", generation_id, chat_id)
            return message

    async def load_messages(self, session: AsyncSession, chat_id: str) -> List[MessageResponse]:
        """读取并解密会话的所有消息"""
        rows = await message_crud.get_by_chat(session, chat_id)
        return [self.to_response(row) for row in rows]

    def to_response(self, message: Message) -> MessageResponse:
        return MessageResponse(
            id=message.id,
            chat_id=message.chat_id,
            role=message.role,
            content=self.decode_parts(message.chat_id, message.content),
            model=message.model,
            learning_sub_mode=message.learning_sub_mode,
            tokens_per_second=message.tokens_per_second,
            created_at=message.created_at,
        )
