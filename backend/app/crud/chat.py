"""会话和消息的CRUD操作

Review note:
- 消息内容的加解密不在这里做，由 PersistenceGateway 负责；
  这里只处理行级读写。
- 所有查询都带 user_id 过滤，避免越权读取他人会话。
"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from typing import Optional, List
import uuid

from app.models.chat import Chat
from app.models.message import Message
from app.schemas.conversation import ChatCreate


class CRUDChat:
    """会话CRUD操作"""

    async def get(
        self,
        db: AsyncSession,
        chat_id: str,
        user_id: Optional[str] = None,
    ) -> Optional[Chat]:
        """获取单个会话（指定 user_id 时校验归属）"""
        query = select(Chat).where(Chat.id == chat_id)
        if user_id is not None:
            query = query.where(Chat.user_id == user_id)
        result = await db.execute(query)
        return result.scalar_one_or_none()

    async def get_by_user(
        self,
        db: AsyncSession,
        user_id: str,
    ) -> List[Chat]:
        """获取用户的所有会话"""
        result = await db.execute(
            select(Chat)
            .where(Chat.user_id == user_id)
            .order_by(Chat.created_at.desc())
        )
        return list(result.scalars().all())

    async def create(
        self,
        db: AsyncSession,
        user_id: str,
        obj_in: ChatCreate,
    ) -> Chat:
        """创建会话（未提供标题时留空，首轮回复后自动生成）"""
        title = (obj_in.title or "").strip() or None
        db_obj = Chat(
            id=obj_in.id or str(uuid.uuid4()),
            user_id=user_id,
            title=title,
            mode=obj_in.mode,
        )
        db.add(db_obj)
        await db.commit()
        await db.refresh(db_obj)
        return db_obj

    async def delete(self, db: AsyncSession, chat_id: str, user_id: str) -> bool:
        """删除会话（消息与台账行级联删除）"""
        db_obj = await self.get(db, chat_id, user_id)
        if not db_obj:
            return False
        await db.delete(db_obj)
        await db.commit()
        return True

    async def set_title_if_missing(self, db: AsyncSession, chat_id: str, title: str) -> bool:
        """仅在会话还没有标题时写入（不覆盖用户手动设置的标题）"""
        result = await db.execute(
            update(Chat)
            .where(Chat.id == chat_id, Chat.title.is_(None))
            .values(title=title)
        )
        await db.commit()
        return result.rowcount > 0


class CRUDMessage:
    """消息CRUD操作"""

    async def get_by_chat(
        self,
        db: AsyncSession,
        chat_id: str,
    ) -> List[Message]:
        """获取会话的所有消息（按时间正序）"""
        result = await db.execute(
            select(Message)
            .where(Message.chat_id == chat_id)
            .order_by(Message.created_at, Message.id)
        )
        return list(result.scalars().all())

    async def get_last_assistant(
        self,
        db: AsyncSession,
        chat_id: str,
    ) -> Optional[Message]:
        """获取会话中最后一条 assistant 消息"""
        result = await db.execute(
            select(Message)
            .where(Message.chat_id == chat_id, Message.role == "assistant")
            .order_by(Message.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()


# 创建实例
chat_crud = CRUDChat()
message_crud = CRUDMessage()
