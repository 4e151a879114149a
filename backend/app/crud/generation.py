"""生成台账的CRUD操作

Review note:
- 删除操作都带条件（状态 / last_update_at），返回受影响行数，
  上层据此判断自己是否“赢得”了这一行。
"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, delete, or_
from typing import Optional, List
from datetime import datetime

from app.models.base import utcnow
from app.models.generation import (
    ActiveGeneration,
    GENERATION_STREAMING,
    GENERATION_COMPLETED,
    GENERATION_ERROR,
)


class CRUDGeneration:
    """台账CRUD操作"""

    async def get(self, db: AsyncSession, generation_id: str) -> Optional[ActiveGeneration]:
        result = await db.execute(
            select(ActiveGeneration).where(ActiveGeneration.id == generation_id)
        )
        return result.scalar_one_or_none()

    async def get_streaming_for_chat(self, db: AsyncSession, chat_id: str) -> Optional[ActiveGeneration]:
        """获取会话中正在流式生成的行"""
        result = await db.execute(
            select(ActiveGeneration)
            .where(ActiveGeneration.chat_id == chat_id, ActiveGeneration.status == GENERATION_STREAMING)
            .order_by(ActiveGeneration.started_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def create(self, db: AsyncSession, **values) -> ActiveGeneration:
        now = utcnow()
        values.setdefault("status", GENERATION_STREAMING)
        values.setdefault("started_at", now)
        values.setdefault("last_update_at", now)
        db_obj = ActiveGeneration(**values)
        db.add(db_obj)
        await db.commit()
        await db.refresh(db_obj)
        return db_obj

    async def update_fields(self, db: AsyncSession, generation_id: str, **values) -> int:
        """更新若干列并刷新 last_update_at，返回受影响行数"""
        values.setdefault("last_update_at", utcnow())
        result = await db.execute(
            update(ActiveGeneration)
            .where(ActiveGeneration.id == generation_id)
            .values(**values)
        )
        await db.commit()
        return result.rowcount

    async def list_stale_streaming(self, db: AsyncSession, cutoff: datetime) -> List[ActiveGeneration]:
        result = await db.execute(
            select(ActiveGeneration)
            .where(ActiveGeneration.status == GENERATION_STREAMING, ActiveGeneration.last_update_at < cutoff)
            .order_by(ActiveGeneration.started_at)
        )
        return list(result.scalars().all())

    async def list_completed(self, db: AsyncSession, cutoff: datetime) -> List[ActiveGeneration]:
        """已完成但消息未落库的行（最终写入失败后残留）"""
        result = await db.execute(
            select(ActiveGeneration)
            .where(
                ActiveGeneration.status == GENERATION_COMPLETED,
                ActiveGeneration.response_content.is_not(None),
                ActiveGeneration.last_update_at < cutoff,
            )
            .order_by(ActiveGeneration.started_at)
        )
        return list(result.scalars().all())

    async def delete_if_stale(self, db: AsyncSession, generation_id: str, status: str, cutoff: datetime) -> int:
        """
        按条件删除（不提交，由调用方控制事务）

        Returns:
            删除行数；0 表示该行已被他人处理或重新活跃
        """
        result = await db.execute(
            delete(ActiveGeneration).where(
                ActiveGeneration.id == generation_id,
                ActiveGeneration.status == status,
                ActiveGeneration.last_update_at < cutoff,
            )
        )
        return result.rowcount

    async def delete_row(self, db: AsyncSession, generation_id: str) -> int:
        """无条件删除（不提交）"""
        result = await db.execute(
            delete(ActiveGeneration).where(ActiveGeneration.id == generation_id)
        )
        return result.rowcount

    async def purge_finished(self, db: AsyncSession, before: datetime) -> int:
        """清理超过保留期的 error / completed 行"""
        result = await db.execute(
            delete(ActiveGeneration).where(
                ActiveGeneration.last_update_at < before,
                or_(
                    ActiveGeneration.status == GENERATION_ERROR,
                    ActiveGeneration.status == GENERATION_COMPLETED,
                ),
            )
        )
        await db.commit()
        return result.rowcount


# 创建实例
generation_crud = CRUDGeneration()
