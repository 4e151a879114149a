"""用户设置的CRUD操作"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import Optional
import json

from app.models.user_settings import UserSettings
from app.schemas.settings import UserSettingsUpdate


class CRUDUserSettings:
    """用户设置CRUD操作"""

    async def get(self, db: AsyncSession, user_id: str) -> Optional[UserSettings]:
        """获取设置"""
        result = await db.execute(
            select(UserSettings).where(UserSettings.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def upsert(self, db: AsyncSession, user_id: str, obj_in: UserSettingsUpdate) -> UserSettings:
        """更新设置（不存在时创建）"""
        settings_row = await self.get(db, user_id)
        if not settings_row:
            settings_row = UserSettings(user_id=user_id)
            db.add(settings_row)

        update_data = obj_in.model_dump(exclude_unset=True)
        if "enabled_tools" in update_data:
            update_data["enabled_tools"] = json.dumps(update_data["enabled_tools"] or [], ensure_ascii=False)
        for field, value in update_data.items():
            if hasattr(settings_row, field):
                setattr(settings_row, field, value)

        await db.commit()
        await db.refresh(settings_row)
        return settings_row


# 创建实例
user_settings_crud = CRUDUserSettings()
