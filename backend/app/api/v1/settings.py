"""用户设置与模型目录API"""
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_chat_session
from app.crud.user_settings import user_settings_crud
from app.schemas.settings import UserSettingsResponse, UserSettingsUpdate
from app.services.identity import Identity, require_caller
from app.services.tools.registry import DEFAULT_CAPABILITIES

router = APIRouter()


@router.get("/settings", response_model=UserSettingsResponse)
async def get_settings(
    request: Request,
    identity: Identity = Depends(require_caller),
    db: AsyncSession = Depends(get_chat_session),
):
    """获取用户设置（未保存过时返回默认值）"""
    row = await user_settings_crud.get(db, identity.user_id)
    if not row:
        return UserSettingsResponse(
            model_id=request.app.state.catalog.default_model,
            reasoning_effort="medium",
            response_length=30,
            chat_mode="chat",
            learning_sub_mode="teaching",
            custom_instructions=None,
            enabled_tools=list(DEFAULT_CAPABILITIES),
            user_name=None,
            user_gender="not-specified",
        )
    return UserSettingsResponse.model_validate(row)


@router.put("/settings", response_model=UserSettingsResponse)
async def update_settings(
    body: UserSettingsUpdate,
    request: Request,
    identity: Identity = Depends(require_caller),
    db: AsyncSession = Depends(get_chat_session),
):
    """更新用户设置"""
    if body.model_id:
        catalog = request.app.state.catalog
        if body.model_id not in {p.model_id for p in catalog.profiles()}:
            raise HTTPException(status_code=404, detail=f"未配置的模型: {body.model_id}")
    row = await user_settings_crud.upsert(db, identity.user_id, body)
    return UserSettingsResponse.model_validate(row)


@router.get("/models")
async def list_models(request: Request):
    """已配置的模型目录（分组 + 能力）"""
    catalog = request.app.state.catalog
    return {
        "default_model": catalog.default_model,
        "model_groups": request.app.state.settings.models_grouped,
        "models": [
            {
                "id": profile.model_id,
                "family": profile.family.value,
                "reasoning": profile.reasoning.value,
                "supports_tools": profile.supports_tools,
                "image_output": profile.image_output,
            }
            for profile in catalog.profiles()
        ],
        "tool_capabilities": request.app.state.tool_registry.available_capabilities(),
    }
