"""调用方身份

认证由上游网关完成，这里只信任其注入的 X-User-Id 头。
"""
from dataclasses import dataclass
from typing import Optional

from fastapi import HTTPException, Request

USER_ID_HEADER = "X-User-Id"


@dataclass(frozen=True)
class Identity:
    user_id: str


def resolve_caller(request: Request) -> Optional[Identity]:
    user_id = (request.headers.get(USER_ID_HEADER) or "").strip()
    if not user_id:
        return None
    return Identity(user_id=user_id)


async def require_caller(request: Request) -> Identity:
    """FastAPI 依赖：未识别调用方时返回 401"""
    identity = resolve_caller(request)
    if identity is None:
        raise HTTPException(status_code=401, detail="未认证")
    return identity
