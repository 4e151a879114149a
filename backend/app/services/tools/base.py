"""工具基础设施

Review note:
- 工具执行永不抛异常：参数校验失败、网络错误、上游非 2xx、
  响应结构异常以及处理函数内的意外异常都转成
  {"error": "..."} 结果交还给模型，由模型决定如何向用户说明。
- 每次调用单独开 httpx.AsyncClient；transport 可注入，测试用 MockTransport。
"""
from __future__ import annotations

import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Type

import httpx
from pydantic import BaseModel, ValidationError

logger = logging.getLogger("uvicorn.error")


class ToolError(RuntimeError):
    """工具执行失败（消息会原样返回给模型）"""


class ToolHttp:
    """工具共用的 HTTP 访问封装"""

    def __init__(self, timeout_sec: float = 20, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout_sec = float(timeout_sec)
        self.transport = transport

    async def get_json(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        label: str = "API",
    ) -> Optional[Dict[str, Any]]:
        async with httpx.AsyncClient(timeout=self.timeout_sec, transport=self.transport) as client:
            resp = await client.get(url, params=params, headers=headers)

        if resp.status_code >= 400:
            logger.warning("tool-http-error label=%s status=%s body=%s", label, resp.status_code, resp.text[:200])
            raise ToolError(f"{label} error: {resp.status_code}")

        if not resp.content:
            return None
        try:
            data = resp.json()
        except ValueError as exc:
            raise ToolError(f"{label} returned invalid JSON") from exc
        if not isinstance(data, dict):
            raise ToolError(f"{label} returned unexpected payload")
        return data


class ToolSpec:
    """单个工具：名称、描述、参数模型、执行函数"""

    def __init__(
        self,
        name: str,
        description: str,
        args_model: Type[BaseModel],
        handler: Callable[[Any], Awaitable[Dict[str, Any]]],
        failure_label: str = "Tool",
    ):
        self.name = name
        self.description = description
        self.args_model = args_model
        self.handler = handler
        self.failure_label = failure_label

    def to_openai(self) -> Dict[str, Any]:
        """转为 OpenAI function tool 定义"""
        schema = self.args_model.model_json_schema()
        schema.pop("title", None)
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": schema,
            },
        }

    async def execute(self, args: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        started = time.monotonic()
        try:
            parsed = self.args_model.model_validate(args or {})
        except ValidationError as exc:
            detail = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'args'}: {err['msg']}" for err in exc.errors()
            )
            return {"error": f"Invalid arguments for {self.name}: {detail}"}

        try:
            result = await self.handler(parsed)
        except ToolError as exc:
            result = {"error": str(exc)}
        except httpx.HTTPError as exc:
            result = {"error": f"{self.failure_label} failed: {exc}"}
        except Exception as exc:
            logger.exception("tool-failed name=%s", self.name)
            result = {"error": f"{self.failure_label} failed: {exc}"}

        logger.info(
            "tool-call name=%s ok=%s ms=%d",
            self.name,
            "error" not in result,
            int((time.monotonic() - started) * 1000),
        )
        return result
