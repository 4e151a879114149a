"""工具能力注册表

能力名 → 一组工具；缺少凭据的能力直接忽略，不报错。
"""
from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

import httpx

from app.services.tools.base import ToolHttp, ToolSpec
from app.services.tools.brave import BraveSearch
from app.services.tools.youtube import YouTubeTools

logger = logging.getLogger("uvicorn.error")

WEB_SEARCH = "web-search"
VIDEO = "video"

# 旧版设置中的能力名
CAPABILITY_ALIASES = {
    "brave-search": WEB_SEARCH,
    "youtube": VIDEO,
}

DEFAULT_CAPABILITIES = [WEB_SEARCH]


def normalize_capabilities(names: Optional[Iterable[str]]) -> List[str]:
    seen: List[str] = []
    for name in names or []:
        key = CAPABILITY_ALIASES.get(str(name).strip(), str(name).strip())
        if key and key not in seen:
            seen.append(key)
    return seen


class ToolRegistry:
    def __init__(self, settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        http = ToolHttp(settings.TOOL_TIMEOUT_SEC, transport=transport)
        self._capabilities: Dict[str, List[ToolSpec]] = {}
        if settings.BRAVE_API_KEY:
            self._capabilities[WEB_SEARCH] = BraveSearch(settings.BRAVE_API_KEY, http).specs()
        if settings.YOUTUBE_API_KEY:
            self._capabilities[VIDEO] = YouTubeTools(settings.YOUTUBE_API_KEY, http).specs()

    def available_capabilities(self) -> List[str]:
        return list(self._capabilities)

    def lookup_enabled_tools(self, names: Optional[Iterable[str]]) -> Dict[str, ToolSpec]:
        """
        按能力名查找工具

        Args:
            names: 用户启用的能力名（支持旧别名）

        Returns:
            工具名 → ToolSpec；未配置凭据或未知的能力被忽略
        """
        tools: Dict[str, ToolSpec] = {}
        for capability in normalize_capabilities(names):
            specs = self._capabilities.get(capability)
            if specs is None:
                logger.debug("tool-capability-unavailable name=%s", capability)
                continue
            for spec in specs:
                tools[spec.name] = spec
        return tools
