"""Brave Search 工具（网页搜索 / 新闻搜索）"""
from __future__ import annotations

from typing import Any, Dict, List

from pydantic import BaseModel, Field

from app.services.tools.base import ToolHttp, ToolSpec

BRAVE_API_BASE = "https://api.search.brave.com/res/v1"
MAX_QUERY_CHARS = 400
MAX_COUNT = 20


class BraveSearchArgs(BaseModel):
    query: str = Field(..., min_length=1, description="The search query")
    count: int = Field(10, description="Number of results to return (default 10, max 20)")


def _clamp_count(count: int) -> int:
    return min(max(int(count), 1), MAX_COUNT)


class BraveSearch:
    def __init__(self, api_key: str, http: ToolHttp):
        self.api_key = api_key
        self.http = http

    async def _search(self, path: str, args: BraveSearchArgs, label: str) -> Any:
        count = _clamp_count(args.count)
        return await self.http.get_json(
            f"{BRAVE_API_BASE}/{path}",
            params={"q": args.query[:MAX_QUERY_CHARS], "count": str(count)},
            headers={"Accept": "application/json", "X-Subscription-Token": self.api_key},
            label=label,
        )

    async def web_search(self, args: BraveSearchArgs) -> Dict[str, Any]:
        data = await self._search("web/search", args, "Brave Search API") or {}
        items = (data.get("web") or {}).get("results") or []
        results = [
            {
                "title": r.get("title"),
                "url": r.get("url"),
                "description": r.get("description"),
                "age": r.get("age"),
            }
            for r in items[: _clamp_count(args.count)]
        ]
        return {"query": args.query, "resultCount": len(results), "results": results}

    async def news_search(self, args: BraveSearchArgs) -> Dict[str, Any]:
        data = await self._search("news/search", args, "Brave News API") or {}
        items = data.get("results") or []
        results = [
            {
                "title": r.get("title"),
                "url": r.get("url"),
                "description": r.get("description"),
                "age": r.get("age"),
                "source": (r.get("meta_url") or {}).get("hostname"),
            }
            for r in items[: _clamp_count(args.count)]
        ]
        return {"query": args.query, "resultCount": len(results), "results": results}

    def specs(self) -> List[ToolSpec]:
        return [
            ToolSpec(
                "brave_web_search",
                "Search the web for current information. Use this when you need up-to-date "
                "information, facts, news, or any web content.",
                BraveSearchArgs,
                self.web_search,
                failure_label="Search",
            ),
            ToolSpec(
                "brave_news_search",
                "Search for recent news articles. Use this when you need current news, "
                "headlines, or recent events.",
                BraveSearchArgs,
                self.news_search,
                failure_label="News search",
            ),
        ]
