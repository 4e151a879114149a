"""YouTube 工具（搜索 / 视频详情 / 字幕）

Review note:
- 搜索结果会再查一次 videos 接口补齐播放量等统计，补齐失败不影响搜索结果。
- 字幕走公开的 timedtext 接口（json3 格式），无字幕时返回 error。
"""
from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, Field

from app.services.tools.base import ToolError, ToolHttp, ToolSpec

logger = logging.getLogger("uvicorn.error")

YOUTUBE_API_BASE = "https://www.googleapis.com/youtube/v3"
TIMEDTEXT_URL = "https://www.youtube.com/api/timedtext"
MAX_QUERY_CHARS = 100
MAX_RESULTS = 50
MAX_SEGMENTS_RETURNED = 50


class VideoSearchArgs(BaseModel):
    query: str = Field(..., min_length=1, description="Search query for YouTube videos")
    max_results: int = Field(10, description="Number of results to return (default 10, max 50)")


class VideoDetailsArgs(BaseModel):
    video_ids: List[str] = Field(..., min_length=1, description="Array of YouTube video IDs")


class TranscriptArgs(BaseModel):
    video_id: str = Field(..., min_length=1, description='YouTube video ID (e.g. "dQw4w9WgXcQ")')
    lang: Optional[str] = Field(None, description='Language code for the transcript (e.g. "en", "ru")')


def _thumbnail(snippet: Dict[str, Any]) -> str:
    thumbnails = snippet.get("thumbnails") or {}
    for size in ("medium", "default"):
        url = (thumbnails.get(size) or {}).get("url")
        if url:
            return url
    return ""


def _video_from_snippet(video_id: str, snippet: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "videoId": video_id,
        "title": snippet.get("title"),
        "description": snippet.get("description"),
        "channelTitle": snippet.get("channelTitle"),
        "channelId": snippet.get("channelId"),
        "publishedAt": snippet.get("publishedAt"),
        "thumbnailUrl": _thumbnail(snippet),
    }


def _stats(item: Dict[str, Any]) -> Dict[str, Any]:
    statistics = item.get("statistics") or {}
    return {
        "viewCount": statistics.get("viewCount"),
        "likeCount": statistics.get("likeCount"),
        "duration": (item.get("contentDetails") or {}).get("duration"),
    }


class YouTubeTools:
    def __init__(self, api_key: str, http: ToolHttp):
        self.api_key = api_key
        self.http = http

    async def search(self, args: VideoSearchArgs) -> Dict[str, Any]:
        data = await self.http.get_json(
            f"{YOUTUBE_API_BASE}/search",
            params={
                "part": "snippet",
                "q": args.query[:MAX_QUERY_CHARS],
                "type": "video",
                "maxResults": str(min(max(args.max_results, 1), MAX_RESULTS)),
                "key": self.api_key,
            },
            label="YouTube API",
        ) or {}

        results = [
            _video_from_snippet((item.get("id") or {}).get("videoId"), item.get("snippet") or {})
            for item in data.get("items") or []
        ]
        if results:
            await self._merge_stats(results)
        return {"query": args.query, "resultCount": len(results), "results": results}

    async def _merge_stats(self, results: List[Dict[str, Any]]) -> None:
        try:
            data = await self.http.get_json(
                f"{YOUTUBE_API_BASE}/videos",
                params={
                    "part": "statistics,contentDetails",
                    "id": ",".join(r["videoId"] for r in results if r.get("videoId")),
                    "key": self.api_key,
                },
                label="YouTube API",
            ) or {}
        except (ToolError, httpx.HTTPError) as exc:
            logger.warning("youtube-stats-skipped error=%s", exc)
            return

        stats_map = {item.get("id"): _stats(item) for item in data.get("items") or []}
        for result in results:
            stats = stats_map.get(result.get("videoId"))
            if stats:
                result.update(stats)

    async def video_details(self, args: VideoDetailsArgs) -> Dict[str, Any]:
        data = await self.http.get_json(
            f"{YOUTUBE_API_BASE}/videos",
            params={
                "part": "snippet,statistics,contentDetails",
                "id": ",".join(args.video_ids[:MAX_RESULTS]),
                "key": self.api_key,
            },
            label="YouTube API",
        ) or {}

        results = []
        for item in data.get("items") or []:
            video = _video_from_snippet(item.get("id"), item.get("snippet") or {})
            video.update(_stats(item))
            results.append(video)
        return {"videoIds": args.video_ids, "resultCount": len(results), "results": results}

    async def transcript(self, args: TranscriptArgs) -> Dict[str, Any]:
        data = await self.http.get_json(
            TIMEDTEXT_URL,
            params={"v": args.video_id, "lang": args.lang or "en", "fmt": "json3"},
            label="YouTube transcript",
        )
        events = (data or {}).get("events") or []

        segments = []
        for event in events:
            text = "".join(seg.get("utf8", "") for seg in event.get("segs") or []).strip()
            if not text:
                continue
            start_ms = int(event.get("tStartMs") or 0)
            segments.append({
                "text": text,
                "startMs": start_ms,
                "endMs": start_ms + int(event.get("dDurationMs") or 0),
            })

        if not segments:
            return {
                "error": "No transcript available for this video. The video may not have captions enabled.",
                "videoId": args.video_id,
            }

        full_transcript = re.sub(r"\s+", " ", " ".join(s["text"] for s in segments)).strip()
        return {
            "videoId": args.video_id,
            "language": args.lang or "auto",
            "segmentCount": len(segments),
            "charCount": len(full_transcript),
            "transcript": full_transcript,
            "segments": segments[:MAX_SEGMENTS_RETURNED],
        }

    def specs(self) -> List[ToolSpec]:
        return [
            ToolSpec(
                "youtube_search",
                "Search YouTube for videos. Use this when you need to find videos about a topic, "
                "tutorial, entertainment, music, or any YouTube content.",
                VideoSearchArgs,
                self.search,
                failure_label="YouTube search",
            ),
            ToolSpec(
                "youtube_video_details",
                "Get detailed information about specific YouTube videos by their IDs. Use this when "
                "you need view counts, likes, descriptions, or other metadata for videos.",
                VideoDetailsArgs,
                self.video_details,
                failure_label="YouTube details",
            ),
            ToolSpec(
                "youtube_get_transcript",
                "Get the transcript/captions of a YouTube video. Use this when users ask for the full "
                "text, subtitles, or transcription of a YouTube video. Extract the video ID from the URL first.",
                TranscriptArgs,
                self.transcript,
                failure_label="Failed to fetch transcript",
            ),
        ]
