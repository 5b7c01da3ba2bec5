"""In-memory stand-ins for the YouTube Data API and the LLM."""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Union

from ingestion.youtube import ChannelResolutionError, classify_video_type
from llm.client import LLMError, LLMResponse
from models.channel import Channel
from models.video import Video


def video_item(
    video_id: str,
    title: str,
    views: int,
    days_ago: float = 1,
    likes: Optional[int] = None,
    comments: Optional[int] = None,
    duration: int = 600,
) -> Dict[str, Any]:
    """A video dict shaped like YouTubeClient.get_channel_videos output."""
    return {
        "id": video_id,
        "title": title,
        "description": "",
        "published_at": datetime.now(timezone.utc) - timedelta(days=days_ago),
        "thumbnail_url": "",
        "view_count": views,
        "like_count": likes if likes is not None else views * 4 // 100,
        "comment_count": comments if comments is not None else views // 200,
        "duration_seconds": duration,
        "video_type": classify_video_type(duration),
    }


def channel_info(youtube_channel_id: str, title: str, subscribers: int, video_count: int = 0) -> Dict[str, Any]:
    return {
        "id": youtube_channel_id,
        "title": title,
        "description": "",
        "custom_url": "",
        "published_at": "2020-01-01T00:00:00Z",
        "thumbnail_url": "",
        "subscriber_count": subscribers,
        "video_count": video_count,
        "view_count": subscribers * 50,
        "uploads_playlist_id": f"UU{youtube_channel_id[2:]}",
    }


class FakeYouTube:
    """Channel data shared by every client it hands out."""

    def __init__(self):
        self.channels: Dict[str, Dict[str, Any]] = {}
        self.uploads: Dict[str, List[Dict[str, Any]]] = {}
        self.references: Dict[str, str] = {}
        self.error: Optional[Exception] = None
        self.info_requests = 0
        self.clients: List["FakeYouTubeClient"] = []

    def add_channel(self, info: Dict[str, Any], videos: List[Dict[str, Any]], *references: str) -> None:
        self.channels[info["id"]] = info
        self.uploads[info["uploads_playlist_id"]] = list(videos)
        for reference in references:
            self.references[reference] = info["id"]

    def client(self) -> "FakeYouTubeClient":
        client = FakeYouTubeClient(self)
        self.clients.append(client)
        return client

    @property
    def total_api_calls(self) -> int:
        return sum(c.api_calls for c in self.clients)


class FakeYouTubeClient:
    """Counts one API call per channel lookup and two per video listing."""

    def __init__(self, backend: FakeYouTube):
        self.backend = backend
        self.api_calls = 0

    def resolve_channel_identifier(self, identifier: str) -> str:
        identifier = (identifier or "").strip()
        if identifier in self.backend.channels:
            return identifier
        if identifier in self.backend.references:
            self.api_calls += 1
            return self.backend.references[identifier]
        raise ChannelResolutionError(f"No YouTube channel found for '{identifier}'")

    def get_channel_info(self, channel_id: str) -> Dict[str, Any]:
        self.api_calls += 1
        self.backend.info_requests += 1
        if self.backend.error is not None:
            raise self.backend.error
        return dict(self.backend.channels[channel_id])

    def get_channel_videos(self, uploads_playlist_id: str, max_results: int = 50) -> List[Dict[str, Any]]:
        self.api_calls += 2
        items = sorted(
            self.backend.uploads.get(uploads_playlist_id, []),
            key=lambda v: v["published_at"],
            reverse=True,
        )
        return [dict(v) for v in items[:max_results]]


Responder = Callable[[str, str, bool], Union[str, Exception]]


class FakeLLMClient:
    """Answers from a list of canned replies or a responder function."""

    is_configured = True

    def __init__(
        self,
        replies: Optional[List[Union[str, Exception]]] = None,
        responder: Optional[Responder] = None,
        default: str = "{}",
        input_tokens: int = 100,
        output_tokens: int = 50,
        cost: float = 0.001,
    ):
        self.replies = list(replies or [])
        self.responder = responder
        self.default = default
        self.input_tokens = input_tokens
        self.output_tokens = output_tokens
        self.cost = cost
        self.calls: List[Dict[str, Any]] = []

    def complete(self, system_prompt: str, prompt: str, max_tokens: int = 2000, json_mode: bool = True) -> LLMResponse:
        self.calls.append({"system_prompt": system_prompt, "prompt": prompt, "json_mode": json_mode})
        if self.responder is not None:
            reply = self.responder(system_prompt, prompt, json_mode)
        elif self.replies:
            reply = self.replies.pop(0)
        else:
            reply = self.default
        if isinstance(reply, Exception):
            raise reply
        return LLMResponse(
            text=reply,
            input_tokens=self.input_tokens,
            output_tokens=self.output_tokens,
            cost=self.cost,
        )


def audit_responder(
    series: str = '{"series": []}',
    opportunities: str = '{"content_gaps": [{"gap": "No Shorts", "potential_impact": "high"}], "growth_levers": []}',
    recommendations: Union[str, Exception] = '{"stop": [], "start": [{"action": "Post Shorts"}], "optimize": []}',
    summary: Union[str, Exception] = "# Audit\n\nSolid channel.",
) -> Responder:
    """Route each prompt of an audit to a canned reply."""

    def respond(system_prompt: str, prompt: str, json_mode: bool) -> Union[str, Exception]:
        if "implicit series" in prompt:
            return series
        if prompt.startswith("Analyze opportunities"):
            return opportunities
        if prompt.startswith("Generate strategic recommendations"):
            return recommendations
        if prompt.startswith("Write an executive summary"):
            return summary
        return LLMError(f"Unexpected prompt: {prompt[:40]}")

    return respond


async def seed_channel(
    session_factory,
    youtube_channel_id: str,
    subscribers: int,
    videos: List[Dict[str, Any]],
    category_id: Optional[str] = None,
    name: Optional[str] = None,
    sync_enabled: bool = True,
) -> str:
    """Insert a cached channel (a benchmark peer) with its videos; returns the row id."""
    async with session_factory() as db:
        channel = Channel(
            youtube_channel_id=youtube_channel_id,
            name=name or youtube_channel_id,
            subscriber_count=subscribers,
            category_id=category_id,
            sync_enabled=sync_enabled,
            created_via="competitor_import",
        )
        db.add(channel)
        await db.flush()
        for item in videos:
            db.add(Video(
                youtube_video_id=item["id"],
                channel_id=channel.id,
                title=item["title"],
                published_at=item["published_at"],
                duration_seconds=item["duration_seconds"],
                video_type=item["video_type"],
                view_count=item["view_count"],
                like_count=item["like_count"],
                comment_count=item["comment_count"],
            ))
        await db.commit()
        return channel.id
