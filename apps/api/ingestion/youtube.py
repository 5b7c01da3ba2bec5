"""
YouTube Data API client for fetching channel and video data.
"""

import logging
import re
from datetime import datetime
from typing import Optional, List, Dict, Any

import httplib2
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

logger = logging.getLogger(__name__)

# Videos at or under this length are treated as Shorts.
SHORT_MAX_SECONDS = 180


class ChannelResolutionError(Exception):
    """The channel reference is empty, unknown or matches more than one channel."""


class YouTubeAPIError(Exception):
    """A YouTube Data API request failed (network, quota, bad response)."""


def classify_video_type(duration_seconds: Optional[int]) -> str:
    seconds = duration_seconds or 0
    return "short" if 0 < seconds <= SHORT_MAX_SECONDS else "long"


def parse_published_at(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class YouTubeClient:
    """Client for interacting with YouTube Data API v3."""

    def __init__(self, api_key: str, timeout: Optional[float] = None):
        """
        Initialize YouTube client.

        Args:
            api_key: API key for public data access
            timeout: socket timeout in seconds for every request
        """
        if not api_key:
            raise ValueError("api_key must be provided")
        http = httplib2.Http(timeout=timeout) if timeout else None
        self.youtube = build("youtube", "v3", developerKey=api_key, http=http, cache_discovery=False)
        self.api_calls = 0

    def _execute(self, request) -> Dict[str, Any]:
        """Run one request, counting it and converting API failures."""
        self.api_calls += 1
        try:
            return request.execute(num_retries=0)
        except HttpError as e:
            logger.warning(f"YouTube API error: {e}")
            raise YouTubeAPIError(f"YouTube API request failed: {e}") from e
        except (OSError, httplib2.HttpLib2Error) as e:
            raise YouTubeAPIError(f"YouTube API unreachable: {e}") from e

    def resolve_channel_identifier(self, identifier: str) -> str:
        """
        Resolve various channel identifiers to a channel ID.

        Supports:
        - Channel ID (UC...)
        - Channel URL (youtube.com/channel/UC...)
        - Handle (@username or youtube.com/@username)
        - Custom URL (youtube.com/c/...)
        - Username (youtube.com/user/...)
        - A free-text channel name, when exactly one channel matches it
        """
        identifier = (identifier or "").strip()
        if not identifier:
            raise ChannelResolutionError("Channel reference is empty")

        # Already a channel ID
        if re.fullmatch(r"UC[\w-]{22}", identifier):
            return identifier

        patterns = [
            r"youtube\.com/channel/(UC[\w-]{22})",  # Channel URL
            r"youtube\.com/@([\w.-]+)",  # Handle URL
            r"youtube\.com/c/([\w.-]+)",  # Custom URL
            r"youtube\.com/user/([\w.-]+)",  # Username URL
            r"^@([\w.-]+)$",  # Handle only
        ]

        for pattern in patterns:
            match = re.search(pattern, identifier)
            if match:
                extracted = match.group(1)
                if extracted.startswith("UC") and len(extracted) == 24:
                    return extracted
                channel_id = self._lookup_handle(extracted)
                if channel_id:
                    return channel_id
                return self._search_channel(extracted)

        if "youtube.com/" in identifier or "youtu.be/" in identifier:
            raise ChannelResolutionError(f"Unrecognized YouTube channel URL: {identifier}")

        return self._lookup_handle(identifier) or self._search_channel(identifier)

    def _lookup_handle(self, handle: str) -> Optional[str]:
        response = self._execute(
            self.youtube.channels().list(part="id", forHandle=handle.lstrip("@"))
        )
        items = response.get("items") or []
        return items[0]["id"] if items else None

    def _search_channel(self, query: str) -> str:
        """Search for a channel by name; ambiguous results are rejected."""
        response = self._execute(
            self.youtube.search().list(part="snippet", q=query, type="channel", maxResults=5)
        )
        candidates: List[Dict[str, str]] = []
        for item in response.get("items", []):
            snippet = item.get("snippet", {})
            channel_id = snippet.get("channelId") or item.get("id", {}).get("channelId")
            if channel_id and all(c["id"] != channel_id for c in candidates):
                candidates.append({"id": channel_id, "title": snippet.get("title", "")})

        if not candidates:
            raise ChannelResolutionError(f"No YouTube channel found for '{query}'")
        if len(candidates) == 1:
            return candidates[0]["id"]

        exact = [c for c in candidates if c["title"].strip().lower() == query.strip().lower()]
        if len(exact) == 1:
            return exact[0]["id"]
        names = ", ".join(c["title"] for c in candidates[:3])
        raise ChannelResolutionError(f"'{query}' matches several channels ({names}); use the channel URL or ID")

    def get_channel_info(self, channel_id: str) -> Dict[str, Any]:
        """
        Get channel metadata.

        Returns:
            Dict with: id, title, description, custom_url, published_at,
                       thumbnail_url, subscriber_count, video_count, view_count,
                       uploads_playlist_id
        """
        response = self._execute(
            self.youtube.channels().list(part="snippet,statistics,contentDetails", id=channel_id)
        )
        if not response.get("items"):
            raise YouTubeAPIError(f"Channel {channel_id} was not returned by the YouTube API")

        item = response["items"][0]
        snippet = item.get("snippet", {})
        stats = item.get("statistics", {})

        return {
            "id": item["id"],
            "title": snippet.get("title", ""),
            "description": snippet.get("description", ""),
            "custom_url": snippet.get("customUrl", ""),
            "published_at": snippet.get("publishedAt", ""),
            "thumbnail_url": snippet.get("thumbnails", {}).get("high", {}).get("url", ""),
            "subscriber_count": int(stats.get("subscriberCount", 0)),
            "video_count": int(stats.get("videoCount", 0)),
            "view_count": int(stats.get("viewCount", 0)),
            "uploads_playlist_id": item.get("contentDetails", {}).get("relatedPlaylists", {}).get("uploads"),
        }

    def get_channel_videos(self, uploads_playlist_id: str, max_results: int = 50) -> List[Dict[str, Any]]:
        """
        Get the most recent uploads with statistics, newest first.

        Returns:
            List of video dicts with: id, title, description, published_at,
            thumbnail_url, view_count, like_count, comment_count,
            duration_seconds, video_type
        """
        if not uploads_playlist_id or max_results <= 0:
            return []

        videos: List[Dict[str, Any]] = []
        next_page_token = None

        while len(videos) < max_results:
            response = self._execute(
                self.youtube.playlistItems().list(
                    part="snippet,contentDetails",
                    playlistId=uploads_playlist_id,
                    maxResults=min(50, max_results - len(videos)),
                    pageToken=next_page_token,
                )
            )

            for item in response.get("items", []):
                snippet = item.get("snippet", {})
                video_id = item.get("contentDetails", {}).get("videoId")
                if not video_id:
                    continue
                videos.append({
                    "id": video_id,
                    "title": snippet.get("title", ""),
                    "description": snippet.get("description", ""),
                    "published_at": parse_published_at(
                        item.get("contentDetails", {}).get("videoPublishedAt") or snippet.get("publishedAt")
                    ),
                    "thumbnail_url": snippet.get("thumbnails", {}).get("high", {}).get("url", ""),
                })

            next_page_token = response.get("nextPageToken")
            if not next_page_token:
                break

        videos = videos[:max_results]
        details = self.get_video_details([v["id"] for v in videos])
        for video in videos:
            video.update(details.get(video["id"], {
                "view_count": 0,
                "like_count": 0,
                "comment_count": 0,
                "duration_seconds": 0,
            }))
            video["video_type"] = classify_video_type(video.get("duration_seconds"))

        videos.sort(
            key=lambda v: v["published_at"].timestamp() if v["published_at"] else 0,
            reverse=True,
        )
        return videos

    def get_video_details(self, video_ids: List[str]) -> Dict[str, Dict[str, Any]]:
        """
        Get detailed stats for videos.

        Args:
            video_ids: List of video IDs, fetched in batches of 50

        Returns:
            Dict mapping video_id to stats dict with: view_count, like_count,
            comment_count, duration_seconds
        """
        result = {}

        for i in range(0, len(video_ids), 50):
            batch = video_ids[i:i + 50]
            response = self._execute(
                self.youtube.videos().list(part="statistics,contentDetails", id=",".join(batch))
            )

            for item in response.get("items", []):
                stats = item.get("statistics", {})
                content = item.get("contentDetails", {})
                result[item["id"]] = {
                    "view_count": int(stats.get("viewCount", 0)),
                    "like_count": int(stats.get("likeCount", 0)),
                    "comment_count": int(stats.get("commentCount", 0)),
                    "duration_seconds": self._parse_duration(content.get("duration", "PT0S")),
                }

        return result

    def _parse_duration(self, duration: str) -> int:
        """Parse ISO 8601 duration to seconds."""
        match = re.match(r"P(?:(\d+)D)?T?(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?", duration or "")
        if not match:
            return 0

        days = int(match.group(1) or 0)
        hours = int(match.group(2) or 0)
        minutes = int(match.group(3) or 0)
        seconds = int(match.group(4) or 0)

        return days * 86400 + hours * 3600 + minutes * 60 + seconds


def create_youtube_client_with_api_key(api_key: str, timeout: Optional[float] = None) -> YouTubeClient:
    """Create a YouTube client using an API key."""
    return YouTubeClient(api_key=api_key, timeout=timeout)
