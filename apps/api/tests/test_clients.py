import httplib2
import pytest
from googleapiclient.errors import HttpError
from unittest.mock import MagicMock, patch

from ingestion.youtube import (
    ChannelResolutionError,
    YouTubeAPIError,
    YouTubeClient,
    classify_video_type,
)
from llm.client import LLMClient, LLMError, parse_json_object


@pytest.fixture
def youtube_client():
    with patch("ingestion.youtube.build") as mock_build:
        mock_build.return_value = MagicMock()
        client = YouTubeClient(api_key="fake-key", timeout=5)
        yield client


def _list_response(resource, response):
    resource.return_value.list.return_value.execute.return_value = response


def test_channel_id_resolves_without_api_calls(youtube_client):
    channel_id = "UC" + "a" * 22
    assert youtube_client.resolve_channel_identifier(channel_id) == channel_id
    assert youtube_client.resolve_channel_identifier(f"https://www.youtube.com/channel/{channel_id}") == channel_id
    assert youtube_client.api_calls == 0


def test_handle_resolves_through_lookup(youtube_client):
    _list_response(youtube_client.youtube.channels, {"items": [{"id": "UC_HANDLE"}]})

    assert youtube_client.resolve_channel_identifier("https://youtube.com/@maker") == "UC_HANDLE"
    youtube_client.youtube.channels.return_value.list.assert_called_with(part="id", forHandle="maker")
    assert youtube_client.api_calls == 1


def test_ambiguous_name_is_rejected(youtube_client):
    _list_response(youtube_client.youtube.channels, {"items": []})
    _list_response(youtube_client.youtube.search, {"items": [
        {"snippet": {"channelId": "UC_1", "title": "Maker Shed"}},
        {"snippet": {"channelId": "UC_2", "title": "Maker Shed Clips"}},
        {"snippet": {"channelId": "UC_3", "title": "The Maker"}},
    ]})

    assert youtube_client.resolve_channel_identifier("maker shed") == "UC_1"
    with pytest.raises(ChannelResolutionError):
        youtube_client.resolve_channel_identifier("maker")


def test_unknown_reference_is_rejected(youtube_client):
    _list_response(youtube_client.youtube.channels, {"items": []})
    _list_response(youtube_client.youtube.search, {"items": []})

    with pytest.raises(ChannelResolutionError):
        youtube_client.resolve_channel_identifier("@ghost")
    with pytest.raises(ChannelResolutionError):
        youtube_client.resolve_channel_identifier("   ")


def test_channel_videos_are_merged_and_sorted(youtube_client):
    _list_response(youtube_client.youtube.playlistItems, {"items": [
        {"snippet": {"title": "Older"}, "contentDetails": {"videoId": "old", "videoPublishedAt": "2024-01-01T00:00:00Z"}},
        {"snippet": {"title": "Newer"}, "contentDetails": {"videoId": "new", "videoPublishedAt": "2024-03-01T00:00:00Z"}},
    ]})
    _list_response(youtube_client.youtube.videos, {"items": [
        {"id": "old", "statistics": {"viewCount": "100", "likeCount": "5"}, "contentDetails": {"duration": "PT12M3S"}},
        {"id": "new", "statistics": {"viewCount": "900", "commentCount": "4"}, "contentDetails": {"duration": "PT45S"}},
    ]})

    videos = youtube_client.get_channel_videos("UU_TEST", max_results=10)

    assert [v["id"] for v in videos] == ["new", "old"]
    assert videos[0]["video_type"] == "short"
    assert videos[1]["duration_seconds"] == 723
    assert videos[1]["comment_count"] == 0
    assert youtube_client.api_calls == 2


def test_http_errors_become_api_errors(youtube_client):
    error = HttpError(httplib2.Response({"status": "403"}), b'{"error": {"message": "quotaExceeded"}}')
    youtube_client.youtube.channels.return_value.list.return_value.execute.side_effect = error

    with pytest.raises(YouTubeAPIError):
        youtube_client.get_channel_info("UC_X")
    assert youtube_client.api_calls == 1


def test_duration_parsing_and_type(youtube_client):
    assert youtube_client._parse_duration("P1DT2H") == 93600
    assert youtube_client._parse_duration("PT1H2M3S") == 3723
    assert youtube_client._parse_duration("") == 0
    assert classify_video_type(180) == "short"
    assert classify_video_type(181) == "long"
    assert classify_video_type(0) == "long"


def test_llm_client_without_key_is_not_configured():
    client = LLMClient(api_key="", input_cost_per_mtok=2.5, output_cost_per_mtok=10.0)

    assert client.is_configured is False
    assert client.cost_for(1_000_000, 100_000) == 3.5
    with pytest.raises(LLMError):
        client.complete("system", "prompt")


def test_parse_json_object_variants():
    assert parse_json_object('{"a": 1}') == {"a": 1}
    assert parse_json_object('```json\n{"a": 2}\n```') == {"a": 2}
    assert parse_json_object('Sure! {"a": 3} Hope that helps.') == {"a": 3}
    assert parse_json_object("no json here") is None
    assert parse_json_object("[1, 2]") is None
    assert parse_json_object("") is None
