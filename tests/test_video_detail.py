"""Tests for the video detail read path."""

import json
from datetime import datetime, timezone

import pytest
from conftest import insert_video

from api.database import likes, subscriptions, transcripts
from api.detail_cache import VIDEO_DETAIL_SCOPE, DetailCache
from api.enums import ProcessingStatus
from api.errors import NotFoundError
from api.video_detail import detail_cache_params, get_video_detail, is_publicly_visible


@pytest.fixture
def cache():
    return DetailCache(default_ttl=20)


class TestDetailCacheParams:
    def test_defaults(self):
        assert detail_cache_params("v1", None, None) == {"videoId": "v1", "viewerId": "anonymous", "quality": "auto"}

    def test_quality_is_normalized(self):
        assert detail_cache_params("v1", "u", " 720P ")["quality"] == "720p"
        assert detail_cache_params("v1", "u", "  ")["quality"] == "auto"


class TestIsPubliclyVisible:
    def test_visibility(self):
        video = {"is_published": True, "is_hls_ready": True, "processing_status": "COMPLETED", "is_deleted": False}
        assert is_publicly_visible(video) is True
        assert is_publicly_visible({**video, "is_deleted": True}) is False
        assert is_publicly_visible({**video, "processing_status": "PROCESSING"}) is False
        assert is_publicly_visible({**video, "is_hls_ready": False}) is False


class TestGetVideoDetail:
    @pytest.mark.asyncio
    async def test_projection_for_viewer(self, store, cache, test_database, sample_video, viewer):
        await test_database.execute(likes.insert().values(id="l1", video_id=sample_video, user_id="user-2"))
        await test_database.execute(
            subscriptions.insert().values(id="s1", subscriber_id="user-2", channel_id="user-1")
        )
        await test_database.execute(
            transcripts.insert().values(
                id="t1", video_id=sample_video, language="en", word_count=42, updated_at=datetime.now(timezone.utc)
            )
        )

        result = await get_video_detail(store, cache, sample_video, viewer_id="user-2")

        assert result["message"] == "Video fetched successfully"
        payload = result["payload"]
        assert payload["id"] == sample_video
        assert payload["views"] == 1
        assert payload["owner"]["username"] == "creator"
        assert payload["owner"]["fullName"] == "Creator One"
        assert payload["owner"]["subscribersCount"] == 1
        assert payload["owner"]["isSubscribed"] is True
        assert payload["likesCount"] == 1
        assert payload["isLiked"] is True
        assert payload["viewerContext"] == {"isOwner": False}
        assert payload["transcript"]["hasTranscript"] is True
        assert payload["transcript"]["wordCount"] == 42
        assert payload["selectedQuality"] == "AUTO"
        assert payload["availableQualities"][:2] == ["AUTO", "MAX"]
        assert "q_auto:good" in payload["playbackUrl"]

    @pytest.mark.asyncio
    async def test_anonymous_viewer(self, store, cache, sample_video):
        payload = (await get_video_detail(store, cache, sample_video))["payload"]

        assert payload["isLiked"] is False
        assert payload["owner"]["isSubscribed"] is False
        assert payload["transcript"] == {"hasTranscript": False, "language": None, "wordCount": 0, "updatedAt": None}

    @pytest.mark.asyncio
    async def test_requested_quality(self, store, cache, sample_video):
        payload = (await get_video_detail(store, cache, sample_video, quality="720p"))["payload"]

        assert payload["selectedQuality"] == "720p"
        assert "c_limit,h_720" in payload["playbackUrl"]

    @pytest.mark.asyncio
    async def test_cache_hit_returns_cached_payload_and_counts_view(self, store, cache, sample_video):
        first = await get_video_detail(store, cache, sample_video, viewer_id="user-2")
        first_json = json.dumps(first, sort_keys=True, default=str)
        second = await get_video_detail(store, cache, sample_video, viewer_id="user-2")

        assert json.dumps(second, sort_keys=True, default=str) == first_json
        assert second["payload"]["views"] == 1
        assert (await store.get_video(sample_video))["views"] == 2
        assert cache.get_stats()["entry_count"] == 1

    @pytest.mark.asyncio
    async def test_cache_hit_for_owner_does_not_count(self, store, cache, sample_video):
        await get_video_detail(store, cache, sample_video, viewer_id="user-1")
        result = await get_video_detail(store, cache, sample_video, viewer_id="user-1")

        assert result["payload"]["viewerContext"]["isOwner"] is True
        assert (await store.get_video(sample_video))["views"] == 0

    @pytest.mark.asyncio
    async def test_owner_sees_unfinished_video(self, store, cache, pending_video):
        result = await get_video_detail(store, cache, pending_video, viewer_id="user-1")

        assert result["payload"]["processingStatus"] == ProcessingStatus.PENDING.value
        assert result["payload"]["views"] == 0

    @pytest.mark.asyncio
    async def test_non_owner_cannot_see_unfinished_video(self, store, cache, pending_video):
        with pytest.raises(NotFoundError):
            await get_video_detail(store, cache, pending_video, viewer_id="user-2")
        with pytest.raises(NotFoundError):
            await get_video_detail(store, cache, pending_video)

    @pytest.mark.asyncio
    async def test_deleted_video_hidden_from_owner(self, store, cache, test_database, owner):
        video_id = await insert_video(test_database, is_deleted=True, deleted_at=datetime.now(timezone.utc))

        with pytest.raises(NotFoundError):
            await get_video_detail(store, cache, video_id, viewer_id="user-1")

    @pytest.mark.asyncio
    async def test_unknown_video(self, store, cache):
        with pytest.raises(NotFoundError):
            await get_video_detail(store, cache, "missing")

    @pytest.mark.asyncio
    async def test_stale_cache_entry_becomes_not_found(self, store, cache, sample_video):
        await get_video_detail(store, cache, sample_video, viewer_id="user-2")
        await store.update_video(sample_video, is_deleted=True, deleted_at=datetime.now(timezone.utc))

        with pytest.raises(NotFoundError):
            await get_video_detail(store, cache, sample_video, viewer_id="user-2")

        params = detail_cache_params(sample_video, "user-2", None)
        assert (await cache.get(VIDEO_DETAIL_SCOPE, params)).hit is False
        assert (await store.get_video(sample_video))["views"] == 1
