"""HTTP-level tests for the feed API."""

from uuid import UUID, uuid4

import httpx
import pytest

from conftest import auth_headers, create_video, make_token
from pawfeed.cache import get_cache
from pawfeed.db import get_db
from pawfeed.dependencies import get_encode_queue
from pawfeed.main import app
from pawfeed.models import VideoStatus
from pawfeed.storage import get_storage_client
from pawfeed.tasks.video_processor import hls_prefix

BREEDER = auth_headers("breeder-1", "breeder")
ADOPTER = auth_headers("adopter-1", "adopter")


@pytest.fixture
async def client(session_factory, storage, cache, queue):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_storage_client] = lambda: storage
    app.dependency_overrides[get_cache] = lambda: cache
    app.dependency_overrides[get_encode_queue] = lambda: queue

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


async def test_upload_flow(client, storage, queue):
    response = await client.post(
        "/feed/videos/upload-url",
        json={"title": "puppy-intro", "tags": ["#강아지"]},
        headers=BREEDER,
    )
    assert response.status_code == 201
    body = response.json()
    video_id = body["video_id"]
    storage.objects[body["storage_key"]] = b"raw"

    completed = await client.post(f"/feed/videos/{video_id}/upload-complete", headers=BREEDER)
    assert completed.status_code == 202
    assert completed.json()["status"] == "processing"
    assert queue.jobs == [(UUID(video_id), body["storage_key"])]

    again = await client.post(f"/feed/videos/{video_id}/upload-complete", headers=BREEDER)
    assert again.status_code == 409
    assert "detail" in again.json()

    # Not visible to anyone but the uploader until ready
    anonymous = await client.get(f"/feed/videos/{video_id}")
    assert anonymous.status_code == 404
    owner = await client.get(f"/feed/videos/{video_id}", headers=BREEDER)
    assert owner.status_code == 200
    assert owner.json()["play_url"] is None


async def test_upload_requires_auth(client):
    response = await client.post("/feed/videos/upload-url", json={"title": "puppy-intro"})

    assert response.status_code in (401, 403)


async def test_invalid_token_is_rejected(client):
    headers = {"Authorization": f"Bearer {make_token('breeder-1', secret='x' * 40)}"}

    response = await client.post("/feed/videos/upload-url", json={"title": "puppy-intro"}, headers=headers)

    assert response.status_code == 401


async def test_unknown_role_is_rejected(client):
    response = await client.post(
        "/feed/videos/upload-url",
        json={"title": "puppy-intro"},
        headers=auth_headers("someone", "admin"),
    )

    assert response.status_code == 401


async def test_upload_validation_errors(client):
    missing_title = await client.post("/feed/videos/upload-url", json={}, headers=BREEDER)
    long_title = await client.post("/feed/videos/upload-url", json={"title": "x" * 101}, headers=BREEDER)

    assert missing_title.status_code == 422
    assert long_title.status_code == 400


async def test_complete_upload_by_other_user_is_forbidden(client, session_factory):
    video_id = await create_video(session_factory, status=VideoStatus.UPLOADING)

    response = await client.post(f"/feed/videos/{video_id}/upload-complete", headers=ADOPTER)

    assert response.status_code == 403


async def test_queue_outage_returns_503(client, session_factory, queue):
    video_id = await create_video(session_factory, status=VideoStatus.UPLOADING)
    queue.fail = True

    response = await client.post(f"/feed/videos/{video_id}/upload-complete", headers=BREEDER)

    assert response.status_code == 503


async def test_ready_video_meta_and_feed(client, session_factory):
    video_id = await create_video(session_factory, tags=["강아지"])

    meta = await client.get(f"/feed/videos/{video_id}")
    feed = await client.get("/feed/videos", params={"page": 1, "limit": 10})

    assert meta.status_code == 200
    assert meta.json()["play_url"].endswith("?expires=3000")
    assert meta.json()["tags"] == ["강아지"]
    assert feed.status_code == 200
    assert [item["video_id"] for item in feed.json()["items"]] == [str(video_id)]
    assert feed.json()["pagination"]["page_size"] == 10


async def test_feed_limit_is_bounded(client):
    response = await client.get("/feed/videos", params={"limit": 51})

    assert response.status_code == 422


async def test_view_endpoint_always_succeeds(client, session_factory):
    ready_id = await create_video(session_factory)

    counted = await client.post(f"/feed/videos/{ready_id}/view")
    missing = await client.post(f"/feed/videos/{uuid4()}/view")

    assert counted.status_code == 200
    assert counted.json() == {"counted": True}
    assert missing.status_code == 200
    assert missing.json() == {"counted": False}


async def test_stream_proxy_headers(client, session_factory, storage):
    video_id = await create_video(session_factory)
    storage.objects[f"{hls_prefix(video_id)}master.m3u8"] = b"#EXTM3U\n"
    storage.objects[f"{hls_prefix(video_id)}stream_360p_000.ts"] = b"\x47ts"

    first = await client.get(f"/feed/videos/stream/{video_id}/master.m3u8")
    second = await client.get(f"/feed/videos/stream/{video_id}/master.m3u8")
    segment = await client.get(f"/feed/videos/stream/{video_id}/stream_360p_000.ts")

    assert first.status_code == 200
    assert first.content == b"#EXTM3U\n"
    assert first.headers["content-type"].startswith("application/vnd.apple.mpegurl")
    assert first.headers["x-cache"] == "MISS"
    assert second.headers["x-cache"] == "HIT"
    assert first.headers["cache-control"] == "public, max-age=3600"
    assert segment.headers["content-type"].startswith("video/mp2t")
    assert segment.headers["cache-control"] == "public, max-age=86400"


async def test_stream_rejects_other_files(client):
    response = await client.get(f"/feed/videos/stream/{uuid4()}/secret.txt")

    assert response.status_code == 400


async def test_prefetch_endpoint(client, session_factory, storage):
    video_id = await create_video(session_factory, height=360)
    storage.objects[f"{hls_prefix(video_id)}stream_360p_004.ts"] = b"ts"

    response = await client.post(
        f"/feed/videos/stream/{video_id}/prefetch",
        params={"segment": 4, "count": 2},
    )

    assert response.status_code == 200
    assert response.json() == {
        "video_id": str(video_id),
        "resolutions": [360],
        "warmed": 1,
        "already_cached": 0,
        "failed": 1,
    }


async def test_delete_and_visibility(client, session_factory):
    video_id = await create_video(session_factory)

    forbidden = await client.delete(f"/feed/videos/{video_id}", headers=ADOPTER)
    hidden = await client.patch(f"/feed/videos/{video_id}/visibility", headers=BREEDER)
    deleted = await client.delete(f"/feed/videos/{video_id}", headers=BREEDER)
    gone = await client.get(f"/feed/videos/{video_id}", headers=BREEDER)

    assert forbidden.status_code == 403
    assert hidden.json() == {"video_id": str(video_id), "is_public": False}
    assert deleted.status_code == 204
    assert gone.status_code == 404


async def test_my_videos(client, session_factory):
    await create_video(session_factory, status=VideoStatus.FAILED)
    await create_video(session_factory, uploader_id="breeder-2")

    response = await client.get("/feed/videos/my/list", headers=BREEDER)

    assert response.status_code == 200
    items = response.json()["items"]
    assert len(items) == 1
    assert items[0]["status"] == "failed"
    assert items[0]["failure_reason"] == "HLS transcoding failed at 720p"


async def test_like_endpoints(client, session_factory):
    video_id = await create_video(session_factory)

    liked = await client.post(f"/feed/like/{video_id}", headers=ADOPTER)
    status = await client.get(f"/feed/like/{video_id}/status", headers=ADOPTER)
    mine = await client.get("/feed/like/my/list", headers=ADOPTER)
    unliked = await client.post(f"/feed/like/{video_id}", headers=ADOPTER)

    assert liked.json() == {"is_liked": True, "like_count": 1}
    assert status.json() == {"is_liked": True, "like_count": 1}
    assert [item["video_id"] for item in mine.json()["items"]] == [str(video_id)]
    assert unliked.json() == {"is_liked": False, "like_count": 0}


async def test_comment_endpoints(client, session_factory):
    video_id = await create_video(session_factory)

    created = await client.post(f"/feed/comment/{video_id}", json={"content": "so cute"}, headers=ADOPTER)
    comment_id = created.json()["comment_id"]
    reply = await client.post(
        f"/feed/comment/{video_id}",
        json={"content": "thanks!", "parent_id": comment_id},
        headers=BREEDER,
    )
    nested = await client.post(
        f"/feed/comment/{video_id}",
        json={"content": "nope", "parent_id": reply.json()["comment_id"]},
        headers=ADOPTER,
    )
    listing = await client.get(f"/feed/comment/{video_id}", headers=ADOPTER)
    replies = await client.get(f"/feed/comment/{comment_id}/replies")
    edited = await client.patch(f"/feed/comment/{comment_id}", json={"content": "so so cute"}, headers=ADOPTER)
    deleted = await client.delete(f"/feed/comment/{comment_id}", headers=ADOPTER)
    meta = await client.get(f"/feed/videos/{video_id}")

    assert created.status_code == 201
    assert reply.status_code == 201
    assert nested.status_code == 400
    assert listing.json()["items"][0]["reply_count"] == 1
    assert listing.json()["items"][0]["is_owner"] is True
    assert [item["content"] for item in replies.json()["items"]] == ["thanks!"]
    assert edited.json()["content"] == "so so cute"
    assert deleted.json() == {"success": True}
    assert meta.json()["comment_count"] == 1


async def test_comment_with_malformed_parent_id(client, session_factory):
    video_id = await create_video(session_factory)

    response = await client.post(
        f"/feed/comment/{video_id}",
        json={"content": "hi", "parent_id": "not-a-uuid"},
        headers=ADOPTER,
    )

    assert response.status_code == 400


async def test_tag_endpoints(client, session_factory):
    video_id = await create_video(session_factory, tags=["강아지"])

    search = await client.get("/feed/tags/search", params={"tag": "#강아지"})
    popular = await client.get("/feed/tags/popular")
    suggest = await client.get("/feed/tags/suggest", params={"q": "강"})

    assert [item["video_id"] for item in search.json()["items"]] == [str(video_id)]
    assert popular.json() == [{"tag": "강아지", "video_count": 1, "total_views": 0}]
    assert suggest.json() == [{"tag": "강아지", "video_count": 1}]
