"""Tests for like toggling and the stored like counter."""

import asyncio
import random
from uuid import uuid4

import pytest
from sqlalchemy import func, select, update

from conftest import create_video
from pawfeed.errors import NotFoundError
from pawfeed.likes.service import LikeService
from pawfeed.models import UserRole, Video, VideoLike, VideoStatus


@pytest.fixture
def like_service(db, storage, cache):
    return LikeService(db, storage=storage, cache=cache)


async def stored_counts(session_factory, video_id):
    async with session_factory() as session:
        like_count = await session.scalar(select(Video.like_count).where(Video.video_id == video_id))
        rows = await session.scalar(
            select(func.count()).select_from(VideoLike).where(VideoLike.video_id == video_id)
        )
    return like_count, rows


async def test_two_users_like_and_unlike(like_service, session_factory):
    video_id = await create_video(session_factory)

    a = await like_service.toggle_like(video_id, "adopter-a", UserRole.ADOPTER)
    b = await like_service.toggle_like(video_id, "adopter-b", UserRole.ADOPTER)
    a_again = await like_service.toggle_like(video_id, "adopter-a", UserRole.ADOPTER)

    assert (a.is_liked, a.like_count) == (True, 1)
    assert (b.is_liked, b.like_count) == (True, 2)
    assert (a_again.is_liked, a_again.like_count) == (False, 1)

    status_a = await like_service.get_like_status(video_id, "adopter-a")
    status_b = await like_service.get_like_status(video_id, "adopter-b")
    assert (status_a.is_liked, status_a.like_count) == (False, 1)
    assert (status_b.is_liked, status_b.like_count) == (True, 1)
    assert await stored_counts(session_factory, video_id) == (1, 1)


@pytest.mark.parametrize("toggles", [1, 2, 5, 6])
async def test_toggle_parity(like_service, session_factory, toggles):
    video_id = await create_video(session_factory)

    for _ in range(toggles):
        result = await like_service.toggle_like(video_id, "breeder-9", UserRole.BREEDER)

    assert result.is_liked is (toggles % 2 == 1)
    assert await stored_counts(session_factory, video_id) == (toggles % 2, toggles % 2)


async def test_counter_matches_rows_for_random_sequence(like_service, session_factory):
    video_id = await create_video(session_factory)
    users = [f"adopter-{i}" for i in range(6)]
    rng = random.Random(20261019)
    liked = set()

    for _ in range(60):
        user = rng.choice(users)
        result = await like_service.toggle_like(video_id, user, UserRole.ADOPTER)
        liked.symmetric_difference_update({user})
        assert result.is_liked is (user in liked)
        assert result.like_count == len(liked)

    assert await stored_counts(session_factory, video_id) == (len(liked), len(liked))


async def test_cannot_like_hidden_videos(like_service, session_factory):
    private_id = await create_video(session_factory, is_public=False)
    processing_id = await create_video(session_factory, status=VideoStatus.PROCESSING)

    with pytest.raises(NotFoundError):
        await like_service.toggle_like(private_id, "adopter-1", UserRole.ADOPTER)
    with pytest.raises(NotFoundError):
        await like_service.toggle_like(processing_id, "adopter-1", UserRole.ADOPTER)
    with pytest.raises(NotFoundError):
        await like_service.toggle_like(uuid4(), "adopter-1", UserRole.ADOPTER)

    # The uploader may like their own private video
    own = await like_service.toggle_like(private_id, "breeder-1", UserRole.BREEDER)
    assert own.is_liked


async def test_like_status_for_missing_video(like_service):
    with pytest.raises(NotFoundError):
        await like_service.get_like_status(uuid4(), "adopter-1")


@pytest.mark.parametrize(
    "status, is_public, viewer",
    [
        (VideoStatus.UPLOADING, True, "breeder-1"),
        (VideoStatus.PROCESSING, True, "adopter-1"),
        (VideoStatus.FAILED, True, "breeder-1"),
        (VideoStatus.READY, False, "adopter-1"),
    ],
)
async def test_like_status_hides_unavailable_videos(like_service, session_factory, status, is_public, viewer):
    video_id = await create_video(session_factory, status=status, is_public=is_public)

    with pytest.raises(NotFoundError):
        await like_service.get_like_status(video_id, viewer)


async def test_like_status_on_own_private_video(like_service, session_factory):
    video_id = await create_video(session_factory, is_public=False)
    await like_service.toggle_like(video_id, "breeder-1", UserRole.BREEDER)

    status = await like_service.get_like_status(video_id, "breeder-1")

    assert (status.is_liked, status.like_count) == (True, 1)


async def test_concurrent_toggles_keep_counter_in_step(file_session_factory, storage, cache):
    video_id = await create_video(file_session_factory)
    users = [f"adopter-{i}" for i in range(8)]

    async def toggle(user_id):
        async with file_session_factory() as session:
            service = LikeService(session, storage=storage, cache=cache)
            return await service.toggle_like(video_id, user_id, UserRole.ADOPTER)

    liked = await asyncio.gather(*(toggle(user) for user in users))
    assert all(result.is_liked for result in liked)
    assert await stored_counts(file_session_factory, video_id) == (8, 8)

    # Same users again, some of them twice, all at once
    await asyncio.gather(*(toggle(user) for user in users + users[:3]))
    like_count, rows = await stored_counts(file_session_factory, video_id)
    assert like_count == rows == 3


async def test_toggle_invalidates_cached_meta(like_service, session_factory, cache):
    video_id = await create_video(session_factory)
    await cache.set_json(f"video:meta:{video_id}", {"like_count": 0}, 300)

    await like_service.toggle_like(video_id, "adopter-1", UserRole.ADOPTER)

    assert await cache.get(f"video:meta:{video_id}") is None


async def test_my_liked_videos(like_service, session_factory):
    first = await create_video(session_factory, title="first")
    second = await create_video(session_factory, title="second")
    hidden = await create_video(session_factory, title="hidden")
    for video_id in (first, second, hidden):
        await like_service.toggle_like(video_id, "adopter-1", UserRole.ADOPTER)
    async with session_factory() as session:
        await session.execute(
            update(Video).where(Video.video_id == hidden).values(is_public=False)
        )
        await session.commit()

    page = await like_service.get_my_liked_videos("adopter-1")

    assert {item.video_id for item in page.items} == {str(first), str(second)}
    assert page.pagination.total_items == 2
    assert all(item.like_count == 1 for item in page.items)
