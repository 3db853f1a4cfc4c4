"""Shared fixtures: in-memory database and delivery cache."""

import pytest_asyncio

from app.modules.transcoding.cache import InMemoryCacheBackend, VideoCache
from tests.transcoding.fakes import create_test_session_maker


@pytest_asyncio.fixture
async def session_maker():
    maker = await create_test_session_maker()
    yield maker
    await maker.kw["bind"].dispose()


@pytest_asyncio.fixture
async def session(session_maker):
    async with session_maker() as session:
        yield session


@pytest_asyncio.fixture
async def cache_backend():
    return InMemoryCacheBackend()


@pytest_asyncio.fixture
async def video_cache(cache_backend):
    return VideoCache(cache_backend)
