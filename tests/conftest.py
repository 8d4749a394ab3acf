"""
Pytest configuration for the chapter engine test suite.

Configures:
- pytest-asyncio for async test support
- a fresh SQLite file database per test
- generation options scaled down so that the scripted writer's 60-word
  scenes land inside the word-count window
"""
import pytest
import pytest_asyncio

from inkloom.db.init_db import init_db
from inkloom.db.session import build_engine, build_session_factory
from inkloom.services.chapter_generation import (
    ChapterGenerationService,
    ChapterSessionRegistry,
    DecompositionPolicy,
    GenerationOptions,
)
from inkloom.services.execution_cache import ExecutionCacheService

from fakes import FakeWriter, seed_chapter

pytest_plugins = ["pytest_asyncio"]


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'inkloom-test.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def options():
    return GenerationOptions(
        decomposition=DecompositionPolicy(words_per_scene=60, min_words=40, max_words=200),
        word_tolerance=0.5,
        scene_timeout=5.0,
    )


@pytest.fixture
def cache(session_factory):
    return ExecutionCacheService(session_factory)


@pytest.fixture
def writer():
    return FakeWriter()


@pytest.fixture
def summary_jobs():
    return []


@pytest.fixture
def registry():
    return ChapterSessionRegistry()


@pytest.fixture
def service(session_factory, writer, cache, options, registry, summary_jobs):
    return ChapterGenerationService(
        session_factory,
        writer,
        cache,
        options=options,
        registry=registry,
        enqueue_summary=summary_jobs.append,
    )


@pytest.fixture
def seed(session_factory):
    async def _seed(**kwargs):
        return await seed_chapter(session_factory, **kwargs)
    return _seed
