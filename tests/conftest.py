import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from sqlgate.main import app
from sqlgate.core.config import Settings
from sqlgate.core.pipeline.executor import build_pipeline, get_pipeline


# Settings pointing at a throwaway database file, never at the local .env
def make_settings(tmp_path, db_name="gateway.db", **overrides):
    return Settings(_env_file=None, db_path=str(tmp_path / db_name), **overrides)


# Settings factory for tests that build their own app or pipeline
@pytest.fixture(scope="function")
def settings_factory(tmp_path):
    def factory(db_name="gateway.db", **overrides):
        return make_settings(tmp_path, db_name, **overrides)

    return factory


# Build pipelines on demand and close all of them once the test is done
@pytest_asyncio.fixture(scope="function")
async def pipeline_factory(tmp_path):
    created = []

    async def factory(db_name="gateway.db", **overrides):
        pipeline = await build_pipeline(make_settings(tmp_path, db_name, **overrides))
        created.append(pipeline)
        return pipeline

    yield factory

    for pipeline in created:
        await pipeline.close()


# Pipeline with auditing enabled
@pytest_asyncio.fixture(scope="function")
async def pipeline(pipeline_factory):
    return await pipeline_factory(collect_metadata=True)


# Client
@pytest_asyncio.fixture(scope="function")
async def client(pipeline):
    app.dependency_overrides[get_pipeline] = lambda: pipeline

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
