import pytest
from cardshop.db.connection import build_engine, build_session_factory, init_models
from cardshop.db.locks import configure_write_locks
from tests.factories import FakeGateway


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'cardshop.db'}")
    await init_models(engine)
    configure_write_locks(True)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def keyed_write_locks(engine):
    # per-product keys as used on postgres; sqlite itself still serializes the commits
    locks = configure_write_locks(False)
    yield locks
    configure_write_locks(True)
