import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from database import Base, get_db
from main import app
from models.credit_balance import CreditBalance
from models.user import User
from routers import rate_limit
from services import realtime
from services.session_token import create_session_token


TEST_SCHOOL_ID = "school-test"


class FakeRedis:
    """Records published messages instead of talking to Redis."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.published = []
        self.counters = {}

    async def publish(self, channel, body):
        if self.fail:
            raise ConnectionError("redis unavailable")
        self.published.append((channel, body))
        return 1

    async def incr(self, key):
        if self.fail:
            raise ConnectionError("redis unavailable")
        self.counters[key] = self.counters.get(key, 0) + 1
        return self.counters[key]

    async def expire(self, key, seconds):
        return True

    async def ping(self):
        if self.fail:
            raise ConnectionError("redis unavailable")
        return True

    async def aclose(self):
        return None


def auth_header(user_id: str, role: str = "teacher", school_id: str = TEST_SCHOOL_ID) -> dict:
    token = create_session_token(user_id, email=f"{user_id}@school.test", role=role, school_id=school_id)["token"]
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(autouse=True)
def reset_local_rate_limit_counters():
    """Keep in-memory rate-limit state isolated between tests."""
    previous = getattr(app.state, "disable_rate_limits", False)
    app.state.disable_rate_limits = True
    rate_limit._local_counters.clear()
    yield
    rate_limit._local_counters.clear()
    app.state.disable_rate_limits = previous


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch):
    client = FakeRedis()
    monkeypatch.setattr(realtime, "get_redis_client", lambda: client)
    return client


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    db_path = tmp_path / "schoolhub.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async def override_get_db():
        async with maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    yield maker
    app.dependency_overrides.pop(get_db, None)
    await engine.dispose()


@pytest_asyncio.fixture
async def integration_client(session_maker):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.fixture
def create_user(session_maker):
    """Insert a user with an open credit account."""

    async def _create(
        user_id: str,
        credits: int = 10,
        role: str = "teacher",
        school_id: str = TEST_SCHOOL_ID,
    ) -> User:
        async with session_maker() as session:
            user = User(id=user_id, email=f"{user_id}@school.test", role=role, school_id=school_id)
            session.add(user)
            await session.flush()
            session.add(
                CreditBalance(
                    user_id=user_id,
                    current_credits=credits,
                    bonus_credits=0,
                    used_credits=0,
                    total_purchased=0,
                    initial_credits=credits,
                    status="active",
                )
            )
            await session.commit()
            return user

    return _create
