import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from database import Base, get_db
from main import app
from models.feature_cost import FeatureCost
from models.user import User
from routers import rate_limit
from services.ledger import CreditLedger
from services.session_token import create_session_token


@pytest.fixture(autouse=True)
def reset_local_rate_limit_counters():
    """Keep in-memory rate-limit state isolated between tests."""
    previous = getattr(app.state, "disable_rate_limits", False)
    app.state.disable_rate_limits = True
    rate_limit.local_counter.clear()
    yield
    rate_limit.local_counter.clear()
    app.state.disable_rate_limits = previous


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    db_path = tmp_path / "credits.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", connect_args={"timeout": 30})
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield maker
    await engine.dispose()


@pytest_asyncio.fixture
async def api_client(session_maker):
    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.pop(get_db, None)


@pytest.fixture
def create_account(session_maker):
    """Insert an account; a starting balance is granted so grants minus usage stays equal to the balance."""

    async def _create(user_id: str, *, credits: int = 0, role: str = "user", email=None) -> str:
        async with session_maker() as session:
            session.add(User(id=user_id, email=email or f"{user_id}@example.com", role=role))
            await session.commit()
            if credits:
                await CreditLedger(session).grant(user_id, credits, "Initial credits", source="system")
        return user_id

    return _create


@pytest.fixture
def create_feature(session_maker):
    async def _create(feature_id: str, cost: int, *, active: bool = True, name=None) -> str:
        async with session_maker() as session:
            session.add(
                FeatureCost(
                    feature_id=feature_id,
                    feature_name=name or feature_id.title(),
                    credit_cost=cost,
                    active=active,
                )
            )
            await session.commit()
        return feature_id

    return _create


def auth_header(user_id: str) -> dict:
    return {"Authorization": f"Bearer {create_session_token(user_id)['token']}"}


@pytest.fixture
def headers_for():
    return auth_header
