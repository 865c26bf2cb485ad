from datetime import datetime

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.future import select

from database import Base, get_db
from main import app
from models.account import Account
from models.credit_balance import CreditBalance
from models.subscription import Subscription
from models.usage_record import UsageRecord
from services.accounts import AccountStore


CYCLE_START = datetime(2026, 10, 1)
CYCLE_END = datetime(2026, 10, 31, 23, 59, 59)


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    db_path = tmp_path / "credit_gateway.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield maker

    await engine.dispose()


@pytest_asyncio.fixture
async def client(session_maker):
    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http_client:
        yield http_client

    app.dependency_overrides.pop(get_db, None)


@pytest.fixture
def seed_account(session_maker):
    """Create an account with an active subscription, optionally without its balance row."""

    async def _seed(
        external_id="wp-1001",
        credits=100,
        plan_id="creator",
        cycle_start=CYCLE_START,
        cycle_end=CYCLE_END,
        with_balance=True,
    ):
        async with session_maker() as session:
            store = AccountStore(session)
            account = await store.upsert_account(external_id, f"{external_id}@example.com")
            if with_balance:
                await store.upsert_subscription_and_reset_balance(
                    account_id=account.id,
                    plan_id=plan_id,
                    allotment=credits,
                    cycle_start=cycle_start,
                    cycle_end=cycle_end,
                    active=True,
                )
            else:
                session.add(
                    Subscription(
                        account_id=account.id,
                        plan_id=plan_id,
                        monthly_credit_limit=credits,
                        cycle_start=cycle_start,
                        cycle_end=cycle_end,
                        active=True,
                    )
                )
            await session.commit()
            return account.id

    return _seed


@pytest.fixture
def ledger_snapshot(session_maker):
    """Read (credits_remaining, usage row count) for an external account."""

    async def _snapshot(external_id="wp-1001"):
        async with session_maker() as session:
            account = (
                await session.execute(select(Account).where(Account.external_id == external_id))
            ).scalar_one()
            balance = (
                await session.execute(
                    select(CreditBalance.credits_remaining)
                    .where(CreditBalance.account_id == account.id)
                    .order_by(CreditBalance.cycle_start.desc())
                    .limit(1)
                )
            ).scalar_one_or_none()
            usage_count = (
                await session.execute(
                    select(func.count(UsageRecord.id)).where(UsageRecord.account_id == account.id)
                )
            ).scalar_one()
            return balance, usage_count

    return _snapshot
